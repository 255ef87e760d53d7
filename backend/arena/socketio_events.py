from flask import current_app, request
from flask_socketio import ConnectionRefusedError, emit
from arena import db, get_services
from arena.auth import load_participant
from arena.errors import AlreadyJoined, ArenaError, Unauthenticated, ValidationError
from arena.services.sessions import scoring
from arena.services.sessions.broadcast import WS_NAMESPACE
from arena.validators import validate_score_report


def _get_sid() -> str:
    # request.sid exists in Socket.IO context
    return request.sid  # type: ignore


def _current_participant_id():
    return get_services().broadcaster.participant_for(_get_sid())


def _fail(exc: ArenaError) -> None:
    get_services().broadcaster.send_error(_get_sid(), exc.message, exc.code)


def _session_id_from(data):
    session_id = (data or {}).get('sessionId')
    if not session_id or not isinstance(session_id, str):
        _fail(ValidationError('sessionId is required'))
        return None
    return session_id


def _authenticated():
    participant_id = _current_participant_id()
    if participant_id is None:
        _fail(Unauthenticated())
    return participant_id


def handle_connect(auth=None):
    token = (auth or {}).get('token') if isinstance(auth, dict) else None
    token = token or request.args.get('token')
    try:
        participant = load_participant(token)
    except Unauthenticated as exc:
        current_app.logger.info(f"[ws-refused] sid={_get_sid()} reason={exc.message}")
        raise ConnectionRefusedError(exc.message)
    get_services().broadcaster.attach(_get_sid(), participant.id)
    emit('connected', {'message': f'Connected to {WS_NAMESPACE}', 'participantId': participant.id})


def handle_disconnect(*args):
    # Leave every session group this socket was in. detach() is idempotent so
    # a second disconnect notification finds nothing to do.
    services = get_services()
    sid = _get_sid()
    conn = services.broadcaster.detach(sid)
    if not conn:
        return
    for session_id in sorted(conn.groups):
        try:
            services.lifecycle.leave(session_id, conn.participant_id)
        except ArenaError as exc:
            # already left over REST, or the session finished meanwhile
            current_app.logger.info(
                f"[ws-disconnect-skip] sid={sid} session={session_id} reason={exc.code}"
            )
            db.session.rollback()


def handle_join_session(data):
    session_id = _session_id_from(data)
    participant_id = _authenticated()
    if not session_id or participant_id is None:
        return
    lifecycle = get_services().lifecycle
    try:
        lifecycle.join(session_id, participant_id, origin_sid=_get_sid())
    except AlreadyJoined:
        # Member through REST or another socket: subscribe without re-joining
        try:
            lifecycle.attach(session_id, participant_id, _get_sid())
        except ArenaError as exc:
            _fail(exc)
    except ArenaError as exc:
        _fail(exc)


def handle_leave_session(data):
    session_id = _session_id_from(data)
    participant_id = _authenticated()
    if not session_id or participant_id is None:
        return
    try:
        get_services().lifecycle.leave(session_id, participant_id, origin_sid=_get_sid())
    except ArenaError as exc:
        _fail(exc)


def handle_update_score(data):
    session_id = _session_id_from(data)
    participant_id = _authenticated()
    if not session_id or participant_id is None:
        return
    try:
        score, tasks = validate_score_report(data)
        get_services().lifecycle.update_score(session_id, participant_id, score, tasks)
    except ArenaError as exc:
        _fail(exc)


def handle_request_session_data(data):
    session_id = _session_id_from(data)
    if not session_id:
        return
    services = get_services()
    try:
        game = services.lifecycle.get(session_id)
    except ArenaError as exc:
        _fail(exc)
        return
    services.broadcaster.send(_get_sid(), 'session_data', {
        'session': game.to_dict(),
        'leaderboard': scoring.leaderboard(game, services.lifecycle.broadcast_size),
    })


def handle_ping(data=None):
    emit('pong', data or {})


def register_socketio_handlers() -> None:
    """Register Socket.IO event handlers on the '/ws' namespace."""
    from arena import socketio

    handlers = {
        'connect': handle_connect,
        'disconnect': handle_disconnect,
        'join_session': handle_join_session,
        'leave_session': handle_leave_session,
        'update_score': handle_update_score,
        'request_session_data': handle_request_session_data,
        'ping': handle_ping,
    }
    for event, handler in handlers.items():
        socketio.on_event(event, handler, namespace=WS_NAMESPACE)
