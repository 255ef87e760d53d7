from flask import Blueprint, jsonify, request
from flask_login import current_user, login_required
from arena import get_services
from arena.errors import Forbidden, NotFoundError
from arena.validators import parse_limit, validate_score_report, validate_session_config

sessions = Blueprint('sessions', __name__)


def _lifecycle():
    return get_services().lifecycle


def _session_payload(game):
    payload = game.to_dict()
    reward = get_services().issuer.for_session(game)
    payload['reward'] = reward.to_dict() if reward else None
    return payload


@sessions.route('', methods=['POST'])
@login_required
def create_session():
    """
    Creates a WAITING session owned by the current participant.
    """
    config = validate_session_config(request.get_json(silent=True))
    game = _lifecycle().create(current_user.id, config)
    return jsonify(game.to_dict()), 201


@sessions.route('', methods=['GET'])
def list_sessions():
    state = request.args.get('state')
    limit = parse_limit(request.args.get('limit'), default=50)
    games = _lifecycle().list_sessions(state.upper() if state else None, limit)
    return jsonify([g.to_dict(include_participants=False) for g in games])


@sessions.route('/<string:session_id>', methods=['GET'])
def get_session(session_id):
    return jsonify(_session_payload(_lifecycle().get(session_id)))


@sessions.route('/<string:session_id>/join', methods=['POST'])
@login_required
def join_session(session_id):
    game = _lifecycle().join(session_id, current_user.id)
    return jsonify(game.to_dict())


@sessions.route('/<string:session_id>/leave', methods=['POST'])
@login_required
def leave_session(session_id):
    _lifecycle().leave(session_id, current_user.id)
    return jsonify({'message': 'Successfully left session'})


@sessions.route('/<string:session_id>/start', methods=['POST'])
@login_required
def start_session(session_id):
    game = _lifecycle().start(session_id, current_user.id)
    return jsonify(game.to_dict())


@sessions.route('/<string:session_id>/end', methods=['POST'])
@login_required
def end_session(session_id):
    """
    Ends the session, settles the winner and attempts the payout. A failed
    payout still returns 200: the session is ended and the reward is retryable.
    """
    result = _lifecycle().end(session_id, current_user.id)
    return jsonify({
        'session': result.session.to_dict(),
        'winner': result.winner.to_dict() if result.winner else None,
        'leaderboard': result.leaderboard,
        'reward': result.reward.to_dict() if result.reward else None,
    })


@sessions.route('/<string:session_id>/cancel', methods=['POST'])
@login_required
def cancel_session(session_id):
    game = _lifecycle().cancel(session_id, current_user.id)
    return jsonify(game.to_dict())


@sessions.route('/<string:session_id>/leaderboard', methods=['GET'])
def get_leaderboard(session_id):
    limit = parse_limit(request.args.get('limit'), default=10)
    return jsonify(_lifecycle().leaderboard(session_id, limit))


@sessions.route('/<string:session_id>/score', methods=['POST'])
@login_required
def update_score(session_id):
    score, tasks = validate_score_report(request.get_json(silent=True))
    entry = _lifecycle().update_score(session_id, current_user.id, score, tasks)
    return jsonify({
        'participantId': entry.participant_id,
        'handle': entry.participant.handle,
        'score': entry.score,
        'tasksCompleted': entry.tasks_completed,
        'lastActivityAt': entry.last_activity_at.isoformat() + 'Z',
    })


@sessions.route('/<string:session_id>/reward', methods=['GET'])
def get_reward(session_id):
    game = _lifecycle().get(session_id)
    reward = get_services().issuer.for_session(game)
    if reward is None:
        raise NotFoundError('Reward')
    return jsonify(reward.to_dict())


@sessions.route('/<string:session_id>/reward/retry', methods=['POST'])
@login_required
def retry_reward(session_id):
    services = get_services()
    game = services.lifecycle.get(session_id)
    if game.creator_id != current_user.id:
        raise Forbidden('Only the session creator can retry the reward')
    reward = services.issuer.for_session(game)
    if reward is None:
        raise NotFoundError('Reward')
    return jsonify(services.issuer.retry(reward.id).to_dict())
