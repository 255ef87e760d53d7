"""Bearer-token identity on top of Flask-Login.

``/login`` hands out a signed token; REST calls send it as
``Authorization: Bearer <token>`` and sockets pass it in the connect auth
payload (``{"token": ...}``) or as a ``token`` query argument.
"""

from flask import current_app, jsonify
from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer

from arena import db
from arena.errors import Unauthenticated
from arena.models import Participant

TOKEN_SALT = 'arena-bearer'


def _serializer():
    return URLSafeTimedSerializer(current_app.config['SECRET_KEY'], salt=TOKEN_SALT)


def issue_token(participant) -> str:
    return _serializer().dumps({'pid': participant.id})


def verify_token(token):
    """Return the participant id inside ``token`` or raise ``Unauthenticated``."""
    if not token:
        raise Unauthenticated('No token provided')
    max_age = int(current_app.config.get('TOKEN_MAX_AGE_SEC', 86400))
    try:
        data = _serializer().loads(token, max_age=max_age)
    except SignatureExpired:
        raise Unauthenticated('Token expired')
    except BadSignature:
        raise Unauthenticated('Invalid token')
    participant_id = data.get('pid') if isinstance(data, dict) else None
    if not isinstance(participant_id, int):
        raise Unauthenticated('Invalid token')
    return participant_id


def load_participant(token):
    participant = db.session.get(Participant, verify_token(token))
    if participant is None or not participant.is_active:
        raise Unauthenticated('Unknown participant')
    return participant


def bearer_token(headers):
    header = headers.get('Authorization', '')
    scheme, _, token = header.partition(' ')
    if scheme.lower() != 'bearer':
        return None
    return token.strip() or None


def register_auth(login_manager):
    @login_manager.user_loader
    def load_user(user_id):
        return db.session.get(Participant, int(user_id))

    @login_manager.request_loader
    def load_user_from_request(request):
        token = bearer_token(request.headers)
        if not token:
            return None
        try:
            return load_participant(token)
        except Unauthenticated:
            return None

    @login_manager.unauthorized_handler
    def unauthorized():
        error = Unauthenticated()
        return jsonify({'error': error.to_dict()}), error.status_code
