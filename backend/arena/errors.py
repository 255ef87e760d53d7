"""Error taxonomy shared by the REST API, socket handlers and services.

Every failure a caller can trigger is an ``ArenaError`` carrying a stable
``code`` and the HTTP status used when it crosses the REST boundary.
"""

from flask import jsonify
from werkzeug.exceptions import HTTPException


class ArenaError(Exception):
    status_code = 500
    code = 'INTERNAL_ERROR'
    default_message = 'Internal server error'

    def __init__(self, message=None, code=None):
        self.message = message or self.default_message
        if code:
            self.code = code
        super().__init__(self.message)

    def to_dict(self):
        return {'message': self.message, 'code': self.code}


class ValidationError(ArenaError):
    status_code = 400
    code = 'VALIDATION_ERROR'
    default_message = 'Validation failed'

    def __init__(self, message=None, errors=None, code=None):
        super().__init__(message, code)
        self.errors = list(errors or [])

    def to_dict(self):
        data = super().to_dict()
        if self.errors:
            data['errors'] = self.errors
        return data


class InvalidConfig(ValidationError):
    default_message = 'Invalid session configuration'


class AuthenticationError(ArenaError):
    status_code = 401
    code = 'AUTHENTICATION_ERROR'
    default_message = 'Authentication required'


class Unauthenticated(AuthenticationError):
    pass


class AuthorizationError(ArenaError):
    status_code = 403
    code = 'AUTHORIZATION_ERROR'
    default_message = 'Insufficient permissions'


class Forbidden(AuthorizationError):
    default_message = 'Only the session creator can do that'


class NotFoundError(ArenaError):
    status_code = 404
    code = 'NOT_FOUND'

    def __init__(self, resource='Resource', message=None):
        super().__init__(message or f'{resource} not found')


class NotAJoinedParticipant(NotFoundError):
    def __init__(self, message=None):
        super().__init__('Participant session', message or 'Participant is not active in this session')


class ConflictError(ArenaError):
    status_code = 409
    code = 'CONFLICT'
    default_message = 'Conflict'


class NotJoinable(ConflictError):
    default_message = 'Session is not joinable'


class AlreadyJoined(ConflictError):
    default_message = 'Participant is already in this session'


class AlreadyTerminal(ConflictError):
    code = 'SESSION_ENDED'
    default_message = 'Session has already ended'


class DuplicateReward(ConflictError):
    default_message = 'Reward already exists for this session'


class NotRetryable(ConflictError):
    default_message = 'Reward cannot be retried'


class TransportError(ArenaError):
    status_code = 502
    code = 'TRANSPORT_ERROR'
    default_message = 'Reward transport failed'


def register_error_handlers(flask_app):
    """Render service errors and stray HTTP errors as JSON."""

    @flask_app.errorhandler(ArenaError)
    def handle_arena_error(exc):
        if exc.status_code >= 500:
            flask_app.logger.error(f"[error] code={exc.code} message={exc.message}")
        return jsonify({'error': exc.to_dict()}), exc.status_code

    @flask_app.errorhandler(HTTPException)
    def handle_http_error(exc):
        code = 'NOT_FOUND' if exc.code == 404 else 'HTTP_ERROR'
        return jsonify({'error': {'message': exc.description, 'code': code}}), exc.code
