from flask import Blueprint, request, jsonify
from flask_login import current_user, login_required, login_user, logout_user
from arena import bcrypt, db
from arena.auth import issue_token
from arena.errors import AuthenticationError, ConflictError
from arena.models import Participant
from arena.validators import validate_registration

main = Blueprint('main', __name__)

@main.route('/')
def index():
    return jsonify({'message': 'Welcome to the Arena session server!'})

@main.route('/register', methods=['POST'])
def register():
    data = request.get_json(silent=True) or {}
    handle, address, password = validate_registration(data)

    if Participant.query.filter_by(handle=handle).first():
        raise ConflictError('Handle already exists')
    if Participant.query.filter_by(payout_address=address).first():
        raise ConflictError('Payout address already registered')

    participant = Participant(
        handle=handle,
        payout_address=address,
        password_hash=bcrypt.generate_password_hash(password).decode('utf-8'),
        is_active_account=True,
        sessions_joined=0,
        sessions_won=0,
        total_reward=0,
    )
    db.session.add(participant)
    db.session.commit()

    return jsonify({'participant': participant.to_dict(), 'token': issue_token(participant)}), 201

@main.route('/login', methods=['POST'])
def login():
    data = request.get_json(silent=True) or {}
    participant = Participant.query.filter_by(handle=data.get('handle')).first()
    password = data.get('password') or ''
    if not participant or not bcrypt.check_password_hash(participant.password_hash, password):
        raise AuthenticationError('Invalid handle or password')
    if not participant.is_active:
        raise AuthenticationError('Account is disabled')
    login_user(participant)
    return jsonify({'participant': participant.to_dict(), 'token': issue_token(participant)})

@main.route('/logout', methods=['POST'])
@login_required
def logout():
    logout_user()
    return jsonify({'message': 'Logged out successfully.'})

@main.route('/me')
@login_required
def me():
    return jsonify(current_user.to_dict(include_stats=True))
