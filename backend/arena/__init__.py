from flask import Flask, jsonify
from flask_sqlalchemy import SQLAlchemy
from flask_bcrypt import Bcrypt
from flask_login import LoginManager
from flask_cors import CORS
from flask_migrate import Migrate
from flask_socketio import SocketIO
import atexit
import logging
import click
from config import Config

db = SQLAlchemy()
bcrypt = Bcrypt()
login_manager = LoginManager()
migrate = Migrate()
socketio = SocketIO(async_mode=None)


def get_services(flask_app=None):
    """The ArenaServices built for the current (or given) app."""
    from flask import current_app
    return (flask_app or current_app).extensions['arena']


def create_app(config_class=Config):
    flask_app = Flask(__name__)
    flask_app.config.from_object(config_class)
    flask_app.logger.setLevel(getattr(logging, str(flask_app.config.get('LOG_LEVEL', 'INFO')).upper(), logging.INFO))

    allowed_origins = flask_app.config.get('CORS_ORIGINS') or []
    db.init_app(flask_app)
    bcrypt.init_app(flask_app)
    login_manager.init_app(flask_app)
    migrate.init_app(flask_app, db)
    CORS(flask_app, supports_credentials=True, origins=allowed_origins)

    # Initialize Socket.IO after app is created
    socketio.init_app(flask_app, cors_allowed_origins=allowed_origins)

    from arena.errors import register_error_handlers
    register_error_handlers(flask_app)

    from arena.auth import register_auth
    register_auth(login_manager)

    # Import and register blueprints here
    from arena.main import main
    flask_app.register_blueprint(main)

    from arena.api.sessions import sessions
    flask_app.register_blueprint(sessions, url_prefix='/api/sessions')

    # One set of services per app: broadcaster, locks, rewards, lifecycle, reconciler
    from arena.services.sessions import build_services
    services = build_services(flask_app, socketio)
    flask_app.extensions['arena'] = services

    from arena.socketio_events import register_socketio_handlers
    register_socketio_handlers()

    # Overdue sessions end without any client activity, however the app is served.
    # start() itself stays off under TESTING.
    if flask_app.config.get('RECONCILER_AUTOSTART', True) and services.reconciler.start():
        atexit.register(services.reconciler.stop)

    @flask_app.route('/health')
    def health():
        return jsonify({'status': 'ok', 'reconciler': services.reconciler.running})

    @click.command('db-reset')
    def db_reset_command():
        """Drops, recreates, and seeds the database."""
        from arena.models import Participant
        with flask_app.app_context():
            db.drop_all()
            db.create_all()

            # Seed participants
            seeds = [
                ('player_one', '0x' + '1' * 40),
                ('player_two', '0x' + '2' * 40),
                ('player_three', '0x' + '3' * 40),
            ]
            for handle, address in seeds:
                participant = Participant(
                    handle=handle,
                    payout_address=address,
                    password_hash=bcrypt.generate_password_hash('password123').decode('utf-8'),
                )
                db.session.add(participant)

            db.session.commit()
            print('Database has been reset and seeded!')

    @click.command('reconcile')
    def reconcile_command():
        """Ends every LIVE session past its scheduled end, once."""
        with flask_app.app_context():
            ended = services.reconciler.tick()
            print(f'Ended {ended} overdue session(s).')

    @click.command('retry-rewards')
    def retry_rewards_command():
        """Retries every FAILED reward that has attempts left."""
        with flask_app.app_context():
            completed = services.issuer.retry_failed()
            print(f'{completed} reward(s) completed.')

    flask_app.cli.add_command(db_reset_command)
    flask_app.cli.add_command(reconcile_command)
    flask_app.cli.add_command(retry_rewards_command)

    return flask_app
