import os
import random
import sys
import pytest

# Ensure the backend root (containing the `arena` package) is on sys.path
CURRENT_DIR = os.path.dirname(__file__)
BACKEND_ROOT = os.path.abspath(os.path.join(CURRENT_DIR, '..'))
if BACKEND_ROOT not in sys.path:
    sys.path.insert(0, BACKEND_ROOT)

from arena import create_app, db, get_services, socketio
from arena.errors import TransportError
from arena.services.sessions.rewards import RewardTransport, TransferReceipt


class TestConfig:
    TESTING = True
    SECRET_KEY = os.environ.get('SECRET_KEY', 'test-secret')
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    CORS_ORIGINS = ['http://localhost:5173']
    LOG_LEVEL = 'WARNING'
    TOKEN_MAX_AGE_SEC = 3600
    RECONCILE_INTERVAL_SEC = 60
    LEADERBOARD_BROADCAST_SIZE = 10
    DEFAULT_TOKEN_AMOUNT = 100.0
    MAX_REWARD_RETRIES = 3
    REWARD_TRANSPORT = 'mock'
    REWARD_NETWORK = 'MOCK'
    MOCK_TRANSPORT_LATENCY_SEC = 0


class FakeTransport(RewardTransport):
    """Records every payout; fails while ``failures`` is above zero."""

    network = 'TEST'

    def __init__(self):
        self.calls = []
        self.failures = 0
        self._counter = 0

    def send(self, address, amount):
        self.calls.append((address, amount))
        if self.failures > 0:
            self.failures -= 1
            raise TransportError('network unreachable')
        self._counter += 1
        return TransferReceipt(tx_ref=f'0x{self._counter:064x}', block_ref=str(1000 + self._counter))


@pytest.fixture()
def flask_app():
    application = create_app(TestConfig)
    with application.app_context():
        # Ensure models are imported so tables are created
        import arena.models  # noqa: F401
        db.create_all()
    # Requests push their own app context; sharing one would leak g._login_user
    yield application
    with application.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture()
def app_ctx(flask_app):
    """App context for tests that drive the services directly."""
    with flask_app.app_context():
        yield flask_app
        db.session.remove()


@pytest.fixture()
def services(flask_app):
    services = get_services(flask_app)
    services.lifecycle.rng = random.Random(7)
    return services


@pytest.fixture()
def transport(services):
    fake = FakeTransport()
    services.issuer.transport = fake
    return fake


@pytest.fixture()
def client(flask_app):
    return flask_app.test_client()


_ADDRESS_SEQ = iter(range(1, 10_000))


def _address():
    return '0x' + format(next(_ADDRESS_SEQ), '040x')


@pytest.fixture()
def register(client):
    """Register a participant over REST; returns (participant dict, bearer token)."""

    def _register(handle, password='password123'):
        res = client.post('/register', json={
            'handle': handle,
            'payoutAddress': _address(),
            'password': password,
        })
        assert res.status_code == 201, res.get_json()
        body = res.get_json()
        return body['participant'], body['token']

    return _register


def auth(token):
    return {'Authorization': f'Bearer {token}'}


@pytest.fixture()
def create_session(client):
    def _create(token, **overrides):
        body = {'durationMinutes': 10, 'maxParticipants': 10, 'minParticipantsToStart': 2}
        config = overrides.pop('config', {})
        body.update(overrides)
        body['config'] = config
        res = client.post('/api/sessions', json=body, headers=auth(token))
        assert res.status_code == 201, res.get_json()
        return res.get_json()['sessionId']

    return _create


@pytest.fixture()
def sio_factory(flask_app):
    clients = []

    def _connect(token=None):
        test_client = socketio.test_client(
            flask_app,
            flask_test_client=flask_app.test_client(),
            namespace='/ws',
            auth={'token': token} if token else None,
        )
        clients.append(test_client)
        return test_client

    yield _connect
    for test_client in clients:
        if test_client.is_connected('/ws'):
            test_client.disconnect(namespace='/ws')


def event_names(received):
    return [pkt['name'] for pkt in received]


def events_named(received, name):
    return [pkt['args'][0] for pkt in received if pkt['name'] == name]
