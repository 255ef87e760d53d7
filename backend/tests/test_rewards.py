from decimal import Decimal

import pytest

from arena import db
from arena.errors import DuplicateReward, NotRetryable, TransportError
from arena.models import Participant, RewardRecord, RewardStatus
from arena.services.sessions.rewards import MockTransport, RewardTransport, build_transport
from arena.validators import DEFAULT_SESSION_CONFIG

pytestmark = pytest.mark.usefixtures('app_ctx')


def _participant(handle, n):
    participant = Participant(
        handle=handle,
        payout_address='0x' + format(n, '040x'),
        password_hash='x',
        is_active_account=True,
        sessions_joined=0,
        sessions_won=0,
        total_reward=0,
    )
    db.session.add(participant)
    db.session.commit()
    return participant


@pytest.fixture()
def ended_game(app_ctx, services, transport):
    """An ENDED session won by 'winner' whose first payout failed."""
    creator = _participant('creator', 1)
    winner = _participant('winner', 2)
    game = services.lifecycle.create(creator.id, dict(DEFAULT_SESSION_CONFIG, labels={}))
    services.lifecycle.join(game.public_id, creator.id)
    services.lifecycle.join(game.public_id, winner.id)
    services.lifecycle.update_score(game.public_id, winner.id, score=10)
    transport.failures = 1
    result = services.lifecycle.end(game.public_id, creator.id)
    assert result.reward.status == RewardStatus.FAILED
    return result


def test_failed_payout_is_recorded(ended_game, transport):
    record = ended_game.reward
    assert record.retry_count == 1
    assert record.error_message == 'network unreachable'
    assert record.tx_ref is None
    assert ended_game.session.state == 'ENDED'
    assert ended_game.winner.total_reward == 0


def test_retry_completes_and_credits_winner(services, ended_game, transport):
    record = services.issuer.retry(ended_game.reward.id)
    assert record.status == RewardStatus.COMPLETED
    assert record.tx_ref.startswith('0x')
    assert record.rewarded_at is not None
    assert record.error_message is None
    winner = db.session.get(Participant, ended_game.winner.id)
    assert Decimal(winner.total_reward) == Decimal('100')
    assert len(transport.calls) == 2

    with pytest.raises(NotRetryable):
        services.issuer.retry(record.id)


def test_retry_is_bounded(services, ended_game, transport):
    # MAX_REWARD_RETRIES = 3 in the test config; one failure already recorded
    transport.failures = 10
    for _ in range(2):
        with pytest.raises(TransportError):
            services.issuer.retry(ended_game.reward.id)
    record = db.session.get(RewardRecord, ended_game.reward.id)
    assert record.retry_count == 3
    assert not services.issuer.can_retry(record)
    with pytest.raises(NotRetryable):
        services.issuer.retry(record.id)
    assert len(transport.calls) == 3


def test_retry_failed_sweeps_retryable_records(services, ended_game, transport):
    assert services.issuer.retry_failed() == 1
    assert services.issuer.retry_failed() == 0
    record = db.session.get(RewardRecord, ended_game.reward.id)
    assert record.status == RewardStatus.COMPLETED


def test_second_reward_for_session_is_rejected(services, ended_game):
    game = ended_game.session
    with pytest.raises(DuplicateReward):
        services.issuer.open(game, ended_game.winner)
    assert RewardRecord.query.filter_by(session_id=game.id).count() == 1


def test_mock_transport_validates_address_and_amount():
    transport = MockTransport()
    receipt = transport.send('0x' + 'a' * 40, Decimal('5'))
    assert receipt.tx_ref.startswith('0x') and len(receipt.tx_ref) == 66
    with pytest.raises(TransportError):
        transport.send('not-an-address', Decimal('5'))
    with pytest.raises(TransportError):
        transport.send('0x' + 'a' * 40, Decimal('0'))


def test_build_transport():
    assert isinstance(build_transport({'REWARD_TRANSPORT': 'mock', 'REWARD_NETWORK': 'POLYGON'}), MockTransport)
    assert build_transport({'REWARD_NETWORK': 'POLYGON'}).network == 'POLYGON'
    with pytest.raises(ValueError):
        build_transport({'REWARD_TRANSPORT': 'carrier-pigeon'})


class _BrokenTransport(RewardTransport):
    network = 'TEST'

    def send(self, address, amount):
        raise ConnectionError('socket reset')


def test_unexpected_transport_fault_leaves_reward_retryable(services, transport):
    creator = _participant('creator', 1)
    winner = _participant('winner', 2)
    game = services.lifecycle.create(creator.id, dict(DEFAULT_SESSION_CONFIG, labels={}))
    services.lifecycle.join(game.public_id, creator.id)
    services.lifecycle.join(game.public_id, winner.id)
    services.lifecycle.update_score(game.public_id, winner.id, score=3)

    services.issuer.transport = _BrokenTransport()
    result = services.lifecycle.end(game.public_id, creator.id)
    assert result.session.state == 'ENDED'
    assert result.reward.status == RewardStatus.FAILED
    assert result.reward.retry_count == 1
    assert result.reward.error_message == 'socket reset'

    services.issuer.transport = transport
    assert services.issuer.retry(result.reward.id).status == RewardStatus.COMPLETED
