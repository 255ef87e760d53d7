"""Winner payouts.

A session gets at most one ``RewardRecord``. The record is opened (PENDING)
inside the end-of-session commit; the transport call happens afterwards
without holding the session lock, and its result is written back as
COMPLETED or FAILED.
"""

import random
import secrets
import time
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from flask import current_app
from sqlalchemy.exc import IntegrityError

from arena import db
from arena.errors import DuplicateReward, NotFoundError, NotRetryable, TransportError
from arena.models import GameSession, RewardRecord, RewardStatus, utcnow
from arena.validators import is_valid_address
from .transitions import Event


@dataclass
class TransferReceipt:
    tx_ref: str
    block_ref: Optional[str] = None


class RewardTransport:
    """Interface of the payout collaborator."""

    network = 'MOCK'

    def send(self, address: str, amount: Decimal) -> TransferReceipt:
        raise NotImplementedError


class MockTransport(RewardTransport):
    """Pretend settlement: validates the address and fabricates a receipt."""

    def __init__(self, latency_sec: float = 0.0, network: str = 'MOCK'):
        self.latency_sec = latency_sec
        self.network = network

    def send(self, address, amount):
        if not is_valid_address(address):
            raise TransportError('Invalid payout address format')
        if amount <= 0:
            raise TransportError('Reward amount must be positive')
        if self.latency_sec:
            time.sleep(self.latency_sec)
        return TransferReceipt(
            tx_ref='0x' + secrets.token_hex(32),
            block_ref=str(random.randint(1_000_000, 11_000_000)),
        )


def build_transport(config) -> RewardTransport:
    transport = config.get('REWARD_TRANSPORT', 'mock')
    if hasattr(transport, 'send'):
        return transport
    if transport == 'mock':
        return MockTransport(
            latency_sec=float(config.get('MOCK_TRANSPORT_LATENCY_SEC', 0)),
            network=config.get('REWARD_NETWORK', 'MOCK'),
        )
    raise ValueError(f"Unknown REWARD_TRANSPORT: {transport!r}")


class RewardIssuer:
    def __init__(self, transport, broadcaster, locks, token_amount=100, max_retries=5):
        self.transport = transport
        self.broadcaster = broadcaster
        self.locks = locks
        self.token_amount = Decimal(str(token_amount))
        self.max_retries = max_retries

    def open(self, game, winner) -> RewardRecord:
        """Create the PENDING record for ``winner``; the caller commits."""
        existing = RewardRecord.query.filter_by(session_id=game.id).first()
        if existing is not None or game.reward is not None:
            raise DuplicateReward()
        record = RewardRecord(
            session=game,
            participant=winner,
            participant_id=winner.id,
            token_amount=self.token_amount,
            status=RewardStatus.PENDING,
            network=getattr(self.transport, 'network', 'MOCK'),
            retry_count=0,
        )
        db.session.add(record)
        return record

    def deliver(self, record_id: int) -> RewardRecord:
        """Call the transport for a PENDING record and store the result.

        Must be called without holding the session lock.
        """
        record = db.session.get(RewardRecord, record_id)
        session_id = record.session.public_id
        address = record.participant.payout_address
        amount = Decimal(record.token_amount)
        try:
            receipt = self.transport.send(address, amount)
        except TransportError as exc:
            return self._mark_failed(session_id, record_id, exc.message)
        except Exception as exc:
            # any other transport fault still has to leave the record retryable
            current_app.logger.exception(f"[reward-transport-error] session={session_id} reward={record_id}")
            return self._mark_failed(session_id, record_id, str(exc) or exc.__class__.__name__)

        with self.locks.hold(session_id):
            record = RewardRecord.query.filter_by(id=record_id).populate_existing().first()
            record.status = RewardStatus.COMPLETED
            record.tx_ref = receipt.tx_ref
            record.block_ref = receipt.block_ref
            record.error_message = None
            record.rewarded_at = utcnow()
            winner = record.participant
            winner.total_reward = Decimal(winner.total_reward or 0) + Decimal(record.token_amount)
            try:
                db.session.commit()
            except IntegrityError:
                db.session.rollback()
                current_app.logger.error(f"[reward-duplicate-tx] session={session_id} tx={receipt.tx_ref}")
                return self._mark_failed(session_id, record_id, 'Duplicate transaction reference')

            current_app.logger.info(
                f"[reward-completed] session={session_id} participant={record.participant_id} "
                f"amount={record.token_amount} tx={record.tx_ref}"
            )
            self.broadcaster.publish(session_id, [Event('token_rewarded', {
                'sessionId': session_id,
                'participantId': record.participant_id,
                'tokenAmount': float(record.token_amount),
                'txRef': record.tx_ref,
                'status': record.status,
            })])
        return record

    def _mark_failed(self, session_id, record_id, message) -> RewardRecord:
        with self.locks.hold(session_id):
            record = RewardRecord.query.filter_by(id=record_id).populate_existing().first()
            record.status = RewardStatus.FAILED
            record.error_message = message or 'Transaction failed'
            record.retry_count = (record.retry_count or 0) + 1
            db.session.commit()
        current_app.logger.warning(
            f"[reward-failed] session={session_id} retry={record.retry_count} error={record.error_message}"
        )
        return record

    def can_retry(self, record) -> bool:
        return record.status == RewardStatus.FAILED and record.retry_count < self.max_retries

    def retry(self, record_id: int) -> RewardRecord:
        """Re-run a FAILED payout. Raises ``TransportError`` when it fails again."""
        record = db.session.get(RewardRecord, record_id)
        if record is None:
            raise NotFoundError('Reward')
        session_id = record.session.public_id
        with self.locks.hold(session_id):
            record = RewardRecord.query.filter_by(id=record_id).populate_existing().first()
            if not self.can_retry(record):
                if record.status != RewardStatus.FAILED:
                    raise NotRetryable('Can only retry failed rewards')
                raise NotRetryable('Maximum retry count reached')
            record.status = RewardStatus.PENDING
            record.error_message = None
            db.session.commit()
        current_app.logger.info(f"[reward-retry] session={session_id} attempt={record.retry_count + 1}")

        record = self.deliver(record_id)
        if record.status == RewardStatus.FAILED:
            raise TransportError(record.error_message)
        return record

    def retry_failed(self) -> int:
        """Retry every retryable FAILED record; returns how many completed."""
        ids = [r.id for r in RewardRecord.query.filter(
            RewardRecord.status == RewardStatus.FAILED,
            RewardRecord.retry_count < self.max_retries,
        ).all()]
        completed = 0
        for record_id in ids:
            try:
                self.retry(record_id)
                completed += 1
            except (TransportError, NotRetryable) as exc:
                current_app.logger.warning(f"[reward-retry-skip] reward={record_id} error={exc}")
        return completed

    def for_session(self, game: GameSession) -> Optional[RewardRecord]:
        return RewardRecord.query.filter_by(session_id=game.id).first()
