"""Session lifecycle: creation, admission, scoring updates and termination.

Every mutation follows the same shape:

1. take the per-session lock
2. reload the session row (``populate_existing``) so no stale state is used
3. apply a transition from ``transitions`` to the in-memory rows
4. commit, or roll back and re-raise
5. publish the transition's events while still holding the lock

Payout is the one step that runs outside the lock; see ``end``.
"""

import random
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Optional

from flask import current_app
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.exc import StaleDataError

from arena import db
from arena.errors import ConflictError, Forbidden, NotAJoinedParticipant, NotFoundError, ValidationError
from arena.models import GameSession, Participant, RewardRecord, SessionState, isoformat, utcnow
from . import scoring, transitions
from .transitions import ORIGIN, Event


@dataclass
class EndResult:
    session: GameSession
    winner: Optional[Participant]
    leaderboard: list
    reward: Optional[RewardRecord]


class LifecycleManager:
    def __init__(self, broadcaster, issuer, locks, broadcast_size=10, rng=None):
        self.broadcaster = broadcaster
        self.issuer = issuer
        self.locks = locks
        self.broadcast_size = broadcast_size
        self.rng = rng or random.Random()

    # ---- loading ----

    def _load(self, session_id: str) -> GameSession:
        game = GameSession.query.filter_by(public_id=session_id).populate_existing().first()
        if game is None:
            raise NotFoundError('Session')
        return game

    def _participant(self, participant_id: int) -> Participant:
        participant = Participant.query.filter_by(id=participant_id).populate_existing().first()
        if participant is None:
            raise NotFoundError('Participant')
        return participant

    @contextmanager
    def _atomic(self):
        """Commit what the block changed, or roll all of it back."""
        try:
            yield
            db.session.commit()
        except StaleDataError:
            db.session.rollback()
            raise ConflictError('Session was modified concurrently, try again')
        except IntegrityError:
            db.session.rollback()
            raise ConflictError('Duplicate entry')
        except Exception:
            db.session.rollback()
            raise

    # ---- reads ----

    def get(self, session_id: str) -> GameSession:
        return self._load(session_id)

    def list_sessions(self, state: Optional[str] = None, limit: int = 50):
        query = GameSession.query
        if state:
            if state not in SessionState.ALL:
                raise ValidationError(f"state must be one of {', '.join(SessionState.ALL)}")
            query = query.filter(GameSession.state == state)
        else:
            query = query.filter(GameSession.state.in_([SessionState.WAITING, SessionState.LIVE]))
        return query.order_by(GameSession.created_at.desc(), GameSession.id.desc()).limit(limit).all()

    def leaderboard(self, session_id: str, limit: int = 10) -> list:
        return scoring.leaderboard(self._load(session_id), limit)

    # ---- mutations ----

    def create(self, creator_id: int, config: dict) -> GameSession:
        """Create a WAITING session from an already validated config dict."""
        creator = self._participant(creator_id)
        with self._atomic():
            game = GameSession(creator=creator, state=SessionState.WAITING, **config)
            db.session.add(game)
        current_app.logger.info(
            f"[session-create] session={game.public_id} creator={creator.id} "
            f"strategy={game.scoring_strategy} min={game.min_participants_to_start} max={game.max_participants}"
        )
        return game

    def join(self, session_id: str, participant_id: int, origin_sid: Optional[str] = None) -> GameSession:
        with self.locks.hold(session_id):
            with self._atomic():
                game = self._load(session_id)
                participant = self._participant(participant_id)
                if not participant.is_active:
                    raise ValidationError('Participant account is not active')
                _, first_join, events = transitions.admit(game, participant, utcnow())
                if first_join:
                    participant.sessions_joined = (participant.sessions_joined or 0) + 1
            current_app.logger.info(
                f"[session-join] session={session_id} participant={participant_id} count={game.participant_count}"
            )
            if any(e.name == 'session_started' for e in events):
                current_app.logger.info(
                    f"[session-live] session={session_id} participants={game.participant_count} "
                    f"scheduled_end={isoformat(game.scheduled_end_at)}"
                )
            if origin_sid:
                self.broadcaster.subscribe(origin_sid, session_id)
            self.broadcaster.publish(session_id, events, origin_sid)
            return game

    def attach(self, session_id: str, participant_id: int, sid: str) -> GameSession:
        """Subscribe a socket for a participant who is already a member."""
        with self.locks.hold(session_id):
            game = self._load(session_id)
            entry = game.entry_for(participant_id)
            if entry is None or not entry.is_active:
                raise NotAJoinedParticipant()
            self.broadcaster.subscribe(sid, session_id)
            self.broadcaster.publish(session_id, [Event('session_joined', {
                'sessionId': game.public_id,
                'participantCount': game.participant_count,
                'sessionSnapshot': game.to_dict(),
            }, audience=ORIGIN)], sid)
            return game

    def leave(self, session_id: str, participant_id: int, origin_sid: Optional[str] = None) -> GameSession:
        with self.locks.hold(session_id):
            with self._atomic():
                game = self._load(session_id)
                participant = self._participant(participant_id)
                events = transitions.release(game, participant, utcnow())
            current_app.logger.info(
                f"[session-leave] session={session_id} participant={participant_id} count={game.participant_count}"
            )
            self.broadcaster.publish(session_id, events, origin_sid)
            if origin_sid:
                self.broadcaster.unsubscribe(origin_sid, session_id)
            return game

    def start(self, session_id: str, actor_id: int) -> GameSession:
        """Manual start by the creator once the minimum is present."""
        with self.locks.hold(session_id):
            with self._atomic():
                game = self._load(session_id)
                if game.creator_id != actor_id:
                    raise Forbidden('Only the session creator can start the session')
                transitions.check_not_terminal(game)
                if game.participant_count < game.min_participants_to_start:
                    raise ConflictError(
                        f'At least {game.min_participants_to_start} participants are required to start'
                    )
                events = transitions.go_live(game, utcnow())
            current_app.logger.info(
                f"[session-live] session={session_id} participants={game.participant_count} manual=1"
            )
            self.broadcaster.publish(session_id, events)
            return game

    def update_score(self, session_id: str, participant_id: int, score=None, tasks_completed=None):
        if score is None and tasks_completed is None:
            raise ValidationError('Score or tasksCompleted is required')
        with self.locks.hold(session_id):
            with self._atomic():
                game = self._load(session_id)
                entry = transitions.record_score(game, participant_id, score, tasks_completed, utcnow())
            board = scoring.leaderboard(game, self.broadcast_size)
            self.broadcaster.publish(session_id, [Event('score_updated', {
                'participantId': participant_id,
                'score': entry.score,
                'tasksCompleted': entry.tasks_completed,
                'leaderboard': board,
            })])
            return entry

    def end(self, session_id: str, actor_id: Optional[int] = None, system: bool = False) -> EndResult:
        """End a session, settle the winner and pay out.

        ENDED, ranks, winner and the PENDING reward commit together. The
        transport call happens after the lock is released; its failure leaves
        the session ENDED with a FAILED, retryable reward.
        """
        record_id = None
        with self.locks.hold(session_id):
            with self._atomic():
                game = self._load(session_id)
                if not system and game.creator_id != actor_id:
                    raise Forbidden('Only the session creator can end the session')
                transitions.finish(game, utcnow())
                outcome = scoring.settle(game, self.rng)
                winner = outcome.winner.participant if outcome.winner else None
                record = None
                if winner is not None:
                    winner.sessions_won = (winner.sessions_won or 0) + 1
                    record = self.issuer.open(game, winner)
            if record is not None:
                record_id = record.id

            board = scoring.leaderboard(game)
            current_app.logger.info(
                f"[session-ended] session={session_id} winner={winner.id if winner else None} "
                f"participants={len(outcome.ranking)} system={int(system)}"
            )
            self.broadcaster.publish(session_id, [Event('session_ended', {
                'sessionId': session_id,
                'winner': winner.to_dict() if winner else None,
                'leaderboard': board,
                'endedAt': isoformat(game.ended_at),
            })])

        if record_id is not None:
            record = self.issuer.deliver(record_id)
        return EndResult(session=self._load(session_id), winner=winner, leaderboard=board, reward=record)

    def cancel(self, session_id: str, actor_id: Optional[int] = None, system: bool = False) -> GameSession:
        with self.locks.hold(session_id):
            with self._atomic():
                game = self._load(session_id)
                if not system and game.creator_id != actor_id:
                    raise Forbidden('Only the session creator can cancel the session')
                events = transitions.cancel(game, utcnow())
            current_app.logger.info(f"[session-cancelled] session={session_id} system={int(system)}")
            self.broadcaster.publish(session_id, events)
            return game

    # ---- reconciler support ----

    def due_for_end(self, now=None) -> list:
        now = now or utcnow()
        return [g.public_id for g in GameSession.query.filter(
            GameSession.state == SessionState.LIVE,
            GameSession.scheduled_end_at.isnot(None),
            GameSession.scheduled_end_at <= now,
        ).order_by(GameSession.scheduled_end_at).all()]
