"""Session state transitions as plain functions.

Each function validates the requested change against the in-memory rows,
applies it and returns the events the change produces. Nothing here talks to
the database or to sockets: the lifecycle manager commits the rows and then
hands the events to the broadcaster.
"""

from dataclasses import dataclass, field
from datetime import timedelta
from typing import List

from arena.errors import AlreadyJoined, AlreadyTerminal, ConflictError, NotAJoinedParticipant, NotJoinable
from arena.models import ParticipantSession, SessionState, isoformat

# Event audiences
ORIGIN = 'origin'   # only the connection that triggered the change
OTHERS = 'others'   # the session's group minus the origin connection
GROUP = 'group'     # every connection in the session's group


@dataclass
class Event:
    name: str
    payload: dict = field(default_factory=dict)
    audience: str = GROUP


def check_joinable(game, entry=None):
    """Raise unless a participant with ``entry`` (None if never joined) may join."""
    if game.is_terminal:
        raise NotJoinable('Session has already ended', code='SESSION_ENDED')
    # members of a full session must still be told they are members
    if entry is not None and entry.is_active:
        raise AlreadyJoined()
    if game.is_full:
        raise NotJoinable('Session is full', code='SESSION_FULL')
    if game.state not in (SessionState.WAITING, SessionState.LIVE):
        raise NotJoinable()


def check_not_terminal(game):
    if game.is_terminal:
        raise AlreadyTerminal(f'Session is already {game.state.lower()}')


def started_event(game) -> Event:
    return Event('session_started', {
        'sessionId': game.public_id,
        'startedAt': isoformat(game.started_at),
        'durationMinutes': game.duration_minutes,
        'scheduledEndAt': isoformat(game.scheduled_end_at),
    })


def go_live(game, now) -> List[Event]:
    if game.state != SessionState.WAITING:
        raise ConflictError(f'Session is {game.state.lower()}, not waiting')
    game.state = SessionState.LIVE
    game.started_at = now
    if game.auto_end:
        game.scheduled_end_at = now + timedelta(minutes=game.duration_minutes)
    return [started_event(game)]


def admit(game, participant, now):
    """Add ``participant`` to the session, starting it when the minimum is met.

    Returns ``(entry, first_join, events)``. The auto-start check runs on the
    same in-memory state as the membership change so both land in one commit.
    """
    entry = game.entry_for(participant.id)
    check_joinable(game, entry)

    first_join = entry is None
    if first_join:
        entry = ParticipantSession(
            participant=participant,
            participant_id=participant.id,
            score=0,
            tasks_completed=0,
            is_active=True,
            joined_at=now,
            last_activity_at=now,
        )
        game.entries.append(entry)
    else:
        entry.is_active = True
        entry.left_at = None
        entry.last_activity_at = now

    count = game.participant_count
    events = [
        Event('session_joined', {
            'sessionId': game.public_id,
            'participantCount': count,
            'sessionSnapshot': game.to_dict(),
        }, audience=ORIGIN),
        Event('player_joined', {
            'participantId': participant.id,
            'handle': participant.handle,
            'participantCount': count,
        }, audience=OTHERS),
    ]
    if game.auto_start and game.state == SessionState.WAITING and count >= game.min_participants_to_start:
        events.extend(go_live(game, now))
    return entry, first_join, events


def release(game, participant, now) -> List[Event]:
    check_not_terminal(game)
    entry = game.entry_for(participant.id)
    if entry is None or not entry.is_active:
        raise NotAJoinedParticipant()
    entry.is_active = False
    entry.left_at = now
    entry.last_activity_at = now
    return [
        Event('session_left', {'sessionId': game.public_id}, audience=ORIGIN),
        Event('player_left', {
            'participantId': participant.id,
            'handle': participant.handle,
            'participantCount': game.participant_count,
        }, audience=OTHERS),
    ]


def record_score(game, participant_id, score, tasks_completed, now):
    if game.state != SessionState.LIVE:
        raise ConflictError('Can only update score in LIVE sessions')
    entry = game.entry_for(participant_id)
    if entry is None or not entry.is_active:
        raise NotAJoinedParticipant()
    if score is not None:
        entry.score = score
    if tasks_completed is not None:
        entry.tasks_completed = tasks_completed
    entry.last_activity_at = now
    return entry


def finish(game, now) -> None:
    check_not_terminal(game)
    game.state = SessionState.ENDED
    game.ended_at = now
    game.scheduled_end_at = None


def cancel(game, now) -> List[Event]:
    check_not_terminal(game)
    game.state = SessionState.CANCELLED
    game.ended_at = now
    game.scheduled_end_at = None
    return [Event('session_cancelled', {'sessionId': game.public_id, 'cancelledAt': isoformat(now)})]
