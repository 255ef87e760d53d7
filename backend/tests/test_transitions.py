from datetime import datetime, timedelta

import pytest

from arena.errors import AlreadyJoined, AlreadyTerminal, ConflictError, NotAJoinedParticipant, NotJoinable
from arena.models import GameSession, Participant, ParticipantSession, SessionState
from arena.services.sessions import transitions
from arena.services.sessions.transitions import GROUP, ORIGIN, OTHERS

NOW = datetime(2026, 3, 1, 9, 30, 0)


def _game(state=SessionState.WAITING, min_start=2, max_participants=3, auto_start=True, auto_end=True):
    return GameSession(
        public_id='abc',
        state=state,
        duration_minutes=20,
        max_participants=max_participants,
        min_participants_to_start=min_start,
        scoring_strategy='POINTS',
        points_per_task=10,
        enable_random_winner=False,
        auto_start=auto_start,
        auto_end=auto_end,
        labels={},
    )


def _person(pid):
    return Participant(id=pid, handle=f'user_{pid}', payout_address='0x' + format(pid, '040x'))


def _names(events):
    return [(e.name, e.audience) for e in events]


def test_admit_emits_confirmation_and_membership_change():
    game = _game()
    entry, first_join, events = transitions.admit(game, _person(1), NOW)
    assert first_join is True
    assert entry.score == 0 and entry.is_active
    assert entry.joined_at == NOW
    assert _names(events) == [('session_joined', ORIGIN), ('player_joined', OTHERS)]
    assert events[1].payload['participantCount'] == 1
    assert game.state == SessionState.WAITING


def test_auto_start_fires_once_on_reaching_minimum():
    game = _game(min_start=2, max_participants=3)
    transitions.admit(game, _person(1), NOW)
    _, _, events = transitions.admit(game, _person(2), NOW)
    assert _names(events)[-1] == ('session_started', GROUP)
    assert game.state == SessionState.LIVE
    assert game.started_at == NOW
    assert game.scheduled_end_at == NOW + timedelta(minutes=20)

    _, _, events = transitions.admit(game, _person(3), NOW + timedelta(seconds=5))
    assert 'session_started' not in [e.name for e in events]
    assert game.started_at == NOW


def test_no_auto_start_when_disabled():
    game = _game(min_start=1, auto_start=False)
    _, _, events = transitions.admit(game, _person(1), NOW)
    assert game.state == SessionState.WAITING
    assert 'session_started' not in [e.name for e in events]


def test_go_live_without_auto_end_has_no_deadline():
    game = _game(auto_end=False)
    transitions.go_live(game, NOW)
    assert game.state == SessionState.LIVE
    assert game.scheduled_end_at is None
    with pytest.raises(ConflictError):
        transitions.go_live(game, NOW)


def test_capacity_is_enforced_in_waiting_and_live():
    game = _game(min_start=3, max_participants=2)
    transitions.admit(game, _person(1), NOW)
    transitions.admit(game, _person(2), NOW)
    with pytest.raises(NotJoinable) as exc:
        transitions.admit(game, _person(3), NOW)
    assert exc.value.code == 'SESSION_FULL'

    game.state = SessionState.LIVE
    with pytest.raises(NotJoinable):
        transitions.admit(game, _person(3), NOW)


def test_double_join_and_rejoin_after_leave():
    game = _game(auto_start=False)
    alice = _person(1)
    transitions.admit(game, alice, NOW)
    with pytest.raises(AlreadyJoined):
        transitions.admit(game, alice, NOW)

    events = transitions.release(game, alice, NOW)
    assert _names(events) == [('session_left', ORIGIN), ('player_left', OTHERS)]
    assert game.participant_count == 0
    with pytest.raises(NotAJoinedParticipant):
        transitions.release(game, alice, NOW)

    entry, first_join, _ = transitions.admit(game, alice, NOW + timedelta(minutes=1))
    assert first_join is False
    assert entry.left_at is None
    assert len(game.entries) == 1


def test_terminal_states_admit_nothing():
    for state in SessionState.TERMINAL:
        game = _game(state=state)
        with pytest.raises(NotJoinable) as exc:
            transitions.admit(game, _person(1), NOW)
        assert exc.value.code == 'SESSION_ENDED'
        with pytest.raises(AlreadyTerminal):
            transitions.finish(game, NOW)
        with pytest.raises(AlreadyTerminal):
            transitions.cancel(game, NOW)


def test_record_score_requires_live_member():
    game = _game(auto_start=False)
    alice = _person(1)
    transitions.admit(game, alice, NOW)
    with pytest.raises(ConflictError):
        transitions.record_score(game, alice.id, 10, None, NOW)

    transitions.go_live(game, NOW)
    later = NOW + timedelta(seconds=30)
    entry = transitions.record_score(game, alice.id, 10, None, later)
    assert (entry.score, entry.tasks_completed) == (10, 0)
    entry = transitions.record_score(game, alice.id, None, 4, later)
    assert (entry.score, entry.tasks_completed) == (10, 4)
    assert entry.last_activity_at == later
    with pytest.raises(NotAJoinedParticipant):
        transitions.record_score(game, 99, 1, None, NOW)


def test_finish_and_cancel_clear_deadline():
    game = _game()
    transitions.go_live(game, NOW)
    transitions.finish(game, NOW + timedelta(minutes=3))
    assert game.state == SessionState.ENDED
    assert game.scheduled_end_at is None
    assert game.ended_at == NOW + timedelta(minutes=3)

    game = _game()
    events = transitions.cancel(game, NOW)
    assert game.state == SessionState.CANCELLED
    assert _names(events) == [('session_cancelled', GROUP)]


def test_negative_counters_are_clamped():
    entry = ParticipantSession(score=-5, tasks_completed=-1)
    assert entry.score == 0
    assert entry.tasks_completed == 0


def test_member_of_full_session_is_told_already_joined():
    game = _game(min_start=2, max_participants=2)
    alice = _person(1)
    transitions.admit(game, alice, NOW)
    transitions.admit(game, _person(2), NOW)
    assert game.is_full
    with pytest.raises(AlreadyJoined):
        transitions.admit(game, alice, NOW)
