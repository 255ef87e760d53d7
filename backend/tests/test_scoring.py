import random
from datetime import datetime, timedelta

import pytest

from arena.errors import ValidationError
from arena.models import GameSession, Participant, ParticipantSession, ScoringStrategy, SessionState
from arena.services.sessions import scoring

T0 = datetime(2026, 1, 1, 12, 0, 0)


def _game(strategy=ScoringStrategy.POINTS, points_per_task=10, random_winner=False, state=SessionState.ENDED):
    return GameSession(
        public_id='s-1',
        state=state,
        scoring_strategy=strategy,
        points_per_task=points_per_task,
        enable_random_winner=random_winner,
        duration_minutes=10,
        max_participants=10,
        min_participants_to_start=2,
        auto_start=True,
        auto_end=True,
    )


def _entry(game, pid, score=0, tasks=0, joined_offset=0, active=True):
    participant = Participant(id=pid, handle=f'p{pid}', payout_address='0x' + format(pid, '040x'))
    entry = ParticipantSession(
        id=pid,
        participant=participant,
        participant_id=pid,
        score=score,
        tasks_completed=tasks,
        is_active=active,
        joined_at=T0 + timedelta(seconds=joined_offset),
    )
    game.entries.append(entry)
    return entry


def _winner_id(game, rng=None):
    outcome = scoring.settle(game, rng)
    return outcome.winner.participant_id if outcome.winner else None


def test_points_orders_by_score_then_tasks():
    game = _game(ScoringStrategy.POINTS)
    _entry(game, 1, score=50, tasks=9)
    _entry(game, 2, score=80, tasks=0)
    _entry(game, 3, score=50, tasks=10)
    outcome = scoring.settle(game)
    assert [e.participant_id for e in outcome.ranking] == [2, 3, 1]
    assert game.winner_id == 2


def test_tasks_orders_by_tasks_then_score():
    game = _game(ScoringStrategy.TASKS)
    _entry(game, 1, score=500, tasks=3)
    _entry(game, 2, score=10, tasks=4)
    _entry(game, 3, score=20, tasks=4)
    outcome = scoring.settle(game)
    assert [e.participant_id for e in outcome.ranking] == [3, 2, 1]


def test_combined_weights_tasks():
    game = _game(ScoringStrategy.COMBINED, points_per_task=25)
    _entry(game, 1, score=100, tasks=0)
    _entry(game, 2, score=30, tasks=3)
    assert _winner_id(game) == 2


def test_combined_equal_weight_goes_to_earlier_joiner():
    game = _game(ScoringStrategy.COMBINED, points_per_task=10)
    _entry(game, 1, score=50, tasks=2, joined_offset=0)
    _entry(game, 2, score=60, tasks=1, joined_offset=5)
    assert scoring.weighted_score(game.entries[0], 10) == scoring.weighted_score(game.entries[1], 10) == 70
    assert _winner_id(game) == 1


@pytest.mark.parametrize('strategy', [ScoringStrategy.POINTS, ScoringStrategy.TASKS, ScoringStrategy.COMBINED])
def test_full_tie_goes_to_earlier_joiner(strategy):
    game = _game(strategy)
    _entry(game, 1, score=40, tasks=4, joined_offset=30)
    _entry(game, 2, score=40, tasks=4, joined_offset=10)
    assert _winner_id(game) == 2


def test_ranks_are_written_back_and_inactive_rows_ignored():
    game = _game(ScoringStrategy.POINTS)
    a = _entry(game, 1, score=10)
    b = _entry(game, 2, score=99, active=False)
    c = _entry(game, 3, score=20)
    scoring.settle(game)
    assert (c.rank, c.final_rank) == (1, 1)
    assert (a.rank, a.final_rank) == (2, 2)
    assert b.final_rank is None
    assert game.winner_id == 3


def test_settle_requires_ended_session():
    game = _game(state=SessionState.LIVE)
    _entry(game, 1, score=10)
    with pytest.raises(ValidationError):
        scoring.settle(game)


def test_no_active_rows_means_no_winner():
    game = _game()
    _entry(game, 1, score=10, active=False)
    outcome = scoring.settle(game)
    assert outcome.winner is None
    assert outcome.ranking == []
    assert game.winner_id is None


def test_random_winner_is_an_active_member_and_ranks_use_points():
    game = _game(ScoringStrategy.RANDOM)
    _entry(game, 1, score=5)
    _entry(game, 2, score=50)
    _entry(game, 3, score=500, active=False)
    seen = set()
    for seed in range(40):
        for entry in game.entries:
            entry.rank = entry.final_rank = None
        seen.add(_winner_id(game, random.Random(seed)))
        assert [e.participant_id for e in sorted(game.active_entries, key=lambda e: e.final_rank)] == [2, 1]
    assert seen <= {1, 2}
    assert seen == {1, 2}


def test_random_override_keeps_strategy_ranking():
    game = _game(ScoringStrategy.TASKS, random_winner=True)
    _entry(game, 1, tasks=1)
    _entry(game, 2, tasks=7)
    outcome = scoring.settle(game, random.Random(3))
    assert [e.participant_id for e in outcome.ranking] == [2, 1]
    assert outcome.winner in outcome.ranking


def test_pick_winner_on_empty_ranking():
    assert scoring.pick_winner([], ScoringStrategy.RANDOM) is None


def test_live_leaderboard_uses_strategy_and_limit():
    game = _game(ScoringStrategy.TASKS, state=SessionState.LIVE)
    _entry(game, 1, score=100, tasks=1)
    _entry(game, 2, score=1, tasks=5)
    _entry(game, 3, score=1, tasks=3)
    rows = scoring.leaderboard(game, limit=2)
    assert [(r['rank'], r['participantId']) for r in rows] == [(1, 2), (2, 3)]
    assert rows[0]['handle'] == 'p2'


def test_ended_leaderboard_follows_final_rank():
    game = _game(ScoringStrategy.POINTS)
    _entry(game, 1, score=10)
    _entry(game, 2, score=20)
    scoring.settle(game)
    # later score changes do not reorder a finished session
    game.entries[0].score = 1000
    rows = scoring.leaderboard(game)
    assert [r['participantId'] for r in rows] == [2, 1]
