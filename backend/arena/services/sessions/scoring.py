"""Winner selection and ranking.

Ordering rules (earlier key wins, ``desc`` means higher first):

- POINTS:   score desc, tasks desc, joined_at asc
- TASKS:    tasks desc, score desc, joined_at asc
- COMBINED: score + tasks * points_per_task desc, joined_at asc, score desc, tasks desc
  (equal weighted totals go to the earlier joiner: at 10 per task, 50 points
  with 2 tasks beats a later 60 points with 1 task)
- RANDOM:   winner drawn uniformly from the active set; ranks use POINTS

The row id is appended to every key so two rows never compare equal and
repeated runs over the same data give the same ranking.
"""

import random
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, List, Optional

from arena.errors import ValidationError
from arena.models import ScoringStrategy, SessionState


def _joined(entry):
    return entry.joined_at or datetime.min


def sort_key(strategy: str, points_per_task: int = 10) -> Callable:
    if strategy == ScoringStrategy.TASKS:
        return lambda e: (-e.tasks_completed, -e.score, _joined(e), e.id or 0)
    if strategy == ScoringStrategy.COMBINED:
        return lambda e: (
            -weighted_score(e, points_per_task),
            _joined(e),
            -e.score,
            -e.tasks_completed,
            e.id or 0,
        )
    # POINTS, and the rank order for RANDOM
    return lambda e: (-e.score, -e.tasks_completed, _joined(e), e.id or 0)


def weighted_score(entry, points_per_task: int) -> int:
    return entry.score + entry.tasks_completed * points_per_task


def rank_entries(entries, strategy: str, points_per_task: int = 10) -> list:
    return sorted(entries, key=sort_key(strategy, points_per_task))


def pick_winner(ranked: list, strategy: str, random_override: bool = False,
                rng: Optional[random.Random] = None):
    """Winner from an already ranked list, or None when it is empty."""
    if not ranked:
        return None
    if strategy == ScoringStrategy.RANDOM or random_override:
        return (rng or random).choice(ranked)
    return ranked[0]


@dataclass
class Outcome:
    winner: Optional[object] = None
    ranking: List[object] = field(default_factory=list)


def settle(game, rng: Optional[random.Random] = None) -> Outcome:
    """Rank the active entries of an ENDED session and record the winner.

    Mutates the rows in memory (ranks, ``winner``); the caller commits.
    """
    if game.state != SessionState.ENDED:
        raise ValidationError('Session must be ended before calculating winner')

    ranking = rank_entries(game.active_entries, game.scoring_strategy, game.points_per_task)
    for position, entry in enumerate(ranking, start=1):
        entry.rank = position
        entry.final_rank = position

    winner = pick_winner(ranking, game.scoring_strategy, game.enable_random_winner, rng)
    if winner is not None:
        game.winner = winner.participant
        game.winner_id = winner.participant_id
    return Outcome(winner=winner, ranking=ranking)


def leaderboard(game, limit: Optional[int] = None) -> list:
    """Leaderboard rows for a session.

    Finished sessions list the frozen ``final_rank`` order; everything else is
    ranked live with the session's own comparator.
    """
    if game.state == SessionState.ENDED:
        ranked = sorted((e for e in game.entries if e.final_rank is not None), key=lambda e: e.final_rank)
        rows = [e.to_leaderboard_entry(e.final_rank) for e in ranked]
    else:
        ranked = rank_entries(game.active_entries, game.scoring_strategy, game.points_per_task)
        rows = [e.to_leaderboard_entry(i) for i, e in enumerate(ranked, start=1)]
    return rows[:limit] if limit else rows
