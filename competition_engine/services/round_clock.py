"""
Round Clock

Pure functions deciding a round's lifecycle state from the current time.

Design:
- A round is open on the half-open interval [start_date, end_date)
- "Has ended" is recomputed from timestamps on every call, never stored
- Rounds are ordered by start_date, then id; this order defines next/previous
"""
from enum import Enum
from typing import List, Optional, Sequence

from competition_engine.core.time import utcnow
from competition_engine.orm.competition import CompetitionRound


class RoundState(str, Enum):
    NOT_STARTED = "not_started"
    OPEN = "open"
    CLOSED = "closed"


def round_state(round_obj: CompetitionRound, now=None) -> RoundState:
    now = now or utcnow()
    if now < round_obj.start_date:
        return RoundState.NOT_STARTED
    if now < round_obj.end_date:
        return RoundState.OPEN
    return RoundState.CLOSED


def has_started(round_obj: CompetitionRound, now=None) -> bool:
    now = now or utcnow()
    return now >= round_obj.start_date


def has_ended(round_obj: CompetitionRound, now=None) -> bool:
    now = now or utcnow()
    return now >= round_obj.end_date


def order_rounds(rounds: Sequence[CompetitionRound]) -> List[CompetitionRound]:
    return sorted(rounds, key=lambda r: (r.start_date, r.id))


def next_round(rounds: Sequence[CompetitionRound], current: CompetitionRound) -> Optional[CompetitionRound]:
    """Return the round that follows `current`, or None for the final round."""
    ordered = order_rounds(rounds)
    for index, round_obj in enumerate(ordered):
        if round_obj.id == current.id:
            return ordered[index + 1] if index + 1 < len(ordered) else None
    return None


def previous_rounds(rounds: Sequence[CompetitionRound], current: CompetitionRound) -> List[CompetitionRound]:
    ordered = order_rounds(rounds)
    return [r for r in ordered if (r.start_date, r.id) < (current.start_date, current.id)]


def later_rounds(rounds: Sequence[CompetitionRound], current: CompetitionRound) -> List[CompetitionRound]:
    """Rounds starting strictly after `current`."""
    return [r for r in order_rounds(rounds) if r.start_date > current.start_date]


def all_rounds_ended(rounds: Sequence[CompetitionRound], now=None) -> bool:
    now = now or utcnow()
    return bool(rounds) and all(has_ended(r, now) for r in rounds)


def select_leaderboard_round(rounds: Sequence[CompetitionRound], now=None) -> Optional[CompetitionRound]:
    """
    Pick the round a competition's leaderboard should show.

    The open round if there is one, otherwise the most recently ended round,
    otherwise (nothing has ended yet) the last round.
    """
    now = now or utcnow()
    ordered = order_rounds(rounds)
    if not ordered:
        return None

    for round_obj in ordered:
        if round_state(round_obj, now) == RoundState.OPEN:
            return round_obj

    ended = [r for r in ordered if has_ended(r, now)]
    if ended:
        return max(ended, key=lambda r: (r.end_date, r.id))

    return ordered[-1]


__all__ = [
    "RoundState",
    "round_state",
    "has_started",
    "has_ended",
    "order_rounds",
    "next_round",
    "previous_rounds",
    "later_rounds",
    "all_rounds_ended",
    "select_leaderboard_round",
    "utcnow",
]
