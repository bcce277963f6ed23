"""
Builders for competition test data.

Every builder commits, so the services under test always start from
persisted state.
"""
import asyncio
from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from sqlalchemy import select, func

from competition_engine.exceptions import EngagementReadFailure
from competition_engine.orm.competition import (
    Competition,
    CompetitionRound,
    CompetitionParticipant,
    CompetitionRoundEntry,
)
from competition_engine.services.engagement_service import EngagementReader

NOW = datetime(2026, 3, 1, 12, 0, 0)


class FakeEngagementReader(EngagementReader):
    """In-window like counts keyed by post id."""

    def __init__(
        self,
        likes: Optional[Dict[str, int]] = None,
        fail_on: Iterable[str] = (),
        delay: float = 0.0
    ):
        self.likes = dict(likes or {})
        self.fail_on = set(fail_on)
        self.delay = delay
        self.calls = []

    async def count_in_window(self, post_id, start, end):
        self.calls.append((post_id, start, end))
        if self.delay:
            await asyncio.sleep(self.delay)
        if post_id in self.fail_on:
            raise EngagementReadFailure(f"lookup failed for {post_id}", post_id=post_id)
        return self.likes.get(post_id, 0)


def days(n: float) -> timedelta:
    return timedelta(days=n)


async def make_competition(
    db,
    rounds: Sequence[Tuple[str, datetime, datetime, Optional[int]]],
    title: str = "Street Photography Cup",
    is_active: bool = True,
    completion_reason: Optional[str] = None
) -> Tuple[Competition, List[CompetitionRound]]:
    """rounds: (name, start_date, end_date, likes_to_pass) in order."""
    competition = Competition(
        title=title,
        is_active=is_active if completion_reason is None else False,
        completion_reason=completion_reason
    )
    db.add(competition)
    await db.flush()

    created = []
    for name, start, end, likes_to_pass in rounds:
        round_obj = CompetitionRound(
            competition_id=competition.id,
            name=name,
            start_date=start,
            end_date=end,
            likes_to_pass=likes_to_pass
        )
        db.add(round_obj)
        created.append(round_obj)
    await db.flush()
    await db.commit()
    return competition, created


def three_round_schedule(now: datetime = NOW, last_round_open: bool = True, thresholds=(10, 20, 30)):
    """Round 1 and 2 ended, round 3 open (or ended)."""
    r3_end = now + days(10) if last_round_open else now - days(1)
    return [
        ("Round 1", now - days(30), now - days(20), thresholds[0]),
        ("Round 2", now - days(20), now - days(10), thresholds[1]),
        ("Round 3", now - days(10), r3_end, thresholds[2]),
    ]


async def add_participant(
    db,
    competition: Competition,
    user_id: int,
    current_round: Optional[CompetitionRound] = None,
    is_disqualified: bool = False
) -> CompetitionParticipant:
    participant = CompetitionParticipant(
        competition_id=competition.id,
        user_id=user_id,
        is_disqualified=is_disqualified,
        current_round_id=current_round.id if current_round else None
    )
    db.add(participant)
    await db.flush()
    await db.commit()
    return participant


async def add_entry(
    db,
    participant: CompetitionParticipant,
    round_obj: CompetitionRound,
    post_id: Optional[str] = None,
    qualified: Optional[bool] = None,
    competition_feed: bool = True,
    normal_feed: bool = True
) -> CompetitionRoundEntry:
    entry = CompetitionRoundEntry(
        participant_id=participant.id,
        round_id=round_obj.id,
        post_id=post_id,
        qualified_for_next_round=qualified,
        visible_in_competition_feed=competition_feed,
        visible_in_normal_feed=normal_feed
    )
    db.add(entry)
    await db.flush()
    await db.commit()
    return entry


async def fetch_entry(db, participant_id: int, round_id: int) -> Optional[CompetitionRoundEntry]:
    result = await db.execute(
        select(CompetitionRoundEntry)
        .where(
            CompetitionRoundEntry.participant_id == participant_id,
            CompetitionRoundEntry.round_id == round_id
        )
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def fetch(db, model, object_id: int):
    result = await db.execute(
        select(model).where(model.id == object_id).execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def count_entries(db, participant_id: int, round_id: int) -> int:
    result = await db.execute(
        select(func.count(CompetitionRoundEntry.id)).where(
            CompetitionRoundEntry.participant_id == participant_id,
            CompetitionRoundEntry.round_id == round_id
        )
    )
    return int(result.scalar() or 0)
