"""
Qualification Service

Turns a closed round's engagement into per-entry pass/fail decisions.

Design:
- Guards: the competition must not be terminated and the round must have
  ended (now >= end_date)
- All like counts are read before any qualification decision is written; a
  read failure or timeout rolls back the call, including any round-1 entries
  created for late joiners
- A submitter eliminated in an earlier round is recorded as not qualified,
  stays hidden from the competition feed and never advances
- Every write for the round (qualification flags, next-round entries,
  participant pointers, future-entry hiding) lands in one transaction
- Re-running on unchanged data reaches the same state; next-round entries
  are create-if-absent
- A DuplicateEntryConflict from a concurrent writer rolls the attempt back
  and the whole round is recomputed once
"""
import logging
from collections import defaultdict
from dataclasses import dataclass, field, asdict
from typing import Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from competition_engine.config.feature_flags import EngineSettings
from competition_engine.exceptions import (
    AlreadyTerminated,
    DuplicateEntryConflict,
    RoundNotClosed,
)
from competition_engine.orm.competition import CompetitionParticipant
from competition_engine.services.engagement_service import (
    EngagementReader,
    count_likes_for_posts,
)
from competition_engine.services.entry_store import EntryStore
from competition_engine.services.round_clock import (
    has_ended,
    later_rounds,
    next_round,
    utcnow,
)
from competition_engine.services.visibility_service import derive_visibility

logger = logging.getLogger(__name__)

MAX_ATTEMPTS = 2


@dataclass
class EntryResult:
    entry_id: int
    participant_id: int
    post_id: str
    likes: int
    likes_to_pass: int
    qualified: bool
    next_entry_id: Optional[int] = None
    next_entry_created: bool = False
    hidden_future_entries: int = 0
    eliminated_earlier: bool = False


@dataclass
class ProcessingResult:
    round_id: int
    competition_id: int
    round_name: str
    qualified_count: int = 0
    disqualified_count: int = 0
    skipped_count: int = 0
    no_submissions: bool = False
    is_final_round: bool = False
    next_round_id: Optional[int] = None
    created_round_entries: int = 0
    entry_results: List[EntryResult] = field(default_factory=list)

    def to_dict(self) -> Dict:
        return asdict(self)


class QualificationService:
    """Processes closed rounds. Settings and the engagement reader are injected."""

    def __init__(self, settings: EngineSettings, reader: EngagementReader):
        self.settings = settings
        self.reader = reader

    async def process_round(self, db: AsyncSession, round_id: int, now=None) -> ProcessingResult:
        """
        Decide qualification for every submitted entry of a closed round.

        Raises:
            RoundNotFound / CompetitionNotFound
            AlreadyTerminated: competition already has a completion reason
            RoundNotClosed: now < round.end_date
            EngagementReadFailure: like counts could not be read
        """
        now = now or utcnow()

        attempt = 1
        while True:
            try:
                result = await self._process_once(db, round_id, now)
                await db.commit()
                break
            except DuplicateEntryConflict as e:
                await db.rollback()
                if attempt >= MAX_ATTEMPTS:
                    raise
                logger.warning(
                    f"[QUALIFICATION RETRY] round={round_id} attempt={attempt}: {e.message}"
                )
                attempt += 1
            except Exception:
                await db.rollback()
                raise

        logger.info(
            f"[QUALIFICATION] round={round_id} qualified={result.qualified_count} "
            f"disqualified={result.disqualified_count} skipped={result.skipped_count} "
            f"no_submissions={result.no_submissions}"
        )
        return result

    async def _process_once(self, db: AsyncSession, round_id: int, now) -> ProcessingResult:
        round_obj = await EntryStore.get_round(db, round_id)
        competition = await EntryStore.get_competition(db, round_obj.competition_id)

        if competition.is_terminated:
            raise AlreadyTerminated(competition.id, competition.completion_reason)

        if not has_ended(round_obj, now):
            raise RoundNotClosed(round_obj.id, round_obj.end_date, now)

        rounds = await EntryStore.list_rounds(db, competition.id)
        rounds_by_id = {r.id: r for r in rounds}
        following = next_round(rounds, round_obj)

        result = ProcessingResult(
            round_id=round_obj.id,
            competition_id=competition.id,
            round_name=round_obj.name,
            is_final_round=following is None,
            next_round_id=following.id if following else None,
        )

        # Participants who joined without a round-1 entry get one now
        if rounds and rounds[0].id == round_obj.id:
            for participant in await EntryStore.list_participants(db, competition.id):
                _, created = await EntryStore.create_entry_if_absent(db, participant.id, round_obj.id)
                if created:
                    result.created_round_entries += 1

        entries = await EntryStore.list_round_entries(db, round_obj.id)
        submitted = [e for e in entries if e.has_post]
        result.skipped_count = len(entries) - len(submitted)

        if not submitted:
            result.no_submissions = True
            await db.flush()
            return result

        likes_by_post = await count_likes_for_posts(
            self.reader,
            [e.post_id for e in submitted],
            round_obj.start_date,
            round_obj.end_date,
            timeout_seconds=self.settings.engagement_timeout_seconds,
            max_concurrency=self.settings.engagement_max_concurrency,
        )

        participants_result = await db.execute(
            select(CompetitionParticipant).where(
                CompetitionParticipant.id.in_(sorted({e.participant_id for e in submitted}))
            )
        )
        participants = {p.id: p for p in participants_result.scalars().all()}

        earlier_by_participant = await self._earlier_qualifications(
            db, competition.id, round_obj, rounds_by_id, participants
        )

        threshold = round_obj.threshold
        future_round_ids = [r.id for r in later_rounds(rounds, round_obj)]

        for entry in submitted:
            likes = likes_by_post.get(entry.post_id, 0)
            earlier = earlier_by_participant.get(entry.participant_id, [])
            eliminated_earlier = any(q is False for q in earlier)
            qualified = likes >= threshold and not eliminated_earlier

            entry.qualified_for_next_round = qualified
            # A submission stays visible in its own round unless an earlier round eliminated it
            entry.visible_in_competition_feed, entry.visible_in_normal_feed = derive_visibility(
                round_obj, earlier, now, has_post=True
            )

            entry_result = EntryResult(
                entry_id=entry.id,
                participant_id=entry.participant_id,
                post_id=entry.post_id,
                likes=likes,
                likes_to_pass=threshold,
                qualified=qualified,
                eliminated_earlier=eliminated_earlier,
            )

            if qualified:
                result.qualified_count += 1
                if following:
                    next_entry, created = await EntryStore.create_entry_if_absent(
                        db, entry.participant_id, following.id
                    )
                    entry_result.next_entry_id = next_entry.id
                    entry_result.next_entry_created = created
                    if created:
                        result.created_round_entries += 1
                    self._advance(participants.get(entry.participant_id), following, rounds_by_id)
            else:
                result.disqualified_count += 1
                if following:
                    entry_result.hidden_future_entries = await EntryStore.hide_entries_from_competition_feed(
                        db, entry.participant_id, future_round_ids
                    )

            result.entry_results.append(entry_result)

        await db.flush()
        return result

    @staticmethod
    async def _earlier_qualifications(
        db: AsyncSession, competition_id: int, round_obj, rounds_by_id, participant_ids
    ) -> Dict[int, List[Optional[bool]]]:
        """Qualification flags of each participant's entries in rounds that start before round_obj."""
        earlier = defaultdict(list)
        for other in await EntryStore.list_competition_entries(db, competition_id):
            if other.participant_id not in participant_ids:
                continue
            other_round = rounds_by_id.get(other.round_id)
            if other_round is not None and other_round.start_date < round_obj.start_date:
                earlier[other.participant_id].append(other.qualified_for_next_round)
        return earlier

    @staticmethod
    def _advance(participant, following, rounds_by_id) -> None:
        """Move the participant pointer forward; never backwards on a re-run."""
        if participant is None:
            return
        current = rounds_by_id.get(participant.current_round_id)
        if current is None or current.start_date <= following.start_date:
            participant.current_round_id = following.id
