"""
Entry Store

Repository for competitions, rounds, participants and round entries.

Design:
- (participant_id, round_id) is unique at the database level
- create_entry_if_absent never duplicates: it returns the existing row, or
  inserts and flushes; a concurrent insert surfaces as DuplicateEntryConflict
- Nothing here commits; transaction boundaries belong to the caller
"""
import logging
from typing import List, Optional, Tuple

from sqlalchemy import select, func, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from competition_engine.exceptions import (
    CompetitionNotFound,
    RoundNotFound,
    DuplicateEntryConflict,
)
from competition_engine.orm.competition import (
    Competition,
    CompetitionRound,
    CompetitionParticipant,
    CompetitionRoundEntry,
)

logger = logging.getLogger(__name__)


class EntryStore:
    """Data access for competition state. All methods take the caller's session."""

    # =========================================================================
    # Competitions and rounds
    # =========================================================================

    @staticmethod
    async def get_competition(db: AsyncSession, competition_id: int) -> Competition:
        result = await db.execute(
            select(Competition).where(Competition.id == competition_id)
        )
        competition = result.scalar_one_or_none()
        if not competition:
            raise CompetitionNotFound(competition_id)
        return competition

    @staticmethod
    async def list_competitions(db: AsyncSession, active_only: bool = False) -> List[Competition]:
        query = select(Competition).order_by(Competition.id)
        if active_only:
            query = query.where(
                Competition.is_active == True,
                Competition.completion_reason.is_(None)
            )
        result = await db.execute(query)
        return list(result.scalars().all())

    @staticmethod
    async def get_round(db: AsyncSession, round_id: int) -> CompetitionRound:
        result = await db.execute(
            select(CompetitionRound).where(CompetitionRound.id == round_id)
        )
        round_obj = result.scalar_one_or_none()
        if not round_obj:
            raise RoundNotFound(round_id)
        return round_obj

    @staticmethod
    async def list_rounds(db: AsyncSession, competition_id: int) -> List[CompetitionRound]:
        """Rounds of a competition in start order."""
        result = await db.execute(
            select(CompetitionRound)
            .where(CompetitionRound.competition_id == competition_id)
            .order_by(CompetitionRound.start_date, CompetitionRound.id)
        )
        return list(result.scalars().all())

    # =========================================================================
    # Participants
    # =========================================================================

    @staticmethod
    async def count_participants(db: AsyncSession, competition_id: int) -> int:
        result = await db.execute(
            select(func.count(CompetitionParticipant.id)).where(
                CompetitionParticipant.competition_id == competition_id
            )
        )
        return int(result.scalar() or 0)

    @staticmethod
    async def list_participants(db: AsyncSession, competition_id: int) -> List[CompetitionParticipant]:
        result = await db.execute(
            select(CompetitionParticipant)
            .where(CompetitionParticipant.competition_id == competition_id)
            .order_by(CompetitionParticipant.id)
        )
        return list(result.scalars().all())

    @staticmethod
    async def get_participant(
        db: AsyncSession,
        competition_id: int,
        participant_id: Optional[int] = None,
        user_id: Optional[int] = None
    ) -> Optional[CompetitionParticipant]:
        query = select(CompetitionParticipant).where(
            CompetitionParticipant.competition_id == competition_id
        )
        if participant_id is not None:
            query = query.where(CompetitionParticipant.id == participant_id)
        if user_id is not None:
            query = query.where(CompetitionParticipant.user_id == user_id)
        result = await db.execute(query)
        return result.scalar_one_or_none()

    # =========================================================================
    # Entries
    # =========================================================================

    @staticmethod
    async def list_round_entries(
        db: AsyncSession,
        round_id: int,
        submitted_only: bool = False
    ) -> List[CompetitionRoundEntry]:
        query = (
            select(CompetitionRoundEntry)
            .where(CompetitionRoundEntry.round_id == round_id)
            .order_by(CompetitionRoundEntry.id)
        )
        if submitted_only:
            query = query.where(CompetitionRoundEntry.post_id.is_not(None))
        result = await db.execute(query)
        return list(result.scalars().all())

    @staticmethod
    async def list_competition_entries(db: AsyncSession, competition_id: int) -> List[CompetitionRoundEntry]:
        result = await db.execute(
            select(CompetitionRoundEntry)
            .join(CompetitionRound, CompetitionRound.id == CompetitionRoundEntry.round_id)
            .where(CompetitionRound.competition_id == competition_id)
            .order_by(CompetitionRoundEntry.id)
        )
        return list(result.scalars().all())

    @staticmethod
    async def list_participant_entries(db: AsyncSession, participant_id: int) -> List[CompetitionRoundEntry]:
        result = await db.execute(
            select(CompetitionRoundEntry)
            .where(CompetitionRoundEntry.participant_id == participant_id)
            .order_by(CompetitionRoundEntry.id)
        )
        return list(result.scalars().all())

    @staticmethod
    async def get_entry(db: AsyncSession, participant_id: int, round_id: int) -> Optional[CompetitionRoundEntry]:
        result = await db.execute(
            select(CompetitionRoundEntry).where(
                CompetitionRoundEntry.participant_id == participant_id,
                CompetitionRoundEntry.round_id == round_id
            )
        )
        return result.scalar_one_or_none()

    @staticmethod
    async def create_entry_if_absent(
        db: AsyncSession,
        participant_id: int,
        round_id: int,
        visible_in_competition_feed: bool = True,
        visible_in_normal_feed: bool = True
    ) -> Tuple[CompetitionRoundEntry, bool]:
        """
        Return (entry, created).

        Raises DuplicateEntryConflict when a concurrent writer inserted the
        same pair between our read and our flush. The session must then be
        rolled back by the caller.
        """
        existing = await EntryStore.get_entry(db, participant_id, round_id)
        if existing:
            return existing, False

        entry = CompetitionRoundEntry(
            participant_id=participant_id,
            round_id=round_id,
            post_id=None,
            qualified_for_next_round=None,
            visible_in_competition_feed=visible_in_competition_feed,
            visible_in_normal_feed=visible_in_normal_feed
        )
        db.add(entry)
        try:
            await db.flush()
        except IntegrityError as e:
            logger.warning(
                f"[ENTRY CONFLICT] participant={participant_id} round={round_id}: {str(e.orig)}"
            )
            raise DuplicateEntryConflict(participant_id, round_id) from e

        return entry, True

    @staticmethod
    async def hide_entries_from_competition_feed(
        db: AsyncSession,
        participant_id: int,
        round_ids: List[int]
    ) -> int:
        """Set visible_in_competition_feed = False on the given rounds' entries. Returns rows changed."""
        if not round_ids:
            return 0
        result = await db.execute(
            update(CompetitionRoundEntry)
            .where(
                CompetitionRoundEntry.participant_id == participant_id,
                CompetitionRoundEntry.round_id.in_(round_ids),
                CompetitionRoundEntry.visible_in_competition_feed == True
            )
            .values(visible_in_competition_feed=False)
            .execution_options(synchronize_session="fetch")
        )
        return result.rowcount or 0
