"""
Participation Service

Joining competitions and attaching posts to round entries.
"""
import logging
from typing import Tuple

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from competition_engine.exceptions import (
    AlreadyParticipating,
    DuplicateEntryConflict,
    EnrollmentClosed,
    ParticipantNotFound,
    SubmissionRejected,
)
from competition_engine.orm.competition import (
    CompetitionParticipant,
    CompetitionRoundEntry,
)
from competition_engine.services.entry_store import EntryStore
from competition_engine.services.round_clock import has_ended, has_started, utcnow
from competition_engine.services.visibility_service import derive_visibility

logger = logging.getLogger(__name__)


class ParticipationService:

    @staticmethod
    async def join_competition(
        db: AsyncSession,
        competition_id: int,
        user_id: int,
        now=None
    ) -> Tuple[CompetitionParticipant, CompetitionRoundEntry]:
        """
        Enroll a user. Creates the participant and its first-round entry together.

        Raises:
            CompetitionNotFound
            EnrollmentClosed: inactive competition, or the first round is over
            AlreadyParticipating: the user already joined
        """
        now = now or utcnow()
        competition = await EntryStore.get_competition(db, competition_id)

        if not competition.is_active or competition.completion_reason is not None:
            raise EnrollmentClosed("This competition is not active")

        rounds = await EntryStore.list_rounds(db, competition_id)
        if not rounds:
            raise EnrollmentClosed("This competition has no rounds yet")
        if has_ended(rounds[-1], now):
            raise EnrollmentClosed("Competition has already ended")
        if has_ended(rounds[0], now):
            raise EnrollmentClosed("Enrollment for this competition has ended")

        existing = await EntryStore.get_participant(db, competition_id, user_id=user_id)
        if existing:
            raise AlreadyParticipating()

        first_round = rounds[0]
        try:
            participant = CompetitionParticipant(
                competition_id=competition_id,
                user_id=user_id,
                is_disqualified=False,
                current_round_id=first_round.id
            )
            db.add(participant)
            await db.flush()

            competition_feed, normal_feed = derive_visibility(first_round, [], now, has_post=False)
            entry, _ = await EntryStore.create_entry_if_absent(
                db,
                participant.id,
                first_round.id,
                visible_in_competition_feed=competition_feed,
                visible_in_normal_feed=normal_feed
            )
            await db.commit()
        except IntegrityError as e:
            await db.rollback()
            logger.warning(f"[JOIN CONFLICT] user={user_id} competition={competition_id}: {str(e.orig)}")
            raise AlreadyParticipating() from e
        except Exception:
            await db.rollback()
            raise

        logger.info(
            f"[JOIN] user={user_id} competition={competition_id} participant={participant.id}"
        )
        return participant, entry

    @staticmethod
    async def submit_post(
        db: AsyncSession,
        competition_id: int,
        round_id: int,
        user_id: int,
        post_id: str,
        now=None
    ) -> CompetitionRoundEntry:
        """
        Attach a post to the user's entry for a round.

        A post may be replaced only before the round starts. Resubmitting the
        same post is a no-op.
        """
        now = now or utcnow()
        competition = await EntryStore.get_competition(db, competition_id)
        if not competition.is_active or competition.completion_reason is not None:
            raise SubmissionRejected("Competition has already ended")

        round_obj = await EntryStore.get_round(db, round_id)
        if round_obj.competition_id != competition.id:
            raise SubmissionRejected("Round does not belong to this competition")
        if has_ended(round_obj, now):
            raise SubmissionRejected("Cannot submit a post after the round has ended")

        participant = await EntryStore.get_participant(db, competition_id, user_id=user_id)
        if not participant:
            raise ParticipantNotFound("You are not participating in this competition")
        if participant.is_disqualified:
            raise SubmissionRejected("You have been disqualified from this competition")

        rounds = await EntryStore.list_rounds(db, competition_id)
        is_first_round = rounds[0].id == round_obj.id

        entry = await EntryStore.get_entry(db, participant.id, round_obj.id)
        if entry is None and not is_first_round:
            raise SubmissionRejected("You have not qualified for this round")

        if entry is not None and entry.post_id is not None:
            if entry.post_id == post_id:
                return entry
            if has_started(round_obj, now):
                raise SubmissionRejected("You cannot change your post after the round has started")

        try:
            if entry is None:
                entry, _ = await EntryStore.create_entry_if_absent(db, participant.id, round_obj.id)

            earlier_ids = {r.id for r in rounds if r.start_date < round_obj.start_date}
            earlier = [
                e.qualified_for_next_round
                for e in await EntryStore.list_participant_entries(db, participant.id)
                if e.round_id in earlier_ids
            ]
            competition_feed, normal_feed = derive_visibility(round_obj, earlier, now, has_post=True)

            entry.post_id = post_id
            entry.visible_in_competition_feed = competition_feed
            entry.visible_in_normal_feed = normal_feed
            await db.commit()
        except DuplicateEntryConflict:
            await db.rollback()
            raise SubmissionRejected("Your entry for this round was modified concurrently; please retry")
        except Exception:
            await db.rollback()
            raise

        logger.info(
            f"[SUBMIT] participant={participant.id} round={round_obj.id} post={post_id}"
        )
        return entry
