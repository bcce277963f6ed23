"""
Termination Service

Decides whether a competition should end early and records why.

Ordered checks, first match wins:
1. First round ended and nobody joined
2. First round ended and nobody submitted a post
3. A later round ended and nobody submitted a post
4. A round with a threshold ended and no submitted post reached it
5. A processed, non-final round produced no qualifiers

Rounds are walked in start order. Walking stops after the first ended round
whose submissions are not fully evaluated yet: later rounds cannot be judged
until that one is processed.

Termination is a compare-and-set on completion_reason IS NULL, so concurrent
evaluations record exactly one reason.
"""
import logging
from dataclasses import dataclass, asdict
from typing import Dict, List, Optional

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from competition_engine.config.feature_flags import EngineSettings
from competition_engine.orm.competition import (
    Competition,
    CompetitionRound,
    CompetitionRoundEntry,
)
from competition_engine.services.engagement_service import (
    EngagementReader,
    count_likes_for_posts,
)
from competition_engine.services.entry_store import EntryStore
from competition_engine.services.round_clock import has_ended, utcnow

logger = logging.getLogger(__name__)


NO_PARTICIPANTS_REASON = "No one joined this competition, that's why it ended."
NO_FIRST_ROUND_SUBMISSIONS_REASON = "No participants submitted posts for the competition. No winner declared."


def no_round_submissions_reason(round_name: str) -> str:
    return f"No participants submitted posts in {round_name}. No winner declared."


def threshold_unmet_reason(round_name: str, likes_to_pass: int) -> str:
    return (
        f"{round_name} required {likes_to_pass} likes but no participant achieved "
        f"this target, so the competition has been ended."
    )


def no_qualifiers_reason(round_name: str) -> str:
    return f"No participants qualified from {round_name}. No winner declared."


class TerminationCheck:
    NO_PARTICIPANTS = "no_participants"
    NO_FIRST_ROUND_SUBMISSIONS = "no_first_round_submissions"
    NO_ROUND_SUBMISSIONS = "no_round_submissions"
    THRESHOLD_UNMET = "threshold_unmet"
    NO_QUALIFIERS = "no_qualifiers"


@dataclass
class TerminationDecision:
    competition_id: int
    terminated: bool = False
    already_terminated: bool = False
    reason: Optional[str] = None
    check: Optional[str] = None
    round_id: Optional[int] = None
    entries_surfaced: int = 0

    def to_dict(self) -> Dict:
        return asdict(self)


class TerminationService:
    """
    Evaluates early-termination conditions.

    The reader is optional. Without one, check 4 can only be decided for
    rounds whose entries were already evaluated by qualification processing.
    """

    def __init__(self, settings: EngineSettings, reader: Optional[EngagementReader] = None):
        self.settings = settings
        self.reader = reader

    async def evaluate(self, db: AsyncSession, competition_id: int, now=None) -> TerminationDecision:
        now = now or utcnow()
        try:
            decision = await self._evaluate(db, competition_id, now)
            await db.commit()
        except Exception:
            await db.rollback()
            raise
        return decision

    async def evaluate_safely(self, db: AsyncSession, competition_id: int, now=None) -> Optional[TerminationDecision]:
        """Read-path variant: never raises, logs and returns None on failure."""
        try:
            return await self.evaluate(db, competition_id, now)
        except Exception:
            logger.exception(f"[TERMINATION] evaluation failed for competition={competition_id}; skipping")
            return None

    # =========================================================================
    # Checks
    # =========================================================================

    async def _evaluate(self, db: AsyncSession, competition_id: int, now) -> TerminationDecision:
        competition = await EntryStore.get_competition(db, competition_id)
        decision = TerminationDecision(competition_id=competition_id)

        if competition.completion_reason is not None:
            decision.terminated = True
            decision.already_terminated = True
            decision.reason = competition.completion_reason
            return decision

        rounds = await EntryStore.list_rounds(db, competition_id)
        if not rounds:
            return decision

        first_round = rounds[0]
        if has_ended(first_round, now):
            if await EntryStore.count_participants(db, competition_id) < 1:
                return await self._terminate(
                    db, competition, rounds, decision,
                    NO_PARTICIPANTS_REASON, TerminationCheck.NO_PARTICIPANTS, first_round
                )

        for index, round_obj in enumerate(rounds):
            if not has_ended(round_obj, now):
                break

            submitted = await EntryStore.list_round_entries(db, round_obj.id, submitted_only=True)

            if not submitted:
                if index == 0:
                    reason, check = NO_FIRST_ROUND_SUBMISSIONS_REASON, TerminationCheck.NO_FIRST_ROUND_SUBMISSIONS
                else:
                    reason, check = no_round_submissions_reason(round_obj.name), TerminationCheck.NO_ROUND_SUBMISSIONS
                return await self._terminate(db, competition, rounds, decision, reason, check, round_obj)

            evaluated = all(e.qualified_for_next_round is not None for e in submitted)
            threshold = round_obj.threshold

            if threshold > 0:
                reached = await self._anyone_reached_threshold(round_obj, submitted, evaluated)
                if reached is False:
                    return await self._terminate(
                        db, competition, rounds, decision,
                        threshold_unmet_reason(round_obj.name, threshold),
                        TerminationCheck.THRESHOLD_UNMET, round_obj
                    )

            if not evaluated:
                break

            is_final = index == len(rounds) - 1
            if not is_final and not any(e.qualified_for_next_round for e in submitted):
                return await self._terminate(
                    db, competition, rounds, decision,
                    no_qualifiers_reason(round_obj.name),
                    TerminationCheck.NO_QUALIFIERS, round_obj
                )

        return decision

    async def _anyone_reached_threshold(
        self,
        round_obj: CompetitionRound,
        submitted: List[CompetitionRoundEntry],
        evaluated: bool
    ) -> Optional[bool]:
        """True/False when decidable, None when counts are unavailable."""
        if evaluated:
            return any(e.qualified_for_next_round for e in submitted)
        if self.reader is None:
            return None

        likes_by_post = await count_likes_for_posts(
            self.reader,
            [e.post_id for e in submitted],
            round_obj.start_date,
            round_obj.end_date,
            timeout_seconds=self.settings.engagement_timeout_seconds,
            max_concurrency=self.settings.engagement_max_concurrency,
        )
        return any(likes >= round_obj.threshold for likes in likes_by_post.values())

    # =========================================================================
    # Side effects
    # =========================================================================

    async def _terminate(
        self,
        db: AsyncSession,
        competition: Competition,
        rounds: List[CompetitionRound],
        decision: TerminationDecision,
        reason: str,
        check: str,
        round_obj: CompetitionRound
    ) -> TerminationDecision:
        result = await db.execute(
            update(Competition)
            .where(
                Competition.id == competition.id,
                Competition.completion_reason.is_(None)
            )
            .values(completion_reason=reason, is_active=False)
            .execution_options(synchronize_session="fetch")
        )

        if not result.rowcount:
            # Another evaluator won the race
            await db.refresh(competition)
            decision.terminated = True
            decision.already_terminated = True
            decision.reason = competition.completion_reason
            return decision

        surfaced = await db.execute(
            update(CompetitionRoundEntry)
            .where(
                CompetitionRoundEntry.round_id.in_([r.id for r in rounds]),
                CompetitionRoundEntry.post_id.is_not(None),
                CompetitionRoundEntry.visible_in_normal_feed == False
            )
            .values(visible_in_normal_feed=True)
            .execution_options(synchronize_session="fetch")
        )

        decision.terminated = True
        decision.reason = reason
        decision.check = check
        decision.round_id = round_obj.id
        decision.entries_surfaced = surfaced.rowcount or 0

        logger.info(
            f"[TERMINATION] competition={competition.id} check={check} "
            f"round={round_obj.id} reason={reason!r}"
        )
        return decision
