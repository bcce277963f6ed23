"""
Visibility Service

Recomputes both feed flags of every entry from first principles.

Rules, per entry:
- Round not started yet: hidden from both feeds
- Round started: always visible in the normal feed
- Round started: visible in the competition feed unless the same participant
  has an entry in an earlier round with qualified_for_next_round == False
  (unresolved earlier rounds count as visible)
- Terminated competition: every entry with a post is visible in the normal feed

Only fields that differ are written, so a second pass reports zero changes.
"""
import logging
from collections import defaultdict
from dataclasses import dataclass, field, asdict
from typing import Dict, List, Optional, Sequence, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from competition_engine.orm.competition import CompetitionRound
from competition_engine.services.entry_store import EntryStore
from competition_engine.services.round_clock import has_started, utcnow

logger = logging.getLogger(__name__)


def derive_visibility(
    round_obj: CompetitionRound,
    earlier_qualifications: Sequence[Optional[bool]],
    now,
    has_post: bool = True,
    competition_terminated: bool = False
) -> Tuple[bool, bool]:
    """Return (visible_in_competition_feed, visible_in_normal_feed)."""
    if not has_started(round_obj, now):
        return False, bool(competition_terminated and has_post)

    competition_feed = not any(q is False for q in earlier_qualifications)
    return competition_feed, True


@dataclass
class RepairReport:
    competition_id: int
    entries_examined: int = 0
    entries_updated: int = 0
    competition_feed_changes: int = 0
    normal_feed_changes: int = 0
    updated_entry_ids: List[int] = field(default_factory=list)

    def to_dict(self) -> Dict:
        return asdict(self)


class VisibilityService:
    """Stateless; every pass reads the stored qualification history afresh."""

    async def reconcile_competition(self, db: AsyncSession, competition_id: int, now=None) -> RepairReport:
        """
        Re-derive visibility for every entry of a competition and commit.

        Idempotent. Concurrent runs converge because each one writes a pure
        function of the stored qualification history.
        """
        now = now or utcnow()
        try:
            report = await self._reconcile(db, competition_id, now)
            await db.commit()
        except Exception:
            await db.rollback()
            raise

        logger.info(
            f"[RECONCILE] competition={competition_id} examined={report.entries_examined} "
            f"updated={report.entries_updated}"
        )
        return report

    async def reconcile_safely(self, db: AsyncSession, competition_id: int, now=None) -> Optional[RepairReport]:
        """Read-path variant: log and return None instead of raising."""
        try:
            return await self.reconcile_competition(db, competition_id, now)
        except Exception:
            logger.exception(f"[RECONCILE] competition={competition_id} failed; skipping")
            return None

    async def _reconcile(self, db: AsyncSession, competition_id: int, now) -> RepairReport:
        competition = await EntryStore.get_competition(db, competition_id)
        rounds = await EntryStore.list_rounds(db, competition_id)
        rounds_by_id = {r.id: r for r in rounds}
        entries = await EntryStore.list_competition_entries(db, competition_id)
        terminated = competition.is_terminated

        report = RepairReport(competition_id=competition_id)

        by_participant = defaultdict(list)
        for entry in entries:
            by_participant[entry.participant_id].append(entry)

        for participant_entries in by_participant.values():
            participant_entries.sort(
                key=lambda e: (rounds_by_id[e.round_id].start_date, e.round_id)
            )
            for entry in participant_entries:
                round_obj = rounds_by_id[entry.round_id]
                earlier = [
                    other.qualified_for_next_round
                    for other in participant_entries
                    if rounds_by_id[other.round_id].start_date < round_obj.start_date
                ]
                competition_feed, normal_feed = derive_visibility(
                    round_obj,
                    earlier,
                    now,
                    has_post=entry.has_post,
                    competition_terminated=terminated,
                )

                report.entries_examined += 1
                changed = False
                if entry.visible_in_competition_feed != competition_feed:
                    entry.visible_in_competition_feed = competition_feed
                    report.competition_feed_changes += 1
                    changed = True
                if entry.visible_in_normal_feed != normal_feed:
                    entry.visible_in_normal_feed = normal_feed
                    report.normal_feed_changes += 1
                    changed = True
                if changed:
                    report.entries_updated += 1
                    report.updated_entry_ids.append(entry.id)

        await db.flush()
        return report
