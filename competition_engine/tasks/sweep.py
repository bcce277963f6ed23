"""
competition_engine/tasks/sweep.py
Scheduled maintenance sweep over active competitions.

For each active competition: process every ended round that still has
unevaluated submissions (in round order, stopping if the competition
terminates), evaluate termination, then reconcile visibility. A failure in
one competition is logged and the sweep moves on.
"""
import asyncio
import logging
from dataclasses import dataclass, field, asdict
from typing import Dict, List, Optional

from competition_engine.config.feature_flags import EngineSettings
from competition_engine.exceptions import AlreadyTerminated
from competition_engine.services.engagement_service import EngagementReader
from competition_engine.services.entry_store import EntryStore
from competition_engine.services.qualification_service import QualificationService
from competition_engine.services.round_clock import has_ended, utcnow
from competition_engine.services.termination_service import TerminationService
from competition_engine.services.visibility_service import VisibilityService

logger = logging.getLogger(__name__)


@dataclass
class SweepReport:
    dry_run: bool = False
    competitions_checked: int = 0
    rounds_processed: List[int] = field(default_factory=list)
    rounds_pending: List[int] = field(default_factory=list)
    competitions_terminated: List[int] = field(default_factory=list)
    entries_repaired: int = 0
    failures: List[Dict] = field(default_factory=list)

    def to_dict(self) -> Dict:
        return asdict(self)


async def _pending_rounds(db, competition_id: int, now) -> List[int]:
    """Ended rounds, in order, whose submitted entries are not all evaluated."""
    pending = []
    for round_obj in await EntryStore.list_rounds(db, competition_id):
        if not has_ended(round_obj, now):
            break
        submitted = await EntryStore.list_round_entries(db, round_obj.id, submitted_only=True)
        if any(e.qualified_for_next_round is None for e in submitted):
            pending.append(round_obj.id)
    return pending


async def _sweep_competition(db, competition_id: int, settings, reader, now, report: SweepReport) -> None:
    qualification = QualificationService(settings, reader)
    termination = TerminationService(settings, reader)

    for round_id in await _pending_rounds(db, competition_id, now):
        if report.dry_run:
            report.rounds_pending.append(round_id)
            continue
        try:
            await qualification.process_round(db, round_id, now)
        except AlreadyTerminated:
            return
        report.rounds_processed.append(round_id)

        decision = await termination.evaluate(db, competition_id, now)
        if decision.terminated:
            if not decision.already_terminated:
                report.competitions_terminated.append(competition_id)
            break

    if report.dry_run:
        return

    decision = await termination.evaluate(db, competition_id, now)
    if decision.terminated and not decision.already_terminated:
        report.competitions_terminated.append(competition_id)

    repair = await VisibilityService().reconcile_competition(db, competition_id, now)
    report.entries_repaired += repair.entries_updated


async def run_sweep_once(
    session_factory,
    settings: EngineSettings,
    reader: EngagementReader,
    now=None,
    dry_run: bool = False
) -> SweepReport:
    """Run a single sweep cycle."""
    now = now or utcnow()
    report = SweepReport(dry_run=dry_run)

    async with session_factory() as db:
        competition_ids = [c.id for c in await EntryStore.list_competitions(db, active_only=True)]

    for competition_id in competition_ids:
        report.competitions_checked += 1
        async with session_factory() as db:
            try:
                await _sweep_competition(db, competition_id, settings, reader, now, report)
            except Exception as e:
                logger.exception(f"[SWEEP] competition={competition_id} failed; continuing")
                report.failures.append({
                    "competition_id": competition_id,
                    "error": type(e).__name__,
                    "message": str(e),
                })

    logger.info(
        f"[SWEEP] checked={report.competitions_checked} processed={len(report.rounds_processed)} "
        f"terminated={len(report.competitions_terminated)} repaired={report.entries_repaired} "
        f"failures={len(report.failures)} dry_run={dry_run}"
    )
    return report


async def sweep_loop(
    session_factory,
    settings: EngineSettings,
    reader: EngagementReader,
    interval_seconds: int = 300
):
    """
    Background sweep loop.
    Runs every interval_seconds (default 5 minutes).
    """
    logger.info(f"Starting sweep loop with interval {interval_seconds}s")

    while True:
        try:
            await run_sweep_once(session_factory, settings, reader)
        except Exception as e:
            logger.error(f"Sweep loop error: {str(e)}")

        await asyncio.sleep(interval_seconds)


def start_sweep_task(
    session_factory,
    settings: EngineSettings,
    reader: EngagementReader,
    interval_seconds: int = 300
) -> Optional[asyncio.Task]:
    """Start the sweep as a background task."""
    return asyncio.create_task(sweep_loop(session_factory, settings, reader, interval_seconds))


async def stop_sweep_task(task: Optional[asyncio.Task]) -> None:
    """Cancel the background sweep and wait for it to unwind."""
    if task is None:
        return
    task.cancel()
    try:
        await task
    except asyncio.CancelledError:
        logger.info("Sweep loop stopped")
