"""
Admin Router

Trigger endpoints for qualification, reconciliation, termination and the
scheduled sweep. Every trigger is idempotent; calling one twice is a
success both times.
"""
import logging

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from competition_engine.config.feature_flags import EngineSettings
from competition_engine.database import get_db, get_session_factory
from competition_engine.errors import ErrorResponse
from competition_engine.exceptions import AlreadyTerminated
from competition_engine.rbac import Actor, require_admin, verify_sweep_secret
from competition_engine.routes.dependencies import get_engagement_reader, require_engine_enabled
from competition_engine.services.engagement_service import EngagementReader
from competition_engine.services.qualification_service import QualificationService
from competition_engine.services.termination_service import TerminationService
from competition_engine.services.visibility_service import VisibilityService
from competition_engine.tasks.sweep import run_sweep_once

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/admin", tags=["competition-admin"])


@router.post(
    "/rounds/{round_id}/process",
    responses={
        403: {"model": ErrorResponse, "description": "Admin access required"},
        409: {"model": ErrorResponse, "description": "Round still open"},
        503: {"model": ErrorResponse, "description": "Engagement store unavailable"},
    }
)
async def process_round(
    round_id: int,
    settings: EngineSettings = Depends(require_engine_enabled),
    actor: Actor = Depends(require_admin),
    reader: EngagementReader = Depends(get_engagement_reader),
    db: AsyncSession = Depends(get_db)
):
    """
    Run qualification for a closed round, then evaluate termination.

    409 with Retry-After while the round is still open.
    """
    logger.info(f"[ADMIN] user={actor.user_id} processing round={round_id}")
    try:
        result = await QualificationService(settings, reader).process_round(db, round_id)
    except AlreadyTerminated as e:
        return {
            "success": True,
            "noop": True,
            "message": e.message,
            "completion_reason": e.completion_reason,
        }

    termination = await TerminationService(settings, reader).evaluate_safely(db, result.competition_id)
    return {
        "success": True,
        "noop": False,
        "result": result.to_dict(),
        "termination": termination.to_dict() if termination else None,
    }


@router.post("/competitions/{competition_id}/reconcile")
async def reconcile_competition(
    competition_id: int,
    settings: EngineSettings = Depends(require_engine_enabled),
    actor: Actor = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    logger.info(f"[ADMIN] user={actor.user_id} reconciling competition={competition_id}")
    report = await VisibilityService().reconcile_competition(db, competition_id)
    return {"success": True, "report": report.to_dict()}


@router.post("/competitions/{competition_id}/evaluate")
async def evaluate_competition(
    competition_id: int,
    settings: EngineSettings = Depends(require_engine_enabled),
    actor: Actor = Depends(require_admin),
    reader: EngagementReader = Depends(get_engagement_reader),
    db: AsyncSession = Depends(get_db)
):
    logger.info(f"[ADMIN] user={actor.user_id} evaluating competition={competition_id}")
    decision = await TerminationService(settings, reader).evaluate(db, competition_id)
    return {"success": True, "decision": decision.to_dict()}


@router.post("/sweep")
async def sweep(
    settings: EngineSettings = Depends(require_engine_enabled),
    caller: str = Depends(verify_sweep_secret),
    reader: EngagementReader = Depends(get_engagement_reader),
    session_factory=Depends(get_session_factory)
):
    """Run one scheduled maintenance sweep across all active competitions."""
    logger.info(f"[ADMIN] sweep triggered by {caller}")
    report = await run_sweep_once(session_factory, settings, reader)
    return {"success": True, "report": report.to_dict()}
