"""
Competitions Router

Public and participant endpoints.

Read paths evaluate termination lazily (fail-soft) before answering, since
a round boundary passing in wall-clock time has no other caller.
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from competition_engine.config.feature_flags import EngineSettings
from competition_engine.core.rate_limit import limiter, PUBLIC_READ_LIMIT
from competition_engine.database import get_db
from competition_engine.exceptions import RoundNotFound
from competition_engine.rbac import Actor, get_current_actor
from competition_engine.routes.dependencies import get_engagement_reader, require_engine_enabled
from competition_engine.services.engagement_service import EngagementReader
from competition_engine.services.entry_store import EntryStore
from competition_engine.services.leaderboard_service import LeaderboardService
from competition_engine.services.participation_service import ParticipationService
from competition_engine.services.round_clock import round_state, select_leaderboard_round, utcnow
from competition_engine.services.termination_service import TerminationService
from competition_engine.services.visibility_service import VisibilityService

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api", tags=["competitions"])


class SubmitPostRequest(BaseModel):
    post_id: str = Field(..., min_length=1, max_length=64)


async def _lazy_maintenance(
    db: AsyncSession,
    competition_id: int,
    settings: EngineSettings,
    reader: EngagementReader,
    reconcile: bool = False
) -> None:
    if settings.lazy_termination:
        await TerminationService(settings, reader).evaluate_safely(db, competition_id)
    if reconcile and settings.lazy_reconciliation:
        await VisibilityService().reconcile_safely(db, competition_id)


def _round_view(round_obj, now) -> dict:
    data = round_obj.to_dict()
    data["state"] = round_state(round_obj, now).value
    return data


# =============================================================================
# Competitions
# =============================================================================

@router.get("/competitions")
async def list_competitions(
    settings: EngineSettings = Depends(require_engine_enabled),
    reader: EngagementReader = Depends(get_engagement_reader),
    db: AsyncSession = Depends(get_db)
):
    """List competitions, ending any that should have terminated by now."""
    if settings.lazy_termination:
        active_ids = [c.id for c in await EntryStore.list_competitions(db, active_only=True)]
        for competition_id in active_ids:
            await _lazy_maintenance(db, competition_id, settings, reader)

    now = utcnow()
    competitions = []
    for competition in await EntryStore.list_competitions(db):
        data = competition.to_dict()
        data["rounds"] = [_round_view(r, now) for r in await EntryStore.list_rounds(db, competition.id)]
        competitions.append(data)

    return {"success": True, "competitions": competitions}


@router.get("/competitions/{competition_id}")
async def get_competition(
    competition_id: int,
    settings: EngineSettings = Depends(require_engine_enabled),
    reader: EngagementReader = Depends(get_engagement_reader),
    db: AsyncSession = Depends(get_db)
):
    await EntryStore.get_competition(db, competition_id)
    await _lazy_maintenance(db, competition_id, settings, reader, reconcile=True)

    now = utcnow()
    competition = await EntryStore.get_competition(db, competition_id)
    rounds = await EntryStore.list_rounds(db, competition_id)
    leaderboard_round = select_leaderboard_round(rounds, now)

    data = competition.to_dict()
    data["rounds"] = [_round_view(r, now) for r in rounds]
    data["participant_count"] = await EntryStore.count_participants(db, competition_id)
    data["leaderboard_round_id"] = leaderboard_round.id if leaderboard_round else None
    return {"success": True, "competition": data}


# =============================================================================
# Leaderboards and winners
# =============================================================================

@router.get("/competitions/{competition_id}/leaderboard")
@limiter.limit(PUBLIC_READ_LIMIT)
async def get_competition_leaderboard(
    request: Request,
    competition_id: int,
    round_id: Optional[int] = Query(None),
    cursor: Optional[int] = Query(None),
    page_size: Optional[int] = Query(None, ge=1),
    settings: EngineSettings = Depends(require_engine_enabled),
    reader: EngagementReader = Depends(get_engagement_reader),
    db: AsyncSession = Depends(get_db)
):
    """
    Leaderboard for one round of a competition.

    Without round_id the open round is shown, else the most recently ended
    round, else the last round.
    """
    await EntryStore.get_competition(db, competition_id)
    rounds = await EntryStore.list_rounds(db, competition_id)

    if round_id is not None:
        target = next((r for r in rounds if r.id == round_id), None)
        if target is None:
            raise RoundNotFound(round_id)
    else:
        target = select_leaderboard_round(rounds, utcnow())
        if target is None:
            return {"success": True, "leaderboard": None}

    page = await LeaderboardService(settings, reader).build_leaderboard(
        db, target.id, cursor=cursor, page_size=page_size
    )
    return {"success": True, "leaderboard": page.to_dict()}


@router.get("/rounds/{round_id}/leaderboard")
@limiter.limit(PUBLIC_READ_LIMIT)
async def get_round_leaderboard(
    request: Request,
    round_id: int,
    cursor: Optional[int] = Query(None),
    page_size: Optional[int] = Query(None, ge=1),
    settings: EngineSettings = Depends(require_engine_enabled),
    reader: EngagementReader = Depends(get_engagement_reader),
    db: AsyncSession = Depends(get_db)
):
    page = await LeaderboardService(settings, reader).build_leaderboard(
        db, round_id, cursor=cursor, page_size=page_size
    )
    return {"success": True, "leaderboard": page.to_dict()}


@router.get("/competitions/{competition_id}/winners")
@limiter.limit(PUBLIC_READ_LIMIT)
async def get_winners(
    request: Request,
    competition_id: int,
    settings: EngineSettings = Depends(require_engine_enabled),
    reader: EngagementReader = Depends(get_engagement_reader),
    db: AsyncSession = Depends(get_db)
):
    """Top finishers of the final round; 400 while the competition is running."""
    await EntryStore.get_competition(db, competition_id)
    await _lazy_maintenance(db, competition_id, settings, reader)

    result = await LeaderboardService(settings, reader).resolve_winners(db, competition_id)
    return {"success": True, **result.to_dict()}


@router.get("/competitions/{competition_id}/participants/{participant_id}/progress")
async def get_participant_progress(
    competition_id: int,
    participant_id: int,
    settings: EngineSettings = Depends(require_engine_enabled),
    reader: EngagementReader = Depends(get_engagement_reader),
    db: AsyncSession = Depends(get_db)
):
    progress = await LeaderboardService(settings, reader).participant_progress(
        db, competition_id, participant_id
    )
    return {"success": True, "progress": progress}


# =============================================================================
# Participation
# =============================================================================

@router.post("/competitions/{competition_id}/join", status_code=status.HTTP_201_CREATED)
async def join_competition(
    competition_id: int,
    settings: EngineSettings = Depends(require_engine_enabled),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db)
):
    participant, entry = await ParticipationService.join_competition(db, competition_id, actor.user_id)
    return {
        "success": True,
        "participant": participant.to_dict(),
        "entry": entry.to_dict(),
        "message": "Joined competition successfully"
    }


@router.post("/competitions/{competition_id}/rounds/{round_id}/submit")
async def submit_post(
    competition_id: int,
    round_id: int,
    payload: SubmitPostRequest,
    settings: EngineSettings = Depends(require_engine_enabled),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db)
):
    entry = await ParticipationService.submit_post(
        db, competition_id, round_id, actor.user_id, payload.post_id
    )
    return {"success": True, "entry": entry.to_dict()}
