"""
Shared FastAPI dependencies for competition routes.

Every service is built per request from EngineSettings and an engagement
reader, both overridable through app.dependency_overrides.
"""
from fastapi import Depends

from competition_engine.config.feature_flags import EngineSettings, get_engine_settings
from competition_engine.database import get_session_factory
from competition_engine.exceptions import FeatureDisabled
from competition_engine.services.engagement_service import EngagementReader, build_engagement_reader


async def get_engagement_reader(
    settings: EngineSettings = Depends(get_engine_settings),
    session_factory=Depends(get_session_factory),
):
    reader = build_engagement_reader(settings, session_factory)
    try:
        yield reader
    finally:
        await reader.aclose()


async def require_engine_enabled(
    settings: EngineSettings = Depends(get_engine_settings),
) -> EngineSettings:
    """Reject every call with 403 while the master switch is off."""
    if not settings.engine_enabled:
        raise FeatureDisabled()
    return settings
