"""
Feature Flags and Engine Settings

Centralized configuration for the competition engine.
Everything is loaded from environment variables; the engine itself only
ever sees an EngineSettings value handed to it by the caller.
"""
import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

load_dotenv()


def get_bool_env(key: str, default: bool = False) -> bool:
    """Get a boolean value from environment variable."""
    value = os.getenv(key, str(default)).lower()
    return value in ('true', '1', 'yes', 'on', 'enabled')


def get_int_env(key: str, default: int) -> int:
    """Get an integer value from environment variable, falling back on junk."""
    raw = os.getenv(key)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def get_float_env(key: str, default: float) -> float:
    raw = os.getenv(key)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        return default


class FeatureFlags:
    """
    Feature flags for the application.

    To add a new feature flag:
    1. Add it here as a class property
    2. Load it from environment variable
    3. Copy it onto EngineSettings if the services need it
    """

    # Master switch for triggers and read endpoints
    FEATURE_COMPETITION_ENGINE: bool = get_bool_env('FEATURE_COMPETITION_ENGINE', True)

    # Read paths evaluate termination before answering
    FEATURE_LAZY_TERMINATION: bool = get_bool_env('FEATURE_LAZY_TERMINATION', True)

    # Detail reads also run a visibility repair pass
    FEATURE_LAZY_RECONCILIATION: bool = get_bool_env('FEATURE_LAZY_RECONCILIATION', False)

    @classmethod
    def get_all_flags(cls) -> dict:
        """Get all feature flags as a dictionary."""
        return {
            key: value
            for key, value in cls.__dict__.items()
            if not key.startswith('_') and isinstance(value, bool)
        }


@dataclass(frozen=True)
class EngineSettings:
    """Configuration passed explicitly into every service call."""
    engine_enabled: bool = True
    lazy_termination: bool = True
    lazy_reconciliation: bool = False
    engagement_timeout_seconds: float = 5.0
    engagement_max_concurrency: int = 10
    leaderboard_page_size: int = 20
    leaderboard_max_page_size: int = 100
    winner_count: int = 3
    engagement_service_url: Optional[str] = None

    def clamp_page_size(self, requested: Optional[int]) -> int:
        if requested is None or requested < 1:
            return self.leaderboard_page_size
        return min(requested, self.leaderboard_max_page_size)


def load_engine_settings() -> EngineSettings:
    """Build EngineSettings from the current environment."""
    url = os.getenv("ENGAGEMENT_SERVICE_URL") or None
    return EngineSettings(
        engine_enabled=get_bool_env('FEATURE_COMPETITION_ENGINE', True),
        lazy_termination=get_bool_env('FEATURE_LAZY_TERMINATION', True),
        lazy_reconciliation=get_bool_env('FEATURE_LAZY_RECONCILIATION', False),
        engagement_timeout_seconds=get_float_env('ENGAGEMENT_TIMEOUT_SECONDS', 5.0),
        engagement_max_concurrency=max(1, get_int_env('ENGAGEMENT_MAX_CONCURRENCY', 10)),
        leaderboard_page_size=max(1, get_int_env('LEADERBOARD_PAGE_SIZE', 20)),
        leaderboard_max_page_size=max(1, get_int_env('LEADERBOARD_MAX_PAGE_SIZE', 100)),
        winner_count=max(1, get_int_env('WINNER_COUNT', 3)),
        engagement_service_url=url.rstrip("/") if url else None,
    )


def get_engine_settings() -> EngineSettings:
    """FastAPI dependency; overridden in tests."""
    return load_engine_settings()


# Singleton instance for easy importing
feature_flags = FeatureFlags()
