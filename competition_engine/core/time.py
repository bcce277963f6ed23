"""
competition_engine/core/time.py
Wall-clock helper shared by the ORM defaults and the round clock.
"""
from datetime import datetime, timezone


def utcnow() -> datetime:
    """Return the current UTC time as a naive datetime (storage format)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


__all__ = ["utcnow"]
