"""
Rate limiting for public read endpoints.
"""
import os

from slowapi import Limiter
from slowapi.util import get_remote_address

from competition_engine.config.feature_flags import get_bool_env

PUBLIC_READ_LIMIT = os.getenv("RATE_LIMIT_PUBLIC_READ", "120/minute")

limiter = Limiter(
    key_func=get_remote_address,
    enabled=get_bool_env("RATE_LIMIT_ENABLED", True),
)
