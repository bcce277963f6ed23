"""
competition_engine/rbac.py
Access control for competition endpoints.

Identity is owned by the host application. The engine only verifies the
JWT it issued and reads two claims: "sub" (user id) and "role".
Admin-only triggers (process, reconcile, evaluate) use require_admin; the
scheduled sweep may also authenticate with the shared SWEEP_SECRET.
"""
import os
import hmac
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt

from competition_engine.errors import ErrorCode

logger = logging.getLogger(__name__)

# ================= CONFIG =================

SECRET_KEY = os.getenv("JWT_SECRET_KEY", "dev-secret-key-change-in-production")
ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
ACCESS_TOKEN_EXPIRE_MINUTES = 30

ADMIN_ROLES = {"admin"}

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login")
oauth2_scheme_optional = OAuth2PasswordBearer(tokenUrl="/api/auth/login", auto_error=False)


@dataclass(frozen=True)
class Actor:
    user_id: int
    role: str

    @property
    def is_admin(self) -> bool:
        return self.role in ADMIN_ROLES


# ================= TOKEN UTILS =================

def create_access_token(user_id: int, role: str = "user", expires_delta: Optional[timedelta] = None) -> str:
    """Create a JWT access token carrying user id and role"""
    expire = datetime.utcnow() + (expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode = {
        "sub": str(user_id),
        "role": role,
        "exp": expire,
        "type": "access"
    }
    return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)


def decode_token(token: str) -> Optional[dict]:
    """Decode and validate JWT token"""
    try:
        return jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except JWTError:
        return None


def actor_from_token(token: Optional[str]) -> Optional[Actor]:
    if not token:
        return None
    payload = decode_token(token)
    if not payload or payload.get("type") != "access":
        return None
    try:
        user_id = int(payload.get("sub"))
    except (TypeError, ValueError):
        return None
    return Actor(user_id=user_id, role=str(payload.get("role") or "user"))


def _credentials_exception() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail={
            "success": False,
            "error": "Unauthorized",
            "message": "Invalid or expired token",
            "code": ErrorCode.AUTH_INVALID
        },
        headers={"WWW-Authenticate": "Bearer"},
    )


def _admin_required_exception() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_403_FORBIDDEN,
        detail={
            "success": False,
            "error": "Forbidden",
            "message": "Admin access required",
            "code": ErrorCode.ADMIN_REQUIRED
        },
    )


# ================= AUTH DEPENDENCIES =================

async def get_current_actor(token: str = Depends(oauth2_scheme)) -> Actor:
    """
    Resolve the acting user from the bearer token.
    Returns 401 if token is invalid or expired.
    """
    actor = actor_from_token(token)
    if actor is None:
        raise _credentials_exception()
    return actor


async def require_admin(actor: Actor = Depends(get_current_actor)) -> Actor:
    """Allow only admins to trigger qualification, reconciliation and termination."""
    if not actor.is_admin:
        logger.warning(f"Admin action denied for user {actor.user_id} with role {actor.role}")
        raise _admin_required_exception()
    return actor


async def verify_sweep_secret(token: Optional[str] = Depends(oauth2_scheme_optional)) -> str:
    """
    Authorize the scheduled sweep.

    Accepts either an admin JWT or the shared SWEEP_SECRET as bearer token.
    Returns "admin" or "scheduler" for logging.
    """
    if not token:
        raise _credentials_exception()

    sweep_secret = os.getenv("SWEEP_SECRET")
    if sweep_secret and hmac.compare_digest(token.encode(), sweep_secret.encode()):
        return "scheduler"

    actor = actor_from_token(token)
    if actor is None:
        raise _credentials_exception()
    if not actor.is_admin:
        raise _admin_required_exception()
    return "admin"
