"""
competition_engine/errors.py
Consistent error envelope for every HTTP response.

ERROR RESPONSE STRUCTURE:
{
    "success": false,
    "error": "ErrorType",
    "message": "Human-readable description",
    "code": "UNIQUE_ERROR_CODE",
    "details": {} (optional)
}

HTTP STATUS CODE DISCIPLINE:
- 200: Successful request, including idempotent no-ops
- 400: Invalid input or request made in the wrong competition state
- 401: Authentication missing or expired
- 403: Not an admin, or the engine is switched off
- 404: Competition, round or participant does not exist
- 409: Round still open, or a uniqueness conflict
- 422: Validation error (Pydantic)
- 429: Rate limit exceeded
- 503: Engagement store unavailable
"""
import logging
import uuid
from typing import Optional, Dict, Any

from fastapi.responses import JSONResponse
from pydantic import BaseModel

from competition_engine.exceptions import CompetitionEngineError

logger = logging.getLogger(__name__)


class ErrorCode:
    """Unique error codes for machine-readable error handling"""

    VALIDATION_ERROR = "VALIDATION_ERROR"
    INVALID_INPUT = "INVALID_INPUT"

    AUTH_REQUIRED = "AUTH_REQUIRED"
    AUTH_INVALID = "AUTH_INVALID"

    FORBIDDEN = "FORBIDDEN"
    ADMIN_REQUIRED = "ADMIN_REQUIRED"

    NOT_FOUND = "NOT_FOUND"

    RATE_LIMITED = "RATE_LIMITED"

    INTERNAL_ERROR = "INTERNAL_ERROR"
    SERVICE_UNAVAILABLE = "SERVICE_UNAVAILABLE"


class ErrorResponse(BaseModel):
    """Standard error response model"""
    success: bool = False
    error: str
    message: str
    code: str
    details: Optional[Dict[str, Any]] = None


def error_payload(exc: CompetitionEngineError) -> Dict[str, Any]:
    """Render a service exception as the standard envelope."""
    content = {
        "success": False,
        "error": exc.error,
        "message": exc.message,
        "code": exc.code,
    }
    if exc.details:
        content["details"] = exc.details
    return content


def engine_error_response(exc: CompetitionEngineError) -> JSONResponse:
    headers = None
    retry_after = getattr(exc, "retry_after_seconds", None)
    if retry_after is not None:
        headers = {"Retry-After": str(retry_after)}
    return JSONResponse(status_code=exc.status_code, content=error_payload(exc), headers=headers)


def internal_error_payload(error: Exception, context: str = "") -> Dict[str, Any]:
    """Log an unexpected error under a short id and return a safe 500 body."""
    log_id = str(uuid.uuid4())[:8]
    logger.error(f"[{log_id}] Internal error in {context}: {type(error).__name__}: {str(error)}")
    return {
        "success": False,
        "error": "Internal Error",
        "message": "An unexpected error occurred. Please try again later.",
        "code": ErrorCode.INTERNAL_ERROR,
        "details": {"log_id": log_id},
    }


ERROR_MAPPING = {
    400: ("Bad Request", ErrorCode.INVALID_INPUT),
    401: ("Unauthorized", ErrorCode.AUTH_REQUIRED),
    403: ("Forbidden", ErrorCode.FORBIDDEN),
    404: ("Not Found", ErrorCode.NOT_FOUND),
    422: ("Validation Error", ErrorCode.VALIDATION_ERROR),
    429: ("Too Many Requests", ErrorCode.RATE_LIMITED),
    500: ("Internal Error", ErrorCode.INTERNAL_ERROR),
    503: ("Service Unavailable", ErrorCode.SERVICE_UNAVAILABLE),
}
