"""
competition_engine/exceptions.py
Typed exceptions raised by the competition services.

Every exception carries an HTTP status and a machine-readable code so the
transport layer can render it without knowing the service internals.
"""
import math
from datetime import datetime
from typing import Any, Dict, Optional


class CompetitionEngineError(Exception):
    """Base exception for the competition engine"""
    status_code: int = 500
    code: str = "INTERNAL_ERROR"
    error: str = "Internal Error"

    def __init__(self, message: str, status_code: int = None, code: str = None):
        self.message = message
        if status_code:
            self.status_code = status_code
        if code:
            self.code = code
        super().__init__(self.message)

    @property
    def details(self) -> Optional[Dict[str, Any]]:
        return None


class RoundNotClosed(CompetitionEngineError):
    """
    Raised when qualification is requested before a round's end_date.

    Recoverable: the caller should retry once the boundary has passed.
    """
    status_code = 409
    code = "ROUND_NOT_CLOSED"
    error = "Not Ready"

    def __init__(self, round_id: int, end_date: datetime, now: datetime):
        self.round_id = round_id
        self.end_date = end_date
        self.retry_after_seconds = max(0, math.ceil((end_date - now).total_seconds()))
        super().__init__(
            f"Round {round_id} is still open until {end_date.isoformat()}; "
            f"qualification is not ready yet"
        )

    @property
    def details(self):
        return {
            "round_id": self.round_id,
            "end_date": self.end_date.isoformat(),
            "retry_after_seconds": self.retry_after_seconds,
        }


class CompetitionNotFound(CompetitionEngineError):
    status_code = 404
    code = "COMPETITION_NOT_FOUND"
    error = "Not Found"

    def __init__(self, competition_id: int):
        self.competition_id = competition_id
        super().__init__(f"Competition with id '{competition_id}' not found")


class RoundNotFound(CompetitionEngineError):
    status_code = 404
    code = "ROUND_NOT_FOUND"
    error = "Not Found"

    def __init__(self, round_id: int):
        self.round_id = round_id
        super().__init__(f"Round with id '{round_id}' not found")


class ParticipantNotFound(CompetitionEngineError):
    status_code = 404
    code = "PARTICIPANT_NOT_FOUND"
    error = "Not Found"

    def __init__(self, message: str = "Participant not found"):
        super().__init__(message)


class AlreadyTerminated(CompetitionEngineError):
    """
    Raised when processing is requested on a competition that already has a
    completion reason. Callers treat this as a successful no-op.
    """
    status_code = 200
    code = "ALREADY_TERMINATED"
    error = "No-op"

    def __init__(self, competition_id: int, completion_reason: str):
        self.competition_id = competition_id
        self.completion_reason = completion_reason
        super().__init__(f"Competition {competition_id} has already ended: {completion_reason}")

    @property
    def details(self):
        return {
            "competition_id": self.competition_id,
            "completion_reason": self.completion_reason,
        }


class EngagementReadFailure(CompetitionEngineError):
    """Transient failure reading like counts. Safe to retry wholesale."""
    status_code = 503
    code = "ENGAGEMENT_UNAVAILABLE"
    error = "Service Unavailable"

    def __init__(self, message: str = "Engagement counts are unavailable", post_id: str = None):
        self.post_id = post_id
        super().__init__(message)


class DuplicateEntryConflict(CompetitionEngineError):
    """Unique (participant, round) violation while creating an entry."""
    status_code = 409
    code = "DUPLICATE_ENTRY"
    error = "Conflict"

    def __init__(self, participant_id: int, round_id: int):
        self.participant_id = participant_id
        self.round_id = round_id
        super().__init__(
            f"Entry for participant {participant_id} in round {round_id} already exists"
        )


class CompetitionNotEnded(CompetitionEngineError):
    status_code = 400
    code = "COMPETITION_NOT_ENDED"
    error = "Bad Request"

    def __init__(self, message: str = "Competition not completed yet"):
        super().__init__(message)


class InvalidCursor(CompetitionEngineError):
    status_code = 400
    code = "INVALID_CURSOR"
    error = "Bad Request"

    def __init__(self, cursor: Any):
        self.cursor = cursor
        super().__init__(f"Cursor '{cursor}' does not belong to this leaderboard")


class EnrollmentClosed(CompetitionEngineError):
    status_code = 400
    code = "ENROLLMENT_CLOSED"
    error = "Bad Request"


class AlreadyParticipating(CompetitionEngineError):
    status_code = 409
    code = "ALREADY_PARTICIPATING"
    error = "Conflict"

    def __init__(self, message: str = "You are already participating in this competition"):
        super().__init__(message)


class SubmissionRejected(CompetitionEngineError):
    status_code = 400
    code = "SUBMISSION_REJECTED"
    error = "Bad Request"


class FeatureDisabled(CompetitionEngineError):
    status_code = 403
    code = "FEATURE_DISABLED"
    error = "Forbidden"

    def __init__(self, message: str = "Competition engine is disabled"):
        super().__init__(message)
