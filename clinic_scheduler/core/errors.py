"""
Error taxonomy for the scheduling core.

Business-rule failures (validation, past date, conflicts, transitions) go
straight back to the caller. Infrastructure failures carry enough
information for the caller to decide on retries: StoreUnavailable drives
the write-path fallback, ProviderUnavailable is retried per sync item and
AuthExpired aborts the current sync batch.
"""
from __future__ import annotations

from enum import Enum
from typing import Any, Dict, Optional, TYPE_CHECKING

from clinic_scheduler.core.logging import get_logger

if TYPE_CHECKING:
    from clinic_scheduler.core.timerange import ConflictDetail

logger = get_logger(__name__)


class ErrorSeverity(Enum):
    """Error severity levels used when logging failures."""
    LOW = "low"           # validation errors, expected business outcomes
    MEDIUM = "medium"     # timeouts, recoverable provider failures
    HIGH = "high"         # auth failures, store outages
    CRITICAL = "critical" # data loss


class SchedulingError(Exception):
    """Base class for every error raised by the scheduling core."""

    code = "scheduling_error"
    http_status = 500
    severity = ErrorSeverity.MEDIUM
    retryable = False

    def __init__(self, message: str = "", *, details: Optional[Dict[str, Any]] = None):
        super().__init__(message or self.code)
        self.message = message or self.code
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"code": self.code, "message": self.message}
        if self.details:
            body["details"] = self.details
        return body


class ValidationError(SchedulingError):
    code = "validation_failed"
    http_status = 422
    severity = ErrorSeverity.LOW


class MissingRequiredField(ValidationError):
    code = "missing_required_field"

    def __init__(self, field: str):
        super().__init__(f"Missing required field: {field}", details={"field": field})
        self.field = field


class PastDate(SchedulingError):
    code = "past_date"
    http_status = 400
    severity = ErrorSeverity.LOW


class ScheduleConflict(SchedulingError):
    code = "conflict"
    http_status = 409
    severity = ErrorSeverity.LOW

    def __init__(self, conflict: "ConflictDetail"):
        super().__init__(conflict.message, details=conflict.to_dict())
        self.conflict = conflict


class InvalidTransition(SchedulingError):
    code = "invalid_transition"
    http_status = 409
    severity = ErrorSeverity.LOW

    def __init__(self, current: str, requested: str):
        super().__init__(
            f"Cannot move appointment from '{current}' to '{requested}'",
            details={"current_status": current, "requested_status": requested},
        )
        self.current = current
        self.requested = requested


class AppointmentNotFound(SchedulingError):
    code = "not_found"
    http_status = 404
    severity = ErrorSeverity.LOW

    def __init__(self, appointment_id: str):
        super().__init__(f"Appointment {appointment_id} not found", details={"appointment_id": appointment_id})
        self.appointment_id = appointment_id


class CalendarNotConnected(SchedulingError):
    code = "calendar_not_connected"
    http_status = 404
    severity = ErrorSeverity.LOW

    def __init__(self, provider_id: str):
        super().__init__(
            f"No calendar connected for provider {provider_id}",
            details={"provider_id": provider_id},
        )
        self.provider_id = provider_id


class StoreUnavailable(SchedulingError):
    code = "store_unavailable"
    http_status = 503
    severity = ErrorSeverity.HIGH
    retryable = True


class AuthExpired(SchedulingError):
    code = "auth_expired"
    http_status = 401
    severity = ErrorSeverity.HIGH


class ProviderUnavailable(SchedulingError):
    code = "provider_unavailable"
    http_status = 502
    severity = ErrorSeverity.MEDIUM
    retryable = True


class CalendarProviderError(SchedulingError):
    """Non-retryable rejection from the calendar provider (4xx other than 401/429)."""
    code = "provider_error"
    http_status = 502
    severity = ErrorSeverity.MEDIUM


def log_error(error: Exception, context: Optional[Dict[str, Any]] = None,
              severity: Optional[ErrorSeverity] = None) -> None:
    """Log an error once with its severity and context."""
    context = context or {}
    if severity is None:
        severity = getattr(error, "severity", ErrorSeverity.MEDIUM)

    log = logger.warning if severity in (ErrorSeverity.LOW, ErrorSeverity.MEDIUM) else logger.error
    log(
        "scheduling_error",
        error_type=type(error).__name__,
        error=str(error),
        severity=severity.value,
        **context,
    )
