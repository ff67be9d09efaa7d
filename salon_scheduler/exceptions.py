"""
Scheduling Errors

Exceptions raised by the scheduling engine and the lifecycle services.
Each carries a user-facing message and a machine-readable code.
"""

from typing import Optional


class SchedulingError(Exception):
    """Base class for errors reported back to the caller."""

    code = "scheduling_error"

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code


class BookingValidationError(SchedulingError):
    """Bad input: past date, beyond horizon, malformed time, unknown service."""

    code = "validation_error"


class BusinessClosedError(SchedulingError):
    """The business is closed or the service does not fit before closing."""

    code = "business_closed"


class ScheduleNotConfiguredError(BusinessClosedError):
    """No business schedule has been written yet."""

    code = "schedule_not_configured"


class ConflictError(SchedulingError):
    """Overlap detected and no alternative slot could be found."""

    code = "concurrent_booking"
    concurrent = True


class PermissionDeniedError(SchedulingError):
    code = "forbidden"


class AppointmentNotFoundError(SchedulingError):
    code = "appointment_not_found"


class InvalidTransitionError(SchedulingError):
    """The appointment's current status does not allow the operation."""

    code = "invalid_transition"
