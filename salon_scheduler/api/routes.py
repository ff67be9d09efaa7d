"""
HTTP Routes

Customer and administrator endpoints over the scheduling services, and the
mapping of scheduling errors to HTTP responses.
"""

import logging
from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends, FastAPI, Query, Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

from salon_scheduler.api.deps import (
    get_appointment_service,
    get_principal,
    get_reminder_service,
    get_schedule_service,
)
from salon_scheduler.exceptions import (
    AppointmentNotFoundError,
    BookingValidationError,
    BusinessClosedError,
    ConflictError,
    InvalidTransitionError,
    PermissionDeniedError,
    SchedulingError,
)
from salon_scheduler.models.schemas import (
    AppointmentCancel,
    AppointmentCreate,
    AppointmentReschedule,
    AppointmentResponse,
    AppointmentStats,
    AppointmentStatus,
    BookingResponse,
    CancellationResponse,
    DayAvailability,
    JobResult,
    Principal,
    PropagationResult,
    ReminderPreference,
    ReminderResult,
    Schedule,
    ScheduleChangeRequest,
    ScheduleUpdate,
    ScheduleUpdateResult,
    StatusChange,
)
from salon_scheduler.services.appointment import AppointmentService
from salon_scheduler.services.reminders import ReminderService
from salon_scheduler.services.schedule import ScheduleService

logger = logging.getLogger(__name__)

router = APIRouter()

ERROR_STATUS_CODES = {
    BookingValidationError: 400,
    BusinessClosedError: 400,
    PermissionDeniedError: 403,
    AppointmentNotFoundError: 404,
    ConflictError: 409,
    InvalidTransitionError: 409,
}


def status_code_for(error: SchedulingError) -> int:
    for error_type in type(error).__mro__:
        if error_type in ERROR_STATUS_CODES:
            return ERROR_STATUS_CODES[error_type]
    return 400


async def scheduling_error_handler(request: Request, exc: SchedulingError) -> JSONResponse:
    content = {"error": exc.message, "code": exc.code}
    if isinstance(exc, ConflictError):
        content["concurrent"] = True
    status_code = status_code_for(exc)
    logger.info(f"{request.method} {request.url.path} -> {status_code} ({exc.code})")
    return JSONResponse(status_code=status_code, content=content)


async def unexpected_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error(f"Unhandled error on {request.method} {request.url.path}: {exc}", exc_info=True)
    content = {"error": "Internal server error"}
    if request.app.state.config.debug:
        content["details"] = str(exc)
    return JSONResponse(status_code=500, content=content)


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(SchedulingError, scheduling_error_handler)
    app.add_exception_handler(Exception, unexpected_error_handler)


# =============================================================================
# AVAILABILITY
# =============================================================================

@router.get("/availability", response_model=List[DayAvailability])
async def get_availability(
    start: Optional[date] = Query(default=None),
    end: Optional[date] = Query(default=None),
    service: AppointmentService = Depends(get_appointment_service),
):
    """Per-day slot availability; defaults to the whole booking window."""
    return await service.get_availability(start=start, end=end)


@router.get("/availability/check")
async def check_availability(
    day: date = Query(alias="date"),
    time: str = Query(),
    duration: int = Query(ge=1, le=480),
    exclude_id: Optional[int] = Query(default=None),
    service: AppointmentService = Depends(get_appointment_service),
):
    result = await service.check_availability(day, time, duration, exclude_id=exclude_id)
    return {
        "available": result.available,
        "conflict_exists": result.conflict_exists,
        "message": result.message,
        "conflicting_id": result.conflicting_id,
    }


# =============================================================================
# APPOINTMENTS
# =============================================================================

@router.post("/appointments", response_model=BookingResponse)
async def create_appointment(
    body: AppointmentCreate,
    principal: Principal = Depends(get_principal),
    service: AppointmentService = Depends(get_appointment_service),
):
    """
    Book an appointment.

    Returns 201 when booked as requested, 200 with `rescheduled=true` when
    the appointment was moved to the next free slot.
    """
    outcome = await service.create_appointment(principal, body)
    response = BookingResponse.from_outcome(outcome)
    return JSONResponse(
        status_code=200 if outcome.rescheduled else 201,
        content=jsonable_encoder(response),
    )


@router.get("/appointments", response_model=List[AppointmentResponse])
async def list_appointments(
    status: Optional[List[AppointmentStatus]] = Query(default=None),
    start: Optional[date] = Query(default=None),
    end: Optional[date] = Query(default=None),
    principal: Principal = Depends(get_principal),
    service: AppointmentService = Depends(get_appointment_service),
):
    return await service.list_user_appointments(principal, statuses=status, start=start, end=end)


@router.get("/appointments/{appointment_id}", response_model=AppointmentResponse)
async def get_appointment(
    appointment_id: int,
    principal: Principal = Depends(get_principal),
    service: AppointmentService = Depends(get_appointment_service),
):
    return await service.get_appointment(principal, appointment_id)


@router.post("/appointments/{appointment_id}/cancel", response_model=CancellationResponse)
async def cancel_appointment(
    appointment_id: int,
    body: Optional[AppointmentCancel] = None,
    principal: Principal = Depends(get_principal),
    service: AppointmentService = Depends(get_appointment_service),
):
    outcome = await service.cancel_appointment(
        principal, appointment_id, reason=body.reason if body else None
    )
    return CancellationResponse(
        appointment=AppointmentResponse.build(outcome.appointment),
        late_cancellation=outcome.late_cancellation,
        message=outcome.message,
    )


@router.post("/appointments/{appointment_id}/reschedule", response_model=BookingResponse)
async def reschedule_appointment(
    appointment_id: int,
    body: AppointmentReschedule,
    principal: Principal = Depends(get_principal),
    service: AppointmentService = Depends(get_appointment_service),
):
    outcome = await service.reschedule_appointment(principal, appointment_id, body)
    return BookingResponse.from_outcome(outcome)


@router.put("/appointments/{appointment_id}/reminder", response_model=ReminderResult)
async def set_appointment_reminder(
    appointment_id: int,
    body: ReminderPreference,
    principal: Principal = Depends(get_principal),
    service: ReminderService = Depends(get_reminder_service),
):
    return await service.set_reminder(principal, appointment_id, body.enabled)


# =============================================================================
# SCHEDULE
# =============================================================================

@router.get("/schedule", response_model=Schedule)
async def get_schedule(service: ScheduleService = Depends(get_schedule_service)):
    return await service.get_schedule()


@router.put("/schedule", response_model=ScheduleUpdateResult)
async def update_schedule(
    body: ScheduleUpdate,
    principal: Principal = Depends(get_principal),
    service: ScheduleService = Depends(get_schedule_service),
):
    """Replace the schedule; the response lists the dates whose closure was propagated."""
    return await service.update_schedule(principal, body)


# =============================================================================
# ADMIN
# =============================================================================

@router.get("/admin/appointments", response_model=List[AppointmentResponse])
async def list_all_appointments(
    status: Optional[List[AppointmentStatus]] = Query(default=None),
    start: Optional[date] = Query(default=None, alias="from"),
    end: Optional[date] = Query(default=None, alias="to"),
    limit: Optional[int] = Query(default=None, ge=1, le=1000),
    principal: Principal = Depends(get_principal),
    service: AppointmentService = Depends(get_appointment_service),
):
    return await service.list_appointments(
        principal, statuses=status, start=start, end=end, limit=limit
    )


@router.get("/admin/appointments/stats", response_model=AppointmentStats)
async def appointment_stats(
    start: Optional[date] = Query(default=None, alias="from"),
    end: Optional[date] = Query(default=None, alias="to"),
    principal: Principal = Depends(get_principal),
    service: AppointmentService = Depends(get_appointment_service),
):
    return await service.appointment_stats(principal, start=start, end=end)


@router.post("/admin/appointments/mark-completed", response_model=JobResult)
async def mark_completed(
    principal: Principal = Depends(get_principal),
    service: ReminderService = Depends(get_reminder_service),
):
    if not principal.is_admin:
        raise PermissionDeniedError("Administrator role required")
    return await service.mark_completed()


@router.post("/admin/appointments/{appointment_id}/complete", response_model=AppointmentResponse)
async def complete_appointment(
    appointment_id: int,
    principal: Principal = Depends(get_principal),
    service: AppointmentService = Depends(get_appointment_service),
):
    appointment = await service.complete_appointment(principal, appointment_id)
    return AppointmentResponse.build(appointment)


@router.post(
    "/admin/appointments/{appointment_id}/needs-rescheduling",
    response_model=AppointmentResponse,
)
async def mark_needs_rescheduling(
    appointment_id: int,
    body: Optional[StatusChange] = None,
    principal: Principal = Depends(get_principal),
    service: AppointmentService = Depends(get_appointment_service),
):
    appointment = await service.mark_needs_rescheduling(
        principal, appointment_id, reason=body.reason if body else None
    )
    return AppointmentResponse.build(appointment)


@router.post("/admin/schedule-change", response_model=PropagationResult)
async def notify_schedule_change(
    body: ScheduleChangeRequest,
    principal: Principal = Depends(get_principal),
    service: AppointmentService = Depends(get_appointment_service),
):
    return await service.notify_schedule_change(principal, body.date, reason=body.reason)


@router.post("/admin/reminders/send", response_model=JobResult)
async def send_reminders(
    principal: Principal = Depends(get_principal),
    service: ReminderService = Depends(get_reminder_service),
):
    if not principal.is_admin:
        raise PermissionDeniedError("Administrator role required")
    return await service.send_reminders()


@router.post("/admin/appointments/{appointment_id}/reminder", response_model=ReminderResult)
async def send_reminder(
    appointment_id: int,
    principal: Principal = Depends(get_principal),
    service: ReminderService = Depends(get_reminder_service),
):
    return await service.send_reminder(principal, appointment_id)
