"""
Pydantic Schemas

Value objects for the business calendar and appointments, plus the
request/response bodies exchanged over the HTTP API.
"""

from datetime import date, datetime
from datetime import date as Date
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from salon_scheduler.utils.dates import (
    DAY_NAMES,
    is_valid_time,
    normalize_day_name,
    time_to_minutes,
)


class AppointmentStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    NEEDS_RESCHEDULING = "needsRescheduling"


# Statuses that still hold their slot and can be acted upon.
OPEN_STATUSES = frozenset({
    AppointmentStatus.PENDING,
    AppointmentStatus.CONFIRMED,
    AppointmentStatus.NEEDS_RESCHEDULING,
})
TERMINAL_STATUSES = frozenset({
    AppointmentStatus.COMPLETED,
    AppointmentStatus.CANCELLED,
})


class Role(str, Enum):
    USER = "user"
    ADMIN = "admin"
    SUPERADMIN = "superadmin"


# =============================================================================
# CALENDAR
# =============================================================================

class DailySchedule(BaseModel):
    """Opening hours for one day: a morning and an afternoon interval."""

    model_config = ConfigDict(populate_by_name=True)

    closed: bool = False
    opening_am: Optional[str] = Field(default=None, alias="openingAM")
    closing_am: Optional[str] = Field(default=None, alias="closingAM")
    opening_pm: Optional[str] = Field(default=None, alias="openingPM")
    closing_pm: Optional[str] = Field(default=None, alias="closingPM")

    @field_validator("opening_am", "closing_am", "opening_pm", "closing_pm", mode="before")
    @classmethod
    def validate_time_of_day(cls, v: Any) -> Optional[str]:
        if v is None or v == "":
            return None
        if not is_valid_time(v):
            raise ValueError(f"Invalid time format (expected HH:MM): {v!r}")
        return v


class WeeklySchedule(BaseModel):
    """Regular hours, one entry per canonical day identifier."""

    monday: DailySchedule
    tuesday: DailySchedule
    wednesday: DailySchedule
    thursday: DailySchedule
    friday: DailySchedule
    saturday: DailySchedule
    sunday: DailySchedule

    @model_validator(mode="before")
    @classmethod
    def normalize_day_keys(cls, data: Any) -> Any:
        """Accept localised or accented day names ('Miércoles', 'sábado')."""
        if not isinstance(data, dict):
            return data
        normalized: Dict[str, Any] = {}
        for key, value in data.items():
            day = normalize_day_name(key)
            if day in normalized:
                raise ValueError(f"Duplicate entry for {day}")
            normalized[day] = value
        return normalized

    def for_day(self, day_name: str) -> DailySchedule:
        return getattr(self, day_name)

    def days(self) -> Dict[str, DailySchedule]:
        return {name: self.for_day(name) for name in DAY_NAMES}


class SpecialDay(BaseModel):
    """Override of the weekly hours for one calendar date."""

    date: date
    schedule: DailySchedule
    reason: Optional[str] = None


class Schedule(BaseModel):
    """The business calendar aggregate."""

    model_config = ConfigDict(populate_by_name=True)

    regular_hours: WeeklySchedule = Field(alias="regularHours")
    special_days: List[SpecialDay] = Field(default_factory=list, alias="specialDays")


class ScheduleUpdate(Schedule):
    """Schedule as submitted by an administrator."""

    @field_validator("special_days")
    @classmethod
    def unique_special_days(cls, v: List[SpecialDay]) -> List[SpecialDay]:
        seen = set()
        for special_day in v:
            if special_day.date in seen:
                raise ValueError(
                    f"Only one special day per date is allowed: {special_day.date.isoformat()}"
                )
            seen.add(special_day.date)
        return v

    @model_validator(mode="after")
    def drop_hours_of_closed_days(self) -> "ScheduleUpdate":
        for special_day in self.special_days:
            if special_day.schedule.closed:
                special_day.schedule = DailySchedule(closed=True)
        return self


# =============================================================================
# PEOPLE & CATALOG
# =============================================================================

class Principal(BaseModel):
    """Authenticated caller as supplied by the identity collaborator."""

    user_id: int
    role: Role = Role.USER

    @property
    def is_admin(self) -> bool:
        return self.role in (Role.ADMIN, Role.SUPERADMIN)

    def can_manage(self, appointment: "Appointment") -> bool:
        return appointment.user_id == self.user_id or self.is_admin


class UserContact(BaseModel):
    id: int
    name: str = ""
    email: Optional[str] = None
    telegram_chat_id: Optional[str] = None


class ServiceInfo(BaseModel):
    id: int
    name: str
    duration: int = Field(ge=1)
    price: Optional[float] = None


class ServiceReference(BaseModel):
    kind: Literal["reference"] = "reference"
    id: int


class ExpandedService(BaseModel):
    kind: Literal["expanded"] = "expanded"
    service: ServiceInfo


ServiceRef = Annotated[Union[ServiceReference, ExpandedService], Field(discriminator="kind")]


# =============================================================================
# APPOINTMENTS
# =============================================================================

class Appointment(BaseModel):
    id: int
    user_id: int
    services: List[int] = Field(default_factory=list)
    date: date
    time: str
    total_duration: int = Field(ge=1)
    status: AppointmentStatus = AppointmentStatus.PENDING
    notes: str = ""
    cancellation_reason: Optional[str] = None
    cancelled_at: Optional[datetime] = None
    reminder_sent: bool = False
    reminder_sent_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    version: int = 0

    @property
    def start_minutes(self) -> int:
        return time_to_minutes(self.time)

    @property
    def end_minutes(self) -> int:
        return self.start_minutes + self.total_duration

    @property
    def is_active(self) -> bool:
        return self.status != AppointmentStatus.CANCELLED


class AppointmentCreate(BaseModel):
    services: List[int] = Field(default_factory=list)
    date: date
    time: str
    notes: str = ""


class AppointmentReschedule(BaseModel):
    date: Optional[Date] = None
    time: Optional[str] = None
    services: Optional[List[int]] = None


class AppointmentCancel(BaseModel):
    reason: Optional[str] = None


class StatusChange(BaseModel):
    reason: Optional[str] = None


class ScheduleChangeRequest(BaseModel):
    date: date
    reason: Optional[str] = None


class AppointmentResponse(BaseModel):
    id: int
    user_id: int
    services: List[ServiceRef]
    date: date
    time: str
    total_duration: int
    status: AppointmentStatus
    notes: str
    cancellation_reason: Optional[str] = None
    cancelled_at: Optional[datetime] = None
    reminder_sent: bool = False
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    version: int = 0

    @classmethod
    def build(
        cls,
        appointment: Appointment,
        catalog: Optional[Dict[int, ServiceInfo]] = None,
    ) -> "AppointmentResponse":
        """Resolve each service id to an expanded record where the catalog has it."""
        catalog = catalog or {}
        services: List[Union[ServiceReference, ExpandedService]] = [
            ExpandedService(service=catalog[service_id])
            if service_id in catalog
            else ServiceReference(id=service_id)
            for service_id in appointment.services
        ]
        data = appointment.model_dump(exclude={"services", "reminder_sent_at"})
        return cls(services=services, **data)


class BookingOutcome(BaseModel):
    """Result of a create or reschedule."""

    appointment: Appointment
    services: List[ServiceInfo] = Field(default_factory=list)
    rescheduled: bool = False
    message: str
    requested_date: Optional[date] = None
    requested_time: Optional[str] = None


class CancellationOutcome(BaseModel):
    appointment: Appointment
    late_cancellation: bool
    message: str


class BookingResponse(BaseModel):
    appointment: AppointmentResponse
    rescheduled: bool
    message: str
    requested_date: Optional[date] = None
    requested_time: Optional[str] = None

    @classmethod
    def from_outcome(cls, outcome: BookingOutcome) -> "BookingResponse":
        catalog = {service.id: service for service in outcome.services}
        return cls(
            appointment=AppointmentResponse.build(outcome.appointment, catalog),
            rescheduled=outcome.rescheduled,
            message=outcome.message,
            requested_date=outcome.requested_date,
            requested_time=outcome.requested_time,
        )


class CancellationResponse(BaseModel):
    appointment: AppointmentResponse
    late_cancellation: bool
    message: str


class PropagationResult(BaseModel):
    date: date
    affected_appointments: int
    notified: int = 0
    message: str


class ScheduleUpdateResult(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    schedule: Schedule
    processed_days: List[PropagationResult] = Field(
        default_factory=list, alias="processedDays"
    )


class SlotAvailability(BaseModel):
    time: str
    available: bool


class DayAvailability(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    date: date
    is_open: bool = Field(alias="isOpen")
    slots: List[SlotAvailability] = Field(default_factory=list)


class JobResult(BaseModel):
    success: bool = True
    count: int = 0


class AppointmentStats(BaseModel):
    start: date
    end: date
    total: int
    by_status: Dict[AppointmentStatus, int]


class ReminderPreference(BaseModel):
    enabled: bool


class ReminderResult(BaseModel):
    appointment_id: int
    reminder_sent: bool
    delivered: Optional[bool] = None
    message: str
