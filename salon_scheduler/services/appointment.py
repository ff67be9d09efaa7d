"""
Appointment Service

Business logic for appointment booking, management, and validation.
Every operation runs as one atomic unit of work over a `BookingStore`;
notifications are sent only after that unit of work has committed.
"""

import logging
from contextlib import AbstractAsyncContextManager
from datetime import date, datetime, timedelta, timezone
from typing import Awaitable, Callable, Dict, Iterable, List, Optional, Tuple

from salon_scheduler.config import Settings, settings
from salon_scheduler.db.repository import BookingStore, SlotTakenError, StaleAppointmentError
from salon_scheduler.db.session import booking_transaction
from salon_scheduler.exceptions import (
    AppointmentNotFoundError,
    BookingValidationError,
    BusinessClosedError,
    ConflictError,
    InvalidTransitionError,
    PermissionDeniedError,
    ScheduleNotConfiguredError,
)
from salon_scheduler.models.schemas import (
    OPEN_STATUSES,
    Appointment,
    AppointmentCreate,
    AppointmentReschedule,
    AppointmentResponse,
    AppointmentStats,
    AppointmentStatus,
    BookingOutcome,
    CancellationOutcome,
    DayAvailability,
    Principal,
    PropagationResult,
    Schedule,
    ServiceInfo,
    UserContact,
)
from salon_scheduler.scheduling.availability import booking_window, resolve_availability
from salon_scheduler.scheduling.calendar import business_today, schedule_for
from salon_scheduler.scheduling.conflicts import SlotCheck, check_slot
from salon_scheduler.scheduling.relocation import find_next_available_slot
from salon_scheduler.services.notifications import (
    LoggingNotifier,
    Notification,
    NotificationKind,
    Notifier,
    dispatch_all,
    dispatch_safely,
)
from salon_scheduler.utils.dates import is_valid_time, time_to_minutes

logger = logging.getLogger(__name__)

Transaction = Callable[[], AbstractAsyncContextManager]
Clock = Callable[[], datetime]

# Writes the appointment at (date, time); the flag tells whether it was relocated.
SlotWriter = Callable[[date, str, bool], Awaitable[Appointment]]

SCHEDULE_CHANGE_REASON = "Business hours changed"
RELOCATION_NOTE = "Automatically rescheduled due to a booking conflict"

ALLOWED_TRANSITIONS: Dict[AppointmentStatus, frozenset] = {
    AppointmentStatus.PENDING: frozenset({
        AppointmentStatus.CONFIRMED,
        AppointmentStatus.COMPLETED,
        AppointmentStatus.CANCELLED,
        AppointmentStatus.NEEDS_RESCHEDULING,
    }),
    AppointmentStatus.CONFIRMED: frozenset({
        AppointmentStatus.COMPLETED,
        AppointmentStatus.CANCELLED,
        AppointmentStatus.NEEDS_RESCHEDULING,
    }),
    AppointmentStatus.NEEDS_RESCHEDULING: frozenset({
        AppointmentStatus.PENDING,
        AppointmentStatus.CANCELLED,
    }),
    AppointmentStatus.COMPLETED: frozenset(),
    AppointmentStatus.CANCELLED: frozenset(),
}


def ensure_transition(appointment: Appointment, target: AppointmentStatus) -> None:
    """
    Raises:
        InvalidTransitionError: If `target` is not reachable from the current status
    """
    if target not in ALLOWED_TRANSITIONS[appointment.status]:
        raise InvalidTransitionError(
            f"Cannot change appointment {appointment.id} from "
            f"{appointment.status.value} to {target.value}"
        )


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _append_note(notes: str, line: str) -> str:
    return f"{notes}\n{line}" if notes else line


class AppointmentService:
    """
    Appointment Lifecycle Manager.

    Orchestrates create, cancel, reschedule and the admin transitions over
    the scheduling engine, inside one transaction per operation.
    """

    def __init__(
        self,
        transaction: Optional[Transaction] = None,
        notifier: Optional[Notifier] = None,
        config: Optional[Settings] = None,
        clock: Optional[Clock] = None,
    ):
        """
        Initialize AppointmentService.

        Args:
            transaction: Factory returning an async context manager that yields a BookingStore
            notifier: Notification dispatcher (logging only when omitted)
            config: Settings (module-level settings when omitted)
            clock: Returns the current aware datetime
        """
        self.transaction = transaction or booking_transaction
        self.notifier = notifier or LoggingNotifier()
        self.config = config or settings
        self.clock = clock or _utcnow

        logger.info("AppointmentService initialized")

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @property
    def granularity(self) -> int:
        return self.config.slot_granularity_minutes

    def today(self) -> date:
        return business_today(self.config.tz, self.clock())

    def booking_window(self) -> Tuple[date, date]:
        return booking_window(self.today(), self.config.booking_horizon_months)

    def _validate_time(self, time: str) -> None:
        if not is_valid_time(time):
            raise BookingValidationError(
                f"Invalid time format: {time!r}. Use HH:MM (24h)",
                code="invalid_time",
            )

    def _validate_date(self, day: date) -> None:
        first, last = self.booking_window()
        if day < first:
            raise BookingValidationError(
                "Appointments cannot be booked in the past",
                code="past_date",
            )
        if day > last:
            raise BookingValidationError(
                f"Appointments can only be booked up to {last.isoformat()}",
                code="beyond_horizon",
            )

    def _relocation_end(self, day: date) -> date:
        return min(
            day + timedelta(days=self.config.relocation_max_days),
            self.booking_window()[1],
        )

    def _relocation_dates(self, day: date) -> List[date]:
        last = self._relocation_end(day)
        return [day + timedelta(days=n) for n in range((last - day).days + 1)]

    async def _resolve_services(
        self,
        store: BookingStore,
        service_ids: List[int],
    ) -> Tuple[List[ServiceInfo], int]:
        """
        Look up the requested services and sum their durations.

        Raises:
            BookingValidationError: Empty list, unknown id or total too long
        """
        if not service_ids:
            raise BookingValidationError(
                "At least one service must be selected",
                code="no_services",
            )

        found = {service.id: service for service in await store.services.get_many(service_ids)}
        missing = sorted(set(service_ids) - set(found))
        if missing:
            raise BookingValidationError(
                f"Unknown services: {', '.join(str(i) for i in missing)}",
                code="unknown_service",
            )

        services = [found[service_id] for service_id in service_ids]
        total = sum(service.duration for service in services)
        if total > self.config.max_appointment_minutes:
            raise BookingValidationError(
                f"Appointments cannot last more than {self.config.max_appointment_minutes} minutes",
                code="invalid_duration",
            )
        return services, total

    async def _load_schedule(self, store: BookingStore) -> Schedule:
        schedule = await store.schedules.get()
        if schedule is None:
            raise ScheduleNotConfiguredError("The business schedule has not been configured yet")
        return schedule

    async def _load_for_update(self, store: BookingStore, appointment_id: int) -> Appointment:
        """
        Lock the appointment's date, then the row itself.

        Advisory date locks are always taken before row locks.
        """
        current = await store.appointments.get_by_id(appointment_id)
        if current is None:
            raise AppointmentNotFoundError(f"Appointment {appointment_id} not found")
        await store.lock_date(current.date)
        appointment = await store.appointments.get_by_id(appointment_id, for_update=True)
        if appointment is None:
            raise AppointmentNotFoundError(f"Appointment {appointment_id} not found")
        return appointment

    async def _save(self, store: BookingStore, appointment: Appointment, **changes) -> Appointment:
        try:
            return await store.appointments.update(appointment, **changes)
        except StaleAppointmentError as e:
            raise ConflictError(
                "The appointment was changed by someone else, please try again"
            ) from e

    @staticmethod
    def _ensure_owner(principal: Principal, appointment: Appointment) -> None:
        if not principal.can_manage(appointment):
            raise PermissionDeniedError("You are not allowed to manage this appointment")

    @staticmethod
    def _ensure_admin(principal: Principal) -> None:
        if not principal.is_admin:
            raise PermissionDeniedError("Administrator role required")

    async def _place(
        self,
        store: BookingStore,
        schedule: Schedule,
        day: date,
        time: str,
        duration: int,
        write: SlotWriter,
        exclude_id: Optional[int] = None,
    ) -> Tuple[Appointment, bool]:
        """
        Check the requested slot and write it, relocating on conflict.

        A unique-index violation at write time is handled like a conflict
        found by the check, and is retried through relocation only once.

        Returns:
            The written appointment and whether it was relocated

        Raises:
            BusinessClosedError: Closed day or outside operating hours
            ConflictError: Conflict and no alternative slot in the horizon
        """
        tz = self.config.tz
        window_end = self._relocation_end(day)
        existing = await store.appointments.list_between(day, window_end)

        check: SlotCheck = check_slot(
            schedule_for(day, schedule, tz),
            day,
            time,
            duration,
            existing,
            exclude_id=exclude_id,
            granularity=self.granularity,
        )
        if not check.available and not check.conflict_exists:
            raise BusinessClosedError(check.message or "The selected time is not available")

        if check.available:
            try:
                return await write(day, time, False), False
            except SlotTakenError:
                logger.warning(f"Slot {day} {time} was taken concurrently, relocating")
                existing = await store.appointments.list_between(day, window_end)
        else:
            logger.info(
                f"Requested slot {day} {time} conflicts with appointment "
                f"{check.conflicting_id}, relocating"
            )

        slot = find_next_available_slot(
            day,
            time,
            duration,
            schedule,
            existing,
            tz,
            max_days=self.config.relocation_max_days,
            granularity=self.granularity,
            exclude_id=exclude_id,
            latest=self.booking_window()[1],
        )
        if slot is None:
            raise ConflictError(
                "The selected time is no longer available and no alternative "
                "slot was found. Please choose another time"
            )

        try:
            return await write(slot.date, slot.time, True), True
        except SlotTakenError as e:
            raise ConflictError(
                "The selected time is no longer available. Please choose another time"
            ) from e

    async def _notify(self, notification: Optional[Notification]) -> None:
        if notification is not None:
            await dispatch_safely(self.notifier, notification)

    # ------------------------------------------------------------------
    # Read operations
    # ------------------------------------------------------------------

    async def get_availability(
        self,
        start: Optional[date] = None,
        end: Optional[date] = None,
    ) -> List[DayAvailability]:
        """
        Per-day slot availability, by default over the whole booking window.

        The range is clamped to the booking window.

        Raises:
            BookingValidationError: If `start` is after `end` or past the window
        """
        today = self.today()
        first, window_end = booking_window(today, self.config.booking_horizon_months)
        first = max(start or first, today)
        if first > window_end:
            raise BookingValidationError(
                "start is beyond the booking horizon", code="beyond_horizon"
            )
        last = min(end or window_end, window_end)
        if first > last:
            raise BookingValidationError("start must not be after end", code="invalid_range")

        async with self.transaction() as store:
            schedule = await self._load_schedule(store)
            appointments = await store.appointments.list_between(first, last)

        return resolve_availability(
            schedule,
            appointments,
            self.config.tz,
            today,
            start=first,
            end=last,
            horizon_months=self.config.booking_horizon_months,
            granularity=self.granularity,
        )

    async def check_availability(
        self,
        day: date,
        time: str,
        duration: int,
        exclude_id: Optional[int] = None,
    ) -> SlotCheck:
        """Business-hours and overlap check for one candidate, without writing."""
        self._validate_time(time)
        async with self.transaction() as store:
            schedule = await self._load_schedule(store)
            appointments = await store.appointments.list_for_date(day)

        return check_slot(
            schedule_for(day, schedule, self.config.tz),
            day,
            time,
            duration,
            appointments,
            exclude_id=exclude_id,
            granularity=self.granularity,
        )

    async def get_appointment(self, principal: Principal, appointment_id: int) -> AppointmentResponse:
        async with self.transaction() as store:
            appointment = await store.appointments.get_by_id(appointment_id)
            if appointment is None:
                raise AppointmentNotFoundError(f"Appointment {appointment_id} not found")
            self._ensure_owner(principal, appointment)
            catalog = await store.services.get_many(appointment.services)

        return AppointmentResponse.build(appointment, {s.id: s for s in catalog})

    async def list_user_appointments(
        self,
        principal: Principal,
        statuses: Optional[Iterable[AppointmentStatus]] = None,
        start: Optional[date] = None,
        end: Optional[date] = None,
    ) -> List[AppointmentResponse]:
        """The caller's own appointments, ordered by date and time."""
        async with self.transaction() as store:
            appointments = await store.appointments.list_for_user(
                principal.user_id, statuses=statuses, start=start, end=end
            )
            service_ids = {sid for appointment in appointments for sid in appointment.services}
            catalog = {s.id: s for s in await store.services.get_many(service_ids)}

        return [AppointmentResponse.build(appointment, catalog) for appointment in appointments]

    async def list_appointments(
        self,
        principal: Principal,
        statuses: Optional[Iterable[AppointmentStatus]] = None,
        start: Optional[date] = None,
        end: Optional[date] = None,
        limit: Optional[int] = None,
    ) -> List[AppointmentResponse]:
        """Every customer's appointments (admin only), ordered by date and time."""
        self._ensure_admin(principal)
        if start and end and start > end:
            raise BookingValidationError("start must not be after end", code="invalid_range")

        async with self.transaction() as store:
            appointments = await store.appointments.list_all(
                statuses=statuses, start=start, end=end, limit=limit
            )
            service_ids = {sid for appointment in appointments for sid in appointment.services}
            catalog = {s.id: s for s in await store.services.get_many(service_ids)}

        return [AppointmentResponse.build(appointment, catalog) for appointment in appointments]

    async def appointment_stats(
        self,
        principal: Principal,
        start: Optional[date] = None,
        end: Optional[date] = None,
    ) -> AppointmentStats:
        """
        Appointment counts per status (admin only).

        Defaults to the last 30 days up to today. Every status is present in
        the result, with zero where nothing matched.
        """
        self._ensure_admin(principal)
        end = end or self.today()
        start = start or end - timedelta(days=30)
        if start > end:
            raise BookingValidationError("start must not be after end", code="invalid_range")

        async with self.transaction() as store:
            counts = await store.appointments.count_by_status(start, end)

        by_status = {status: counts.get(status, 0) for status in AppointmentStatus}
        return AppointmentStats(
            start=start, end=end, total=sum(by_status.values()), by_status=by_status
        )

    # ------------------------------------------------------------------
    # Lifecycle operations
    # ------------------------------------------------------------------

    async def create_appointment(
        self,
        principal: Principal,
        request: AppointmentCreate,
    ) -> BookingOutcome:
        """
        Book an appointment for the caller.

        On a conflict the appointment is moved to the next free slot and
        created as confirmed; the outcome is then flagged `rescheduled`.
        """
        self._validate_time(request.time)
        self._validate_date(request.date)

        async with self.transaction() as store:
            services, duration = await self._resolve_services(store, request.services)
            schedule = await self._load_schedule(store)
            await store.lock_dates(self._relocation_dates(request.date))

            async def write(day: date, time: str, relocated: bool) -> Appointment:
                return await store.appointments.insert(
                    user_id=principal.user_id,
                    services=[service.id for service in services],
                    day=day,
                    time=time,
                    total_duration=duration,
                    status=AppointmentStatus.CONFIRMED if relocated else AppointmentStatus.PENDING,
                    notes=_append_note(request.notes, RELOCATION_NOTE) if relocated else request.notes,
                )

            appointment, relocated = await self._place(
                store, schedule, request.date, request.time, duration, write
            )
            contact = await store.users.get_contact(principal.user_id)

        if relocated:
            message = (
                f"The requested time was already taken. Your appointment was "
                f"booked for {appointment.date.isoformat()} at {appointment.time}"
            )
        else:
            message = "Appointment booked successfully"

        if contact is not None:
            await self._notify(Notification.for_appointment(
                NotificationKind.RESCHEDULED_CONFLICT if relocated else NotificationKind.BOOKING_CONFIRMED,
                contact,
                appointment,
                services,
                old_date=request.date if relocated else None,
                old_time=request.time if relocated else None,
            ))

        return BookingOutcome(
            appointment=appointment,
            services=services,
            rescheduled=relocated,
            message=message,
            requested_date=request.date,
            requested_time=request.time,
        )

    async def cancel_appointment(
        self,
        principal: Principal,
        appointment_id: int,
        reason: Optional[str] = None,
    ) -> CancellationOutcome:
        """
        Cancel an appointment owned by the caller (or any, for admins).

        Late cancellations are allowed and only flagged.
        """
        now = self.clock()
        async with self.transaction() as store:
            appointment = await self._load_for_update(store, appointment_id)
            self._ensure_owner(principal, appointment)
            ensure_transition(appointment, AppointmentStatus.CANCELLED)

            late = self.is_late_cancellation(appointment, now)
            cancelled = await self._save(
                store,
                appointment,
                status=AppointmentStatus.CANCELLED,
                cancellation_reason=reason or "Cancelled by user",
                cancelled_at=now,
            )
            services = await store.services.get_many(cancelled.services)
            contact = await store.users.get_contact(cancelled.user_id)

        logger.info(
            f"Appointment {appointment_id} cancelled by user {principal.user_id}"
            f"{' (late)' if late else ''}"
        )

        if contact is not None:
            await self._notify(Notification.for_appointment(
                NotificationKind.CANCELLED,
                contact,
                cancelled,
                services,
                reason=cancelled.cancellation_reason,
                late_cancellation=late,
            ))

        message = "Appointment cancelled successfully"
        if late:
            message += (
                f". Note: cancellations less than {self.config.cancellation_window_hours} "
                f"hours before the appointment may be charged"
            )
        return CancellationOutcome(appointment=cancelled, late_cancellation=late, message=message)

    def is_late_cancellation(self, appointment: Appointment, now: datetime) -> bool:
        """True when `now` is inside the no-penalty window before the appointment starts."""
        minutes = time_to_minutes(appointment.time)
        starts_at = datetime(
            appointment.date.year,
            appointment.date.month,
            appointment.date.day,
            minutes // 60,
            minutes % 60,
            tzinfo=self.config.tz,
        )
        if now.tzinfo is None:
            now = now.replace(tzinfo=timezone.utc)
        return starts_at - now < timedelta(hours=self.config.cancellation_window_hours)

    async def reschedule_appointment(
        self,
        principal: Principal,
        appointment_id: int,
        request: AppointmentReschedule,
    ) -> BookingOutcome:
        """
        Move an appointment to a new date/time and optionally new services.

        The appointment is updated in place when its target slot is free.
        When it has to be relocated, the original is cancelled and a new
        confirmed appointment is created at the relocated slot.
        """
        if request.time is not None:
            self._validate_time(request.time)

        now = self.clock()
        async with self.transaction() as store:
            current = await store.appointments.get_by_id(appointment_id)
            if current is None:
                raise AppointmentNotFoundError(f"Appointment {appointment_id} not found")
            self._ensure_owner(principal, current)

            day = request.date or current.date
            time = request.time or current.time
            self._validate_date(day)

            await store.lock_dates([current.date] + self._relocation_dates(day))
            appointment = await store.appointments.get_by_id(appointment_id, for_update=True)
            if appointment is None:
                raise AppointmentNotFoundError(f"Appointment {appointment_id} not found")
            if appointment.status not in OPEN_STATUSES:
                raise InvalidTransitionError(
                    f"A {appointment.status.value} appointment cannot be rescheduled"
                )

            if request.services is not None:
                services, duration = await self._resolve_services(store, request.services)
                service_ids = list(request.services)
            else:
                services = await store.services.get_many(appointment.services)
                duration = appointment.total_duration
                service_ids = appointment.services
            schedule = await self._load_schedule(store)

            async def write(new_day: date, new_time: str, relocated: bool) -> Appointment:
                if not relocated:
                    status = appointment.status
                    if status == AppointmentStatus.NEEDS_RESCHEDULING:
                        status = AppointmentStatus.PENDING
                    return await self._save(
                        store,
                        appointment,
                        date=new_day,
                        time=new_time,
                        services=service_ids,
                        total_duration=duration,
                        status=status,
                    )

                await self._save(
                    store,
                    appointment,
                    status=AppointmentStatus.CANCELLED,
                    cancellation_reason=(
                        f"Rescheduled to {new_day.isoformat()} {new_time} "
                        f"after a booking conflict"
                    ),
                    cancelled_at=now,
                )
                return await store.appointments.insert(
                    user_id=appointment.user_id,
                    services=service_ids,
                    day=new_day,
                    time=new_time,
                    total_duration=duration,
                    status=AppointmentStatus.CONFIRMED,
                    notes=_append_note(appointment.notes, RELOCATION_NOTE),
                )

            result, relocated = await self._place(
                store, schedule, day, time, duration, write, exclude_id=appointment.id
            )
            contact = await store.users.get_contact(appointment.user_id)

        logger.info(
            f"Appointment {appointment_id} rescheduled from {appointment.date} "
            f"{appointment.time} to {result.date} {result.time}"
            f"{f' as appointment {result.id}' if result.id != appointment_id else ''}"
        )

        if contact is not None:
            await self._notify(Notification.for_appointment(
                NotificationKind.RESCHEDULED_CONFLICT if relocated else NotificationKind.RESCHEDULED,
                contact,
                result,
                services,
                old_date=appointment.date,
                old_time=appointment.time,
            ))

        if relocated:
            message = (
                f"The requested time was already taken. Your appointment was "
                f"moved to {result.date.isoformat()} at {result.time}"
            )
        else:
            message = "Appointment rescheduled successfully"

        return BookingOutcome(
            appointment=result,
            services=services,
            rescheduled=relocated,
            message=message,
            requested_date=day,
            requested_time=time,
        )

    async def complete_appointment(self, principal: Principal, appointment_id: int) -> Appointment:
        self._ensure_admin(principal)
        async with self.transaction() as store:
            appointment = await self._load_for_update(store, appointment_id)
            ensure_transition(appointment, AppointmentStatus.COMPLETED)
            completed = await self._save(store, appointment, status=AppointmentStatus.COMPLETED)

        logger.info(f"Appointment {appointment_id} marked as completed")
        return completed

    async def mark_needs_rescheduling(
        self,
        principal: Principal,
        appointment_id: int,
        reason: Optional[str] = None,
    ) -> Appointment:
        """Flag an appointment for the customer to pick another time."""
        self._ensure_admin(principal)
        async with self.transaction() as store:
            appointment = await self._load_for_update(store, appointment_id)
            ensure_transition(appointment, AppointmentStatus.NEEDS_RESCHEDULING)
            changes = {"status": AppointmentStatus.NEEDS_RESCHEDULING}
            if reason:
                changes["notes"] = _append_note(appointment.notes, f"Needs rescheduling: {reason}")
            flagged = await self._save(store, appointment, **changes)

        logger.info(f"Appointment {appointment_id} marked as needing rescheduling")
        return flagged

    async def notify_schedule_change(
        self,
        principal: Principal,
        day: date,
        reason: Optional[str] = None,
    ) -> PropagationResult:
        """Admin action: cancel every open appointment on `day` and tell the customers."""
        self._ensure_admin(principal)
        return await self.cancel_day(day, reason or SCHEDULE_CHANGE_REASON)

    async def cancel_day(self, day: date, reason: str = SCHEDULE_CHANGE_REASON) -> PropagationResult:
        """
        Cancel every open appointment on `day` in one transaction, then
        notify the affected users with bounded concurrency.

        The cancellation window does not apply. Notification failures are
        logged and leave the cancellations in place.
        """
        now = self.clock()
        async with self.transaction() as store:
            await store.lock_date(day)
            affected = await store.appointments.list_for_date(
                day, statuses=OPEN_STATUSES, for_update=True
            )
            cancelled = []
            for appointment in affected:
                cancelled.append(await self._save(
                    store,
                    appointment,
                    status=AppointmentStatus.CANCELLED,
                    cancellation_reason=reason,
                    cancelled_at=now,
                ))

            contacts = await store.users.get_contacts(a.user_id for a in cancelled)
            service_ids = {sid for a in cancelled for sid in a.services}
            catalog = {s.id: s for s in await store.services.get_many(service_ids)}

        notifications = []
        for appointment in cancelled:
            contact: Optional[UserContact] = contacts.get(appointment.user_id)
            if contact is None:
                logger.warning(
                    f"No contact for user {appointment.user_id}, "
                    f"appointment {appointment.id} cancelled without notice"
                )
                continue
            notifications.append(Notification.for_appointment(
                NotificationKind.SCHEDULE_CHANGED,
                contact,
                appointment,
                [catalog[sid] for sid in appointment.services if sid in catalog],
                reason=reason,
            ))

        notified = await dispatch_all(
            self.notifier, notifications, self.config.notification_concurrency
        )
        logger.info(
            f"Schedule change on {day}: {len(cancelled)} appointments cancelled, "
            f"{notified} users notified"
        )
        return PropagationResult(
            date=day,
            affected_appointments=len(cancelled),
            notified=notified,
            message=f"{len(cancelled)} appointments cancelled",
        )
