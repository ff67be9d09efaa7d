"""
Reminder and completion jobs.

Meant to be triggered periodically (the admin API exposes both):
`send_reminders` notifies customers about tomorrow's appointments and
`mark_completed` closes out appointments whose date has passed. Single
appointments can also be reminded on demand, and customers can opt out of
the reminder for one of their appointments.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional

from salon_scheduler.config import Settings, settings
from salon_scheduler.db.repository import BookingStore, DatabaseError, StaleAppointmentError
from salon_scheduler.db.session import booking_transaction
from salon_scheduler.exceptions import (
    AppointmentNotFoundError,
    BookingValidationError,
    ConflictError,
    PermissionDeniedError,
)
from salon_scheduler.models.schemas import (
    OPEN_STATUSES,
    Appointment,
    AppointmentStatus,
    JobResult,
    Principal,
    ReminderResult,
    ServiceInfo,
)
from salon_scheduler.scheduling.calendar import business_today
from salon_scheduler.services.appointment import Transaction
from salon_scheduler.services.notifications import (
    LoggingNotifier,
    Notification,
    NotificationKind,
    Notifier,
    dispatch_each,
    dispatch_safely,
)

logger = logging.getLogger(__name__)


class ReminderService:
    def __init__(
        self,
        transaction: Optional[Transaction] = None,
        notifier: Optional[Notifier] = None,
        config: Optional[Settings] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.transaction = transaction or booking_transaction
        self.notifier = notifier or LoggingNotifier()
        self.config = config or settings
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    async def _catalog(self, store: BookingStore, appointments: List[Appointment]) -> Dict[int, ServiceInfo]:
        service_ids = {sid for a in appointments for sid in a.services}
        return {s.id: s for s in await store.services.get_many(service_ids)}

    async def _record_sent(self, appointment: Appointment) -> bool:
        try:
            async with self.transaction() as store:
                await store.appointments.update(
                    appointment,
                    reminder_sent=True,
                    reminder_sent_at=self.clock(),
                )
            return True
        except DatabaseError as e:
            logger.error(
                f"Reminder sent but not recorded for appointment {appointment.id}: {e}",
                exc_info=True,
            )
            return False

    async def send_reminders(self) -> JobResult:
        """
        Remind every customer with a pending or confirmed appointment tomorrow.

        Reminders go out concurrently, bounded by `notification_concurrency`.
        An appointment is flagged as reminded only once its notification was
        delivered, each in its own transaction, so one failure does not stop
        the rest.
        """
        tomorrow = business_today(self.config.tz, self.clock()) + timedelta(days=1)

        async with self.transaction() as store:
            due = await store.appointments.list_reminders_due(tomorrow)
            contacts = await store.users.get_contacts(a.user_id for a in due)
            catalog = await self._catalog(store, due)

        logger.info(f"Found {len(due)} appointments on {tomorrow} to remind")

        batch = []
        for appointment in due:
            contact = contacts.get(appointment.user_id)
            if contact is None:
                logger.warning(f"No contact for user {appointment.user_id}, skipping reminder")
                continue
            batch.append((appointment, Notification.for_appointment(
                NotificationKind.REMINDER,
                contact,
                appointment,
                [catalog[sid] for sid in appointment.services if sid in catalog],
            )))

        results = await dispatch_each(
            self.notifier,
            [notification for _, notification in batch],
            concurrency=self.config.notification_concurrency,
        )

        reminded = 0
        for (appointment, _), delivered in zip(batch, results):
            if delivered and await self._record_sent(appointment):
                reminded += 1

        logger.info(f"Sent {reminded} reminders for {tomorrow}")
        return JobResult(success=True, count=reminded)

    async def send_reminder(self, principal: Principal, appointment_id: int) -> ReminderResult:
        """
        Send the reminder for one appointment now (admin only).

        Raises:
            AppointmentNotFoundError: Unknown appointment
            BookingValidationError: Cancelled, past, or its customer is unknown
        """
        if not principal.is_admin:
            raise PermissionDeniedError("Administrator role required")

        async with self.transaction() as store:
            appointment = await store.appointments.get_by_id(appointment_id)
            if appointment is None:
                raise AppointmentNotFoundError(f"Appointment {appointment_id} not found")
            if appointment.status == AppointmentStatus.CANCELLED:
                raise BookingValidationError(
                    "Cannot send a reminder for a cancelled appointment",
                    code="appointment_cancelled",
                )
            if appointment.date < business_today(self.config.tz, self.clock()):
                raise BookingValidationError(
                    "Cannot send a reminder for a past appointment",
                    code="past_appointment",
                )
            contact = await store.users.get_contact(appointment.user_id)
            if contact is None:
                raise BookingValidationError(
                    f"No contact details for user {appointment.user_id}",
                    code="no_contact",
                )
            catalog = await self._catalog(store, [appointment])

        delivered = await dispatch_safely(self.notifier, Notification.for_appointment(
            NotificationKind.REMINDER,
            contact,
            appointment,
            [catalog[sid] for sid in appointment.services if sid in catalog],
        ))
        recorded = delivered and await self._record_sent(appointment)

        return ReminderResult(
            appointment_id=appointment.id,
            reminder_sent=recorded or appointment.reminder_sent,
            delivered=delivered,
            message="Reminder sent" if delivered else "Reminder could not be delivered",
        )

    async def set_reminder(
        self,
        principal: Principal,
        appointment_id: int,
        enabled: bool,
    ) -> ReminderResult:
        """
        Opt an appointment in or out of the automatic reminder.

        Opting out marks the reminder as already sent; opting back in clears
        that mark so the next run picks the appointment up again.
        """
        async with self.transaction() as store:
            appointment = await store.appointments.get_by_id(appointment_id, for_update=True)
            if appointment is None:
                raise AppointmentNotFoundError(f"Appointment {appointment_id} not found")
            if not principal.can_manage(appointment):
                raise PermissionDeniedError("You are not allowed to manage this appointment")
            if appointment.status not in OPEN_STATUSES:
                raise BookingValidationError(
                    f"Appointment is {appointment.status.value}",
                    code="appointment_closed",
                )

            try:
                updated = await store.appointments.update(
                    appointment,
                    reminder_sent=not enabled,
                    reminder_sent_at=None if enabled else self.clock(),
                )
            except StaleAppointmentError as e:
                raise ConflictError(
                    "The appointment was changed by someone else, please try again"
                ) from e

        logger.info(f"Reminders {'enabled' if enabled else 'disabled'} for appointment {appointment_id}")
        return ReminderResult(
            appointment_id=updated.id,
            reminder_sent=updated.reminder_sent,
            message="Reminders enabled" if enabled else "Reminders disabled",
        )

    async def mark_completed(self) -> JobResult:
        """Move pending/confirmed appointments dated before today to completed."""
        today = business_today(self.config.tz, self.clock())
        async with self.transaction() as store:
            count = await store.appointments.complete_before(today)
        return JobResult(success=True, count=count)
