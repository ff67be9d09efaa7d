"""
Schedule Service

Reads and replaces the business schedule, and propagates closures: when an
edit closes a date that was open before, the open appointments on that
date are cancelled and their owners notified.
"""

import logging
from datetime import date, datetime, timezone
from typing import Callable, List, Optional

from salon_scheduler.config import Settings, settings
from salon_scheduler.db.session import booking_transaction
from salon_scheduler.exceptions import PermissionDeniedError, ScheduleNotConfiguredError
from salon_scheduler.models.schemas import (
    Principal,
    PropagationResult,
    Schedule,
    ScheduleUpdate,
    ScheduleUpdateResult,
)
from salon_scheduler.scheduling.availability import booking_window, iter_dates
from salon_scheduler.scheduling.calendar import business_today, is_closed
from salon_scheduler.services.appointment import (
    SCHEDULE_CHANGE_REASON,
    AppointmentService,
    Transaction,
)

logger = logging.getLogger(__name__)


def newly_closed_dates(
    previous: Optional[Schedule],
    current: Schedule,
    tz,
    first: date,
    last: date,
) -> List[date]:
    """
    Dates in [first, last] that were open under `previous` and are closed now.

    Covers both new closed special days and weekdays closed in the weekly
    hours. Without a previous schedule nothing can have been booked, so
    nothing is returned.
    """
    if previous is None:
        return []
    return [
        day
        for day in iter_dates(first, last)
        if not is_closed(day, previous, tz) and is_closed(day, current, tz)
    ]


class ScheduleService:
    """Schedule read/upsert plus the Schedule Change Propagator."""

    def __init__(
        self,
        transaction: Optional[Transaction] = None,
        appointments: Optional[AppointmentService] = None,
        config: Optional[Settings] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.transaction = transaction or booking_transaction
        self.config = config or settings
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self.appointments = appointments or AppointmentService(
            transaction=self.transaction, config=self.config, clock=self.clock
        )

    async def get_schedule(self) -> Schedule:
        async with self.transaction() as store:
            schedule = await store.schedules.get()
        if schedule is None:
            raise ScheduleNotConfiguredError("The business schedule has not been configured yet")
        return schedule

    async def update_schedule(self, principal: Principal, update: ScheduleUpdate) -> ScheduleUpdateResult:
        """
        Replace the schedule, then propagate closures one date at a time.

        The schedule write commits on its own. Each date is propagated in
        its own transaction; a failing date is logged and the rest still run.

        Raises:
            PermissionDeniedError: If the caller is not an administrator
        """
        if not principal.is_admin:
            raise PermissionDeniedError("Administrator role required")

        schedule = Schedule.model_validate(update.model_dump(by_alias=True))
        async with self.transaction() as store:
            previous = await store.schedules.get()
            saved = await store.schedules.upsert(schedule)

        logger.info(f"Schedule updated by user {principal.user_id}")

        today = business_today(self.config.tz, self.clock())
        first, last = booking_window(today, self.config.booking_horizon_months)
        closed = newly_closed_dates(previous, saved, self.config.tz, first, last)
        if closed:
            logger.info(f"Propagating closure of {len(closed)} dates: {[d.isoformat() for d in closed]}")

        results: List[PropagationResult] = []
        for day in closed:
            try:
                results.append(await self.appointments.cancel_day(day, SCHEDULE_CHANGE_REASON))
            except Exception as e:
                logger.error(f"Failed to propagate schedule change for {day}: {e}", exc_info=True)
                results.append(PropagationResult(
                    date=day,
                    affected_appointments=0,
                    message=f"Propagation failed: {e}",
                ))

        return ScheduleUpdateResult(schedule=saved, processed_days=results)
