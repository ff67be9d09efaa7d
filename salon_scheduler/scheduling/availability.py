"""
Availability Resolver

Merges the Calendar Model with booked appointments into a per-day,
per-slot availability view over a forward-looking date range.

A slot is shown as taken when any non-cancelled appointment covers it,
not only when an appointment starts there, so the view agrees with what
the conflict check will accept.
"""

import logging
from datetime import date, timedelta, tzinfo
from typing import Iterable, List, Optional, Tuple

from salon_scheduler.models.schemas import (
    Appointment,
    DayAvailability,
    Schedule,
    SlotAvailability,
)
from salon_scheduler.scheduling.calendar import (
    DEFAULT_SLOT_GRANULARITY,
    generate_slots,
    schedule_for,
)
from salon_scheduler.scheduling.conflicts import footprint, occupancy
from salon_scheduler.utils.dates import add_months, time_to_minutes

logger = logging.getLogger(__name__)

DEFAULT_HORIZON_MONTHS = 2


def booking_window(today: date, months: int = DEFAULT_HORIZON_MONTHS) -> Tuple[date, date]:
    """Inclusive (first, last) dates that may be booked."""
    return today, add_months(today, months)


def iter_dates(start: date, end: date) -> Iterable[date]:
    current = start
    while current <= end:
        yield current
        current += timedelta(days=1)


def resolve_availability(
    schedule: Schedule,
    appointments: Iterable[Appointment],
    tz: tzinfo,
    today: date,
    start: Optional[date] = None,
    end: Optional[date] = None,
    horizon_months: int = DEFAULT_HORIZON_MONTHS,
    granularity: int = DEFAULT_SLOT_GRANULARITY,
) -> List[DayAvailability]:
    """
    Build the availability view for [start, end].

    Defaults to the booking window starting today. Dates before today or
    after the end of the booking window are left out.

    Args:
        schedule: Business calendar
        appointments: Appointments dated inside the range
        tz: Business timezone
        today: Today's date in the business timezone
        start: First date (defaults to today)
        end: Last date (defaults to the end of the booking window)
        horizon_months: Booking window length when `end` is omitted
        granularity: Slot size in minutes

    Returns:
        One entry per date, ascending
    """
    window_start, window_end = booking_window(today, horizon_months)
    first = max(start or window_start, today)
    last = min(end or window_end, window_end)

    occupied = occupancy(appointments, granularity)
    days: List[DayAvailability] = []

    for day in iter_dates(first, last):
        daily = schedule_for(day, schedule, tz)
        slots = [] if daily.closed else generate_slots(daily, granularity)
        taken = occupied.get(day, set())

        days.append(
            DayAvailability(
                date=day,
                is_open=not daily.closed and len(slots) > 0,
                slots=[
                    SlotAvailability(
                        time=slot,
                        available=taken.isdisjoint(
                            footprint(time_to_minutes(slot), granularity, granularity)
                        ),
                    )
                    for slot in slots
                ],
            )
        )

    logger.debug(f"Resolved availability for {len(days)} days ({first} to {last})")
    return days
