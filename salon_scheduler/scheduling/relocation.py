"""
Slot Relocation Search

Finds the earliest alternative (date, time) for a candidate that lost an
overlap check or a booking race. The search walks forward day by day from
the requested date and is deterministic: for the same schedule and the
same appointments it always returns the same slot.
"""

import logging
from dataclasses import dataclass
from datetime import date, timedelta, tzinfo
from typing import Iterable, Optional

from salon_scheduler.models.schemas import Appointment, Schedule
from salon_scheduler.scheduling.calendar import (
    DEFAULT_SLOT_GRANULARITY,
    containing_interval,
    generate_slots,
    schedule_for,
)
from salon_scheduler.scheduling.conflicts import footprint, occupancy
from salon_scheduler.utils.dates import time_to_minutes

logger = logging.getLogger(__name__)

DEFAULT_MAX_DAYS = 7


@dataclass(frozen=True)
class RelocatedSlot:
    date: date
    time: str


def find_next_available_slot(
    original_date: date,
    original_time: str,
    duration: int,
    schedule: Schedule,
    appointments: Iterable[Appointment],
    tz: tzinfo,
    max_days: int = DEFAULT_MAX_DAYS,
    granularity: int = DEFAULT_SLOT_GRANULARITY,
    exclude_id: Optional[int] = None,
    latest: Optional[date] = None,
) -> Optional[RelocatedSlot]:
    """
    Search the requested date and the `max_days` days after it.

    On the requested date only slots strictly later than the requested time
    plus one granularity step are considered; on later days every slot is.
    A slot qualifies when the whole duration fits inside its half-day
    interval and none of the sub-slots it covers is occupied.

    Args:
        original_date: Date of the rejected candidate
        original_time: Time of the rejected candidate ("HH:MM")
        duration: Minutes the appointment needs
        schedule: Business calendar
        appointments: Existing appointments covering the searched dates
        tz: Business timezone
        max_days: Days to search after the requested date
        granularity: Slot and sub-slot size in minutes
        exclude_id: Appointment whose own footprint is ignored (reschedules)
        latest: Last date a relocation may land on

    Returns:
        The first qualifying slot, or None when the horizon is exhausted
    """
    occupied = occupancy(appointments, granularity, exclude_id)
    same_day_floor = time_to_minutes(original_time) + granularity

    for offset in range(max_days + 1):
        day = original_date + timedelta(days=offset)
        if latest is not None and day > latest:
            break

        daily = schedule_for(day, schedule, tz)
        if daily.closed:
            continue

        taken = occupied.get(day, set())
        for slot in generate_slots(daily, granularity):
            start = time_to_minutes(slot)
            if offset == 0 and start <= same_day_floor:
                continue

            interval = containing_interval(daily, start)
            if interval is None or start + duration > interval[1]:
                continue

            if taken.isdisjoint(footprint(start, duration, granularity)):
                logger.info(
                    f"Relocated {original_date} {original_time} (+{duration}m) "
                    f"to {day} {slot}"
                )
                return RelocatedSlot(date=day, time=slot)

    logger.warning(
        f"No relocation found for {original_date} {original_time} (+{duration}m) "
        f"within {max_days} days"
    )
    return None
