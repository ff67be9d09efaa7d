"""
Conflict Detector

Overlap tests between a candidate (date, time, duration) and the
appointments already holding time on that date, plus the business-hours
fit check. Also owns the sub-slot occupancy bookkeeping shared with the
availability view and the relocation search.
"""

import logging
from dataclasses import dataclass
from datetime import date
from typing import Dict, Iterable, List, Optional, Set

from salon_scheduler.models.schemas import Appointment, DailySchedule
from salon_scheduler.scheduling.calendar import (
    DEFAULT_SLOT_GRANULARITY,
    containing_interval,
    generate_slots,
    half_day_intervals,
)
from salon_scheduler.utils.dates import time_to_minutes

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SlotCheck:
    """Outcome of checking one candidate slot."""

    available: bool
    conflict_exists: bool = False
    message: Optional[str] = None
    conflicting_id: Optional[int] = None


def intervals_overlap(start_a: int, end_a: int, start_b: int, end_b: int) -> bool:
    """Half-open interval intersection; touching intervals do not overlap."""
    return start_a < end_b and end_a > start_b


def active_on(
    day: date,
    appointments: Iterable[Appointment],
    exclude_id: Optional[int] = None,
) -> List[Appointment]:
    """Non-cancelled appointments on `day`, minus the excluded identity."""
    return [
        appointment
        for appointment in appointments
        if appointment.date == day
        and appointment.is_active
        and (exclude_id is None or appointment.id != exclude_id)
    ]


def find_overlapping(
    day: date,
    time: str,
    duration: int,
    appointments: Iterable[Appointment],
    exclude_id: Optional[int] = None,
) -> Optional[Appointment]:
    """First existing appointment whose interval intersects the candidate."""
    start = time_to_minutes(time)
    end = start + duration
    for appointment in active_on(day, appointments, exclude_id):
        if intervals_overlap(start, end, appointment.start_minutes, appointment.end_minutes):
            return appointment
    return None


def footprint(start_minutes: int, duration: int, granularity: int) -> range:
    """Indices of every granularity-sized sub-slot that [start, start+duration) touches."""
    first = start_minutes // granularity
    last = -(-(start_minutes + duration) // granularity)
    return range(first, last)


def occupancy(
    appointments: Iterable[Appointment],
    granularity: int = DEFAULT_SLOT_GRANULARITY,
    exclude_id: Optional[int] = None,
) -> Dict[date, Set[int]]:
    """Occupied sub-slot indices per date for the non-cancelled appointments."""
    occupied: Dict[date, Set[int]] = {}
    for appointment in appointments:
        if not appointment.is_active:
            continue
        if exclude_id is not None and appointment.id == exclude_id:
            continue
        occupied.setdefault(appointment.date, set()).update(
            footprint(appointment.start_minutes, appointment.total_duration, granularity)
        )
    return occupied


def check_business_hours(
    daily: DailySchedule,
    time: str,
    duration: int,
    granularity: int = DEFAULT_SLOT_GRANULARITY,
) -> SlotCheck:
    """
    Verify the candidate starts on an offered slot and ends before the
    closing time of the same half-day interval.
    """
    if daily.closed or not half_day_intervals(daily):
        return SlotCheck(available=False, message="The business is closed on this date")

    if time not in generate_slots(daily, granularity):
        return SlotCheck(
            available=False,
            message="The selected time is outside of operating hours",
        )

    start = time_to_minutes(time)
    interval = containing_interval(daily, start)
    if interval is None:
        return SlotCheck(
            available=False,
            message="The selected time is outside of operating hours",
        )

    closing = interval[1]
    if start + duration > closing:
        remaining = closing - start
        return SlotCheck(
            available=False,
            message=(
                f"The service takes {duration} minutes, but only {remaining} "
                f"minutes remain before closing"
            ),
        )

    return SlotCheck(available=True)


def check_slot(
    daily: DailySchedule,
    day: date,
    time: str,
    duration: int,
    appointments: Iterable[Appointment],
    exclude_id: Optional[int] = None,
    granularity: int = DEFAULT_SLOT_GRANULARITY,
) -> SlotCheck:
    """
    Business-hours fit followed by the overlap test.

    `conflict_exists` is only set when the slot is inside business hours but
    collides with another appointment, so callers can tell a relocatable
    conflict from a closed day.
    """
    business = check_business_hours(daily, time, duration, granularity)
    if not business.available:
        return business

    conflict = find_overlapping(day, time, duration, appointments, exclude_id)
    if conflict is not None:
        logger.debug(
            f"Candidate {day} {time} (+{duration}m) overlaps appointment {conflict.id}"
        )
        return SlotCheck(
            available=False,
            conflict_exists=True,
            message="The selected time is already booked",
            conflicting_id=conflict.id,
        )

    return SlotCheck(available=True)
