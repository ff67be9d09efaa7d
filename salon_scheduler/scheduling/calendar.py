"""
Calendar Model

Pure derivations over the business schedule: which day identifier and which
DailySchedule apply to a calendar date, and which slot start times a day
offers. No I/O.
"""

from datetime import date, datetime, timezone, tzinfo
from typing import List, Optional, Tuple, Union

from salon_scheduler.models.schemas import DailySchedule, Schedule
from salon_scheduler.utils.dates import DAY_NAMES, minutes_to_time, time_to_minutes

DEFAULT_SLOT_GRANULARITY = 30

DateLike = Union[date, datetime]


def localize_date(value: DateLike, tz: tzinfo) -> date:
    """
    Calendar date of `value` in the business timezone.

    Plain dates are already calendar dates. Naive datetimes are read as UTC,
    aware ones are converted.
    """
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.astimezone(tz).date()
    return value


def business_today(tz: tzinfo, now: Optional[datetime] = None) -> date:
    """Today's date in the business timezone."""
    return localize_date(now or datetime.now(timezone.utc), tz)


def day_identifier_for(value: DateLike, tz: tzinfo) -> str:
    """Canonical lowercase day name ("monday"...) for the localized date."""
    return DAY_NAMES[localize_date(value, tz).weekday()]


def schedule_for(value: DateLike, schedule: Schedule, tz: tzinfo) -> DailySchedule:
    """
    Hours that apply on a date.

    A special day for the same calendar date wins over the weekly entry.
    With duplicate special days the first one listed is used.
    """
    day = localize_date(value, tz)
    for special_day in schedule.special_days:
        if special_day.date == day:
            return special_day.schedule
    return schedule.regular_hours.for_day(day_identifier_for(day, tz))


def is_closed(value: DateLike, schedule: Schedule, tz: tzinfo) -> bool:
    return schedule_for(value, schedule, tz).closed


def half_day_intervals(daily: DailySchedule) -> List[Tuple[int, int]]:
    """
    Open intervals of a day as [opening, closing) minute pairs.

    Only complete pairs count; empty or inverted pairs are skipped. The
    result is in chronological order.
    """
    if daily.closed:
        return []
    intervals = []
    for opening, closing in (
        (daily.opening_am, daily.closing_am),
        (daily.opening_pm, daily.closing_pm),
    ):
        if not opening or not closing:
            continue
        start, end = time_to_minutes(opening), time_to_minutes(closing)
        if end > start:
            intervals.append((start, end))
    return sorted(intervals)


def containing_interval(
    daily: DailySchedule,
    start_minutes: int,
) -> Optional[Tuple[int, int]]:
    """The half-day interval a start time falls in, if any."""
    for opening, closing in half_day_intervals(daily):
        if opening <= start_minutes < closing:
            return opening, closing
    return None


def generate_slots(
    daily: DailySchedule,
    slot_granularity_minutes: int = DEFAULT_SLOT_GRANULARITY,
) -> List[str]:
    """
    Ordered slot start times for a day.

    Each interval yields a slot every `slot_granularity_minutes` as long as
    the whole slot fits before closing, so 09:00-13:00 at 30 minutes ends
    with 12:30.
    """
    if slot_granularity_minutes <= 0:
        raise ValueError("slot_granularity_minutes must be positive")

    starts = set()
    for opening, closing in half_day_intervals(daily):
        current = opening
        while current + slot_granularity_minutes <= closing:
            starts.add(current)
            current += slot_granularity_minutes
    return [minutes_to_time(minutes) for minutes in sorted(starts)]


def slots_for_date(
    value: DateLike,
    schedule: Schedule,
    tz: tzinfo,
    slot_granularity_minutes: int = DEFAULT_SLOT_GRANULARITY,
) -> List[str]:
    return generate_slots(schedule_for(value, schedule, tz), slot_granularity_minutes)
