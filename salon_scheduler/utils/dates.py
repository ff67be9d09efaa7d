"""
Date and time-of-day helpers shared by the schemas and the scheduling engine.

Time-of-day values travel as zero-padded 24h "HH:MM" strings; internally
they are handled as minutes since midnight.
"""

import calendar
import re
import unicodedata
from datetime import date

TIME_PATTERN = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)$")

DAY_NAMES = (
    "monday",
    "tuesday",
    "wednesday",
    "thursday",
    "friday",
    "saturday",
    "sunday",
)

# Localised names accepted on input, already accent-stripped.
_DAY_ALIASES = {
    "lunes": "monday",
    "martes": "tuesday",
    "miercoles": "wednesday",
    "jueves": "thursday",
    "viernes": "friday",
    "sabado": "saturday",
    "domingo": "sunday",
}


def strip_accents(value: str) -> str:
    """Remove combining diacritics: 'miércoles' -> 'miercoles'."""
    decomposed = unicodedata.normalize("NFD", value)
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))


def normalize_day_name(name: str) -> str:
    """
    Map a day name to its canonical identifier.

    Raises:
        ValueError: If the name is not a known weekday
    """
    key = strip_accents(name.strip().lower())
    if key in DAY_NAMES:
        return key
    if key in _DAY_ALIASES:
        return _DAY_ALIASES[key]
    raise ValueError(f"Unknown day name: {name!r}")


def is_valid_time(value: str) -> bool:
    return isinstance(value, str) and TIME_PATTERN.match(value) is not None


def time_to_minutes(value: str) -> int:
    """
    Convert "HH:MM" to minutes since midnight.

    Raises:
        ValueError: If the value is not a zero-padded 24h time
    """
    match = TIME_PATTERN.match(value or "")
    if not match:
        raise ValueError(f"Invalid time format (expected HH:MM): {value!r}")
    return int(match.group(1)) * 60 + int(match.group(2))


def minutes_to_time(minutes: int) -> str:
    """Convert minutes since midnight to "HH:MM"."""
    return f"{minutes // 60:02d}:{minutes % 60:02d}"


def add_months(day: date, months: int) -> date:
    """Calendar-month addition, clamping to the last day of the target month."""
    month_index = day.month - 1 + months
    year = day.year + month_index // 12
    month = month_index % 12 + 1
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, min(day.day, last_day))
