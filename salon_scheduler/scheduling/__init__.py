"""
Scheduling engine: calendar model, availability, conflicts and relocation.
"""

from salon_scheduler.scheduling.availability import booking_window, resolve_availability
from salon_scheduler.scheduling.calendar import (
    business_today,
    day_identifier_for,
    generate_slots,
    is_closed,
    schedule_for,
)
from salon_scheduler.scheduling.conflicts import SlotCheck, check_slot, find_overlapping
from salon_scheduler.scheduling.relocation import RelocatedSlot, find_next_available_slot

__all__ = [
    "booking_window",
    "resolve_availability",
    "business_today",
    "day_identifier_for",
    "generate_slots",
    "is_closed",
    "schedule_for",
    "SlotCheck",
    "check_slot",
    "find_overlapping",
    "RelocatedSlot",
    "find_next_available_slot",
]
