"""Tests for the availability resolver."""

from datetime import date

from fakes import MORNING, make_appointment, make_schedule
from salon_scheduler.models.schemas import AppointmentStatus, SpecialDay
from salon_scheduler.scheduling.availability import booking_window, resolve_availability

TODAY = date(2024, 6, 1)
MONDAY = date(2024, 6, 10)


def slots_of(days, day):
    entry = next(d for d in days if d.date == day)
    return {slot.time: slot.available for slot in entry.slots}


class TestBookingWindow:
    def test_two_months_inclusive(self):
        assert booking_window(TODAY) == (TODAY, date(2024, 8, 1))


class TestResolveAvailability:
    """Tests for resolve_availability."""

    def test_defaults_to_booking_window(self, tz):
        days = resolve_availability(make_schedule(), [], tz, TODAY)
        assert days[0].date == TODAY
        assert days[-1].date == date(2024, 8, 1)
        assert [d.date for d in days] == sorted(d.date for d in days)

    def test_end_clamped_to_booking_window(self, tz):
        days = resolve_availability(make_schedule(), [], tz, TODAY, end=date(2034, 6, 1))
        assert days[-1].date == date(2024, 8, 1)
        assert len(days) == 62

    def test_past_dates_excluded(self, tz):
        days = resolve_availability(
            make_schedule(), [], tz, TODAY, start=date(2024, 5, 28), end=date(2024, 6, 3)
        )
        assert [d.date for d in days] == [date(2024, 6, 1), date(2024, 6, 2), date(2024, 6, 3)]

    def test_closed_days_have_no_slots(self, tz):
        days = resolve_availability(make_schedule(), [], tz, TODAY, end=date(2024, 6, 3))
        saturday = days[0]
        assert saturday.is_open is False
        assert saturday.slots == []
        assert days[2].is_open is True

    def test_full_footprint_marked_taken(self, tz):
        """A 10:00-11:00 appointment takes both the 10:00 and 10:30 slots."""
        existing = [make_appointment(1, MONDAY, "10:00", 60)]
        days = resolve_availability(
            make_schedule(weekday=MORNING), existing, tz, TODAY, start=MONDAY, end=MONDAY
        )
        slots = slots_of(days, MONDAY)
        assert slots["09:30"] is True
        assert slots["10:00"] is False
        assert slots["10:30"] is False
        assert slots["11:00"] is True

    def test_cancelled_appointments_free_their_slots(self, tz):
        existing = [make_appointment(1, MONDAY, "10:00", 60, status=AppointmentStatus.CANCELLED)]
        days = resolve_availability(make_schedule(), existing, tz, TODAY, start=MONDAY, end=MONDAY)
        assert all(slots_of(days, MONDAY).values())

    def test_special_day_closure(self, tz):
        schedule = make_schedule(
            special_days=[SpecialDay(date=MONDAY, schedule={"closed": True})]
        )
        days = resolve_availability(schedule, [], tz, TODAY, start=MONDAY, end=MONDAY)
        assert days[0].is_open is False

    def test_serialises_with_camel_case_flag(self, tz):
        days = resolve_availability(make_schedule(), [], tz, TODAY, start=MONDAY, end=MONDAY)
        payload = days[0].model_dump(mode="json", by_alias=True)
        assert payload["date"] == "2024-06-10"
        assert payload["isOpen"] is True
        assert payload["slots"][0] == {"time": "09:00", "available": True}
