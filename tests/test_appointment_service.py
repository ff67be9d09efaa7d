"""Tests for the appointment lifecycle manager.

These tests validate:
- Booking validation (dates, services, business hours)
- Automatic relocation on detected and late-detected conflicts
- Cancellation, rescheduling and the admin transitions
- Schedule-change cancellation with isolated notification failures
"""

import asyncio
import itertools
from datetime import date

import pytest

from fakes import RecordingNotifier, make_appointment
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
    AppointmentCreate,
    AppointmentReschedule,
    AppointmentStatus,
    Principal,
    Role,
)
from salon_scheduler.scheduling.conflicts import intervals_overlap
from salon_scheduler.services.appointment import RELOCATION_NOTE, AppointmentService

MONDAY = date(2024, 6, 10)
TUESDAY = date(2024, 6, 11)

ANA = Principal(user_id=1)
LUIS = Principal(user_id=2)
ADMIN = Principal(user_id=500, role=Role.ADMIN)


def run(coro):
    return asyncio.run(coro)


def book(service, principal=ANA, day=MONDAY, time="10:00", services=(1,), notes=""):
    return run(service.create_appointment(
        principal,
        AppointmentCreate(services=list(services), date=day, time=time, notes=notes),
    ))


def fill_day(db, day, first_id):
    for n in range(4):
        db.seed(make_appointment(first_id + n, day, f"{9 + n:02d}:00", 60))


def assert_no_overlaps(db):
    active = db.active()
    for a, b in itertools.combinations(active, 2):
        if a.date == b.date:
            assert not intervals_overlap(
                a.start_minutes, a.end_minutes, b.start_minutes, b.end_minutes
            ), f"{a.id} overlaps {b.id}"


# =============================================================================
# CREATE
# =============================================================================

class TestCreateAppointment:
    """Tests for create_appointment."""

    def test_books_requested_slot(self, appointment_service, db, notifier):
        outcome = book(appointment_service, services=(1, 2))

        assert outcome.rescheduled is False
        assert outcome.appointment.status == AppointmentStatus.PENDING
        assert outcome.appointment.time == "10:00"
        assert outcome.appointment.total_duration == 90
        assert [s.name for s in outcome.services] == ["Haircut", "Colour"]
        assert notifier.kinds() == ["booking_confirmed"]
        assert MONDAY in db.locked_dates

    def test_relocates_on_conflict(self, appointment_service, db, notifier):
        db.seed(make_appointment(40, MONDAY, "10:00", 60))

        outcome = book(appointment_service)

        assert outcome.rescheduled is True
        assert outcome.appointment.date == MONDAY
        assert outcome.appointment.time == "11:00"
        assert outcome.appointment.status == AppointmentStatus.CONFIRMED
        assert RELOCATION_NOTE in outcome.appointment.notes
        assert outcome.requested_time == "10:00"

        sent = notifier.sent[0]
        assert sent.kind.value == "rescheduled_conflict"
        assert sent.old_time == "10:00"
        assert sent.time == "11:00"

    def test_unresolved_conflict_leaves_no_trace(self, appointment_service, db):
        for offset, day in enumerate(date(2024, 6, d) for d in range(10, 18)):
            fill_day(db, day, 100 + offset * 10)
        before = dict(db.appointments)

        with pytest.raises(ConflictError) as exc_info:
            book(appointment_service, time="09:00")

        assert exc_info.value.concurrent is True
        assert db.appointments == before
        assert db.rollbacks == 1

    def test_late_detected_conflict_is_relocated(self, appointment_service, db):
        """Another booking commits between the check and the insert."""
        db.concurrent_writes.append(make_appointment(70, MONDAY, "10:00", 30, user_id=2))

        outcome = book(appointment_service)

        assert outcome.rescheduled is True
        assert outcome.appointment.time == "11:00"
        assert db.appointments[70].status == AppointmentStatus.CONFIRMED
        assert_no_overlaps(db)

    def test_late_conflict_retried_only_once(self, appointment_service, db):
        db.concurrent_writes.extend([
            make_appointment(70, MONDAY, "10:00", 30, user_id=2),
            make_appointment(71, MONDAY, "11:00", 30, user_id=2),
        ])

        with pytest.raises(ConflictError):
            book(appointment_service)

        # The concurrent bookings were committed by someone else and survive
        assert {70, 71} <= set(db.appointments)
        assert len(db.active(MONDAY)) == 2

    def test_past_date_rejected(self, appointment_service):
        with pytest.raises(BookingValidationError) as exc_info:
            book(appointment_service, day=date(2024, 5, 31))
        assert exc_info.value.code == "past_date"

    def test_horizon_is_inclusive(self, appointment_service):
        assert book(appointment_service, day=date(2024, 8, 1)).appointment.date == date(2024, 8, 1)

        with pytest.raises(BookingValidationError) as exc_info:
            book(appointment_service, day=date(2024, 8, 2))
        assert exc_info.value.code == "beyond_horizon"

    def test_malformed_time_rejected(self, appointment_service):
        with pytest.raises(BookingValidationError) as exc_info:
            book(appointment_service, time="9:00")
        assert exc_info.value.code == "invalid_time"

    def test_empty_service_list_rejected(self, appointment_service):
        with pytest.raises(BookingValidationError) as exc_info:
            book(appointment_service, services=())
        assert exc_info.value.code == "no_services"

    def test_unknown_service_rejected(self, appointment_service):
        with pytest.raises(BookingValidationError) as exc_info:
            book(appointment_service, services=(1, 42))
        assert exc_info.value.code == "unknown_service"

    def test_closed_day_rejected(self, appointment_service):
        with pytest.raises(BusinessClosedError):
            book(appointment_service, day=date(2024, 6, 8))

    def test_service_must_fit_before_closing(self, appointment_service, db):
        db.add_service(4, "Sixty-one", 61)
        with pytest.raises(BusinessClosedError) as exc_info:
            book(appointment_service, time="12:00", services=(4,))
        assert "only 60 minutes remain" in exc_info.value.message

    def test_missing_schedule(self, appointment_service, db):
        db.schedule = None
        with pytest.raises(ScheduleNotConfiguredError):
            book(appointment_service)

    def test_notification_failure_keeps_booking(self, db, config, clock):
        service = AppointmentService(
            transaction=db.transaction,
            notifier=RecordingNotifier(failing=[1]),
            config=config,
            clock=clock,
        )

        outcome = book(service)

        assert db.appointments[outcome.appointment.id].status == AppointmentStatus.PENDING

    def test_never_double_books(self, appointment_service, db):
        """Repeated requests for the same slot spread out without overlaps."""
        times = [book(appointment_service, services=(2,)).appointment.time for _ in range(3)]

        assert times == ["10:00", "11:00", "12:00"]
        assert_no_overlaps(db)


# =============================================================================
# CANCEL
# =============================================================================

class TestCancelAppointment:
    """Tests for cancel_appointment."""

    def test_owner_cancels(self, appointment_service, db, notifier):
        booked = book(appointment_service).appointment

        outcome = run(appointment_service.cancel_appointment(ANA, booked.id, "Ill"))

        assert outcome.appointment.status == AppointmentStatus.CANCELLED
        assert outcome.appointment.cancellation_reason == "Ill"
        assert outcome.appointment.cancelled_at is not None
        assert outcome.appointment.version == booked.version + 1
        assert outcome.late_cancellation is False
        assert notifier.kinds()[-1] == "cancelled"

    def test_late_cancellation_flagged_not_blocked(self, appointment_service, db, notifier):
        db.seed(make_appointment(60, date(2024, 6, 2), "10:00", 30, user_id=1))

        outcome = run(appointment_service.cancel_appointment(ANA, 60))

        assert outcome.late_cancellation is True
        assert outcome.appointment.status == AppointmentStatus.CANCELLED
        assert notifier.sent[-1].late_cancellation is True

    def test_other_user_denied(self, appointment_service):
        booked = book(appointment_service).appointment
        with pytest.raises(PermissionDeniedError):
            run(appointment_service.cancel_appointment(LUIS, booked.id))

    def test_admin_may_cancel(self, appointment_service):
        booked = book(appointment_service).appointment
        outcome = run(appointment_service.cancel_appointment(ADMIN, booked.id))
        assert outcome.appointment.status == AppointmentStatus.CANCELLED

    def test_cancelled_twice_rejected(self, appointment_service):
        booked = book(appointment_service).appointment
        run(appointment_service.cancel_appointment(ANA, booked.id))
        with pytest.raises(InvalidTransitionError):
            run(appointment_service.cancel_appointment(ANA, booked.id))

    def test_unknown_appointment(self, appointment_service):
        with pytest.raises(AppointmentNotFoundError):
            run(appointment_service.cancel_appointment(ANA, 12345))

    def test_cancellation_reopens_slot(self, appointment_service, db):
        db.seed(make_appointment(40, MONDAY, "10:00", 60, user_id=1))
        assert run(appointment_service.check_availability(MONDAY, "10:00", 30)).available is False

        run(appointment_service.cancel_appointment(ANA, 40))

        assert run(appointment_service.check_availability(MONDAY, "10:00", 30)).available is True


# =============================================================================
# RESCHEDULE
# =============================================================================

class TestRescheduleAppointment:
    """Tests for reschedule_appointment."""

    def test_updates_in_place(self, appointment_service, db, notifier):
        booked = book(appointment_service).appointment

        outcome = run(appointment_service.reschedule_appointment(
            ANA, booked.id, AppointmentReschedule(date=TUESDAY, time="12:00")
        ))

        assert outcome.rescheduled is False
        assert outcome.appointment.id == booked.id
        assert outcome.appointment.date == TUESDAY
        assert outcome.appointment.time == "12:00"
        assert outcome.appointment.version == booked.version + 1
        assert notifier.sent[-1].kind.value == "rescheduled"
        assert notifier.sent[-1].old_date == MONDAY

    def test_own_record_does_not_conflict(self, appointment_service):
        booked = book(appointment_service, services=(2,)).appointment

        outcome = run(appointment_service.reschedule_appointment(
            ANA, booked.id, AppointmentReschedule(time="10:30")
        ))

        assert outcome.appointment.time == "10:30"
        assert outcome.rescheduled is False

    def test_changing_services_recomputes_duration(self, appointment_service):
        booked = book(appointment_service).appointment

        outcome = run(appointment_service.reschedule_appointment(
            ANA, booked.id, AppointmentReschedule(services=[1, 2])
        ))

        assert outcome.appointment.total_duration == 90
        assert outcome.appointment.services == [1, 2]

    def test_relocation_cancels_original_and_creates_new(self, appointment_service, db):
        db.seed(make_appointment(40, MONDAY, "12:00", 60))
        booked = book(appointment_service, time="09:00").appointment

        outcome = run(appointment_service.reschedule_appointment(
            ANA, booked.id, AppointmentReschedule(time="12:00")
        ))

        assert outcome.rescheduled is True
        assert outcome.appointment.id != booked.id
        assert outcome.appointment.date == TUESDAY
        assert outcome.appointment.time == "09:00"
        assert outcome.appointment.status == AppointmentStatus.CONFIRMED
        assert db.appointments[booked.id].status == AppointmentStatus.CANCELLED
        assert_no_overlaps(db)

    def test_completed_cannot_be_rescheduled(self, appointment_service, db):
        db.seed(make_appointment(40, MONDAY, "10:00", 30, status=AppointmentStatus.COMPLETED, user_id=1))
        with pytest.raises(InvalidTransitionError):
            run(appointment_service.reschedule_appointment(
                ANA, 40, AppointmentReschedule(time="11:00")
            ))

    def test_needs_rescheduling_returns_to_pending(self, appointment_service, db):
        booked = book(appointment_service).appointment
        run(appointment_service.mark_needs_rescheduling(ADMIN, booked.id, "Stylist ill"))

        outcome = run(appointment_service.reschedule_appointment(
            ANA, booked.id, AppointmentReschedule(date=TUESDAY)
        ))

        assert outcome.appointment.status == AppointmentStatus.PENDING
        assert "Stylist ill" in outcome.appointment.notes

    def test_past_target_date_rejected(self, appointment_service):
        booked = book(appointment_service).appointment
        with pytest.raises(BookingValidationError):
            run(appointment_service.reschedule_appointment(
                ANA, booked.id, AppointmentReschedule(date=date(2024, 5, 1))
            ))

    def test_other_user_denied(self, appointment_service):
        booked = book(appointment_service).appointment
        with pytest.raises(PermissionDeniedError):
            run(appointment_service.reschedule_appointment(
                LUIS, booked.id, AppointmentReschedule(time="11:00")
            ))


# =============================================================================
# ADMIN TRANSITIONS
# =============================================================================

class TestAdminTransitions:
    def test_complete(self, appointment_service):
        booked = book(appointment_service).appointment
        completed = run(appointment_service.complete_appointment(ADMIN, booked.id))
        assert completed.status == AppointmentStatus.COMPLETED

    def test_complete_requires_admin(self, appointment_service):
        booked = book(appointment_service).appointment
        with pytest.raises(PermissionDeniedError):
            run(appointment_service.complete_appointment(ANA, booked.id))

    def test_cancelled_cannot_complete(self, appointment_service):
        booked = book(appointment_service).appointment
        run(appointment_service.cancel_appointment(ANA, booked.id))
        with pytest.raises(InvalidTransitionError):
            run(appointment_service.complete_appointment(ADMIN, booked.id))


class TestNotifyScheduleChange:
    """Tests for notify_schedule_change."""

    def test_cancels_open_appointments_and_notifies(self, db, config, clock):
        notifier = RecordingNotifier(failing=[2])
        service = AppointmentService(
            transaction=db.transaction, notifier=notifier, config=config, clock=clock
        )
        db.seed(make_appointment(1, MONDAY, "09:00", 30, user_id=1))
        db.seed(make_appointment(2, MONDAY, "10:00", 30, user_id=2))
        db.seed(make_appointment(3, MONDAY, "11:00", 30, status=AppointmentStatus.COMPLETED))
        db.seed(make_appointment(4, TUESDAY, "11:00", 30, user_id=1))

        result = run(service.notify_schedule_change(ADMIN, MONDAY))

        assert result.affected_appointments == 2
        assert result.notified == 1
        assert db.appointments[1].status == AppointmentStatus.CANCELLED
        assert db.appointments[2].status == AppointmentStatus.CANCELLED
        assert db.appointments[2].cancellation_reason == "Business hours changed"
        assert db.appointments[3].status == AppointmentStatus.COMPLETED
        assert db.appointments[4].status == AppointmentStatus.CONFIRMED
        assert notifier.kinds() == ["schedule_changed"]

    def test_requires_admin(self, appointment_service):
        with pytest.raises(PermissionDeniedError):
            run(appointment_service.notify_schedule_change(ANA, MONDAY))


# =============================================================================
# READS
# =============================================================================

class TestReads:
    def test_list_own_appointments_in_order(self, appointment_service):
        book(appointment_service, day=TUESDAY)
        book(appointment_service, day=MONDAY, time="12:00")
        book(appointment_service, principal=LUIS, time="09:00")

        listed = run(appointment_service.list_user_appointments(ANA))

        assert [(a.date, a.time) for a in listed] == [(MONDAY, "12:00"), (TUESDAY, "10:00")]
        assert listed[0].services[0].kind == "expanded"

    def test_status_filter(self, appointment_service):
        first = book(appointment_service).appointment
        book(appointment_service, day=TUESDAY)
        run(appointment_service.cancel_appointment(ANA, first.id))

        listed = run(appointment_service.list_user_appointments(
            ANA, statuses=[AppointmentStatus.CANCELLED]
        ))

        assert [a.id for a in listed] == [first.id]

    def test_unknown_service_stays_a_reference(self, appointment_service, db):
        db.seed(make_appointment(40, MONDAY, "10:00", 30, user_id=1).model_copy(
            update={"services": [1, 77]}
        ))

        response = run(appointment_service.get_appointment(ANA, 40))

        assert [s.kind for s in response.services] == ["expanded", "reference"]
        assert response.services[1].id == 77

    def test_get_other_users_appointment_denied(self, appointment_service):
        booked = book(appointment_service).appointment
        with pytest.raises(PermissionDeniedError):
            run(appointment_service.get_appointment(LUIS, booked.id))

    def test_availability_reflects_bookings(self, appointment_service):
        book(appointment_service, services=(2,))

        days = run(appointment_service.get_availability(MONDAY, MONDAY))

        taken = [slot.time for slot in days[0].slots if not slot.available]
        assert taken == ["10:00", "10:30"]

    def test_availability_range_validated(self, appointment_service):
        with pytest.raises(BookingValidationError):
            run(appointment_service.get_availability(TUESDAY, MONDAY))

    def test_availability_stops_at_booking_horizon(self, appointment_service):
        days = run(appointment_service.get_availability(end=date(2034, 6, 1)))

        assert days[-1].date == date(2024, 8, 1)
        assert len(days) == 62

    def test_availability_start_beyond_horizon(self, appointment_service):
        with pytest.raises(BookingValidationError) as exc:
            run(appointment_service.get_availability(start=date(2024, 9, 1)))
        assert exc.value.code == "beyond_horizon"


class TestAdminListing:
    """Listing and statistics across every customer."""

    def test_lists_every_users_appointments(self, appointment_service, db):
        db.seed(make_appointment(40, TUESDAY, "10:00", 30, user_id=2))
        db.seed(make_appointment(41, MONDAY, "10:00", 30, user_id=1))
        db.seed(make_appointment(42, MONDAY, "09:00", 30, status=AppointmentStatus.CANCELLED))

        listed = run(appointment_service.list_appointments(ADMIN))

        assert [a.id for a in listed] == [42, 41, 40]

    def test_filters_and_limit(self, appointment_service, db):
        db.seed(make_appointment(40, TUESDAY, "10:00", 30, user_id=2))
        db.seed(make_appointment(41, MONDAY, "10:00", 30, user_id=1))
        db.seed(make_appointment(42, MONDAY, "11:00", 30, status=AppointmentStatus.CANCELLED))

        confirmed = run(appointment_service.list_appointments(
            ADMIN, statuses=[AppointmentStatus.CONFIRMED]
        ))
        monday = run(appointment_service.list_appointments(ADMIN, start=MONDAY, end=MONDAY))
        first = run(appointment_service.list_appointments(ADMIN, limit=1))

        assert [a.id for a in confirmed] == [41, 40]
        assert [a.id for a in monday] == [41, 42]
        assert [a.id for a in first] == [41]

    def test_listing_requires_admin(self, appointment_service):
        with pytest.raises(PermissionDeniedError):
            run(appointment_service.list_appointments(ANA))

    def test_stats_count_every_status(self, appointment_service, db):
        db.seed(make_appointment(40, date(2024, 5, 20), "10:00", 30))
        db.seed(make_appointment(41, date(2024, 5, 21), "10:00", 30, status=AppointmentStatus.CANCELLED))
        db.seed(make_appointment(42, date(2024, 5, 21), "11:00", 30, status=AppointmentStatus.COMPLETED))
        db.seed(make_appointment(43, date(2024, 4, 1), "10:00", 30))

        stats = run(appointment_service.appointment_stats(ADMIN))

        assert stats.start == date(2024, 5, 2)
        assert stats.end == date(2024, 6, 1)
        assert stats.total == 3
        assert stats.by_status[AppointmentStatus.CONFIRMED] == 1
        assert stats.by_status[AppointmentStatus.CANCELLED] == 1
        assert stats.by_status[AppointmentStatus.NEEDS_RESCHEDULING] == 0

    def test_stats_require_admin(self, appointment_service):
        with pytest.raises(PermissionDeniedError):
            run(appointment_service.appointment_stats(LUIS))
