"""
Pytest configuration and fixtures.

Sets up import paths for the test suite and builds the scheduling services
over the in-memory fakes with a fixed clock (2024-06-01, a Saturday).
"""

import sys
from pathlib import Path

# Add project root to Python path
project_root = Path(__file__).parent.parent
if str(project_root) not in sys.path:
    sys.path.insert(0, str(project_root))

# Add tests directory to path for fixtures
tests_dir = Path(__file__).parent
if str(tests_dir) not in sys.path:
    sys.path.insert(0, str(tests_dir))

from zoneinfo import ZoneInfo  # noqa: E402

import pytest  # noqa: E402

from fakes import FIXED_NOW, FakeDatabase, RecordingNotifier, make_schedule  # noqa: E402
from salon_scheduler.config import Settings  # noqa: E402
from salon_scheduler.services.appointment import AppointmentService  # noqa: E402
from salon_scheduler.services.reminders import ReminderService  # noqa: E402
from salon_scheduler.services.schedule import ScheduleService  # noqa: E402


@pytest.fixture
def tz():
    return ZoneInfo("Europe/Madrid")


@pytest.fixture
def config():
    return Settings(
        business_timezone="Europe/Madrid",
        booking_horizon_months=2,
        relocation_max_days=7,
        slot_granularity_minutes=30,
        cancellation_window_hours=24,
        notification_concurrency=3,
        telegram_bot_token="",
    )


@pytest.fixture
def db():
    database = FakeDatabase()
    database.schedule = make_schedule()
    database.add_service(1, "Haircut", 30)
    database.add_service(2, "Colour", 60)
    database.add_service(3, "Long treatment", 120)
    database.add_user(1, "Ana", chat_id="1001")
    database.add_user(2, "Luis", chat_id="1002")
    database.add_user(99, "Walk-in", chat_id="1099")
    return database


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def clock():
    return lambda: FIXED_NOW


@pytest.fixture
def appointment_service(db, notifier, config, clock):
    return AppointmentService(
        transaction=db.transaction,
        notifier=notifier,
        config=config,
        clock=clock,
    )


@pytest.fixture
def schedule_service(db, appointment_service, config, clock):
    return ScheduleService(
        transaction=db.transaction,
        appointments=appointment_service,
        config=config,
        clock=clock,
    )


@pytest.fixture
def reminder_service(db, notifier, config, clock):
    return ReminderService(
        transaction=db.transaction,
        notifier=notifier,
        config=config,
        clock=clock,
    )
