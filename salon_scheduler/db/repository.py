"""
Database Repository Layer

Implements repository pattern for database operations.
Provides abstraction over SQLAlchemy for cleaner business logic.

Repositories never commit: the transaction boundary belongs to the caller
(see `booking_transaction`). Writes that can hit the active-slot unique
index run inside a SAVEPOINT so a violation leaves the surrounding
transaction usable.
"""

import json
import logging
from datetime import date
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import text
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from salon_scheduler.db.schema import UNIQUE_SLOT_INDEX
from salon_scheduler.models.schemas import (
    Appointment,
    AppointmentStatus,
    Schedule,
    ServiceInfo,
    UserContact,
)

logger = logging.getLogger(__name__)

# First key of the two-key advisory lock taken per calendar date.
DATE_LOCK_NAMESPACE = 4107


class DatabaseError(Exception):
    """Custom exception for database operations."""
    pass


class SlotTakenError(DatabaseError):
    """A write collided with another active appointment on the same (date, time)."""
    pass


class StaleAppointmentError(DatabaseError):
    """The appointment changed since it was read (version mismatch)."""
    pass


APPOINTMENT_COLUMNS = """
    id,
    user_id,
    services,
    appointment_date AS date,
    appointment_time AS time,
    total_duration,
    status,
    notes,
    cancellation_reason,
    cancelled_at,
    reminder_sent,
    reminder_sent_at,
    created_at,
    updated_at,
    version
"""

# Columns an update may touch, mapped to their SQL names.
_UPDATABLE_COLUMNS = {
    "services": "services",
    "date": "appointment_date",
    "time": "appointment_time",
    "total_duration": "total_duration",
    "status": "status",
    "notes": "notes",
    "cancellation_reason": "cancellation_reason",
    "cancelled_at": "cancelled_at",
    "reminder_sent": "reminder_sent",
    "reminder_sent_at": "reminder_sent_at",
}


def _status_values(statuses: Iterable[AppointmentStatus]) -> List[str]:
    return [AppointmentStatus(status).value for status in statuses]


def _appointment_from_row(row: Any) -> Appointment:
    data = dict(row)
    data["services"] = list(data.get("services") or [])
    data["time"] = (data.get("time") or "").strip()
    return Appointment.model_validate(data)


def _load_json(value: Any) -> Any:
    if isinstance(value, (str, bytes)):
        return json.loads(value)
    return value


class BaseRepository:
    """Base repository with common database operations."""

    def __init__(self, session: AsyncSession):
        """
        Initialize repository with database session.

        Args:
            session: AsyncSession instance for database operations
        """
        self.session = session

    async def execute_query(
        self,
        query: str,
        params: Optional[Dict[str, Any]] = None
    ) -> Any:
        """
        Execute a parametrized SQL query safely.

        Args:
            query: SQL query string
            params: Dictionary of query parameters

        Returns:
            Query result

        Raises:
            SlotTakenError: If the active-slot unique index rejected the write
            DatabaseError: If query execution fails
        """
        try:
            result = await self.session.execute(
                text(query),
                params or {}
            )
            return result
        except IntegrityError as e:
            if UNIQUE_SLOT_INDEX in str(e.orig):
                logger.warning(f"Active slot already taken: {e.orig}")
                raise SlotTakenError("Slot already taken by another appointment") from e
            logger.error(f"Integrity violation: {e}")
            raise DatabaseError(f"Database operation failed: {str(e)}") from e
        except SQLAlchemyError as e:
            logger.error(f"Query execution failed: {e}")
            raise DatabaseError(f"Database operation failed: {str(e)}") from e


class AppointmentRepository(BaseRepository):
    """Repository for appointment-related database operations."""

    async def get_by_id(
        self,
        appointment_id: int,
        for_update: bool = False,
    ) -> Optional[Appointment]:
        """
        Get appointment by ID.

        Args:
            appointment_id: Unique appointment identifier
            for_update: Lock the row until the transaction ends

        Returns:
            Appointment or None if not found
        """
        query = f"""
            SELECT {APPOINTMENT_COLUMNS}
            FROM appointments
            WHERE id = :appointment_id
        """
        if for_update:
            query += " FOR UPDATE"

        result = await self.execute_query(query, {"appointment_id": appointment_id})
        row = result.mappings().fetchone()
        return _appointment_from_row(row) if row else None

    async def list_between(
        self,
        start: date,
        end: date,
        statuses: Optional[Iterable[AppointmentStatus]] = None,
        for_update: bool = False,
    ) -> List[Appointment]:
        """
        Appointments dated in [start, end].

        Args:
            start: First date (inclusive)
            end: Last date (inclusive)
            statuses: Only these statuses; defaults to every non-cancelled one
            for_update: Lock the rows until the transaction ends

        Returns:
            Appointments ordered by date and time
        """
        params: Dict[str, Any] = {"start": start, "end": end}
        query = f"""
            SELECT {APPOINTMENT_COLUMNS}
            FROM appointments
            WHERE appointment_date BETWEEN :start AND :end
        """
        if statuses is None:
            query += " AND status <> 'cancelled'"
        else:
            query += " AND status = ANY(:statuses)"
            params["statuses"] = _status_values(statuses)

        query += " ORDER BY appointment_date, appointment_time, id"
        if for_update:
            query += " FOR UPDATE"

        result = await self.execute_query(query, params)
        return [_appointment_from_row(row) for row in result.mappings().fetchall()]

    async def list_for_date(
        self,
        day: date,
        statuses: Optional[Iterable[AppointmentStatus]] = None,
        for_update: bool = False,
    ) -> List[Appointment]:
        return await self.list_between(day, day, statuses=statuses, for_update=for_update)

    async def list_for_user(
        self,
        user_id: int,
        statuses: Optional[Iterable[AppointmentStatus]] = None,
        start: Optional[date] = None,
        end: Optional[date] = None,
    ) -> List[Appointment]:
        """
        Get all appointments for a user.

        Args:
            user_id: Owner ID
            statuses: Optional status filter
            start: Optional first date
            end: Optional last date

        Returns:
            List of appointments ordered by date and time
        """
        query = f"""
            SELECT {APPOINTMENT_COLUMNS}
            FROM appointments
            WHERE user_id = :user_id
        """
        params: Dict[str, Any] = {"user_id": user_id}

        if statuses:
            query += " AND status = ANY(:statuses)"
            params["statuses"] = _status_values(statuses)
        if start:
            query += " AND appointment_date >= :start"
            params["start"] = start
        if end:
            query += " AND appointment_date <= :end"
            params["end"] = end

        query += " ORDER BY appointment_date, appointment_time"

        result = await self.execute_query(query, params)
        return [_appointment_from_row(row) for row in result.mappings().fetchall()]

    async def list_all(
        self,
        statuses: Optional[Iterable[AppointmentStatus]] = None,
        start: Optional[date] = None,
        end: Optional[date] = None,
        limit: Optional[int] = None,
    ) -> List[Appointment]:
        """Every user's appointments, ordered by date and time."""
        query = f"""
            SELECT {APPOINTMENT_COLUMNS}
            FROM appointments
            WHERE TRUE
        """
        params: Dict[str, Any] = {}

        if statuses:
            query += " AND status = ANY(:statuses)"
            params["statuses"] = _status_values(statuses)
        if start:
            query += " AND appointment_date >= :start"
            params["start"] = start
        if end:
            query += " AND appointment_date <= :end"
            params["end"] = end

        query += " ORDER BY appointment_date, appointment_time, id"
        if limit:
            query += " LIMIT :limit"
            params["limit"] = limit

        result = await self.execute_query(query, params)
        return [_appointment_from_row(row) for row in result.mappings().fetchall()]

    async def count_by_status(self, start: date, end: date) -> Dict[AppointmentStatus, int]:
        """Number of appointments per status dated in [start, end]."""
        query = """
            SELECT status, COUNT(*)
            FROM appointments
            WHERE appointment_date BETWEEN :start AND :end
            GROUP BY status;
        """
        result = await self.execute_query(query, {"start": start, "end": end})
        return {AppointmentStatus(row[0]): row[1] for row in result.fetchall()}

    async def list_reminders_due(self, day: date) -> List[Appointment]:
        """Pending/confirmed appointments on `day` that were not reminded yet."""
        query = f"""
            SELECT {APPOINTMENT_COLUMNS}
            FROM appointments
            WHERE appointment_date = :day
                AND status IN ('pending', 'confirmed')
                AND reminder_sent = FALSE
            ORDER BY appointment_time
        """
        result = await self.execute_query(query, {"day": day})
        return [_appointment_from_row(row) for row in result.mappings().fetchall()]

    async def insert(
        self,
        user_id: int,
        services: List[int],
        day: date,
        time: str,
        total_duration: int,
        status: AppointmentStatus = AppointmentStatus.PENDING,
        notes: str = "",
    ) -> Appointment:
        """
        Create a new appointment.

        Raises:
            SlotTakenError: If another active appointment holds (day, time)
            DatabaseError: If appointment creation fails
        """
        query = f"""
            INSERT INTO appointments (
                user_id,
                services,
                appointment_date,
                appointment_time,
                total_duration,
                status,
                notes,
                reminder_sent,
                created_at,
                version
            )
            VALUES (
                :user_id,
                :services,
                :appointment_date,
                :appointment_time,
                :total_duration,
                :status,
                :notes,
                FALSE,
                NOW(),
                0
            )
            RETURNING {APPOINTMENT_COLUMNS};
        """
        params = {
            "user_id": user_id,
            "services": list(services),
            "appointment_date": day,
            "appointment_time": time,
            "total_duration": total_duration,
            "status": AppointmentStatus(status).value,
            "notes": notes or "",
        }

        async with self.session.begin_nested():
            result = await self.execute_query(query, params)
            row = result.mappings().fetchone()

        if not row:
            raise DatabaseError("Failed to create appointment - no data returned")

        appointment = _appointment_from_row(row)
        logger.info(
            f"Created appointment {appointment.id} for user {user_id} "
            f"on {day} at {time} ({appointment.status.value})"
        )
        return appointment

    async def update(self, appointment: Appointment, **changes: Any) -> Appointment:
        """
        Apply `changes` to an appointment, guarded by its version.

        The version is incremented and `updated_at` refreshed on every save.

        Raises:
            SlotTakenError: If the new (date, time) is held by another active appointment
            StaleAppointmentError: If the row was modified since it was read
        """
        unknown = set(changes) - set(_UPDATABLE_COLUMNS)
        if unknown:
            raise ValueError(f"Cannot update appointment fields: {sorted(unknown)}")

        params: Dict[str, Any] = {
            "appointment_id": appointment.id,
            "version": appointment.version,
        }
        assignments = []
        for field, value in changes.items():
            if isinstance(value, AppointmentStatus):
                value = value.value
            params[field] = value
            assignments.append(f"{_UPDATABLE_COLUMNS[field]} = :{field}")

        set_clause = ",\n                ".join(
            assignments + ["version = version + 1", "updated_at = NOW()"]
        )
        query = f"""
            UPDATE appointments
            SET
                {set_clause}
            WHERE id = :appointment_id
                AND version = :version
            RETURNING {APPOINTMENT_COLUMNS};
        """

        async with self.session.begin_nested():
            result = await self.execute_query(query, params)
            row = result.mappings().fetchone()

        if not row:
            raise StaleAppointmentError(
                f"Appointment {appointment.id} was modified concurrently"
            )

        updated = _appointment_from_row(row)
        logger.info(
            f"Updated appointment {updated.id} (v{updated.version}): {sorted(changes)}"
        )
        return updated

    async def complete_before(self, day: date) -> int:
        """Mark pending/confirmed appointments dated before `day` as completed."""
        query = """
            UPDATE appointments
            SET
                status = 'completed',
                version = version + 1,
                updated_at = NOW()
            WHERE appointment_date < :day
                AND status IN ('pending', 'confirmed')
            RETURNING id;
        """
        result = await self.execute_query(query, {"day": day})
        count = len(result.fetchall())
        logger.info(f"Marked {count} appointments before {day} as completed")
        return count


class ServiceRepository(BaseRepository):
    """Repository for the service catalog (read-only here)."""

    async def get_many(self, service_ids: Iterable[int]) -> List[ServiceInfo]:
        """
        Active services whose id is in `service_ids`.

        Unknown or inactive ids are simply absent from the result.
        """
        ids = sorted(set(service_ids))
        if not ids:
            return []

        query = """
            SELECT id, name, duration, price
            FROM services
            WHERE id = ANY(:ids)
                AND active = TRUE
            ORDER BY id;
        """
        result = await self.execute_query(query, {"ids": ids})
        return [
            ServiceInfo(
                id=row[0],
                name=row[1],
                duration=row[2],
                price=float(row[3]) if row[3] is not None else None,
            )
            for row in result.fetchall()
        ]


class UserRepository(BaseRepository):
    """Repository for the contact details notifications are sent to."""

    async def get_contacts(self, user_ids: Iterable[int]) -> Dict[int, UserContact]:
        ids = sorted(set(user_ids))
        if not ids:
            return {}

        query = """
            SELECT id, name, email, telegram_chat_id
            FROM users
            WHERE id = ANY(:ids);
        """
        result = await self.execute_query(query, {"ids": ids})
        return {
            row[0]: UserContact(
                id=row[0],
                name=row[1] or "",
                email=row[2],
                telegram_chat_id=row[3],
            )
            for row in result.fetchall()
        }

    async def get_contact(self, user_id: int) -> Optional[UserContact]:
        contacts = await self.get_contacts([user_id])
        return contacts.get(user_id)


class ScheduleRepository(BaseRepository):
    """Repository for the singleton business schedule."""

    async def get(self) -> Optional[Schedule]:
        query = """
            SELECT regular_hours, special_days
            FROM schedules
            WHERE id = 1;
        """
        result = await self.execute_query(query)
        row = result.fetchone()
        if not row:
            return None

        return Schedule.model_validate({
            "regularHours": _load_json(row[0]),
            "specialDays": _load_json(row[1]) or [],
        })

    async def upsert(self, schedule: Schedule) -> Schedule:
        """
        Replace the whole schedule, creating it on first write.

        Concurrent admin edits are last-write-wins.
        """
        payload = schedule.model_dump(mode="json", by_alias=True)
        query = """
            INSERT INTO schedules (id, regular_hours, special_days, updated_at)
            VALUES (
                1,
                CAST(CAST(:regular_hours AS TEXT) AS JSONB),
                CAST(CAST(:special_days AS TEXT) AS JSONB),
                NOW()
            )
            ON CONFLICT (id) DO UPDATE
            SET
                regular_hours = EXCLUDED.regular_hours,
                special_days = EXCLUDED.special_days,
                updated_at = NOW();
        """
        await self.execute_query(
            query,
            {
                "regular_hours": json.dumps(payload["regularHours"]),
                "special_days": json.dumps(payload["specialDays"]),
            },
        )
        logger.info(
            f"Schedule saved with {len(schedule.special_days)} special days"
        )
        return schedule


class BookingStore:
    """
    Repositories sharing one transactional session.

    Handed out by `booking_transaction()`; everything done through one store
    commits or rolls back together.
    """

    def __init__(self, session: AsyncSession):
        self.session = session
        self.appointments = AppointmentRepository(session)
        self.services = ServiceRepository(session)
        self.users = UserRepository(session)
        self.schedules = ScheduleRepository(session)

    async def lock_date(self, day: date) -> None:
        """
        Serialise scheduling operations touching the same calendar date.

        Transaction-scoped advisory lock, released on commit or rollback.
        """
        await self.appointments.execute_query(
            "SELECT pg_advisory_xact_lock(:namespace, :day_key)",
            {"namespace": DATE_LOCK_NAMESPACE, "day_key": day.toordinal()},
        )

    async def lock_dates(self, days: Iterable[date]) -> None:
        """Lock several dates in ascending order to avoid lock-order deadlocks."""
        for day in sorted(set(days)):
            await self.lock_date(day)
