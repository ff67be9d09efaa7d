"""
Database Schema

DDL for the scheduling tables. Statements are idempotent and applied on
startup.
"""

import logging

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)

# At most one non-cancelled appointment per (date, time).
UNIQUE_SLOT_INDEX = "appointments_date_time_active_uq"

SCHEMA_STATEMENTS = (
    """
    CREATE TABLE IF NOT EXISTS users (
        id SERIAL PRIMARY KEY,
        name TEXT NOT NULL DEFAULT '',
        email TEXT,
        telegram_chat_id TEXT,
        role TEXT NOT NULL DEFAULT 'user'
            CHECK (role IN ('user', 'admin', 'superadmin')),
        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS services (
        id SERIAL PRIMARY KEY,
        name TEXT NOT NULL,
        duration INTEGER NOT NULL CHECK (duration > 0),
        price NUMERIC(10, 2),
        active BOOLEAN NOT NULL DEFAULT TRUE
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS schedules (
        id INTEGER PRIMARY KEY DEFAULT 1 CHECK (id = 1),
        regular_hours JSONB NOT NULL,
        special_days JSONB NOT NULL DEFAULT '[]'::jsonb,
        updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS appointments (
        id SERIAL PRIMARY KEY,
        user_id INTEGER NOT NULL REFERENCES users (id),
        services INTEGER[] NOT NULL,
        appointment_date DATE NOT NULL,
        appointment_time CHAR(5) NOT NULL
            CHECK (appointment_time ~ '^([01][0-9]|2[0-3]):[0-5][0-9]$'),
        total_duration INTEGER NOT NULL CHECK (total_duration BETWEEN 1 AND 480),
        status TEXT NOT NULL DEFAULT 'pending'
            CHECK (status IN ('pending', 'confirmed', 'completed', 'cancelled', 'needsRescheduling')),
        notes TEXT NOT NULL DEFAULT '',
        cancellation_reason TEXT,
        cancelled_at TIMESTAMPTZ,
        reminder_sent BOOLEAN NOT NULL DEFAULT FALSE,
        reminder_sent_at TIMESTAMPTZ,
        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        updated_at TIMESTAMPTZ,
        version INTEGER NOT NULL DEFAULT 0
    )
    """,
    "CREATE INDEX IF NOT EXISTS appointments_date_time_idx "
    "ON appointments (appointment_date, appointment_time)",
    "CREATE INDEX IF NOT EXISTS appointments_user_date_idx "
    "ON appointments (user_id, appointment_date)",
    "CREATE INDEX IF NOT EXISTS appointments_status_idx ON appointments (status)",
    "CREATE INDEX IF NOT EXISTS appointments_reminder_idx "
    "ON appointments (reminder_sent, appointment_date)",
    f"CREATE UNIQUE INDEX IF NOT EXISTS {UNIQUE_SLOT_INDEX} "
    "ON appointments (appointment_date, appointment_time) "
    "WHERE status <> 'cancelled'",
)


async def create_schema(session: AsyncSession) -> None:
    """Apply every schema statement inside the caller's transaction."""
    for statement in SCHEMA_STATEMENTS:
        await session.execute(text(statement))
    logger.info(f"Database schema ensured ({len(SCHEMA_STATEMENTS)} statements)")
