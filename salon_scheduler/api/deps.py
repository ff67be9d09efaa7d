"""
API Dependencies

Principal extraction from the gateway headers and access to the services
held on `app.state`.
"""

import logging
from typing import Optional

from fastapi import Header, HTTPException, Request

from salon_scheduler.models.schemas import Principal, Role
from salon_scheduler.services.appointment import AppointmentService
from salon_scheduler.services.reminders import ReminderService
from salon_scheduler.services.schedule import ScheduleService

logger = logging.getLogger(__name__)


def _client_key(request: Request) -> str:
    return request.client.host if request.client else "unknown"


async def get_principal(
    request: Request,
    x_user_id: Optional[str] = Header(default=None),
    x_user_role: Optional[str] = Header(default=None),
) -> Principal:
    """
    Resolve the authenticated caller from the `X-User-Id` / `X-User-Role`
    headers set by the upstream gateway.

    Raises:
        HTTPException: 429 while the client is over its failed-attempt limit,
            401 for missing or invalid identity headers
    """
    limiter = request.app.state.access_limiter
    cache = request.app.state.principal_cache
    client = _client_key(request)

    if limiter.is_blocked(client):
        raise HTTPException(status_code=429, detail="Too many failed attempts, try again later")

    key = (x_user_id, (x_user_role or Role.USER.value).lower())
    principal = cache.get(key)
    if principal is not None:
        return principal

    try:
        principal = Principal(user_id=int(x_user_id), role=Role(key[1]))
    except (TypeError, ValueError):
        limiter.hit(client)
        logger.warning(f"Rejected identity headers from {client}")
        raise HTTPException(status_code=401, detail="Missing or invalid user identity")

    cache.set(key, principal)
    return principal


def get_appointment_service(request: Request) -> AppointmentService:
    return request.app.state.appointment_service


def get_schedule_service(request: Request) -> ScheduleService:
    return request.app.state.schedule_service


def get_reminder_service(request: Request) -> ReminderService:
    return request.app.state.reminder_service
