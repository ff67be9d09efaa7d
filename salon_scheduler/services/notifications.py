"""
Notification Dispatch

Typed notification payloads, their Telegram wording, and delivery.

Delivery is best-effort: dispatch helpers log failures and report them as
a boolean, they never raise into the operation that triggered them.
"""

import asyncio
import logging
from datetime import date
from enum import Enum
from typing import Iterable, List, Optional, Protocol

from aiogram import Bot
from pydantic import BaseModel, Field

from salon_scheduler.models.schemas import Appointment, ServiceInfo, UserContact

logger = logging.getLogger(__name__)


class NotificationKind(str, Enum):
    BOOKING_CONFIRMED = "booking_confirmed"
    CANCELLED = "cancelled"
    RESCHEDULED = "rescheduled"
    RESCHEDULED_CONFLICT = "rescheduled_conflict"
    REMINDER = "reminder"
    SCHEDULE_CHANGED = "schedule_changed"


class Notification(BaseModel):
    """One message for one recipient."""

    kind: NotificationKind
    recipient: UserContact
    appointment_id: int
    date: date
    time: str
    service_names: List[str] = Field(default_factory=list)
    old_date: Optional[date] = None
    old_time: Optional[str] = None
    reason: Optional[str] = None
    late_cancellation: bool = False

    @classmethod
    def for_appointment(
        cls,
        kind: NotificationKind,
        recipient: UserContact,
        appointment: Appointment,
        services: Iterable[ServiceInfo] = (),
        **extra,
    ) -> "Notification":
        return cls(
            kind=kind,
            recipient=recipient,
            appointment_id=appointment.id,
            date=appointment.date,
            time=appointment.time,
            service_names=[service.name for service in services],
            **extra,
        )


class Notifier(Protocol):
    async def send(self, notification: Notification) -> None:
        ...

    async def close(self) -> None:
        ...


def format_notification(notification: Notification) -> str:
    """Render the Telegram text for a notification."""
    name = notification.recipient.name or "there"
    services = ", ".join(notification.service_names) or "your appointment"
    when = f"📅 Date: {notification.date.isoformat()}\n🕐 Time: {notification.time}"
    kind = notification.kind

    if kind == NotificationKind.BOOKING_CONFIRMED:
        return (
            f"✅ Hi {name}, your appointment has been booked!\n\n"
            f"{when}\n💇 Services: {services}\n\n"
            f"We look forward to seeing you."
        )

    if kind == NotificationKind.CANCELLED:
        message = (
            f"❌ Hi {name}, your appointment has been cancelled.\n\n"
            f"{when}\n💇 Services: {services}"
        )
        if notification.reason:
            message += f"\n📝 Reason: {notification.reason}"
        if notification.late_cancellation:
            message += (
                "\n\n⚠️ This cancellation was made inside the free "
                "cancellation window."
            )
        return message

    if kind in (NotificationKind.RESCHEDULED, NotificationKind.RESCHEDULED_CONFLICT):
        previous = ""
        if notification.old_date and notification.old_time:
            previous = (
                f"\n\n🔁 Previously: {notification.old_date.isoformat()} "
                f"at {notification.old_time}"
            )
        header = (
            f"🔄 Hi {name}, the time you asked for was just taken, so we "
            f"booked the next free slot for you."
            if kind == NotificationKind.RESCHEDULED_CONFLICT
            else f"🔄 Hi {name}, your appointment has been rescheduled."
        )
        return f"{header}\n\n{when}\n💇 Services: {services}{previous}"

    if kind == NotificationKind.REMINDER:
        return (
            f"⏰ Hi {name}, this is a reminder of your appointment tomorrow.\n\n"
            f"{when}\n💇 Services: {services}"
        )

    reason = notification.reason or "Business hours changed"
    return (
        f"📢 Hi {name}, our opening hours changed and your appointment had to be "
        f"cancelled.\n\n{when}\n📝 Reason: {reason}\n\n"
        f"Please book a new time that suits you."
    )


class TelegramNotifier:
    """Delivers notifications to the recipient's Telegram chat."""

    def __init__(self, bot: Bot):
        self.bot = bot

    @classmethod
    def from_token(cls, token: str) -> "TelegramNotifier":
        logger.info(f"Bot instance created for token: ****{token[:5]}")
        return cls(Bot(token=token))

    async def send(self, notification: Notification) -> None:
        chat_id = notification.recipient.telegram_chat_id
        if not chat_id:
            logger.info(
                f"User {notification.recipient.id} has no Telegram chat, "
                f"skipping {notification.kind.value} notification"
            )
            return

        await self.bot.send_message(chat_id=chat_id, text=format_notification(notification))
        logger.info(
            f"Sent {notification.kind.value} notification for appointment "
            f"{notification.appointment_id} to user {notification.recipient.id}"
        )

    async def close(self) -> None:
        await self.bot.session.close()
        logger.info("Bot session closed successfully")


class LoggingNotifier:
    """Used when no bot token is configured: notifications are only logged."""

    async def send(self, notification: Notification) -> None:
        logger.info(
            f"[notification:{notification.kind.value}] user={notification.recipient.id} "
            f"appointment={notification.appointment_id} "
            f"{notification.date.isoformat()} {notification.time}"
        )

    async def close(self) -> None:
        return None


def build_notifier(token: Optional[str]) -> Notifier:
    if token:
        return TelegramNotifier.from_token(token)
    logger.warning("Telegram bot token not configured, notifications will only be logged")
    return LoggingNotifier()


async def dispatch_safely(notifier: Notifier, notification: Notification) -> bool:
    """Send one notification; failures are logged and reported as False."""
    try:
        await notifier.send(notification)
        return True
    except Exception as e:
        logger.error(
            f"Failed to send {notification.kind.value} notification for appointment "
            f"{notification.appointment_id} to user {notification.recipient.id}: {e}",
            exc_info=True,
        )
        return False


async def dispatch_each(
    notifier: Notifier,
    notifications: Iterable[Notification],
    concurrency: int = 5,
) -> List[bool]:
    """
    Fan out notifications with at most `concurrency` in flight.

    Returns:
        One delivery flag per notification, in input order
    """
    pending = list(notifications)
    if not pending:
        return []

    semaphore = asyncio.Semaphore(max(1, concurrency))

    async def _bounded(notification: Notification) -> bool:
        async with semaphore:
            return await dispatch_safely(notifier, notification)

    return list(await asyncio.gather(*(_bounded(n) for n in pending)))


async def dispatch_all(
    notifier: Notifier,
    notifications: Iterable[Notification],
    concurrency: int = 5,
) -> int:
    """
    Like `dispatch_each`.

    Returns:
        Number of notifications delivered
    """
    results = await dispatch_each(notifier, notifications, concurrency)
    delivered = sum(1 for ok in results if ok)
    if delivered < len(results):
        logger.warning(f"Delivered {delivered} of {len(results)} notifications")
    return delivered
