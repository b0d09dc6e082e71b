import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Protocol

from fastapi import Request

logger = logging.getLogger(__name__)


@dataclass
class PaymentReceipt:
    """What a student is told after money is recorded."""

    email: str | None
    name: str
    receipt_number: str | None
    amount: Decimal
    balance: Decimal
    currency: str
    verification_code: str | None = None


class NotificationSender(Protocol):
    async def send_payment_receipt(self, receipt: PaymentReceipt) -> None: ...

    async def send_check_in_confirmation(self, email: str, name: str, room_number: str | None) -> None: ...


class LoggingNotificationSender:
    """Default sender: writes the messages to the log instead of mailing them."""

    async def send_payment_receipt(self, receipt: PaymentReceipt) -> None:
        logger.info(
            "Payment receipt %s to %s: %s %s received, balance %s",
            receipt.receipt_number,
            receipt.email,
            receipt.currency,
            receipt.amount,
            receipt.balance,
        )

    async def send_check_in_confirmation(self, email: str, name: str, room_number: str | None) -> None:
        logger.info("Check-in confirmation to %s (%s), room %s", email, name, room_number)


async def notify_safely(coro) -> None:
    """Await a notification; a failure is logged and never reaches the caller."""
    try:
        await coro
    except Exception:
        logger.exception("Notification delivery failed")


default_sender = LoggingNotificationSender()


def get_notification_sender(request: Request) -> NotificationSender:
    return getattr(request.app.state, "notifier", default_sender)
