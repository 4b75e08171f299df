"""
SMS status notifications (Twilio).

Credentials come from TWILIO_ACCOUNT_SID, TWILIO_AUTH_TOKEN and
TWILIO_FROM_NUMBER. Without them, or without a phone on the order, the
message is only logged.
"""

import logging
import os
from typing import Any, Callable, Optional

from events import NotificationRequested
from schemas import OrderStatus

logger = logging.getLogger(__name__)

STATUS_MESSAGES = {
    OrderStatus.CONFIRMED: "has been confirmed by the cafeteria",
    OrderStatus.PREPARING: "is being prepared",
    OrderStatus.READY: "is ready for pickup",
    OrderStatus.COMPLETED: "has been picked up. Enjoy your meal!",
    OrderStatus.CANCELLED: "was cancelled",
}


def format_status_sms(order_id: str, status: OrderStatus) -> str:
    text = f"UniEats: your order #{order_id[:8]} {STATUS_MESSAGES.get(status, f'is now {status.value}')}."
    # SMS length safety
    return (text[:157] + "…") if len(text) > 160 else text


def _twilio_client(account_sid: str, auth_token: str) -> Any:
    from twilio.rest import Client  # type: ignore
    return Client(account_sid, auth_token)


class SmsNotifier:
    def __init__(self, client_factory: Optional[Callable[[str, str], Any]] = None) -> None:
        self.client_factory = client_factory or _twilio_client

    def __call__(self, event: NotificationRequested) -> Optional[str]:
        text = format_status_sms(event.order_id, event.new_status)

        account_sid = os.getenv("TWILIO_ACCOUNT_SID")
        auth_token = os.getenv("TWILIO_AUTH_TOKEN")
        from_number = os.getenv("TWILIO_FROM_NUMBER")

        if not event.phone:
            logger.info("No phone for order %s, not sending: %s", event.order_id, text)
            return None
        if not (account_sid and auth_token and from_number):
            logger.info("Twilio not configured, SMS preview for %s: %s", event.phone, text)
            return None

        client = self.client_factory(account_sid, auth_token)
        msg = client.messages.create(body=text, from_=from_number, to=event.phone)
        return getattr(msg, "sid", None)
