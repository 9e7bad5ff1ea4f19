"""
Customer notifications.

SMS through the Twilio Messages API. A send is attempted once: failures are
logged and reported back as NotificationState.FAILED, never retried here.
"""

import logging
from typing import Optional

import httpx

from ..config import settings
from ..schemas.booking import Booking, NotificationState
from ..utils.http_retry import UpstreamError, build_client, request_with_retry
from .status_transitions import NotificationTemplate

logger = logging.getLogger(__name__)

TWILIO_API_URL = "https://api.twilio.com/2010-04-01"

TEMPLATES = {
    NotificationTemplate.NEW_BOOKING: (
        "Hi {name}, thanks for booking with us! Booking {code} on {date} at {time} is received."
    ),
    NotificationTemplate.CANCELLED: (
        "Hi {name}, booking {code} on {date} has been cancelled. Contact us if this is unexpected."
    ),
    NotificationTemplate.PAYMENT_CONFIRMED: (
        "Hi {name}, payment for booking {code} is confirmed. See you on {date} at {time}!"
    ),
    NotificationTemplate.PARTIAL_PAYMENT: (
        "Hi {name}, we have received a deposit for booking {code} on {date}."
    ),
    NotificationTemplate.UPDATED: (
        "Hi {name}, booking {code} has been updated."
    ),
}


def render(template: NotificationTemplate, booking: Booking) -> str:
    schedule = booking.schedule
    return TEMPLATES[NotificationTemplate(template)].format(
        name=(booking.customer.name or "there").split(" ")[0],
        code=booking.code,
        date=schedule.booking_date.strftime("%a %d %b") if schedule.booking_date else "your booking date",
        time=schedule.start_time or "the scheduled time"
    )


class TwilioSmsClient:
    """Minimal Twilio Messages API sender"""

    def __init__(
        self,
        account_sid: Optional[str] = None,
        auth_token: Optional[str] = None,
        from_number: Optional[str] = None,
        client: Optional[httpx.Client] = None
    ):
        self.account_sid = account_sid or settings.twilio_account_sid
        self.from_number = from_number or settings.twilio_from_number
        self.client = client or build_client(
            auth=(self.account_sid, auth_token or settings.twilio_auth_token)
        )

    @property
    def is_configured(self) -> bool:
        return bool(self.account_sid and self.from_number)

    def send(self, recipient: str, message: str) -> bool:
        if not self.is_configured:
            logger.warning("Twilio not configured, SMS not sent")
            return False
        if not recipient:
            return False

        url = f"{TWILIO_API_URL}/Accounts/{self.account_sid}/Messages.json"
        try:
            response = request_with_retry(
                self.client, "POST", url, "twilio",
                data={"From": self.from_number, "To": recipient, "Body": message}
            )
        except UpstreamError as e:
            logger.error(f"SMS to ...{recipient[-4:]} failed: {e.message}")
            return False

        logger.info(f"SMS sent to ...{recipient[-4:]} (HTTP {response.status_code})")
        return True


class NotificationDispatcher:
    """Renders and sends customer notifications"""

    def __init__(self, sms: Optional[TwilioSmsClient] = None):
        self.sms = sms or TwilioSmsClient()

    def notify(self, booking: Booking, template: NotificationTemplate) -> Optional[NotificationState]:
        """
        Send `template` for `booking`.

        Returns None when there is nobody to notify, otherwise SENT or FAILED.
        """
        phone = booking.customer.phone
        if not phone:
            logger.info(f"[{booking.code}] No customer phone, {template.value} skipped")
            return None

        sent = self.sms.send(phone, render(template, booking))
        return NotificationState.SENT if sent else NotificationState.FAILED
