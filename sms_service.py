"""
SMS service for sending deposit payment links after a booking call.
"""
import logging
import re
from datetime import datetime, timezone
from typing import Optional

from twilio.base.exceptions import TwilioException
from twilio.rest import Client

from config import (
    PAYMENT_BASE_URL,
    SMS_DEFAULT_COUNTRY_CODE,
    TWILIO_ACCOUNT_SID,
    TWILIO_AUTH_TOKEN,
    TWILIO_PHONE_NUMBER,
)
from models import BookingDetails, SmsResult

logger = logging.getLogger(__name__)


def format_phone_number(phone_number: Optional[str], default_country_code: str = SMS_DEFAULT_COUNTRY_CODE) -> Optional[str]:
    """Normalize a spoken/typed phone number to E.164 (+<country><number>)."""
    if not phone_number:
        return None
    cleaned = re.sub(r"\D", "", phone_number)
    if not cleaned:
        return None
    if cleaned.startswith(default_country_code) and len(cleaned) > len(default_country_code):
        return f"+{cleaned}"
    # Trunk prefix, e.g. 083... -> 83...
    if cleaned.startswith("0"):
        cleaned = cleaned[1:]
    return f"+{default_country_code}{cleaned}"


def build_payment_message(
    customer_name: str,
    number_of_guests: int,
    payment_link: str,
    restaurant_name: str,
    booking_date: Optional[str] = None,
    booking_time: Optional[str] = None,
) -> str:
    people = "person" if number_of_guests == 1 else "people"
    when = ""
    if booking_date:
        when += f" on {booking_date}"
    if booking_time:
        when += f" at {booking_time}"
    return (
        f"Dear {customer_name},\n\n"
        f"Thank you for your reservation! We've reserved a table for {number_of_guests} {people} "
        f"at {restaurant_name}{when}.\n"
        f"Please secure your booking by completing payment here:\n{payment_link}\n\n"
        "We look forward to serving you!\n\n"
        f"Best regards,\n{restaurant_name}"
    )


class SmsService:
    """Sends booking SMS through the Twilio REST API."""

    def __init__(
        self,
        client: Optional[Client] = None,
        from_number: Optional[str] = TWILIO_PHONE_NUMBER,
        payment_base_url: str = PAYMENT_BASE_URL,
    ):
        self._client = client
        self.from_number = from_number
        self.payment_base_url = payment_base_url.rstrip("/")

    @property
    def client(self) -> Client:
        if self._client is None:
            self._client = Client(TWILIO_ACCOUNT_SID, TWILIO_AUTH_TOKEN)
        return self._client

    def send_payment_sms(
        self,
        customer_name: str,
        customer_phone: str,
        number_of_guests: int,
        payment_id: str,
        booking_date: Optional[str] = None,
        booking_time: Optional[str] = None,
        restaurant_name: str = "Our Restaurant",
    ) -> SmsResult:
        if not self.from_number:
            return _failed("TWILIO_PHONE_NUMBER not configured")
        formatted_phone = format_phone_number(customer_phone)
        if not formatted_phone:
            return _failed("Invalid phone number provided")

        payment_link = f"{self.payment_base_url}/payment/{payment_id}"
        body = build_payment_message(
            customer_name, number_of_guests, payment_link, restaurant_name, booking_date, booking_time
        )
        logger.info("Sending SMS to %s", formatted_phone)
        try:
            message = self.client.messages.create(body=body, from_=self.from_number, to=formatted_phone)
        except TwilioException as e:
            logger.error("SMS sending failed: %s", e)
            return _failed(str(e))

        logger.info("SMS sent, SID %s", message.sid)
        return SmsResult(
            success=True,
            sid=message.sid,
            status=message.status,
            sent_at=datetime.now(timezone.utc),
        )

    def send_automated_sms(self, booking: BookingDetails, payment_id: str) -> SmsResult:
        """Send the payment link for an extracted booking."""
        if not booking.is_complete():
            logger.warning("Missing required booking data for SMS")
            return _failed("Missing required booking data (name, phone, or guests)")
        return self.send_payment_sms(
            customer_name=booking.name,
            customer_phone=booking.phone_no,
            number_of_guests=booking.guests,
            payment_id=payment_id,
            booking_date=booking.date,
            booking_time=booking.time,
        )


def _failed(error: str) -> SmsResult:
    return SmsResult(success=False, error=error, sent_at=datetime.now(timezone.utc))
