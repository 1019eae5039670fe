"""
Email service for notifying restaurant staff about new bookings.
"""
import logging
from typing import Any, Dict, List, Optional, cast

import resend

from config import BOOKING_RECIPIENTS, RESEND_API_KEY, RESEND_FROM
from models import CallLog

logger = logging.getLogger(__name__)


class EmailService:
    """Service for sending email notifications."""

    @staticmethod
    def send_booking_notification(
        call_log: CallLog,
        recipients: Optional[List[str]] = None,
        api_key: Optional[str] = RESEND_API_KEY,
    ) -> Optional[str]:
        """
        Send the extracted booking to the restaurant team.
        Returns None on success, error message on failure.
        """
        recipients = recipients if recipients is not None else BOOKING_RECIPIENTS
        if not api_key or not recipients:
            logger.info("Skipping booking email for %s, Resend not configured", call_log.call_sid)
            return "email_not_configured"

        booking = call_log.booking
        try:
            resend.api_key = api_key
            subject = f"New Booking: {booking.name} x{booking.guests} @ {booking.date} {booking.time}"
            html = f"""
            <h2>New Reservation From Phone Agent</h2>
            <p><strong>Name:</strong> {booking.name}<br/>
            <strong>Phone:</strong> {booking.phone_no}<br/>
            <strong>Guests:</strong> {booking.guests}<br/>
            <strong>Date:</strong> {booking.date or '-'}<br/>
            <strong>Time:</strong> {booking.time or '-'}<br/>
            <strong>Allergy:</strong> {booking.allergy or 'none noted'}<br/>
            <strong>Kitchen Notes:</strong> {booking.notes or '-'}</p>
            <p><strong>Call:</strong> {call_log.call_sid}<br/>
            <strong>Caller:</strong> {call_log.customer_phone}<br/>
            <strong>Restaurant:</strong> {call_log.restaurant_id}<br/>
            <strong>Payment ID:</strong> {call_log.payment_id}</p>
            """
            payload: Dict[str, Any] = {
                "from": RESEND_FROM,
                "to": recipients,
                "subject": subject,
                "html": html,
            }
            resend.Emails.send(cast(Any, payload))
            return None
        except Exception as e:
            logger.error("Booking email failed for %s: %s", call_log.call_sid, e)
            return str(e)
