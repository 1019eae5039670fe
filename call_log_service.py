"""
Call records and the post-call pipeline (recording -> transcript -> booking -> SMS).
"""
import asyncio
import logging
import os
import uuid
from typing import Dict, Optional

import httpx

from config import DEFAULT_RESTAURANT_ID, RECORDINGS_DIR, RESTAURANT_BY_BOT_NUMBER
from email_service import EmailService
from models import CallLog, SmsResult
from sms_service import SmsService
import transcription_service

logger = logging.getLogger(__name__)


def get_restaurant_id(bot_phone: Optional[str]) -> str:
    return RESTAURANT_BY_BOT_NUMBER.get(bot_phone or "", DEFAULT_RESTAURANT_ID)


class CallLogService:
    """
    In-process store of call records keyed by Twilio CallSid.

    Single-process only; all mutation happens on the event loop.
    """

    def __init__(
        self,
        sms: Optional[SmsService] = None,
        recordings_dir: str = RECORDINGS_DIR,
        send_email=EmailService.send_booking_notification,
    ):
        self.sms = sms or SmsService()
        self.recordings_dir = recordings_dir
        self.send_email = send_email
        self._logs: Dict[str, CallLog] = {}

    def get(self, call_sid: str) -> Optional[CallLog]:
        return self._logs.get(call_sid)

    def get_by_payment_id(self, payment_id: str) -> Optional[CallLog]:
        for call_log in self._logs.values():
            if call_log.payment_id == payment_id:
                return call_log
        return None

    def create(self, call_sid: str, from_number: str, to_number: str) -> CallLog:
        restaurant_id = get_restaurant_id(to_number)
        call_log = CallLog(
            call_sid=call_sid,
            customer_phone=from_number,
            bot_phone=to_number,
            restaurant_id=restaurant_id,
            payment_id=str(uuid.uuid4()),
        )
        self._logs[call_sid] = call_log
        logger.info("CallLog created: %s (restaurant %s)", call_sid, restaurant_id)
        return call_log

    def record_relay_end(self, call_sid: Optional[str], duration: float) -> None:
        """End-of-call report from the relay; never blocks on the post-call pipeline."""
        if not call_sid:
            return
        call_log = self._logs.get(call_sid)
        if call_log is None:
            logger.warning("No CallLog for relay end of %s", call_sid)
            return
        call_log.relay_duration = duration
        call_log.touch()

    async def complete_recording(self, call_sid: str, recording_url: str, duration: int) -> Optional[CallLog]:
        """Download, transcribe and extract the booking, then notify the customer and staff."""
        call_log = self._logs.get(call_sid)
        if call_log is None:
            logger.warning("No active CallLog found for %s", call_sid)
            return None

        local_path = os.path.join(self.recordings_dir, f"{call_sid}.mp3")
        try:
            call_log.local_file_path = await transcription_service.download_recording(recording_url, local_path)
            call_log.transcription = await transcription_service.transcribe_audio(local_path)
            if call_log.transcription:
                booking = await transcription_service.extract_booking(call_log.transcription)
                if booking is not None:
                    call_log.booking = booking
        except (httpx.HTTPError, OSError) as e:
            logger.error("Failed processing recording for %s: %s", call_sid, e)

        call_log.recording_url = recording_url
        call_log.duration = duration
        call_log.status = "completed"
        call_log.touch()
        logger.info("CallLog updated: %s -> %s", call_sid, recording_url)

        if call_log.booking.is_complete():
            await self.send_sms(call_log)
            await asyncio.to_thread(self.send_email, call_log)
        else:
            logger.info("Skipping SMS, incomplete booking data for %s", call_sid)
        return call_log

    async def send_sms(self, call_log: CallLog) -> SmsResult:
        result = await asyncio.to_thread(self.sms.send_automated_sms, call_log.booking, call_log.payment_id)
        call_log.sms_sent = result.success
        call_log.sms_details = result
        call_log.touch()
        if result.success:
            logger.info("Automated SMS sent for %s (SID %s)", call_log.call_sid, result.sid)
        else:
            logger.warning("SMS failed for %s: %s", call_log.call_sid, result.error)
        return result
