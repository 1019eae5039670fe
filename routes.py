"""
FastAPI routes: Twilio webhooks, the media-stream WebSocket and admin endpoints.
"""
import asyncio
import logging
from typing import Any, Dict, Optional

from fastapi import BackgroundTasks, FastAPI, Request, WebSocket
from fastapi.responses import HTMLResponse, JSONResponse, Response
from twilio.base.exceptions import TwilioException, TwilioRestException
from twilio.rest import Client
from twilio.twiml.voice_response import Connect, VoiceResponse

from call_log_service import CallLogService
from config import TWILIO_ACCOUNT_SID, TWILIO_AUTH_TOKEN
from models import ConfigUpdateError
from personas import JsonConfigProvider, PersonaResolver
from websocket_handler import handle_media_stream

logger = logging.getLogger(__name__)


def build_stream_twiml(host: str, caller: str) -> str:
    """TwiML that connects the call to our media-stream socket, passing the caller id."""
    response = VoiceResponse()
    connect = Connect()
    stream = connect.stream(url=f"wss://{host}/media-stream")
    stream.parameter(name="caller", value=caller)
    response.append(connect)
    return str(response)


class Routes:
    """Contains all FastAPI route handlers."""

    def __init__(
        self,
        app: FastAPI,
        config_provider: Optional[JsonConfigProvider] = None,
        call_logs: Optional[CallLogService] = None,
        twilio_client: Optional[Client] = None,
    ):
        self.app = app
        self.config_provider = config_provider or JsonConfigProvider()
        self.resolver = PersonaResolver(self.config_provider)
        self.call_logs = call_logs or CallLogService()
        self._twilio_client = twilio_client
        self._setup_routes()

    def _setup_routes(self):
        """Setup all route handlers."""
        self.app.get("/", response_class=JSONResponse)(self.index_page)
        self.app.api_route("/incoming-call", methods=["GET", "POST"])(self.handle_incoming_call)
        self.app.post("/recording-complete")(self.recording_complete)
        self.app.post("/update-config")(self.update_config)
        self.app.post("/api/sms/send")(self.send_sms)
        self.app.get("/api/payment/{payment_id}")(self.get_payment)
        self.app.post("/api/verify/phone")(self.verify_phone)
        self.app.websocket("/media-stream")(self.media_stream)

    @property
    def twilio_client(self) -> Optional[Client]:
        if self._twilio_client is None and TWILIO_ACCOUNT_SID and TWILIO_AUTH_TOKEN:
            self._twilio_client = Client(TWILIO_ACCOUNT_SID, TWILIO_AUTH_TOKEN)
        return self._twilio_client

    async def index_page(self):
        """Root endpoint returning status information."""
        return {"message": "Twilio Media Stream Server is running!"}

    async def handle_incoming_call(self, request: Request):
        """Handle incoming call webhook from Twilio."""
        params: Dict[str, Any] = dict(request.query_params)
        if request.method == "POST":
            params.update(await request.form())
        caller = str(params.get("From") or "Unknown")
        to = str(params.get("To") or "Unknown")
        call_sid = params.get("CallSid")
        host = request.headers.get("host") or request.url.hostname
        logger.info("Incoming call from %s to %s (CallSid %s)", caller, to, call_sid)

        if call_sid:
            self.call_logs.create(str(call_sid), caller, to)
            await self._start_recording(str(call_sid), host)

        twiml = build_stream_twiml(host, caller)
        logger.info("Using WebSocket URL: wss://%s/media-stream", host)
        return HTMLResponse(content=twiml, media_type="application/xml")

    async def _start_recording(self, call_sid: str, host: str) -> None:
        client = self.twilio_client
        if client is None:
            logger.debug("Twilio credentials not set, not recording %s", call_sid)
            return
        try:
            recording = await asyncio.to_thread(
                client.calls(call_sid).recordings.create,
                recording_channels="dual",
                recording_status_callback_event=["completed"],
                recording_status_callback=f"https://{host}/recording-complete",
            )
            logger.info("Dual-channel recording started: %s", recording.sid)
        except TwilioException as e:
            logger.error("Recording failed for %s: %s", call_sid, e)

    async def recording_complete(self, request: Request, background_tasks: BackgroundTasks):
        """Twilio recording status callback; the post-call pipeline runs in the background."""
        form = await request.form()
        call_sid = form.get("CallSid")
        recording_url = form.get("RecordingUrl")
        if not call_sid or not recording_url:
            return JSONResponse({"error": "Missing CallSid or RecordingUrl"}, status_code=400)
        try:
            duration = int(form.get("RecordingDuration") or 0)
        except ValueError:
            duration = 0
        background_tasks.add_task(self.call_logs.complete_recording, str(call_sid), str(recording_url), duration)
        return Response(status_code=200)

    async def update_config(self, request: Request):
        """Merge settings/operating hours into the persona configuration."""
        try:
            updates = await request.json()
        except ValueError:
            return JSONResponse({"error": "Body must be JSON"}, status_code=400)
        if not isinstance(updates, dict):
            return JSONResponse({"error": "Body must be a JSON object"}, status_code=400)
        try:
            config = self.config_provider.update(updates)
        except ConfigUpdateError as e:
            return JSONResponse({"error": str(e)}, status_code=e.status_code)
        return {"message": "Configuration updated successfully", "config": config}

    async def send_sms(self, request: Request):
        """Manually (re)send the payment SMS for a completed call."""
        try:
            body = await request.json()
        except ValueError:
            body = {}
        call_sid = body.get("callSid") if isinstance(body, dict) else None
        if not call_sid:
            return JSONResponse({"success": False, "error": "Missing callSid in request body"}, status_code=400)

        call_log = self.call_logs.get(call_sid)
        if call_log is None:
            return JSONResponse(
                {"success": False, "error": f"Call log not found for SID: {call_sid}"}, status_code=404
            )
        if not call_log.booking.is_complete():
            return JSONResponse(
                {"success": False, "error": "Incomplete booking data - cannot send SMS"}, status_code=400
            )

        result = await self.call_logs.send_sms(call_log)
        status_code = 200 if result.success else 502
        return JSONResponse(
            {"success": result.success, "sid": result.sid, "status": result.status, "error": result.error},
            status_code=status_code,
        )

    async def get_payment(self, payment_id: str):
        """Booking details behind a payment link, for the payment page."""
        call_log = self.call_logs.get_by_payment_id(payment_id)
        if call_log is None:
            logger.warning("No booking found for payment ID %s", payment_id)
            return JSONResponse(
                {"success": False, "error": "Booking not found", "message": "No booking exists with this payment ID"},
                status_code=404,
            )
        booking = call_log.booking
        if not booking.name:
            return JSONResponse(
                {
                    "success": False,
                    "error": "Incomplete booking data",
                    "message": "Booking information is not available",
                },
                status_code=404,
            )

        sms = call_log.sms_details
        return {
            "success": True,
            "paymentId": call_log.payment_id,
            "callSid": call_log.call_sid,
            "booking": {
                "customerName": booking.name,
                "phoneNumber": booking.phone_no,
                "numberOfGuests": booking.guests,
                "date": booking.date,
                "time": booking.time,
                "allergy": booking.allergy,
                "notes": booking.notes,
            },
            "restaurant": {"id": call_log.restaurant_id, "phone": call_log.bot_phone},
            "callDetails": {
                "startTime": call_log.start_time.isoformat(),
                "duration": call_log.duration,
                "status": call_log.status,
            },
            "sms": {
                "sent": call_log.sms_sent,
                "sentAt": sms.sent_at.isoformat() if sms is not None else None,
            },
            "updatedAt": call_log.updated_at.isoformat(),
        }

    async def verify_phone(self, request: Request):
        """Twilio Lookup v2 check of a phone number's validity and line type."""
        try:
            body = await request.json()
        except ValueError:
            body = {}
        phone_number = body.get("phoneNumber") if isinstance(body, dict) else None
        if not phone_number:
            return JSONResponse({"success": False, "error": "phoneNumber is required"}, status_code=400)

        client = self.twilio_client
        if client is None:
            return JSONResponse({"success": False, "error": "Twilio not configured"}, status_code=503)
        try:
            result = await asyncio.to_thread(
                client.lookups.v2.phone_numbers(phone_number).fetch,
                fields="line_type_intelligence",
            )
        except TwilioRestException as e:
            if e.status == 404:
                return JSONResponse(
                    {"success": False, "valid": False, "error": "Invalid phone number"}, status_code=400
                )
            logger.error("Phone verification failed for %s: %s", phone_number, e)
            return JSONResponse({"success": False, "error": "Verification failed"}, status_code=500)
        except TwilioException as e:
            logger.error("Phone verification failed for %s: %s", phone_number, e)
            return JSONResponse({"success": False, "error": "Verification failed"}, status_code=500)

        line_type = result.line_type_intelligence or {}
        return {
            "success": True,
            "valid": result.valid,
            "phoneNumber": result.phone_number,
            "nationalFormat": result.national_format,
            "carrier": line_type.get("carrier_name") or "Unknown",
            "type": line_type.get("type") or "Unknown",
        }

    async def media_stream(self, websocket: WebSocket):
        """Twilio Media Streams socket, one relay per call."""
        await handle_media_stream(websocket, self.resolver, on_call_end=self.call_logs.record_relay_end)
