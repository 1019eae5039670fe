"""
Data models for the call relay.
"""
import time
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Deque, Dict, Optional


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RelayError(Exception):
    """Base class for errors raised inside a single call."""


class FrameError(RelayError):
    """A frame from either socket could not be decoded."""


class AgentConnectionError(RelayError):
    """The realtime agent connection could not be opened."""


class ConfigUpdateError(RelayError):
    """An update to the persona configuration file was rejected."""

    def __init__(self, message: str, status_code: int = 400):
        super().__init__(message)
        self.status_code = status_code


class CallState(str, Enum):
    AWAITING_START = "awaiting_start"
    CONNECTING_AGENT = "connecting_agent"
    ACTIVE = "active"
    CLOSING = "closing"
    CLOSED = "closed"


@dataclass(frozen=True)
class Persona:
    """Per-call agent configuration, fixed before the agent connection opens."""

    id: str
    name: str
    model: str
    voice: str
    instructions: str
    temperature: float = 0.8
    speed: Optional[float] = None
    greeting: Optional[str] = None


@dataclass
class CallSession:
    """
    Mutable per-call state. Only the relay loop that owns the call mutates it.
    """

    stream_id: Optional[str] = None
    call_id: Optional[str] = None
    caller_id: Optional[str] = None
    persona: Optional[Persona] = None
    state: CallState = CallState.AWAITING_START
    latest_media_timestamp: int = 0  # ms, from telephony media frames
    response_start_timestamp: Optional[int] = None  # ms
    last_assistant_item: Optional[str] = None
    mark_queue: Deque[str] = field(default_factory=deque)
    started_at: float = field(default_factory=time.monotonic)

    def assign_stream(self, stream_id: str, call_id: Optional[str], caller_id: Optional[str]) -> bool:
        """Bind the telephony stream. Returns False if one is already bound."""
        if self.stream_id is not None:
            return False
        self.stream_id = stream_id
        self.call_id = call_id
        self.caller_id = caller_id
        return True

    def duration_seconds(self) -> float:
        return round(time.monotonic() - self.started_at, 3)


@dataclass
class BookingDetails:
    name: Optional[str] = None
    date: Optional[str] = None
    time: Optional[str] = None
    guests: Optional[int] = None
    phone_no: Optional[str] = None
    allergy: Optional[str] = None
    notes: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BookingDetails":
        guests = data.get("guests")
        try:
            guests = int(guests) if guests not in (None, "") else None
        except (TypeError, ValueError):
            guests = None
        return cls(
            name=data.get("name"),
            date=data.get("date"),
            time=data.get("time"),
            guests=guests,
            phone_no=data.get("phoneNo") or data.get("phone_no"),
            allergy=data.get("allergy"),
            notes=data.get("notes"),
        )

    def is_complete(self) -> bool:
        """Name, phone and party size are required before a payment SMS goes out."""
        return bool(self.name and self.phone_no and self.guests)


@dataclass
class SmsResult:
    success: bool
    sent_at: datetime
    sid: Optional[str] = None
    status: Optional[str] = None
    error: Optional[str] = None


@dataclass
class CallLog:
    call_sid: str
    customer_phone: str
    bot_phone: str
    restaurant_id: str
    payment_id: str
    status: str = "active"
    start_time: datetime = field(default_factory=_utcnow)
    relay_duration: Optional[float] = None
    recording_url: Optional[str] = None
    local_file_path: Optional[str] = None
    transcription: Optional[str] = None
    booking: BookingDetails = field(default_factory=BookingDetails)
    duration: int = 0
    sms_sent: bool = False
    sms_details: Optional[SmsResult] = None
    updated_at: datetime = field(default_factory=_utcnow)

    def touch(self):
        self.updated_at = _utcnow()
