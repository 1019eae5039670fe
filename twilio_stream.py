"""
Twilio Media Streams framing: inbound frame parsing and outbound frame writers.
"""
import logging
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, Optional, Union

from fastapi import WebSocket
from fastapi.websockets import WebSocketDisconnect
from starlette.websockets import WebSocketState

from models import FrameError
from utils import decode_json_frame

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StartFrame:
    stream_id: str
    call_id: Optional[str] = None
    custom_parameters: Dict[str, Any] = field(default_factory=dict)

    @property
    def caller_id(self) -> Optional[str]:
        caller = self.custom_parameters.get("caller")
        return caller if isinstance(caller, str) else None


@dataclass(frozen=True)
class MediaFrame:
    timestamp: int
    payload: str


@dataclass(frozen=True)
class MarkFrame:
    name: Optional[str]


@dataclass(frozen=True)
class StopFrame:
    pass


@dataclass(frozen=True)
class IgnoredFrame:
    event: str


TelephonyFrame = Union[StartFrame, MediaFrame, MarkFrame, StopFrame, IgnoredFrame]


def parse_frame(message: Union[str, bytes]) -> TelephonyFrame:
    """Parse one Twilio frame. Raises FrameError when a required field is missing."""
    data = decode_json_frame(message)
    event = data.get("event")

    if event == "media":
        media = data.get("media")
        if not isinstance(media, dict) or "payload" not in media:
            raise FrameError("media frame without payload")
        try:
            timestamp = int(media["timestamp"])
        except (KeyError, TypeError, ValueError) as e:
            raise FrameError(f"media frame with bad timestamp: {media.get('timestamp')!r}") from e
        return MediaFrame(timestamp=timestamp, payload=media["payload"])

    if event == "start":
        start = data.get("start")
        if not isinstance(start, dict) or not start.get("streamSid"):
            raise FrameError("start frame without streamSid")
        custom_parameters = start.get("customParameters") or {}
        if not isinstance(custom_parameters, dict):
            raise FrameError("start frame with non-object customParameters")
        return StartFrame(
            stream_id=start["streamSid"],
            call_id=start.get("callSid"),
            custom_parameters=custom_parameters,
        )

    if event == "mark":
        mark = data.get("mark") or {}
        if not isinstance(mark, dict):
            raise FrameError("mark frame with non-object mark")
        return MarkFrame(name=mark.get("name"))

    if event == "stop":
        return StopFrame()

    if isinstance(event, str):
        return IgnoredFrame(event=event)
    raise FrameError("frame without event kind")


class TwilioChannel:
    """Telephony side of one call, wrapping the accepted FastAPI WebSocket."""

    def __init__(self, websocket: WebSocket):
        self.websocket = websocket

    @property
    def connected(self) -> bool:
        return self.websocket.client_state == WebSocketState.CONNECTED

    async def messages(self) -> AsyncIterator[str]:
        """Yield raw text frames until Twilio hangs up."""
        try:
            async for message in self.websocket.iter_text():
                yield message
        except WebSocketDisconnect:
            logger.info("Twilio WebSocket disconnected")

    async def send_media(self, stream_id: str, payload: str) -> None:
        await self._send({"event": "media", "streamSid": stream_id, "media": {"payload": payload}})

    async def send_mark(self, stream_id: str, name: str) -> None:
        await self._send({"event": "mark", "streamSid": stream_id, "mark": {"name": name}})

    async def send_clear(self, stream_id: str) -> None:
        await self._send({"event": "clear", "streamSid": stream_id})

    async def close(self) -> None:
        if self.connected:
            await self.websocket.close()

    async def _send(self, frame: Dict[str, Any]) -> None:
        if not self.connected:
            logger.debug("Dropping %s frame, Twilio socket not connected", frame["event"])
            return
        await self.websocket.send_json(frame)
