"""
OpenAI Realtime session for one call: connection lifecycle, session
configuration, outbound commands and inbound event decoding.
"""
import asyncio
import json
import logging
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, Optional
from urllib.parse import urlencode

import websockets
from websockets.exceptions import ConnectionClosed, InvalidHandshake, InvalidURI

from config import (
    GREETING_PROMPT,
    LOG_EVENT_TYPES,
    OPENAI_API_KEY,
    OPENAI_REALTIME_URL,
    SESSION_UPDATE_DELAY_S,
    TRANSCRIPT_EVENT_TYPES,
)
from models import AgentConnectionError, FrameError, Persona
from utils import decode_json_frame

logger = logging.getLogger(__name__)

AUDIO_DELTA = "audio-delta"
SPEECH_STARTED = "speech-started"
ERROR = "error"
TRANSCRIPT = "transcript"
OBSERVED = "observed"
UNKNOWN = "unknown"

AUDIO_DELTA_TYPES = ("response.output_audio.delta", "response.audio.delta")

# Raised by the server when VAD commits an empty buffer; harmless.
IGNORED_ERROR_CODES = ("input_audio_buffer_commit_empty",)


@dataclass(frozen=True)
class AgentEvent:
    kind: str
    type: str
    item_id: Optional[str] = None
    payload: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict)


def decode_event(message) -> AgentEvent:
    """Map a raw Realtime API message onto the event kinds the relay cares about."""
    data = decode_json_frame(message)
    t = data.get("type")
    if not isinstance(t, str):
        raise FrameError("agent event without type")

    if t in AUDIO_DELTA_TYPES:
        delta = data.get("delta")
        if not isinstance(delta, str) or not delta:
            raise FrameError(f"{t} without audio payload")
        return AgentEvent(AUDIO_DELTA, t, item_id=data.get("item_id"), payload=delta, raw=data)
    if t == "input_audio_buffer.speech_started":
        return AgentEvent(SPEECH_STARTED, t, raw=data)
    if t == "error":
        return AgentEvent(ERROR, t, raw=data)
    if t in TRANSCRIPT_EVENT_TYPES:
        return AgentEvent(TRANSCRIPT, t, item_id=data.get("item_id"), raw=data)
    if t in LOG_EVENT_TYPES:
        return AgentEvent(OBSERVED, t, raw=data)
    return AgentEvent(UNKNOWN, t, raw=data)


def build_session_update(persona: Persona) -> Dict[str, Any]:
    output: Dict[str, Any] = {"format": {"type": "audio/pcmu"}, "voice": persona.voice}
    if persona.speed is not None:
        output["speed"] = persona.speed
    return {
        "type": "session.update",
        "session": {
            "type": "realtime",
            "model": persona.model,
            "output_modalities": ["audio"],
            "audio": {
                "input": {
                    "format": {"type": "audio/pcmu"},
                    "turn_detection": {"type": "server_vad"},
                },
                "output": output,
            },
            "instructions": persona.instructions,
        },
    }


def build_greeting(text: str = GREETING_PROMPT) -> Dict[str, Any]:
    return {
        "type": "conversation.item.create",
        "item": {
            "type": "message",
            "role": "user",
            "content": [{"type": "input_text", "text": text}],
        },
    }


class AgentSession:
    """Duplex connection to the realtime voice endpoint for a single call."""

    def __init__(
        self,
        persona: Persona,
        api_key: Optional[str] = OPENAI_API_KEY,
        base_url: str = OPENAI_REALTIME_URL,
        connect=websockets.connect,
    ):
        self.persona = persona
        self.api_key = api_key
        self.base_url = base_url
        self._connect = connect
        self._ws = None
        self._closed = False

    @property
    def url(self) -> str:
        query = urlencode({"model": self.persona.model, "temperature": self.persona.temperature})
        return f"{self.base_url}?{query}"

    @property
    def is_open(self) -> bool:
        return self._ws is not None and not self._closed

    async def connect(self) -> None:
        try:
            self._ws = await self._connect(
                self.url,
                additional_headers={"Authorization": f"Bearer {self.api_key}"},
            )
        except (OSError, asyncio.TimeoutError, InvalidHandshake, InvalidURI) as e:
            raise AgentConnectionError(f"could not connect to {self.base_url}: {e}") from e
        logger.info("Connected to OpenAI Realtime for %s", self.persona.name)

    async def configure(self, delay: float = SESSION_UPDATE_DELAY_S) -> None:
        """Send the session configuration after the handshake has settled."""
        await asyncio.sleep(delay)
        await self._send(build_session_update(self.persona))

    async def send_greeting(self) -> None:
        """Seed a user turn so the agent speaks first."""
        await self._send(build_greeting(self.persona.greeting or GREETING_PROMPT))
        await self.request_response()

    async def append_audio(self, payload: str) -> None:
        await self._send({"type": "input_audio_buffer.append", "audio": payload})

    async def truncate(self, item_id: Optional[str], elapsed_ms: int) -> None:
        if not item_id or not self.is_open:
            return
        await self._send(
            {
                "type": "conversation.item.truncate",
                "item_id": item_id,
                "content_index": 0,
                "audio_end_ms": max(0, elapsed_ms),
            }
        )

    async def request_response(self) -> None:
        await self._send({"type": "response.create"})

    async def events(self) -> AsyncIterator[AgentEvent]:
        """Yield decoded events until the socket closes. Undecodable messages are skipped."""
        if self._ws is None:
            return
        try:
            async for message in self._ws:
                try:
                    yield decode_event(message)
                except FrameError as e:
                    logger.warning("Dropping agent message: %s", e)
        except ConnectionClosed as e:
            logger.info("OpenAI WebSocket closed: %s", e)
        finally:
            self._closed = True

    async def close(self) -> None:
        if self._ws is None or self._closed:
            return
        self._closed = True
        await self._ws.close()

    async def _send(self, event: Dict[str, Any]) -> None:
        if not self.is_open:
            logger.debug("Dropping %s, agent socket not open", event["type"])
            return
        try:
            await self._ws.send(json.dumps(event))
        except ConnectionClosed:
            logger.warning("Agent socket closed while sending %s", event["type"])
            self._closed = True
