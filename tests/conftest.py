import asyncio
import json
import os
from typing import Any, Dict, List, Optional

import pytest
from starlette.websockets import WebSocketState

os.environ.setdefault("OPENAI_API_KEY", "sk-test")

from models import AgentConnectionError, Persona  # noqa: E402
from personas import DEFAULT_CONFIG, ConfigSnapshot, PersonaResolver  # noqa: E402


class FakeWebSocket:
    """Stand-in for an accepted FastAPI WebSocket; inbound frames are fed through a queue."""

    def __init__(self):
        self.client_state = WebSocketState.CONNECTED
        self.sent: List[Dict[str, Any]] = []
        self.accepted = False
        self.closed = False
        self._inbound: asyncio.Queue = asyncio.Queue()

    def feed(self, frame: Optional[Dict[str, Any]]) -> None:
        """Queue one inbound frame; None ends the stream."""
        self._inbound.put_nowait(None if frame is None else json.dumps(frame))

    def feed_raw(self, text: str) -> None:
        self._inbound.put_nowait(text)

    async def accept(self):
        self.accepted = True

    async def iter_text(self):
        while True:
            message = await self._inbound.get()
            if message is None:
                return
            yield message

    async def send_json(self, data):
        self.sent.append(data)

    async def close(self):
        self.closed = True
        self.client_state = WebSocketState.DISCONNECTED

    def events(self) -> List[str]:
        return [frame["event"] for frame in self.sent]


class FakeAgent:
    """Records the commands the relay issues instead of talking to OpenAI."""

    def __init__(self, persona: Optional[Persona] = None, fail_connect: bool = False):
        self.persona = persona
        self.fail_connect = fail_connect
        self.sent: List[Dict[str, Any]] = []
        self.connected = False
        self.configured = False
        self.closed = False
        self._events: asyncio.Queue = asyncio.Queue()

    async def connect(self):
        if self.fail_connect:
            raise AgentConnectionError("refused")
        self.connected = True

    async def configure(self, delay: float = 0):
        self.configured = True

    async def events(self):
        while True:
            event = await self._events.get()
            if event is None:
                return
            yield event

    def push(self, event) -> None:
        self._events.put_nowait(event)

    async def send_greeting(self):
        self.sent.append({"type": "greeting"})

    async def append_audio(self, payload: str):
        self.sent.append({"type": "input_audio_buffer.append", "audio": payload})

    async def truncate(self, item_id, elapsed_ms):
        self.sent.append({"type": "conversation.item.truncate", "item_id": item_id, "audio_end_ms": elapsed_ms})

    async def close(self):
        self.closed = True

    def types(self) -> List[str]:
        return [event["type"] for event in self.sent]


class StaticConfigProvider:
    def __init__(self, data: Optional[Dict[str, Any]] = None):
        self.data = data or DEFAULT_CONFIG

    def get_current(self) -> ConfigSnapshot:
        return ConfigSnapshot.from_dict(self.data)


@pytest.fixture
def persona():
    return Persona(
        id="test",
        name="Test Steakhouse",
        model="gpt-realtime-mini",
        voice="marin",
        instructions="Be brief.",
    )


@pytest.fixture
def resolver():
    return PersonaResolver(StaticConfigProvider())


@pytest.fixture
def fake_ws():
    return FakeWebSocket()


@pytest.fixture
def fake_agent():
    return FakeAgent()
