"""
Per-call relay between the Twilio media stream and the OpenAI Realtime agent.

Both sockets are read by their own pump task, but every state change and every
outbound send happens in CallRelay.run(), which consumes a single inbox queue.
"""
import asyncio
import logging
from typing import Any, Callable, Optional, Set

from fastapi import WebSocket

from agent_session import (
    AUDIO_DELTA,
    ERROR,
    IGNORED_ERROR_CODES,
    OBSERVED,
    SPEECH_STARTED,
    TRANSCRIPT,
    AgentEvent,
    AgentSession,
)
from models import AgentConnectionError, CallSession, CallState, FrameError
from personas import PersonaResolver
from playback import PlaybackTracker
from twilio_stream import MarkFrame, MediaFrame, StartFrame, StopFrame, TwilioChannel, parse_frame
from utils import safe_task

logger = logging.getLogger(__name__)

# Inbox sources
TELEPHONY = "telephony"
AGENT = "agent"
AGENT_READY = "agent-ready"
AGENT_FAILED = "agent-failed"
PEER_CLOSED = "peer-closed"

CallEndHook = Callable[[Optional[str], float], None]


class CallRelay:
    """Owns one phone call from the Twilio connect until both legs are closed."""

    def __init__(
        self,
        channel: TwilioChannel,
        resolver: PersonaResolver,
        agent_factory: Callable[..., AgentSession] = AgentSession,
        on_call_end: Optional[CallEndHook] = None,
        greet_first: bool = True,
    ):
        self.channel = channel
        self.resolver = resolver
        self.agent_factory = agent_factory
        self.on_call_end = on_call_end
        self.greet_first = greet_first
        self.session = CallSession()
        self.tracker = PlaybackTracker(self.session)
        self.agent: Optional[AgentSession] = None
        self._inbox: asyncio.Queue = asyncio.Queue()
        self._tasks: Set[asyncio.Task] = set()

    @property
    def state(self) -> CallState:
        return self.session.state

    async def run(self) -> None:
        self._spawn(self._pump_telephony(), "twilio->relay")
        try:
            while self.session.state not in (CallState.CLOSING, CallState.CLOSED):
                source, item = await self._inbox.get()
                try:
                    await self.dispatch(source, item)
                except Exception:
                    logger.exception("Relay failed handling %s for %s", source, self.session.stream_id)
                    self._begin_closing("relay error")
        finally:
            await self.shutdown()

    async def dispatch(self, source: str, item: Any) -> None:
        if source == TELEPHONY:
            await self.handle_telephony_message(item)
        elif source == AGENT:
            await self.handle_agent_event(item)
        elif source == AGENT_READY:
            await self._on_agent_ready()
        elif source == AGENT_FAILED:
            logger.error("Agent connection failed for %s: %s", self.session.stream_id, item)
            self._begin_closing("agent connection failed")
        elif source == PEER_CLOSED:
            self._begin_closing(f"{item} socket closed")

    # =============================
    # Telephony leg
    # =============================
    async def handle_telephony_message(self, message: str) -> None:
        try:
            frame = parse_frame(message)
        except FrameError as e:
            logger.warning("Dropping Twilio frame for %s: %s", self.session.stream_id, e)
            return

        if isinstance(frame, MediaFrame):
            await self._on_media(frame)
        elif isinstance(frame, StartFrame):
            await self._on_start(frame)
        elif isinstance(frame, MarkFrame):
            self.tracker.on_mark()
        elif isinstance(frame, StopFrame):
            self._begin_closing("telephony stop")
        else:
            logger.debug("Ignoring Twilio %s event", frame.event)

    async def _on_start(self, frame: StartFrame) -> None:
        if not self.session.assign_stream(frame.stream_id, frame.call_id, frame.caller_id):
            logger.warning(
                "Ignoring second start frame %s on stream %s", frame.stream_id, self.session.stream_id
            )
            return

        persona = self.resolver.resolve(frame.caller_id)
        self.session.persona = persona
        self.session.state = CallState.CONNECTING_AGENT
        logger.info(
            "Stream %s started (call %s, caller %s), persona %s",
            frame.stream_id,
            frame.call_id,
            frame.caller_id,
            persona.name,
        )
        self.agent = self.agent_factory(persona)
        self._spawn(self._connect_agent(self.agent), "connect-agent")

    async def _on_media(self, frame: MediaFrame) -> None:
        self.tracker.on_media(frame.timestamp)
        if self.session.state != CallState.ACTIVE:
            logger.debug("Dropping caller audio at %sms, agent not ready", frame.timestamp)
            return
        await self.agent.append_audio(frame.payload)

    # =============================
    # Agent leg
    # =============================
    async def _connect_agent(self, agent: AgentSession) -> None:
        try:
            await agent.connect()
        except AgentConnectionError as e:
            self._post(AGENT_FAILED, e)
            return
        except Exception as e:
            logger.exception("Unexpected error opening agent connection")
            self._post(AGENT_FAILED, e)
            return
        self._spawn(self._pump_agent(agent), "openai->relay")
        self._spawn(self._configure_agent(agent), "configure-agent")

    async def _configure_agent(self, agent: AgentSession) -> None:
        try:
            await agent.configure()
        except Exception as e:
            logger.exception("Agent session configuration failed")
            self._post(AGENT_FAILED, e)
            return
        self._post(AGENT_READY, None)

    async def _on_agent_ready(self) -> None:
        if self.session.state != CallState.CONNECTING_AGENT:
            return
        self.session.state = CallState.ACTIVE
        logger.info("Stream %s active", self.session.stream_id)
        if self.greet_first:
            await self.agent.send_greeting()

    async def handle_agent_event(self, event: AgentEvent) -> None:
        if event.kind == AUDIO_DELTA:
            await self._relay_audio(event)
        elif event.kind == SPEECH_STARTED:
            logger.info("Speech started at %sms", self.session.latest_media_timestamp)
            await self.barge_in()
        elif event.kind == ERROR:
            error = event.raw.get("error")
            if isinstance(error, dict) and error.get("code") in IGNORED_ERROR_CODES:
                return
            logger.error("OpenAI error event on %s: %s", self.session.stream_id, error)
        elif event.kind == TRANSCRIPT:
            transcript = event.raw.get("transcript") or event.raw.get("delta")
            if isinstance(transcript, str) and transcript.strip():
                speaker = "BOT" if event.type.startswith("response.") else "USER"
                logger.info("%s: %s", speaker, transcript.strip())
        elif event.kind == OBSERVED:
            logger.info("OpenAI event: %s", event.type)
        else:
            logger.debug("Unhandled OpenAI event: %s", event.type)

    async def _relay_audio(self, event: AgentEvent) -> None:
        stream_id = self.session.stream_id
        if self.session.state != CallState.ACTIVE or not stream_id:
            logger.debug("Dropping agent audio, call is %s", self.session.state.value)
            return
        await self.channel.send_media(stream_id, event.payload)
        mark = self.tracker.on_audio_delta(event.item_id)
        await self.channel.send_mark(stream_id, mark)

    async def barge_in(self) -> None:
        """Cut the agent off when the caller starts talking over it."""
        interruption = self.tracker.interrupt()
        if interruption is None:
            return
        logger.info(
            "Interruption on %s, cancelling agent audio after %sms",
            self.session.stream_id,
            interruption.elapsed_ms,
        )
        if interruption.item_id and self.agent is not None:
            await self.agent.truncate(interruption.item_id, interruption.elapsed_ms)
        await self.channel.send_clear(self.session.stream_id)

    # =============================
    # Pumps and teardown
    # =============================
    async def _pump_telephony(self) -> None:
        try:
            async for message in self.channel.messages():
                self._post(TELEPHONY, message)
        finally:
            self._post(PEER_CLOSED, "telephony")

    async def _pump_agent(self, agent: AgentSession) -> None:
        try:
            async for event in agent.events():
                self._post(AGENT, event)
        finally:
            self._post(PEER_CLOSED, "agent")

    def _post(self, source: str, item: Any) -> None:
        self._inbox.put_nowait((source, item))

    def _spawn(self, coro, name: str) -> asyncio.Task:
        task = asyncio.create_task(safe_task(coro, name), name=name)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def _begin_closing(self, reason: str) -> None:
        if self.session.state in (CallState.CLOSING, CallState.CLOSED):
            return
        logger.info("Closing call on stream %s: %s", self.session.stream_id, reason)
        self.session.state = CallState.CLOSING

    async def shutdown(self) -> None:
        if self.session.state == CallState.CLOSED:
            return
        self.session.state = CallState.CLOSING

        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

        if self.agent is not None:
            await safe_task(self.agent.close(), "close-agent")
        await safe_task(self.channel.close(), "close-twilio")

        self.session.state = CallState.CLOSED
        duration = self.session.duration_seconds()
        logger.info("Call %s closed after %ss", self.session.call_id, duration)
        if self.on_call_end is not None:
            try:
                self.on_call_end(self.session.call_id, duration)
            except Exception:
                logger.exception("Call end report failed for %s", self.session.call_id)


async def handle_media_stream(
    websocket: WebSocket,
    resolver: PersonaResolver,
    on_call_end: Optional[CallEndHook] = None,
) -> None:
    """FastAPI WebSocket entry point for Twilio <Stream> connections."""
    await websocket.accept()
    logger.info("Twilio client connected")
    relay = CallRelay(TwilioChannel(websocket), resolver, on_call_end=on_call_end)
    await relay.run()
