"""
Playback bookkeeping for agent audio relayed to the caller.

Every audio chunk sent to Twilio is followed by a mark; Twilio echoes the mark
back once the chunk has been played. The queue of unconfirmed marks tells us
whether the agent is still audible to the caller, and the inbound media clock
tells us roughly how much of the current utterance they heard.
"""
import logging
from dataclasses import dataclass
from typing import Optional

from config import MARK_NAME, SHOW_TIMING_MATH
from models import CallSession

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Interruption:
    """What the relay must do when the caller barges in."""

    item_id: Optional[str]
    elapsed_ms: int


class PlaybackTracker:
    """Mark/timing state machine for one call. Performs no I/O."""

    def __init__(self, session: CallSession):
        self.session = session

    @property
    def pending_marks(self) -> int:
        return len(self.session.mark_queue)

    def on_media(self, timestamp: int) -> None:
        """Advance the reference clock from an inbound media frame."""
        self.session.latest_media_timestamp = timestamp

    def on_audio_delta(self, item_id: Optional[str]) -> str:
        """Track one relayed audio chunk and return the mark name to request."""
        state = self.session
        if state.response_start_timestamp is None:
            state.response_start_timestamp = state.latest_media_timestamp
        if item_id:
            state.last_assistant_item = item_id
        state.mark_queue.append(MARK_NAME)
        return MARK_NAME

    def on_mark(self) -> None:
        """
        Consume one playback confirmation.

        Confirmations are matched by position, never by name; a stray one with
        nothing outstanding is ignored.
        """
        state = self.session
        if not state.mark_queue:
            logger.debug("Mark confirmation with empty queue for %s", state.stream_id)
            return
        state.mark_queue.popleft()
        if not state.mark_queue:
            # Utterance fully played; the next delta starts a new measurement.
            state.response_start_timestamp = None

    def interrupt(self) -> Optional[Interruption]:
        """
        Handle caller speech. Returns None when the agent is not audible,
        otherwise resets playback state and describes the truncate/clear to send.
        """
        state = self.session
        if not state.mark_queue or state.response_start_timestamp is None:
            return None

        elapsed = max(0, state.latest_media_timestamp - state.response_start_timestamp)
        if SHOW_TIMING_MATH:
            logger.info(
                "[truncate] latest=%s - start=%s = %sms",
                state.latest_media_timestamp,
                state.response_start_timestamp,
                elapsed,
            )
        interruption = Interruption(item_id=state.last_assistant_item, elapsed_ms=elapsed)

        state.mark_queue.clear()
        state.last_assistant_item = None
        state.response_start_timestamp = None
        return interruption
