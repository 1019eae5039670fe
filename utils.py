"""
Utility functions for the call relay.
"""
import json
import logging
from typing import Any, Dict, Union

from models import FrameError

logger = logging.getLogger(__name__)


def decode_json_frame(message: Union[str, bytes, bytearray]) -> Dict[str, Any]:
    """Decode one WebSocket text frame into a dict, raising FrameError otherwise."""
    try:
        data = json.loads(message if isinstance(message, str) else message.decode())
    except (UnicodeDecodeError, ValueError) as e:
        raise FrameError(f"invalid JSON frame: {e}") from e
    if not isinstance(data, dict):
        raise FrameError(f"expected a JSON object, got {type(data).__name__}")
    return data


def strip_code_fences(text: str) -> str:
    """Remove markdown ```json fences some models wrap around JSON output."""
    return text.replace("```json", "").replace("```", "").strip()


async def safe_task(coro, name: str = "task"):
    """Await a coroutine, logging instead of propagating unexpected failures."""
    try:
        return await coro
    except Exception:
        logger.exception("%s failed", name)
        return None
