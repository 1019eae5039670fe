"""
Post-call recording processing: download, transcription and booking extraction.
"""
import json
import logging
import os
from datetime import datetime
from typing import Optional
from zoneinfo import ZoneInfo

import httpx
from openai import AsyncOpenAI, OpenAIError

from config import (
    EXTRACTION_MODEL,
    EXTRACTION_TIMEZONE,
    OPENAI_API_KEY,
    TRANSCRIPTION_MODEL,
    TWILIO_ACCOUNT_SID,
    TWILIO_AUTH_TOKEN,
)
from models import BookingDetails
from utils import strip_code_fences

logger = logging.getLogger(__name__)

EXTRACTION_PROMPT = """You are a helpful assistant that extracts booking details from a restaurant call transcript.

Today's date (the day the call was made) is: {today}

Use this date as your reference to resolve relative date expressions:
- "tomorrow" -> add 1 day to today
- "next Friday" -> the next upcoming Friday from today
- "this Saturday" -> the coming Saturday

Identify the final confirmed booking details and return ONLY a raw JSON object with these exact fields:
- name (String): customer name
- date (String, format YYYY-MM-DD): the booking date resolved to a real calendar date
- time (String, format HH:mm in 24-hour): the booking time, e.g. "19:00"
- guests (Number): number of guests
- phoneNo (String): customer phone number
- allergy (String or null): ONLY the allergy name if one is mentioned, otherwise null
- notes (String or null): a short note about the allergy for the kitchen, otherwise null

Do NOT include any other fields. Do not use markdown formatting. Return ONLY the raw JSON object."""


def recording_download_url(url: str) -> str:
    """Twilio recording URLs carry no extension; ask for mp3 unless one is given."""
    if url.endswith(".mp3") or url.endswith(".wav"):
        return url
    return url + ".mp3"


async def download_recording(url: str, output_path: str, client: Optional[httpx.AsyncClient] = None) -> str:
    """Stream a Twilio recording to disk using account credentials for auth."""
    download_url = recording_download_url(url)
    os.makedirs(os.path.dirname(output_path) or ".", exist_ok=True)
    logger.info("Downloading %s -> %s", download_url, output_path)

    auth = (TWILIO_ACCOUNT_SID, TWILIO_AUTH_TOKEN) if TWILIO_ACCOUNT_SID and TWILIO_AUTH_TOKEN else None
    owns_client = client is None
    client = client or httpx.AsyncClient(timeout=30, follow_redirects=True)
    try:
        async with client.stream("GET", download_url, auth=auth) as response:
            response.raise_for_status()
            with open(output_path, "wb") as f:
                async for chunk in response.aiter_bytes():
                    f.write(chunk)
    finally:
        if owns_client:
            await client.aclose()
    logger.info("Download complete: %s", output_path)
    return output_path


async def transcribe_audio(file_path: str, client: Optional[AsyncOpenAI] = None) -> Optional[str]:
    """Transcribe a local recording. Returns None on failure so the pipeline can continue."""
    if not os.path.exists(file_path):
        logger.error("Transcription failed, file not found: %s", file_path)
        return None

    client = client or AsyncOpenAI(api_key=OPENAI_API_KEY)
    try:
        with open(file_path, "rb") as audio:
            result = await client.audio.transcriptions.create(model=TRANSCRIPTION_MODEL, file=audio)
    except OpenAIError as e:
        logger.error("Transcription failed for %s: %s", file_path, e)
        return None
    logger.info("Transcript for %s: %r", file_path, result.text)
    return result.text


def reference_date(now: Optional[datetime] = None) -> str:
    now = now or datetime.now(ZoneInfo(EXTRACTION_TIMEZONE))
    return now.strftime("%Y-%m-%d")


async def extract_booking(
    transcript: str,
    client: Optional[AsyncOpenAI] = None,
    today: Optional[str] = None,
) -> Optional[BookingDetails]:
    """Pull structured booking fields out of a call transcript with a chat model."""
    if not transcript:
        logger.warning("No transcript provided for extraction")
        return None

    today = today or reference_date()
    logger.info("Extracting booking data (reference date %s)", today)
    client = client or AsyncOpenAI(api_key=OPENAI_API_KEY)
    try:
        completion = await client.chat.completions.create(
            model=EXTRACTION_MODEL,
            messages=[
                {"role": "system", "content": EXTRACTION_PROMPT.format(today=today)},
                {"role": "user", "content": transcript},
            ],
            temperature=0,
        )
        content = completion.choices[0].message.content or ""
        data = json.loads(strip_code_fences(content))
    except (OpenAIError, ValueError, IndexError) as e:
        logger.error("Failed to extract booking data: %s", e)
        return None

    if not isinstance(data, dict):
        logger.error("Extraction returned %s instead of an object", type(data).__name__)
        return None
    booking = BookingDetails.from_dict(data)
    logger.info("Booking data extracted: %s", booking)
    return booking
