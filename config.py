"""
Configuration and constants for the call relay.
"""
import os
from dotenv import load_dotenv

load_dotenv()

# =============================
# Server Configuration
# =============================
HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", 8080))
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

# =============================
# OpenAI Realtime Configuration
# =============================
OPENAI_API_KEY = os.getenv("OPENAI_API_KEY")
OPENAI_REALTIME_URL = os.getenv("OPENAI_REALTIME_URL", "wss://api.openai.com/v1/realtime")
TEMPERATURE = float(os.getenv("TEMPERATURE", "0.8"))

# Some endpoints reject session.update sent immediately after the handshake.
SESSION_UPDATE_DELAY_S = float(os.getenv("SESSION_UPDATE_DELAY_S", "0.1"))

GREETING_PROMPT = "Say your greeting."

# Observational events: logged, never change relay state.
LOG_EVENT_TYPES = [
    "response.content.done",
    "response.content_part.done",
    "rate_limits.updated",
    "response.done",
    "input_audio_buffer.committed",
    "input_audio_buffer.speech_stopped",
    "session.created",
    "session.updated",
]

TRANSCRIPT_EVENT_TYPES = [
    "conversation.item.input_audio_transcription.delta",
    "conversation.item.input_audio_transcription.completed",
    "response.output_audio_transcript.done",
]

# Print the interruption math on every barge-in.
SHOW_TIMING_MATH = os.getenv("SHOW_TIMING_MATH", "false").lower() == "true"

# =============================
# Twilio Configuration
# =============================
TWILIO_ACCOUNT_SID = os.getenv("TWILIO_ACCOUNT_SID")
TWILIO_AUTH_TOKEN = os.getenv("TWILIO_AUTH_TOKEN")
TWILIO_PHONE_NUMBER = os.getenv("TWILIO_PHONE_NUMBER")

# Name of the acknowledgement token requested after every outbound audio chunk
MARK_NAME = "responsePart"

# =============================
# Persona Configuration
# =============================
PERSONA_CONFIG_PATH = os.getenv("PERSONA_CONFIG_PATH", "prompts.json")

# Bot phone number -> restaurant id, used when creating call records
RESTAURANT_BY_BOT_NUMBER = {
    "+1234567890": "restaurant_A",
    "+0987654321": "restaurant_B",
}
DEFAULT_RESTAURANT_ID = "default_restaurant"

# =============================
# Post-call Pipeline
# =============================
RECORDINGS_DIR = os.getenv("RECORDINGS_DIR", "recordings")
TRANSCRIPTION_MODEL = os.getenv("TRANSCRIPTION_MODEL", "whisper-1")
EXTRACTION_MODEL = os.getenv("EXTRACTION_MODEL", "gpt-4")
EXTRACTION_TIMEZONE = os.getenv("EXTRACTION_TIMEZONE", "Africa/Johannesburg")

PAYMENT_BASE_URL = os.getenv("PAYMENT_FRONTEND_URL", "http://localhost:3000")
SMS_DEFAULT_COUNTRY_CODE = os.getenv("SMS_DEFAULT_COUNTRY_CODE", "91")

# =============================
# Resend Email Configuration
# =============================
RESEND_API_KEY = os.getenv("RESEND_API_KEY")
RESEND_FROM = os.getenv("RESEND_FROM", "bookings@example.com")

# Email recipients
email_string = os.environ.get("EMAIL_RECIPIENTS", "")
BOOKING_RECIPIENTS = [email.strip() for email in email_string.split(",") if email.strip()]
