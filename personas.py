"""
Persona catalog, configuration provider and caller -> persona resolution.

Resolution is a pure function of the caller id and one configuration snapshot
taken when the call starts; nothing here is re-evaluated mid-call.
"""
import json
import logging
import os
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional, Protocol
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from config import PERSONA_CONFIG_PATH, TEMPERATURE
from models import ConfigUpdateError, Persona

logger = logging.getLogger(__name__)

DEFAULT_CONFIG: Dict[str, Any] = {
    "restaurantId": "bjorns_steakhouse",
    "settings": {"depositAmount": 100, "currency": "ZAR", "timezone": "Africa/Johannesburg"},
    "operatingHours": {
        "Monday": {"open": "12:00", "close": "22:00"},
        "Tuesday": {"open": "12:00", "close": "22:00"},
        "Wednesday": {"open": "12:00", "close": "22:00"},
        "Thursday": {"open": "12:00", "close": "22:00"},
        "Friday": {"open": "12:00", "close": "23:00"},
        "Saturday": {"open": "12:00", "close": "23:00"},
        "Sunday": {"open": "12:00", "close": "21:00"},
    },
    "routes": {
        "+918930276263": "ryan",
        "+27844500010": "ryan",
        "+27765575522": "bjorn",
    },
    "defaultPersona": "billy",
}


@dataclass(frozen=True)
class ConfigSnapshot:
    """Read-only view of the persona configuration at one instant."""

    restaurant_id: str
    deposit_amount: Any
    currency: str
    timezone: str
    operating_hours: Dict[str, Dict[str, str]] = field(default_factory=dict)
    routes: Dict[str, str] = field(default_factory=dict)
    default_persona: str = "billy"
    taken_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @classmethod
    def from_dict(cls, data: Dict[str, Any], taken_at: Optional[datetime] = None) -> "ConfigSnapshot":
        settings = {**DEFAULT_CONFIG["settings"], **(data.get("settings") or {})}
        return cls(
            restaurant_id=data.get("restaurantId", DEFAULT_CONFIG["restaurantId"]),
            deposit_amount=settings["depositAmount"],
            currency=settings["currency"],
            timezone=settings["timezone"],
            operating_hours=dict(data.get("operatingHours") or DEFAULT_CONFIG["operatingHours"]),
            routes=dict(data.get("routes") or DEFAULT_CONFIG["routes"]),
            default_persona=data.get("defaultPersona") or DEFAULT_CONFIG["defaultPersona"],
            taken_at=taken_at or datetime.now(timezone.utc),
        )

    def local_weekday(self) -> str:
        try:
            tz = ZoneInfo(self.timezone)
        except (ZoneInfoNotFoundError, ValueError):
            logger.warning("Unknown timezone %r, using UTC", self.timezone)
            tz = timezone.utc
        return self.taken_at.astimezone(tz).strftime("%A")

    def hours_today(self) -> Dict[str, str]:
        return self.operating_hours.get(self.local_weekday()) or {"open": "Closed", "close": "Closed"}


# =============================
# Prompts
# =============================
BILLYS_PROMPT = (
    "You are a receptionist at Billy's Steakhouse. "
    "Start by saying: \"Hello! Welcome to Billy's Steakhouse.\"\n"
    "Take table reservations: ask for the name, phone number, date and time, "
    "party size and any allergies, one question at a time. "
    "Confirm the details back to the caller before ending the call. "
    "Keep answers short, warm and professional."
)


def _hours_context(snapshot: ConfigSnapshot) -> str:
    today = snapshot.local_weekday()
    hours = snapshot.hours_today()
    return (
        "Operating Hours Context\n"
        f"- Today is {today}.\n"
        f"- The restaurant is open from {hours['open']} to {hours['close']}.\n"
        "- If the caller asks for a time outside these hours, politely decline: "
        f"\"Sorry, we are only open from {hours['open']} to {hours['close']} today.\"\n"
        "- Do NOT accept any booking for a time we are closed.\n"
    )


def ryans_prompt(snapshot: ConfigSnapshot) -> str:
    return (
        "You are a receptionist at Ryan's Steakhouse. "
        "Start by saying: \"Hey there! Welcome to Ryan's Steakhouse.\"\n"
        "Handle table reservations: collect name, phone number, date and time, "
        "party size and allergies. Never re-ask for details the caller already gave.\n\n"
        + _hours_context(snapshot)
    )


def bjorns_prompt(snapshot: ConfigSnapshot) -> str:
    deposit = f"{snapshot.deposit_amount} {snapshot.currency}"
    return (
        "You are an AI voice assistant for Bjorn's Steak House, a fine-dining restaurant "
        "specializing in premium steaks. Handle table reservations politely, professionally "
        "and efficiently, like a warm and confident human host.\n\n"
        "Goal\n"
        "Collect all booking details naturally, confirm them, and explain that a secure "
        f"payment link for a {deposit} per person deposit will be sent right after the call "
        "to confirm the reservation.\n\n"
        + _hours_context(snapshot)
        + "\nReservation Flow\n"
        "1. Greeting: \"Hello! Welcome to Bjorn's Steak House. I'm the AI booking assistant. "
        "How can I help with a reservation today?\"\n"
        "2. Name for the reservation (skip if already given).\n"
        "3. Best phone number for the confirmation and payment link.\n"
        "4. Preferred date and time, checked against today's operating hours.\n"
        "5. Number of guests.\n"
        "6. Allergies anyone in the party has.\n"
        "7. Recap name, guests, date, time, phone and allergies and ask if it is correct.\n\n"
        "Deposit and Payment Policy\n"
        f"\"To confirm your table, there's a deposit of {deposit} per person. "
        "A secure payment link will be sent right after this call.\"\n\n"
        "Tone: friendly, calm and brief. If a mistake happens, acknowledge it and correct it "
        "without over-apologizing."
    )


@dataclass(frozen=True)
class PersonaTemplate:
    id: str
    name: str
    model: str
    voice: str
    instructions: Callable[[ConfigSnapshot], str]
    temperature: float = TEMPERATURE
    speed: Optional[float] = None
    greeting: Optional[str] = None

    def build(self, snapshot: ConfigSnapshot) -> Persona:
        return Persona(
            id=self.id,
            name=self.name,
            model=self.model,
            voice=self.voice,
            instructions=self.instructions(snapshot),
            temperature=self.temperature,
            speed=self.speed,
            greeting=self.greeting,
        )


PERSONAS: Dict[str, PersonaTemplate] = {
    "billy": PersonaTemplate(
        id="billy",
        name="Billy's Steakhouse",
        model="gpt-4o-realtime-preview",
        voice="cedar",
        instructions=lambda snapshot: BILLYS_PROMPT,
        greeting="Greet the caller: \"Hello! Welcome to Billy's Steakhouse.\"",
    ),
    "ryan": PersonaTemplate(
        id="ryan",
        name="Ryan's Steakhouse",
        model="gpt-realtime-mini",
        voice="marin",
        instructions=ryans_prompt,
        greeting="Greet the caller: \"Hey there! Welcome to Ryan's Steakhouse.\"",
    ),
    "bjorn": PersonaTemplate(
        id="bjorn",
        name="Bjorn's Steakhouse",
        model="gpt-realtime-mini",
        voice="marin",
        instructions=bjorns_prompt,
    ),
}
FALLBACK_PERSONA = "billy"


def resolve_persona(caller_id: Optional[str], snapshot: ConfigSnapshot) -> Persona:
    """Pick the persona for a caller. Unknown callers get the default persona."""
    persona_id = snapshot.routes.get(caller_id or "")
    if persona_id is None:
        logger.info("No specific match for %s, defaulting to %s", caller_id, snapshot.default_persona)
        persona_id = snapshot.default_persona
    template = PERSONAS.get(persona_id)
    if template is None:
        logger.warning("Unknown persona %r configured, using %s", persona_id, FALLBACK_PERSONA)
        template = PERSONAS[FALLBACK_PERSONA]
    return template.build(snapshot)


# =============================
# Configuration provider
# =============================
class ConfigProvider(Protocol):
    def get_current(self) -> ConfigSnapshot:
        ...


class JsonConfigProvider:
    """
    Persona configuration backed by a JSON file.

    The parsed file is cached and re-read only when its mtime changes, so an
    edit made through update() or by hand is picked up by the next call.
    """

    def __init__(self, path: str = PERSONA_CONFIG_PATH):
        self.path = path
        self._cached: Optional[Dict[str, Any]] = None
        self._mtime: Optional[float] = None

    def _load(self) -> Dict[str, Any]:
        try:
            mtime = os.path.getmtime(self.path)
        except OSError:
            return DEFAULT_CONFIG
        if self._cached is None or mtime != self._mtime:
            try:
                with open(self.path, "r", encoding="utf-8") as f:
                    self._cached = json.load(f)
                self._mtime = mtime
            except (OSError, ValueError) as e:
                logger.warning("Could not read persona config %s: %s", self.path, e)
                return self._cached or DEFAULT_CONFIG
        return self._cached

    def get_current(self) -> ConfigSnapshot:
        return ConfigSnapshot.from_dict(self._load())

    def update(self, updates: Dict[str, Any]) -> Dict[str, Any]:
        """Merge settings/operatingHours into the config file and return the result."""
        if not os.path.exists(self.path):
            raise ConfigUpdateError("Configuration file not found", status_code=404)
        with open(self.path, "r", encoding="utf-8") as f:
            current = json.load(f)

        restaurant_id = updates.get("restaurantId")
        if not restaurant_id:
            raise ConfigUpdateError("Missing required field: restaurantId")
        if restaurant_id != current.get("restaurantId"):
            raise ConfigUpdateError(
                f"Invalid restaurantId. Expected: {current.get('restaurantId')}, Received: {restaurant_id}"
            )

        if updates.get("settings"):
            current["settings"] = {**current.get("settings", {}), **updates["settings"]}
        if updates.get("operatingHours"):
            current["operatingHours"] = {**current.get("operatingHours", {}), **updates["operatingHours"]}

        with open(self.path, "w", encoding="utf-8") as f:
            json.dump(current, f, indent=2)
        logger.info("Persona config %s updated", self.path)
        return current


class PersonaResolver:
    """Resolves a caller to a persona against the provider's current snapshot."""

    def __init__(self, provider: ConfigProvider):
        self.provider = provider

    def resolve(self, caller_id: Optional[str]) -> Persona:
        try:
            snapshot = self.provider.get_current()
        except Exception:
            logger.exception("Config provider failed, using built-in defaults")
            snapshot = ConfigSnapshot.from_dict(DEFAULT_CONFIG)
        return resolve_persona(caller_id, snapshot)
