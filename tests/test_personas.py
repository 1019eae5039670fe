import json
from datetime import datetime, timezone

import pytest

from conftest import StaticConfigProvider
from models import ConfigUpdateError
from personas import (
    DEFAULT_CONFIG,
    ConfigSnapshot,
    JsonConfigProvider,
    PersonaResolver,
    resolve_persona,
)

# A Monday, 10:00 in Johannesburg
MONDAY = datetime(2024, 6, 3, 8, 0, tzinfo=timezone.utc)


def snapshot(**overrides):
    data = dict(DEFAULT_CONFIG, **overrides)
    return ConfigSnapshot.from_dict(data, taken_at=MONDAY)


@pytest.mark.parametrize(
    "caller, persona_id",
    [
        ("+918930276263", "ryan"),
        ("+27844500010", "ryan"),
        ("+27765575522", "bjorn"),
        ("+15550001111", "billy"),
        (None, "billy"),
    ],
)
def test_routing_by_caller(caller, persona_id):
    assert resolve_persona(caller, snapshot()).id == persona_id


def test_resolution_is_deterministic():
    snap = snapshot()
    assert resolve_persona("+27765575522", snap) == resolve_persona("+27765575522", snap)


def test_unknown_persona_in_config_falls_back():
    persona = resolve_persona("+1", snapshot(defaultPersona="nobody"))
    assert persona.id == "billy"


def test_bjorn_prompt_reflects_deposit_and_hours():
    snap = snapshot(settings={"depositAmount": 250, "currency": "ZAR"})
    persona = resolve_persona("+27765575522", snap)

    assert "250 ZAR" in persona.instructions
    assert "Today is Monday" in persona.instructions
    assert "from 12:00 to 22:00" in persona.instructions
    assert persona.model == "gpt-realtime-mini"


def test_hours_today_closed_when_missing():
    snap = snapshot(operatingHours={"Tuesday": {"open": "10:00", "close": "20:00"}})
    assert snap.hours_today() == {"open": "Closed", "close": "Closed"}


def test_unknown_timezone_uses_utc():
    snap = snapshot(settings={"timezone": "Mars/Olympus"})
    assert snap.local_weekday() == "Monday"


def test_resolver_falls_back_when_provider_fails():
    class Broken:
        def get_current(self):
            raise RuntimeError("disk gone")

    assert PersonaResolver(Broken()).resolve("+27765575522").id == "bjorn"


def test_resolver_uses_provider_routes():
    provider = StaticConfigProvider(dict(DEFAULT_CONFIG, routes={"+15550001111": "ryan"}))
    assert PersonaResolver(provider).resolve("+15550001111").id == "ryan"


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "prompts.json"
    path.write_text(json.dumps(DEFAULT_CONFIG))
    return path


def test_json_provider_reads_file(config_file):
    data = dict(DEFAULT_CONFIG, defaultPersona="ryan")
    config_file.write_text(json.dumps(data))
    assert JsonConfigProvider(str(config_file)).get_current().default_persona == "ryan"


def test_json_provider_missing_file_uses_defaults(tmp_path):
    provider = JsonConfigProvider(str(tmp_path / "missing.json"))
    assert provider.get_current().restaurant_id == "bjorns_steakhouse"


def test_update_merges_settings_and_hours(config_file):
    provider = JsonConfigProvider(str(config_file))
    updated = provider.update(
        {
            "restaurantId": "bjorns_steakhouse",
            "settings": {"depositAmount": 150},
            "operatingHours": {"Monday": {"open": "09:00", "close": "17:00"}},
        }
    )

    assert updated["settings"] == {"depositAmount": 150, "currency": "ZAR", "timezone": "Africa/Johannesburg"}
    assert updated["operatingHours"]["Monday"] == {"open": "09:00", "close": "17:00"}
    assert updated["operatingHours"]["Friday"] == {"open": "12:00", "close": "23:00"}
    assert json.loads(config_file.read_text()) == updated
    assert provider.get_current().deposit_amount == 150


def test_update_rejects_missing_restaurant_id(config_file):
    with pytest.raises(ConfigUpdateError) as excinfo:
        JsonConfigProvider(str(config_file)).update({"settings": {}})
    assert excinfo.value.status_code == 400


def test_update_rejects_wrong_restaurant_id(config_file):
    with pytest.raises(ConfigUpdateError) as excinfo:
        JsonConfigProvider(str(config_file)).update({"restaurantId": "other"})
    assert excinfo.value.status_code == 400
    assert "bjorns_steakhouse" in str(excinfo.value)


def test_update_without_file_is_not_found(tmp_path):
    with pytest.raises(ConfigUpdateError) as excinfo:
        JsonConfigProvider(str(tmp_path / "missing.json")).update({"restaurantId": "bjorns_steakhouse"})
    assert excinfo.value.status_code == 404


def test_personas_carry_their_greeting():
    snap = snapshot()
    assert "Welcome to Ryan's Steakhouse" in resolve_persona("+27844500010", snap).greeting
    assert "Welcome to Billy's Steakhouse" in resolve_persona(None, snap).greeting
    # Bjorn's prompt scripts its own greeting step
    assert resolve_persona("+27765575522", snap).greeting is None
