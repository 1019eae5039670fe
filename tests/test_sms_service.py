from types import SimpleNamespace

import pytest
from twilio.base.exceptions import TwilioException

from models import BookingDetails
from sms_service import SmsService, build_payment_message, format_phone_number


class FakeMessages:
    def __init__(self, error=None):
        self.error = error
        self.created = []

    def create(self, **kwargs):
        if self.error:
            raise self.error
        self.created.append(kwargs)
        return SimpleNamespace(sid="SM123", status="queued")


def make_service(error=None, from_number="+15550009999"):
    messages = FakeMessages(error)
    client = SimpleNamespace(messages=messages)
    service = SmsService(client=client, from_number=from_number, payment_base_url="https://pay.example/")
    return service, messages


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("+91 89302 76263", "+918930276263"),
        ("08930276263", "+918930276263"),
        ("8930276263", "+918930276263"),
        ("", None),
        (None, None),
        ("n/a", None),
    ],
)
def test_format_phone_number(raw, expected):
    assert format_phone_number(raw, "91") == expected


def test_format_phone_number_other_country():
    assert format_phone_number("083 123 4567", "27") == "+27831234567"


def test_payment_message_wording():
    body = build_payment_message("Ana", 1, "https://pay/x", "Bjorn's", "2024-06-07", "19:00")
    assert "table for 1 person" in body
    assert "on 2024-06-07 at 19:00" in body
    assert "https://pay/x" in body


def test_send_payment_sms_builds_link():
    service, messages = make_service()
    result = service.send_payment_sms("Ana", "8930276263", 4, "pay-1")

    assert result.success
    assert result.sid == "SM123"
    sent = messages.created[0]
    assert sent["to"] == "+918930276263"
    assert sent["from_"] == "+15550009999"
    assert "https://pay.example/payment/pay-1" in sent["body"]
    assert "4 people" in sent["body"]


def test_send_payment_sms_reports_twilio_errors():
    service, _ = make_service(error=TwilioException("invalid number"))
    result = service.send_payment_sms("Ana", "8930276263", 2, "pay-1")
    assert not result.success
    assert "invalid number" in result.error


def test_send_payment_sms_requires_sender():
    service, messages = make_service(from_number=None)
    result = service.send_payment_sms("Ana", "8930276263", 2, "pay-1")
    assert not result.success
    assert messages.created == []


def test_automated_sms_requires_complete_booking():
    service, messages = make_service()
    result = service.send_automated_sms(BookingDetails(name="Ana", guests=2), "pay-1")
    assert not result.success
    assert messages.created == []


def test_automated_sms_uses_booking_fields():
    service, messages = make_service()
    booking = BookingDetails(name="Ana", guests=2, phone_no="8930276263", date="2024-06-07", time="19:00")

    assert service.send_automated_sms(booking, "pay-1").success
    assert "on 2024-06-07 at 19:00" in messages.created[0]["body"]
