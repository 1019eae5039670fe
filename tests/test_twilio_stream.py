import json

import pytest

from models import FrameError
from twilio_stream import (
    IgnoredFrame,
    MarkFrame,
    MediaFrame,
    StartFrame,
    StopFrame,
    TwilioChannel,
    parse_frame,
)


def test_parse_start_frame_with_caller():
    frame = parse_frame(
        json.dumps(
            {
                "event": "start",
                "start": {
                    "streamSid": "SS1",
                    "callSid": "CA1",
                    "customParameters": {"caller": "+15550001111"},
                },
            }
        )
    )
    assert isinstance(frame, StartFrame)
    assert frame.stream_id == "SS1"
    assert frame.call_id == "CA1"
    assert frame.caller_id == "+15550001111"


def test_parse_start_frame_without_caller():
    frame = parse_frame(json.dumps({"event": "start", "start": {"streamSid": "SS1"}}))
    assert frame.caller_id is None


def test_non_string_caller_is_not_a_caller_id():
    frame = parse_frame(
        json.dumps({"event": "start", "start": {"streamSid": "SS1", "customParameters": {"caller": ["+1555"]}}})
    )
    assert frame.caller_id is None


def test_parse_media_frame_coerces_timestamp():
    frame = parse_frame(json.dumps({"event": "media", "media": {"timestamp": "850", "payload": "AAA"}}))
    assert frame == MediaFrame(timestamp=850, payload="AAA")


def test_parse_mark_and_stop():
    assert parse_frame('{"event": "mark", "mark": {"name": "responsePart"}}') == MarkFrame(name="responsePart")
    assert isinstance(parse_frame('{"event": "stop"}'), StopFrame)


def test_unknown_event_is_ignored_not_rejected():
    assert parse_frame('{"event": "connected", "protocol": "Call"}') == IgnoredFrame(event="connected")


@pytest.mark.parametrize(
    "message",
    [
        "not json",
        "[1, 2]",
        '{"foo": "bar"}',
        '{"event": "media", "media": {"timestamp": 10}}',
        '{"event": "media", "media": {"timestamp": "abc", "payload": "AAA"}}',
        '{"event": "start", "start": {}}',
        '{"event": "mark", "mark": "responsePart"}',
        '{"event": "start", "start": {"streamSid": "SS1", "customParameters": ["caller"]}}',
    ],
)
def test_malformed_frames_raise(message):
    with pytest.raises(FrameError):
        parse_frame(message)


@pytest.mark.asyncio
async def test_channel_writes_outbound_frames(fake_ws):
    channel = TwilioChannel(fake_ws)
    await channel.send_media("SS1", "AAA")
    await channel.send_mark("SS1", "responsePart")
    await channel.send_clear("SS1")

    assert fake_ws.sent == [
        {"event": "media", "streamSid": "SS1", "media": {"payload": "AAA"}},
        {"event": "mark", "streamSid": "SS1", "mark": {"name": "responsePart"}},
        {"event": "clear", "streamSid": "SS1"},
    ]


@pytest.mark.asyncio
async def test_channel_drops_sends_after_close(fake_ws):
    channel = TwilioChannel(fake_ws)
    await channel.close()
    await channel.send_clear("SS1")

    assert fake_ws.closed
    assert fake_ws.sent == []


@pytest.mark.asyncio
async def test_channel_messages_end_with_stream(fake_ws):
    channel = TwilioChannel(fake_ws)
    fake_ws.feed_raw("one")
    fake_ws.feed_raw("two")
    fake_ws.feed(None)

    received = [message async for message in channel.messages()]
    assert received == ["one", "two"]
