from models import CallSession
from playback import PlaybackTracker


def make_tracker():
    session = CallSession(stream_id="SS1")
    return session, PlaybackTracker(session)


def test_first_delta_anchors_start_timestamp():
    session, tracker = make_tracker()
    tracker.on_media(400)
    assert tracker.on_audio_delta("it1") == "responsePart"
    tracker.on_media(600)
    tracker.on_audio_delta("it1")

    assert session.response_start_timestamp == 400
    assert session.last_assistant_item == "it1"
    assert tracker.pending_marks == 2


def test_delta_without_item_keeps_previous_item():
    session, tracker = make_tracker()
    tracker.on_audio_delta("it1")
    tracker.on_audio_delta(None)
    assert session.last_assistant_item == "it1"


def test_marks_confirmed_in_fifo_order():
    session, tracker = make_tracker()
    for _ in range(3):
        tracker.on_audio_delta("it1")

    tracker.on_mark()
    assert tracker.pending_marks == 2
    assert session.response_start_timestamp == 0

    tracker.on_mark()
    tracker.on_mark()
    assert tracker.pending_marks == 0
    assert session.response_start_timestamp is None


def test_stray_mark_is_ignored():
    session, tracker = make_tracker()
    tracker.on_mark()
    assert tracker.pending_marks == 0


def test_interrupt_reports_elapsed_playback():
    session, tracker = make_tracker()
    tracker.on_media(0)
    tracker.on_audio_delta("it1")
    tracker.on_media(850)

    interruption = tracker.interrupt()

    assert interruption.item_id == "it1"
    assert interruption.elapsed_ms == 850
    assert tracker.pending_marks == 0
    assert session.last_assistant_item is None
    assert session.response_start_timestamp is None


def test_interrupt_when_nothing_is_playing():
    session, tracker = make_tracker()
    assert tracker.interrupt() is None


def test_interrupt_after_playback_drained():
    session, tracker = make_tracker()
    tracker.on_audio_delta("it1")
    tracker.on_mark()
    assert tracker.interrupt() is None


def test_second_interrupt_is_a_no_op():
    session, tracker = make_tracker()
    tracker.on_audio_delta("it1")
    tracker.on_media(300)
    assert tracker.interrupt() is not None
    assert tracker.interrupt() is None


def test_elapsed_never_negative():
    session, tracker = make_tracker()
    tracker.on_media(1000)
    tracker.on_audio_delta("it1")
    # Timestamps from a restarted stream can go backwards
    tracker.on_media(200)
    assert tracker.interrupt().elapsed_ms == 0
