from __future__ import annotations

import pytest

from thermolog.errors import SessionStateError
from thermolog.models import SessionAction, SessionEvent
from thermolog.session import SessionTracker, compute_durations


def test_active_and_pause_durations():
    events = [
        SessionEvent(0, SessionAction.START, "Recording started"),
        SessionEvent(10000, SessionAction.PAUSE, "Recording paused"),
        SessionEvent(15000, SessionAction.RESUME, "Recording started"),
        SessionEvent(25000, SessionAction.STOP, "done"),
    ]
    result = compute_durations(events, now=99999)
    assert result.total_active_duration == pytest.approx(20.0)
    assert result.total_pause_duration == pytest.approx(5.0)
    assert result.pause_count == 1
    pause = result.pause_events[0]
    assert (pause.paused_at, pause.resumed_at, pause.duration, pause.reason) == (10000, 15000, 5.0, "Recording paused")


def test_open_intervals_are_closed_at_now():
    events = [SessionEvent(0, SessionAction.START), SessionEvent(4000, SessionAction.PAUSE)]
    result = compute_durations(events, now=10000)
    assert result.total_active_duration == pytest.approx(4.0)
    assert result.total_pause_duration == pytest.approx(6.0)
    assert result.pause_events[0].resumed_at is None

    running = compute_durations([SessionEvent(1000, SessionAction.START)], now=3500)
    assert running.total_active_duration == pytest.approx(2.5)


def test_out_of_order_timestamps_never_go_negative():
    events = [SessionEvent(5000, SessionAction.START), SessionEvent(1000, SessionAction.PAUSE)]
    result = compute_durations(events, now=0)
    assert result.total_active_duration == 0.0
    assert result.total_pause_duration == 0.0


def test_tracker_enforces_transitions():
    tracker = SessionTracker()
    with pytest.raises(SessionStateError):
        tracker.record(SessionAction.PAUSE)
    with pytest.raises(SessionStateError):
        tracker.record(SessionAction.RESUME)
    tracker.record(SessionAction.START, timestamp=0)
    with pytest.raises(SessionStateError):
        tracker.record(SessionAction.START)
    with pytest.raises(SessionStateError):
        tracker.record(SessionAction.RESUME)
    tracker.record(SessionAction.PAUSE, timestamp=10)
    with pytest.raises(SessionStateError):
        tracker.record(SessionAction.STOP)
    tracker.record("resume", timestamp=20)
    tracker.record(SessionAction.STOP, timestamp=30)
    tracker.record(SessionAction.RESUME, timestamp=40)
    assert [e.action for e in tracker.events] == ["start", "pause", "resume", "stop", "resume"]


def test_begin_and_halt_follow_recording_toggle():
    tracker = SessionTracker()
    tracker.begin("Recording started", timestamp=0)
    assert tracker.begin("again") is None
    tracker.halt("Recording paused", timestamp=5)
    assert tracker.halt("again") is None
    tracker.begin("Recording started", timestamp=9)
    assert [e.action for e in tracker.events] == [SessionAction.START, SessionAction.PAUSE, SessionAction.RESUME]
    assert tracker.is_active


def test_timestamps_are_kept_monotonic():
    tracker = SessionTracker()
    tracker.record(SessionAction.START, timestamp=100)
    event = tracker.record(SessionAction.PAUSE, timestamp=50)
    assert event.timestamp == 100


def test_reset_starts_a_new_session():
    tracker = SessionTracker()
    tracker.begin("x", timestamp=0)
    tracker.halt("y", timestamp=1)
    event = tracker.reset(timestamp=5)
    assert tracker.events == [event]
    assert event.action is SessionAction.START
    assert event.reason == "New session started"


def test_close_ends_a_paused_session_without_adding_active_time():
    tracker = SessionTracker()
    assert tracker.close("Current data cleared") is None
    tracker.record(SessionAction.START, timestamp=0)
    tracker.record(SessionAction.PAUSE, timestamp=4000)
    event = tracker.close("Current data cleared", timestamp=9000)
    assert event.action is SessionAction.STOP
    assert [e.action for e in tracker.events] == ["start", "pause", "resume", "stop"]
    result = tracker.durations(now=20000)
    assert result.total_active_duration == pytest.approx(4.0)
    assert result.total_pause_duration == pytest.approx(5.0)
    assert tracker.close("again") is None


def test_continue_from_follows_transition_rules():
    empty = SessionTracker()
    assert empty.continue_from("import", timestamp=0).action is SessionAction.START

    active = SessionTracker()
    active.record(SessionAction.START, timestamp=0)
    active.continue_from("import", timestamp=100)
    assert [e.action for e in active.events] == ["start", "pause", "resume"]
    assert active.durations(now=100).total_pause_duration == 0.0

    halted = SessionTracker()
    halted.record(SessionAction.START, timestamp=0)
    halted.record(SessionAction.PAUSE, timestamp=50)
    assert halted.continue_from("import", timestamp=60).action is SessionAction.RESUME
