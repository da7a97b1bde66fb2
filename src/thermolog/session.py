"""Session continuity: start/pause/resume/stop bookkeeping."""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Iterable, List, Optional

from .errors import SessionStateError
from .models import SessionAction, SessionEvent

logger = logging.getLogger(__name__)

_ACTIVE = {SessionAction.START, SessionAction.RESUME}
_HALTED = {SessionAction.PAUSE, SessionAction.STOP}


def now_ms() -> int:
    return int(time.time() * 1000)


@dataclass(frozen=True)
class PauseInterval:
    paused_at: int
    resumed_at: Optional[int]
    duration: float  # seconds
    reason: str


@dataclass(frozen=True)
class SessionDurations:
    total_active_duration: float  # seconds
    total_pause_duration: float  # seconds
    pause_events: List[PauseInterval] = field(default_factory=list)

    @property
    def pause_count(self) -> int:
        return len(self.pause_events)


def compute_durations(events: Iterable[SessionEvent], now: Optional[int] = None) -> SessionDurations:
    """
    Walk the event log in order and total active and paused time.

    start/resume open an active interval that the next pause/stop closes;
    pause opens a paused interval that the next resume (or stop) closes.
    Intervals still open at the end of the log are closed at *now*.
    """
    end_of_log = now_ms() if now is None else now
    active_ms = 0
    paused_ms = 0
    active_since: Optional[int] = None
    pause_start: Optional[SessionEvent] = None
    pauses: List[PauseInterval] = []

    for event in events:
        action = SessionAction(event.action)
        if action in _ACTIVE:
            if pause_start is not None:
                span = max(event.timestamp - pause_start.timestamp, 0)
                paused_ms += span
                pauses.append(PauseInterval(pause_start.timestamp, event.timestamp, span / 1000.0, pause_start.reason))
                pause_start = None
            if active_since is None:
                active_since = event.timestamp
        elif action in _HALTED:
            if active_since is not None:
                active_ms += max(event.timestamp - active_since, 0)
                active_since = None
            if action is SessionAction.PAUSE:
                if pause_start is None:
                    pause_start = event
            elif pause_start is not None:
                span = max(event.timestamp - pause_start.timestamp, 0)
                paused_ms += span
                pauses.append(PauseInterval(pause_start.timestamp, event.timestamp, span / 1000.0, pause_start.reason))
                pause_start = None

    if active_since is not None:
        active_ms += max(end_of_log - active_since, 0)
    if pause_start is not None:
        span = max(end_of_log - pause_start.timestamp, 0)
        paused_ms += span
        pauses.append(PauseInterval(pause_start.timestamp, None, span / 1000.0, pause_start.reason))

    return SessionDurations(
        total_active_duration=max(active_ms, 0) / 1000.0,
        total_pause_duration=max(paused_ms, 0) / 1000.0,
        pause_events=pauses,
    )


class SessionTracker:
    """Append-only session event log with transition checks."""

    def __init__(self, events: Optional[Iterable[SessionEvent]] = None):
        self._events: List[SessionEvent] = list(events or [])

    @property
    def events(self) -> List[SessionEvent]:
        return list(self._events)

    @property
    def last_event(self) -> Optional[SessionEvent]:
        return self._events[-1] if self._events else None

    @property
    def is_active(self) -> bool:
        last = self.last_event
        return last is not None and last.action in _ACTIVE

    def can_record(self, action: SessionAction) -> bool:
        last = self.last_event
        previous = last.action if last is not None else None
        if action is SessionAction.START:
            return previous is None or previous is SessionAction.STOP
        if action in _HALTED:
            return previous in _ACTIVE
        return previous in _HALTED

    def record(self, action: SessionAction | str, reason: str = "", timestamp: Optional[int] = None) -> SessionEvent:
        action = SessionAction(action)
        if not self.can_record(action):
            last = self.last_event
            previous = last.action.value if last is not None else "nothing"
            raise SessionStateError(f"Cannot {action.value} a session after {previous}")
        ts = now_ms() if timestamp is None else int(timestamp)
        last = self.last_event
        if last is not None and ts < last.timestamp:
            ts = last.timestamp
        event = SessionEvent(timestamp=ts, action=action, reason=reason)
        self._events.append(event)
        logger.debug("Session %s at %d (%s)", action.value, ts, reason)
        return event

    def begin(self, reason: str, timestamp: Optional[int] = None) -> Optional[SessionEvent]:
        """Record start (or resume after a pause) unless already active."""
        if self.is_active:
            return None
        last = self.last_event
        action = SessionAction.RESUME if last is not None and last.action is SessionAction.PAUSE else SessionAction.START
        return self.record(action, reason, timestamp)

    def halt(self, reason: str, timestamp: Optional[int] = None) -> Optional[SessionEvent]:
        """Record pause if the session is active."""
        if not self.is_active:
            return None
        return self.record(SessionAction.PAUSE, reason, timestamp)

    def stop(self, reason: str, timestamp: Optional[int] = None) -> Optional[SessionEvent]:
        if not self.is_active:
            return None
        return self.record(SessionAction.STOP, reason, timestamp)

    def close(self, reason: str, timestamp: Optional[int] = None) -> Optional[SessionEvent]:
        """
        End the session so the log finishes with ``stop``.

        A paused session is resumed and stopped at the same instant, which
        closes the pending pause without adding active time.
        """
        last = self.last_event
        if last is None or last.action is SessionAction.STOP:
            return None
        if last.action is SessionAction.PAUSE:
            resumed = self.record(SessionAction.RESUME, reason, timestamp)
            return self.record(SessionAction.STOP, reason, resumed.timestamp)
        return self.record(SessionAction.STOP, reason, timestamp)

    def continue_from(self, reason: str, timestamp: Optional[int] = None) -> SessionEvent:
        """
        Mark a continuation (e.g. after importing earlier data).

        A halted session resumes and an empty log starts. An active session
        gets a zero-length pause first so ``resume`` still follows ``pause``.
        """
        last = self.last_event
        if last is None:
            return self.record(SessionAction.START, reason, timestamp)
        if last.action in _ACTIVE:
            timestamp = self.record(SessionAction.PAUSE, reason, timestamp).timestamp
        return self.record(SessionAction.RESUME, reason, timestamp)

    def reset(self, reason: str = "New session started", timestamp: Optional[int] = None) -> SessionEvent:
        self._events = []
        return self.record(SessionAction.START, reason, timestamp)

    def clear(self) -> None:
        self._events = []

    def durations(self, now: Optional[int] = None) -> SessionDurations:
        return compute_durations(self._events, now)
