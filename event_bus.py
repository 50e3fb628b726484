"""
In-process signal bus between the live session and whatever renders it.

The session emits small typed events (talking, analyzing, profile, transcript,
status ...); the presentation layer subscribes with callbacks. A bounded
in-memory history lets late subscribers catch up. Nothing is written to disk.
"""

import logging
import time
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable

logger = logging.getLogger(__name__)

_HISTORY_SIZE = 500


class SignalType(str, Enum):
    """All signal types in the bus catalog."""
    SESSION_START = "session_start"
    SESSION_END = "session_end"
    STATUS = "status"
    TALKING = "talking"
    ANALYZING = "analyzing"
    PROFILE = "profile"
    TRANSCRIPT = "transcript"
    TOOL_CALL = "tool_call"
    INTERRUPTED = "interrupted"
    ERROR = "error"


@dataclass
class BusEvent:
    """A single event on the bus."""
    ts: float
    src: str
    type: str
    sid: str
    payload: dict = field(default_factory=dict)

    def __init__(self, ts: float, src: str, type: str, sid: str, **kwargs):
        self.ts = ts
        self.src = src
        self.type = type
        self.sid = sid
        self.payload = kwargs

    def to_dict(self) -> dict:
        return {"ts": self.ts, "src": self.src, "type": self.type,
                "sid": self.sid, **self.payload}


class EventBus:
    """Callbacks plus a bounded history.

    Usage:
        bus = EventBus("live_session")
        bus.on("*", my_callback)               # Register listener
        bus.emit("talking", talking=True)      # History + callbacks
        events = bus.recent(last_n=10)
    """

    def __init__(self, src: str = "live_session", sid: str = "",
                 history_size: int = _HISTORY_SIZE):
        self._src = src
        self.sid = sid
        self._history: deque = deque(maxlen=history_size)
        self._callbacks: dict[str, list[Callable]] = {}  # type -> [callback]

    def on(self, event_type: str, callback: Callable):
        """Register an in-process callback.

        Args:
            event_type: Event type to listen for, or "*" for all events.
            callback: Called with BusEvent as argument.
        """
        self._callbacks.setdefault(_type_value(event_type), []).append(callback)

    def off(self, event_type: str, callback: Callable):
        callbacks = self._callbacks.get(_type_value(event_type), [])
        if callback in callbacks:
            callbacks.remove(callback)

    def _fire_callbacks(self, evt: BusEvent):
        for cb_type in (evt.type, "*"):
            for cb in list(self._callbacks.get(cb_type, [])):
                try:
                    cb(evt)
                except Exception as e:
                    logger.error("Bus callback error for %s: %s", evt.type, e)

    def emit(self, event_type, **payload) -> BusEvent:
        """Record an event and fire in-process callbacks."""
        evt = BusEvent(ts=time.time(), src=self._src, type=_type_value(event_type),
                       sid=self.sid, **payload)
        self._history.append(evt)
        self._fire_callbacks(evt)
        return evt

    def recent(self, last_n: int = 50, event_type=None) -> list[BusEvent]:
        """Most recent events, oldest first, optionally filtered by type."""
        events = list(self._history)
        if event_type:
            wanted = _type_value(event_type)
            events = [e for e in events if e.type == wanted]
        if last_n:
            events = events[-last_n:]
        return events

    def last(self, event_type) -> BusEvent | None:
        events = self.recent(last_n=1, event_type=event_type)
        return events[0] if events else None

    def clear(self):
        self._history.clear()


def _type_value(event_type) -> str:
    return event_type.value if isinstance(event_type, Enum) else event_type
