"""Gapless scheduling of inbound audio on the playback clock.

Chunks arrive whenever the network delivers them, faster or slower than real
time. Each one is started at max(cursor, clock.now()) and the cursor moves to
its end, so consecutive chunks butt up against each other with no gap and no
overlap. An interruption stops everything that is sounding and rewinds the
cursor to zero.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Callable

from audio_codec import PLAYBACK_SAMPLE_RATE, duration_of

logger = logging.getLogger(__name__)


@dataclass(eq=False)
class PlaybackSource:
    """A decoded buffer handed to the playback clock."""
    samples: Any
    start_time: float
    duration: float
    ended: bool = False
    handle: Any = field(default=None, repr=False)


class PlaybackScheduler:
    """Owns the next-start cursor and the set of currently sounding sources.

    `on_talking(bool)` fires True whenever a buffer is scheduled and False
    when the last active source ends or everything is interrupted.
    """

    def __init__(self, clock, sample_rate: int = PLAYBACK_SAMPLE_RATE,
                 on_talking: Callable[[bool], None] | None = None):
        self._clock = clock
        self.sample_rate = sample_rate
        self._on_talking = on_talking or (lambda talking: None)
        self._next_start_time = 0.0
        self._active: set[PlaybackSource] = set()

    @property
    def next_start_time(self) -> float:
        return self._next_start_time

    @property
    def is_talking(self) -> bool:
        return bool(self._active)

    @property
    def active_count(self) -> int:
        return len(self._active)

    def schedule(self, samples) -> PlaybackSource:
        """Queue a decoded buffer right after whatever is already queued."""
        duration = duration_of(samples, self.sample_rate)
        start = max(self._next_start_time, self._clock.now())
        source = PlaybackSource(samples=samples, start_time=start, duration=duration)
        source.handle = self._clock.schedule(
            samples, start, lambda: self._on_source_ended(source)
        )
        self._active.add(source)
        self._next_start_time = start + duration
        self._on_talking(True)
        return source

    def _on_source_ended(self, source: PlaybackSource):
        source.ended = True
        if source not in self._active:
            return  # already stopped by interrupt/reset
        self._active.discard(source)
        if not self._active:
            self._on_talking(False)

    def interrupt(self):
        """Barge-in: silence everything now and rewind the cursor."""
        stopped = len(self._active)
        self._stop_all()
        self._on_talking(False)
        if stopped:
            logger.info("Playback interrupted (%d sources stopped)", stopped)

    def reset(self):
        """Teardown variant of interrupt(). Never raises."""
        self._stop_all()
        self._on_talking(False)

    def _stop_all(self):
        for source in list(self._active):
            try:
                if source.handle is not None:
                    source.handle.stop()
            except Exception as e:
                logger.warning("Failed to stop playback source: %s", e)
            source.ended = True
        self._active.clear()
        self._next_start_time = 0.0
