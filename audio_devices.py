"""Capture device and audio clock bindings.

Two small capabilities stand between the session and the platform audio stack:

  CaptureDevice  - open(frame_size, rate), then `async for frame in frames()`
  PlaybackClock  - now(), schedule(samples, start_time, on_ended) -> handle

Both clocks can be suspended, resumed and closed. The PyAudio bindings run
PortAudio in callback mode; the callback thread never touches session state,
it only hands frames and completions to the event loop with
call_soon_threadsafe.
"""

import asyncio
import logging
from enum import Enum
from threading import Lock
from typing import AsyncIterator, Callable, Protocol

import numpy as np

from audio_codec import CAPTURE_SAMPLE_RATE, CHANNELS, PLAYBACK_SAMPLE_RATE
from session_errors import MicrophonePermissionError, PlaybackDeviceError

logger = logging.getLogger(__name__)

FRAME_SIZE = 4096  # samples per capture callback
OUTPUT_FRAMES_PER_BUFFER = 1024


class ClockState(str, Enum):
    RUNNING = "running"
    SUSPENDED = "suspended"
    CLOSED = "closed"


class AudioClock(Protocol):
    state: ClockState

    def now(self) -> float: ...
    def suspend(self) -> None: ...
    def resume(self) -> None: ...
    def close(self) -> None: ...


class CaptureDevice(Protocol):
    def open(self, frame_size: int, sample_rate: int) -> None: ...
    def frames(self) -> AsyncIterator[np.ndarray]: ...
    def stop(self) -> None: ...


class PlaybackHandle(Protocol):
    def stop(self) -> None: ...


class PlaybackClock(AudioClock, Protocol):
    def schedule(self, samples: np.ndarray, start_time: float,
                 on_ended: Callable[[], None]) -> PlaybackHandle: ...


# ── Capture ────────────────────────────────────────────────────────

class PyAudioCapture:
    """Microphone input stream. Acts as both capture device and capture clock.

    Suspending stops the PortAudio stream, so no frames arrive until resumed.
    stop() releases the device and ends the frames() iterator.
    """

    def __init__(self, device_index=None):
        self._device_index = device_index
        self._pa = None
        self._stream = None
        self._pyaudio = None
        self._loop = None
        self._queue = None
        self._sample_rate = CAPTURE_SAMPLE_RATE
        self._frames_captured = 0
        self.state = ClockState.SUSPENDED

    def open(self, frame_size: int = FRAME_SIZE, sample_rate: int = CAPTURE_SAMPLE_RATE):
        """Acquire the microphone. Raises MicrophonePermissionError if refused."""
        import pyaudio

        self._pyaudio = pyaudio
        self._loop = asyncio.get_running_loop()
        self._queue = asyncio.Queue()
        self._sample_rate = sample_rate
        self._pa = pyaudio.PyAudio()
        try:
            self._stream = self._pa.open(
                format=pyaudio.paFloat32,
                channels=CHANNELS,
                rate=sample_rate,
                input=True,
                input_device_index=self._device_index,
                frames_per_buffer=frame_size,
                stream_callback=self._on_input,
                start=False,
            )
        except OSError as e:
            self._pa.terminate()
            self._pa = None
            self.state = ClockState.CLOSED
            raise MicrophonePermissionError(f"Microphone unavailable: {e}")
        # Acquired but silent until resumed, so nothing piles up before the
        # channel is open
        self.state = ClockState.SUSPENDED
        logger.info("Capture opened (%d Hz, %d-sample frames)", sample_rate, frame_size)

    def _on_input(self, in_data, frame_count, time_info, status):
        frame = np.frombuffer(in_data, dtype=np.float32).copy()
        try:
            self._loop.call_soon_threadsafe(self._queue.put_nowait, frame)
        except RuntimeError:
            # Event loop already closed
            return (None, self._pyaudio.paComplete)
        self._frames_captured += frame_count
        return (None, self._pyaudio.paContinue)

    async def frames(self):
        while True:
            frame = await self._queue.get()
            if frame is None:
                return
            yield frame

    def now(self) -> float:
        return self._frames_captured / float(self._sample_rate)

    def suspend(self):
        if self.state == ClockState.RUNNING and self._stream:
            self._stream.stop_stream()
            self.state = ClockState.SUSPENDED

    def resume(self):
        if self.state == ClockState.SUSPENDED and self._stream:
            self._stream.start_stream()
            self.state = ClockState.RUNNING

    def stop(self):
        """Stop the input stream and end the frame iterator."""
        if self._stream is not None:
            try:
                self._stream.stop_stream()
                self._stream.close()
            except OSError as e:
                logger.warning("Capture stream close error: %s", e)
            self._stream = None
        if self._queue is not None:
            self._queue.put_nowait(None)

    def close(self):
        if self.state == ClockState.CLOSED:
            return
        self.stop()
        if self._pa is not None:
            self._pa.terminate()
            self._pa = None
        self.state = ClockState.CLOSED
        logger.info("Capture closed")


# ── Playback ───────────────────────────────────────────────────────

class _ScheduledBuffer:
    """One buffer queued on the output clock, mixed in from start_frame."""

    def __init__(self, clock, samples, start_frame, on_ended):
        self._clock = clock
        self.samples = samples
        self.start_frame = start_frame
        self.end_frame = start_frame + len(samples)
        self.on_ended = on_ended

    def stop(self):
        """Silence immediately. Does not fire on_ended."""
        self._clock._unschedule(self)


class PyAudioPlaybackClock:
    """Output stream whose rendered-frame counter is the playback timeline.

    now() only advances while the stream runs, so suspending freezes both the
    sound and every scheduled start time relative to it.
    """

    def __init__(self, sample_rate: int = PLAYBACK_SAMPLE_RATE, device_index=None,
                 frames_per_buffer: int = OUTPUT_FRAMES_PER_BUFFER):
        self.sample_rate = sample_rate
        self._device_index = device_index
        self._frames_per_buffer = frames_per_buffer
        self._pa = None
        self._stream = None
        self._pyaudio = None
        self._loop = None
        self._lock = Lock()
        self._sources: list[_ScheduledBuffer] = []
        self._frames_rendered = 0
        self.state = ClockState.SUSPENDED

    def open(self):
        """Acquire the output device. Raises PlaybackDeviceError if unavailable."""
        import pyaudio

        self._pyaudio = pyaudio
        self._loop = asyncio.get_running_loop()
        self._pa = pyaudio.PyAudio()
        try:
            self._stream = self._pa.open(
                format=pyaudio.paFloat32,
                channels=CHANNELS,
                rate=self.sample_rate,
                output=True,
                output_device_index=self._device_index,
                frames_per_buffer=self._frames_per_buffer,
                stream_callback=self._render,
            )
        except OSError as e:
            self._pa.terminate()
            self._pa = None
            self.state = ClockState.CLOSED
            raise PlaybackDeviceError(f"Audio output unavailable: {e}")
        self.state = ClockState.RUNNING
        logger.info("Playback clock opened (%d Hz)", self.sample_rate)

    def now(self) -> float:
        with self._lock:
            return self._frames_rendered / float(self.sample_rate)

    def schedule(self, samples, start_time, on_ended):
        start_frame = int(round(start_time * self.sample_rate))
        buf = _ScheduledBuffer(self, np.asarray(samples, dtype=np.float32).reshape(-1),
                               start_frame, on_ended)
        with self._lock:
            self._sources.append(buf)
        return buf

    def _unschedule(self, buf):
        with self._lock:
            if buf in self._sources:
                self._sources.remove(buf)

    def _render(self, in_data, frame_count, time_info, status):
        out = np.zeros(frame_count, dtype=np.float32)
        finished = []
        with self._lock:
            t0 = self._frames_rendered
            t1 = t0 + frame_count
            for buf in self._sources:
                if buf.start_frame < t1 and buf.end_frame > t0:
                    a = max(buf.start_frame, t0)
                    b = min(buf.end_frame, t1)
                    out[a - t0:b - t0] += buf.samples[a - buf.start_frame:b - buf.start_frame]
                if buf.end_frame <= t1:
                    finished.append(buf)
            for buf in finished:
                self._sources.remove(buf)
            self._frames_rendered = t1

        for buf in finished:
            try:
                self._loop.call_soon_threadsafe(buf.on_ended)
            except RuntimeError:
                break

        np.clip(out, -1.0, 1.0, out=out)
        return (out.tobytes(), self._pyaudio.paContinue)

    def suspend(self):
        if self.state == ClockState.RUNNING and self._stream:
            self._stream.stop_stream()
            self.state = ClockState.SUSPENDED

    def resume(self):
        if self.state == ClockState.SUSPENDED and self._stream:
            self._stream.start_stream()
            self.state = ClockState.RUNNING

    def close(self):
        if self.state == ClockState.CLOSED:
            return
        if self._stream is not None:
            try:
                self._stream.stop_stream()
                self._stream.close()
            except OSError as e:
                logger.warning("Playback stream close error: %s", e)
            self._stream = None
        if self._pa is not None:
            self._pa.terminate()
            self._pa = None
        with self._lock:
            self._sources.clear()
        self.state = ClockState.CLOSED
        logger.info("Playback clock closed")
