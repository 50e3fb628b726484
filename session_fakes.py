"""In-memory stand-ins for the capture device, playback clock and live channel.

Used by the test modules; no audio hardware or network involved.
"""

import asyncio

import numpy as np

from audio_codec import encode_pcm16_base64
from audio_devices import ClockState


class FakeClock:
    """Audio clock with a manually advanced `time`."""

    def __init__(self, state=ClockState.RUNNING):
        self.state = state
        self.time = 0.0
        self.suspend_calls = 0
        self.resume_calls = 0
        self.close_calls = 0

    def now(self):
        return self.time

    def open(self):
        self.state = ClockState.RUNNING

    def suspend(self):
        self.suspend_calls += 1
        if self.state == ClockState.RUNNING:
            self.state = ClockState.SUSPENDED

    def resume(self):
        self.resume_calls += 1
        if self.state == ClockState.SUSPENDED:
            self.state = ClockState.RUNNING

    def close(self):
        self.close_calls += 1
        self.state = ClockState.CLOSED


class FakeHandle:
    def __init__(self, samples, start_time, on_ended):
        self.samples = samples
        self.start_time = start_time
        self.on_ended = on_ended
        self.stopped = False

    def stop(self):
        self.stopped = True


class FakePlaybackClock(FakeClock):
    """Records every schedule() call; finish() plays a buffer to its end."""

    def __init__(self, state=ClockState.RUNNING):
        super().__init__(state)
        self.handles: list[FakeHandle] = []

    def schedule(self, samples, start_time, on_ended):
        handle = FakeHandle(samples, start_time, on_ended)
        self.handles.append(handle)
        return handle

    def finish(self, index):
        handle = self.handles[index]
        handle.on_ended()


class FakeCapture(FakeClock):
    """Capture device + clock fed by push()."""

    def __init__(self, refuse=None):
        super().__init__(state=ClockState.SUSPENDED)
        self.refuse = refuse
        self.opened_with = None
        self.stop_calls = 0
        self._queue = asyncio.Queue()

    def open(self, frame_size, sample_rate):
        if self.refuse is not None:
            raise self.refuse
        self.opened_with = (frame_size, sample_rate)

    def push(self, samples):
        self._queue.put_nowait(np.asarray(samples, dtype=np.float32))

    async def frames(self):
        while True:
            frame = await self._queue.get()
            if frame is None:
                return
            yield frame

    def stop(self):
        self.stop_calls += 1
        self._queue.put_nowait(None)


class FakeChannel:
    """Live channel double. feed() queues server message lists for receive()."""

    def __init__(self, api_key=None, config=None, open_error=None):
        self.api_key = api_key
        self.config = config
        self.open_error = open_error
        self.opened = False
        self.closed = False
        self.close_calls = 0
        self.audio_frames = []
        self.tool_responses = []
        self.turns = []
        self._inbox = asyncio.Queue()

    async def open(self):
        if self.open_error is not None:
            raise self.open_error
        self.opened = True

    def send_audio_frame(self, payload, sample_rate):
        if not self.closed:
            self.audio_frames.append((payload, sample_rate))

    def send_tool_response(self, responses):
        if not self.closed:
            self.tool_responses.append(list(responses))

    def send_synthetic_turn(self, text):
        if not self.closed:
            self.turns.append(text)

    def feed(self, *messages):
        self._inbox.put_nowait(list(messages))

    def remote_close(self):
        self._inbox.put_nowait(None)

    def remote_error(self, error):
        self._inbox.put_nowait(error)

    async def receive(self):
        while True:
            item = await self._inbox.get()
            if item is None:
                return
            if isinstance(item, Exception):
                raise item
            yield item

    def close(self):
        self.close_calls += 1
        if not self.closed:
            self.closed = True
            self._inbox.put_nowait(None)
        return None


def tone(n_samples, amplitude=0.25):
    """A short float32 test signal."""
    return (amplitude * np.sin(np.linspace(0, 20, n_samples))).astype(np.float32)


def pcm_chunk(n_samples, amplitude=0.25):
    """base64 PCM16 payload of n_samples, as the service would send it."""
    return encode_pcm16_base64(tone(n_samples, amplitude))


async def settle(rounds=5):
    """Let queued callbacks and tasks run."""
    for _ in range(rounds):
        await asyncio.sleep(0)
