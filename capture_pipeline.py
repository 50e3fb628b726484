"""Microphone frames -> PCM16 base64 payloads -> outbound channel.

Gated by mute and pause: a gated frame is dropped on the spot, never queued,
so sending resumes with the first frame captured after the gate clears.
"""

import logging
from typing import Callable

from audio_codec import CAPTURE_SAMPLE_RATE, encode_pcm16_base64
from audio_devices import FRAME_SIZE, ClockState

logger = logging.getLogger(__name__)

_LOG_EVERY_N_FRAMES = 200


class CapturePipeline:
    """Per-frame encode-and-send stage.

    Args:
        send_audio: callable(payload, sample_rate), fire-and-forget
        clock: capture clock, resumed on the next frame if found suspended
            while the session is not paused
        sample_rate: capture rate tagged onto each outbound frame
    """

    def __init__(self, send_audio: Callable[[str, int], None], clock=None,
                 sample_rate: int = CAPTURE_SAMPLE_RATE):
        self._send_audio = send_audio
        self._clock = clock
        self.sample_rate = sample_rate
        self.muted = False
        self.paused = False
        self.frames_sent = 0
        self.frames_dropped = 0

    @property
    def gated(self) -> bool:
        return self.muted or self.paused

    def process_frame(self, samples) -> bool:
        """Handle one captured frame. Returns True if it was sent."""
        if (self._clock is not None and not self.paused
                and self._clock.state == ClockState.SUSPENDED):
            self._clock.resume()

        if self.gated:
            self.frames_dropped += 1
            return False

        payload = encode_pcm16_base64(samples)
        self._send_audio(payload, self.sample_rate)
        self.frames_sent += 1
        if self.frames_sent % _LOG_EVERY_N_FRAMES == 0:
            logger.debug("Sent %d audio frames (%d dropped)",
                         self.frames_sent, self.frames_dropped)
        return True

    async def run(self, device, frame_size: int = FRAME_SIZE):
        """Drain an opened capture device until its frame stream ends."""
        logger.info("Audio capture started")
        try:
            async for frame in device.frames():
                self.process_frame(frame)
        finally:
            logger.info("Audio capture stopped (%d frames sent, %d dropped)",
                        self.frames_sent, self.frames_dropped)
