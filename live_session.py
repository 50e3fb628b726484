#!/usr/bin/env python3
"""
Live voice conversation with the Astro Buddy persona over Gemini Live:
  Mic (16 kHz) -> CapturePipeline -> LiveChannel -> service
  service -> LiveChannel -> {ToolCallStateMachine, PlaybackScheduler, TranscriptAssembler}

LiveSession owns the capture device, both audio clocks and the channel. Every
way a session can end (end button, remote close, remote error, owner teardown)
goes through the same idempotent teardown().
"""

import asyncio
import logging
from enum import Enum

from audio_codec import decode_pcm16_base64
from audio_devices import ClockState, PyAudioCapture, PyAudioPlaybackClock
from capture_pipeline import CapturePipeline
from event_bus import EventBus, SignalType
from live_channel import LiveChannel, get_api_key
from live_messages import (
    AudioChunk,
    GoAway,
    Interrupted,
    SetupComplete,
    ToolCallBatch,
    TranscriptionFragment,
    TurnComplete,
)
from persona import SessionConfig
from playback_scheduler import PlaybackScheduler
from session_errors import (
    ConfigurationError,
    MalformedMessageError,
    MicrophonePermissionError,
    PlaybackDeviceError,
    SessionError,
)
from tool_calls import ToolCallStateMachine
from transcript_buffer import TranscriptAssembler

logger = logging.getLogger(__name__)

# Only one session may hold the microphone and the connection at a time
_active_session = None


class SessionState(str, Enum):
    CONNECTING = "connecting"
    OPEN = "open"
    PAUSED = "paused"
    CLOSED = "closed"
    ERRORED = "errored"


_LIVE_STATES = (SessionState.OPEN, SessionState.PAUSED)


class LiveSession:
    """One spoken conversation: connect, stream, play back, tear down.

    The presentation layer reads is_talking / is_analyzing / profile /
    transcript / state, subscribes to `bus`, and drives the session with
    toggle_mute(), toggle_pause(), send_suggested_prompt() and end_session().

    The factories exist so tests (or another platform binding) can supply
    their own capture device, playback clock and channel.
    """

    def __init__(self, config=None, api_key=None, bus=None, on_status=None,
                 capture_factory=None, playback_factory=None, channel_factory=None):
        self.config = config or SessionConfig()
        self.api_key = api_key
        self.bus = bus or EventBus("live_session")
        self.on_status = on_status or (lambda s: None)

        self._capture_factory = capture_factory or PyAudioCapture
        self._playback_factory = playback_factory or (
            lambda: PyAudioPlaybackClock(self.config.playback_sample_rate))
        self._channel_factory = channel_factory or LiveChannel

        self.state = SessionState.CONNECTING
        self.error: SessionError | None = None
        self.muted = False
        self.paused = False

        self._started = False
        self._torn_down = False
        self._talking = False
        self._announced_profile = None

        # Resources, acquired in _connect() and dropped in teardown()
        self._capture = None
        self._playback_clock = None
        self._channel = None
        self._channel_closing = None
        self._pipeline: CapturePipeline | None = None
        self._scheduler: PlaybackScheduler | None = None
        self._tasks: list[asyncio.Task] = []

        self._tools = ToolCallStateMachine(on_change=self._on_tools_changed)
        self._transcript = TranscriptAssembler(
            max_chars=self.config.transcript_max_chars,
            clear_delay=self.config.transcript_clear_delay,
            on_change=self._on_transcript_changed,
        )

    # ── Observed signals ───────────────────────────────────────────

    @property
    def is_talking(self) -> bool:
        return self._scheduler is not None and self._scheduler.is_talking

    @property
    def is_analyzing(self) -> bool:
        return self._tools.analyzing

    @property
    def profile(self):
        return self._tools.profile

    @property
    def transcript(self) -> str:
        return self._transcript.text

    @property
    def is_connected(self) -> bool:
        return self.state in _LIVE_STATES

    @property
    def error_message(self) -> str | None:
        return self.error.message if self.error else None

    def _set_state(self, state: SessionState):
        if state == self.state:
            return
        self.state = state
        self.on_status(state.value)
        self.bus.emit(SignalType.STATUS, status=state.value)

    def _on_talking(self, talking: bool):
        if talking == self._talking:
            return
        self._talking = talking
        self.bus.emit(SignalType.TALKING, talking=talking)

    def _on_tools_changed(self, analyzing, profile):
        self.bus.emit(SignalType.ANALYZING, analyzing=analyzing)
        if profile is not None and profile is not self._announced_profile:
            self._announced_profile = profile
            self.bus.emit(SignalType.PROFILE, **profile.to_dict())

    def _on_transcript_changed(self, text):
        self.bus.emit(SignalType.TRANSCRIPT, text=text)

    # ── Main loop ──────────────────────────────────────────────────

    async def run(self):
        """Run the session until it ends. Never raises SessionError; check
        `state` and `error` afterwards."""
        global _active_session
        if self._started:
            raise RuntimeError("LiveSession.run() can only be called once")
        if _active_session is not None and _active_session is not self:
            raise RuntimeError("Another live session is still active; end it first")
        self._started = True
        _active_session = self

        self._set_state(SessionState.CONNECTING)
        self.bus.emit(SignalType.SESSION_START, portal=self.config.portal.value,
                      model=self.config.model, voice=self.config.voice)
        try:
            await self._connect()
            if self._torn_down:
                return
            self._set_state(SessionState.OPEN)
            self._capture.resume()
            await self._run_loops()
        except SessionError as e:
            self._fail(e)
        finally:
            self.teardown()
            if self._channel_closing is not None:
                await self._channel_closing

    async def _connect(self):
        api_key = self.api_key or get_api_key()
        if not api_key:
            raise ConfigurationError("API Key not found in environment.")

        self._capture = self._capture_factory()
        try:
            self._capture.open(self.config.frame_size, self.config.capture_sample_rate)
        except OSError as e:
            raise MicrophonePermissionError(f"Microphone unavailable: {e}")

        self._playback_clock = self._playback_factory()
        try:
            self._playback_clock.open()
        except OSError as e:
            raise PlaybackDeviceError(f"Audio output unavailable: {e}")

        self._scheduler = PlaybackScheduler(
            self._playback_clock, self.config.playback_sample_rate, on_talking=self._on_talking)

        self._channel = self._channel_factory(api_key, self.config)
        self._pipeline = CapturePipeline(
            self._channel.send_audio_frame, clock=self._capture,
            sample_rate=self.config.capture_sample_rate)
        await self._channel.open()
        logger.info("Live session: connected (portal=%s)", self.config.portal.value)

    async def _run_loops(self):
        """Capture and receive run side by side; whichever ends first ends both."""
        self._tasks = [
            asyncio.create_task(self._pipeline.run(self._capture, self.config.frame_size)),
            asyncio.create_task(self._receive_loop()),
        ]
        done, pending = await asyncio.wait(self._tasks, return_when=asyncio.FIRST_COMPLETED)
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)
        for task in done:
            if not task.cancelled() and task.exception() is not None:
                raise task.exception()

    async def _receive_loop(self):
        async for messages in self._channel.receive():
            for message in messages:
                if self._torn_down:
                    return
                self.dispatch(message)
        logger.info("Live session: remote closed the connection")

    # ── Inbound dispatch ───────────────────────────────────────────

    def dispatch(self, message):
        """Route one inbound message. Late arrivals after teardown are ignored."""
        if self._torn_down:
            return

        if not isinstance(message, (TurnComplete, Interrupted)):
            # Anything else arriving after turn complete keeps the caption up
            self._transcript.hold()

        if isinstance(message, ToolCallBatch):
            self._handle_tool_calls(message)
        elif isinstance(message, AudioChunk):
            self._play_audio(message)
        elif isinstance(message, TranscriptionFragment):
            self._transcript.add_fragment(message.text)
        elif isinstance(message, TurnComplete):
            self._transcript.turn_complete()
        elif isinstance(message, Interrupted):
            self._handle_interrupted()
        elif isinstance(message, GoAway):
            logger.warning("Live session: server closing soon (time left %s)", message.time_left)
        elif isinstance(message, SetupComplete):
            pass
        else:
            logger.warning("Live session: unhandled message %r", message)

    def _handle_tool_calls(self, batch: ToolCallBatch):
        logger.info("Live session: tool call batch %s",
                    [c.get("name") for c in batch.calls if isinstance(c, dict)])
        responses = self._tools.handle_batch(batch.calls)
        for response in responses:
            self.bus.emit(SignalType.TOOL_CALL, id=response.call_id, name=response.name)
        if responses:
            self._channel.send_tool_response(responses)

    def _play_audio(self, chunk: AudioChunk):
        if chunk.sample_rate != self.config.playback_sample_rate:
            logger.warning("Live session: skipping %d Hz audio chunk (playback runs at %d Hz)",
                           chunk.sample_rate, self.config.playback_sample_rate)
            return
        try:
            samples = decode_pcm16_base64(chunk.data, chunk.channels)
        except MalformedMessageError as e:
            logger.warning("Live session: skipping audio chunk: %s", e.message)
            return
        if samples.ndim > 1:
            samples = samples[:, 0]
        if len(samples) == 0:
            return
        self._scheduler.schedule(samples)

    def _handle_interrupted(self):
        logger.info("Live session: interrupted by server")
        self._scheduler.interrupt()
        self._transcript.interrupt()
        self._tools.reset()
        self.bus.emit(SignalType.INTERRUPTED)

    # ── Controls ───────────────────────────────────────────────────

    def toggle_mute(self) -> bool:
        """Flip the transmission gate. Clocks and connection are untouched."""
        self.muted = not self.muted
        if self._pipeline is not None:
            self._pipeline.muted = self.muted
        logger.info("Live session: %s", "muted" if self.muted else "unmuted")
        self.bus.emit(SignalType.STATUS, status=self.state.value, muted=self.muted)
        return self.muted

    def toggle_pause(self) -> bool:
        """Suspend or resume both audio clocks together. Never closes anything."""
        if self.state not in _LIVE_STATES:
            return self.paused
        self.paused = not self.paused
        self._pipeline.paused = self.paused
        for clock in (self._capture, self._playback_clock):
            if self.paused:
                clock.suspend()
            else:
                clock.resume()
        self._set_state(SessionState.PAUSED if self.paused else SessionState.OPEN)
        logger.info("Live session: %s", "paused" if self.paused else "resumed")
        return self.paused

    def send_suggested_prompt(self, text: str) -> bool:
        """Send a typed shortcut as a complete user turn."""
        text = (text or "").strip()
        if not text or self.state not in _LIVE_STATES:
            return False
        self._channel.send_synthetic_turn(text)
        return True

    def end_session(self):
        self.teardown()

    # ── Teardown ───────────────────────────────────────────────────

    def _fail(self, error: SessionError):
        if self._torn_down:
            logger.info("Live session: ignoring %s after teardown", error.kind.value)
            return
        logger.error("Live session: %s error: %s", error.kind.value, error.message)
        self.error = error
        self._set_state(SessionState.ERRORED)
        self.bus.emit(SignalType.ERROR, kind=error.kind.value, message=error.message)

    def teardown(self):
        """Release everything this session holds. Safe to call any number of times."""
        global _active_session
        if self._torn_down:
            return
        self._torn_down = True

        try:
            current = asyncio.current_task()
        except RuntimeError:
            current = None
        for task in self._tasks:
            if task is not current and not task.done():
                task.cancel()
        self._tasks = []

        if self._capture is not None:
            try:
                self._capture.stop()
            except Exception as e:
                logger.warning("Live session: capture stop failed: %s", e)

        for name, clock in (("capture", self._capture), ("playback", self._playback_clock)):
            if clock is not None and clock.state != ClockState.CLOSED:
                try:
                    clock.close()
                except Exception as e:
                    logger.warning("Live session: %s clock close failed: %s", name, e)

        if self._scheduler is not None:
            self._scheduler.reset()
        self._transcript.clear()
        self._tools.reset()
        self._on_talking(False)

        if self._channel is not None:
            self._channel_closing = self._channel.close()

        self.muted = False
        self.paused = False
        self._capture = None
        self._playback_clock = None
        self._channel = None
        self._pipeline = None
        self._scheduler = None

        if self.state != SessionState.ERRORED:
            self._set_state(SessionState.CLOSED)
        if _active_session is self:
            _active_session = None
        self.bus.emit(SignalType.SESSION_END, state=self.state.value)
        logger.info("Live session: torn down (%s)", self.state.value)
