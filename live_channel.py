#!/usr/bin/env python3
"""
Gemini Live streaming channel.
Bidirectional websocket: microphone frames, tool responses and typed turns go
out; audio, transcription, tool calls and turn signals come back.
"""

import asyncio
import json
import logging
import os
from pathlib import Path

import websockets

from live_messages import (
    SetupComplete,
    client_turn_message,
    parse_server_message,
    realtime_audio_message,
    setup_message,
    tool_response_message,
)
from session_errors import MalformedMessageError, RemoteConnectionError

logger = logging.getLogger(__name__)

API_KEY_ENV_VARS = ("GEMINI_API_KEY", "GOOGLE_API_KEY", "API_KEY")

# Sentinel that tells the sender task to stop
_CLOSE = object()


def get_api_key():
    """Get the Gemini API key from the environment or a key file."""
    for var in API_KEY_ENV_VARS:
        key = os.environ.get(var)
        if key:
            return key
    for path in [
        Path.home() / ".config" / "gemini" / "api_key",
        Path.home() / ".gemini" / "api_key",
    ]:
        if path.exists():
            key = path.read_text().strip()
            if key:
                return key
    return None


class LiveChannel:
    """One websocket connection to the live service.

    Outbound sends never block the caller: they go onto a single FIFO queue
    drained by a sender task, so frames and tool responses leave in the order
    they were issued. Inbound payloads are parsed and yielded in arrival order
    by receive().
    """

    def __init__(self, api_key, config):
        self.api_key = api_key
        self.config = config
        self.ws = None
        self.closed = False
        self._outbox = None
        self._sender_task = None
        self._close_task = None
        self.messages_sent = 0

    @property
    def is_open(self) -> bool:
        return self.ws is not None and not self.closed

    async def open(self):
        """Connect, send the setup message and wait for the service to accept it."""
        headers = {"x-goog-api-key": self.api_key}
        try:
            self.ws = await websockets.connect(
                self.config.url,
                additional_headers=headers,
                ping_interval=20,
                max_size=None,
                open_timeout=self.config.open_timeout,
            )
            await self.ws.send(json.dumps(setup_message(self.config)))
            await asyncio.wait_for(self._wait_for_setup(), timeout=self.config.open_timeout)
        except (OSError, asyncio.TimeoutError, websockets.exceptions.WebSocketException) as e:
            await self._close_socket()
            raise RemoteConnectionError(f"Could not connect to the live service: {e}")

        if self.closed:
            # close() was requested while the handshake was in flight
            await self._close_socket()
            return

        self._outbox = asyncio.Queue()
        self._sender_task = asyncio.create_task(self._sender())
        logger.info("Live channel open (model=%s, voice=%s)", self.config.model, self.config.voice)

    async def _wait_for_setup(self):
        while True:
            raw = await self.ws.recv()
            try:
                messages = parse_server_message(raw)
            except MalformedMessageError as e:
                logger.warning("Skipping malformed message during setup: %s", e.message)
                continue
            if any(isinstance(m, SetupComplete) for m in messages):
                return
            logger.debug("Ignoring pre-setup message: %s", [m.type.name for m in messages])

    # ── Outbound ───────────────────────────────────────────────────

    def send_audio_frame(self, payload: str, sample_rate: int):
        """Queue one base64 PCM16 frame. Fire-and-forget."""
        self._enqueue(realtime_audio_message(payload, sample_rate))

    def send_tool_response(self, responses):
        """Queue the acknowledgements for one tool-call batch as a single message."""
        if responses:
            self._enqueue(tool_response_message(responses))

    def send_synthetic_turn(self, text: str):
        """Queue a completed user turn made of text only."""
        self._enqueue(client_turn_message(text))

    def _enqueue(self, message: dict) -> bool:
        if self.closed or self._outbox is None:
            logger.debug("Dropping outbound message, channel not open: %s", next(iter(message)))
            return False
        self._outbox.put_nowait(message)
        return True

    async def _sender(self):
        while True:
            message = await self._outbox.get()
            if message is _CLOSE:
                return
            try:
                await self.ws.send(json.dumps(message))
            except websockets.exceptions.ConnectionClosed:
                logger.info("Live channel: send after connection closed, sender stopping")
                return
            self.messages_sent += 1

    # ── Inbound ────────────────────────────────────────────────────

    async def receive(self):
        """Yield parsed message lists until the connection closes.

        A clean close (by either side) ends the iterator; an abnormal close or
        transport failure raises RemoteConnectionError. Malformed payloads
        are skipped.
        """
        try:
            async for raw in self.ws:
                try:
                    messages = parse_server_message(raw)
                except MalformedMessageError as e:
                    logger.warning("Skipping malformed server message: %s", e.message)
                    continue
                if messages:
                    yield messages
        except websockets.exceptions.ConnectionClosedError as e:
            if self.closed:
                return
            raise RemoteConnectionError(f"Connection disrupted: {e}")
        except OSError as e:
            if self.closed:
                return
            raise RemoteConnectionError(f"Connection disrupted: {e}")
        logger.info("Live channel: connection closed")

    # ── Shutdown ───────────────────────────────────────────────────

    def close(self):
        """Request a graceful shutdown. Safe to call repeatedly."""
        if self.closed:
            return self._close_task
        self.closed = True
        if self._outbox is not None:
            self._outbox.put_nowait(_CLOSE)
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning("Live channel: no running loop, socket left to the GC")
            return None
        self._close_task = loop.create_task(self._shutdown())
        return self._close_task

    async def wait_closed(self):
        if self._close_task is not None:
            await self._close_task

    async def _shutdown(self):
        if self._sender_task is not None and not self._sender_task.done():
            self._sender_task.cancel()
            try:
                await self._sender_task
            except asyncio.CancelledError:
                pass
        await self._close_socket()
        logger.info("Live channel: disconnected (%d messages sent)", self.messages_sent)

    async def _close_socket(self):
        if self.ws is not None:
            try:
                await self.ws.close()
            except (OSError, websockets.exceptions.WebSocketException) as e:
                logger.warning("Live channel: close error: %s", e)
