"""Turn-scoped caption assembled from streaming output transcription.

Provides:
- TranscriptAssembler: appends fragments, cuts to a fresh paragraph once the
  caption grows past max_chars, clears a fixed delay after the turn ends
  unless more of the turn arrives first (hold()), and immediately on
  interruption.

The caption is a display aid only; nothing here is kept beyond the turn.
"""

import asyncio
import logging
from typing import Callable

logger = logging.getLogger(__name__)

MAX_CAPTION_CHARS = 200
CLEAR_DELAY_SECONDS = 6.0


class TranscriptAssembler:
    """Running caption for the current turn.

    Args:
        max_chars: once the caption is longer than this, the next fragment
            replaces it instead of being appended
        clear_delay: seconds after turn_complete() before the caption clears
        on_change: callback(text) on every change
    """

    def __init__(self, max_chars: int = MAX_CAPTION_CHARS,
                 clear_delay: float = CLEAR_DELAY_SECONDS,
                 on_change: Callable[[str], None] | None = None):
        self.max_chars = max_chars
        self.clear_delay = clear_delay
        self._on_change = on_change or (lambda text: None)
        self._text = ""
        self._clear_handle: asyncio.TimerHandle | None = None

    @property
    def text(self) -> str:
        return self._text

    @property
    def clear_pending(self) -> bool:
        return self._clear_handle is not None

    def add_fragment(self, text: str):
        """Append a fragment; a fresh fragment cancels any pending clear."""
        if not text:
            return
        self._cancel_pending_clear()
        if len(self._text) > self.max_chars:
            self._set(text)
        else:
            self._set(self._text + text)

    def hold(self):
        """Keep the caption up: cancel a pending clear without changing the text."""
        self._cancel_pending_clear()

    def turn_complete(self):
        """Schedule the caption to clear after clear_delay."""
        self._cancel_pending_clear()
        loop = asyncio.get_running_loop()
        self._clear_handle = loop.call_later(self.clear_delay, self._delayed_clear)

    def interrupt(self):
        self.clear()

    def clear(self):
        """Clear now and drop any pending delayed clear."""
        self._cancel_pending_clear()
        self._set("")

    def _delayed_clear(self):
        self._clear_handle = None
        self._set("")

    def _cancel_pending_clear(self):
        if self._clear_handle is not None:
            self._clear_handle.cancel()
            self._clear_handle = None

    def _set(self, text: str):
        if text == self._text:
            return
        self._text = text
        self._on_change(text)
