"""Astro Buddy persona, portal selection and per-session configuration."""

import os
from dataclasses import dataclass
from enum import Enum

from audio_codec import CAPTURE_SAMPLE_RATE, PLAYBACK_SAMPLE_RATE
from audio_devices import FRAME_SIZE
from transcript_buffer import CLEAR_DELAY_SECONDS, MAX_CAPTION_CHARS

DEFAULT_MODEL = "models/gemini-2.5-flash-native-audio-preview-09-2025"
DEFAULT_VOICE = "Kore"
LIVE_URL = ("wss://generativelanguage.googleapis.com/ws/"
            "google.ai.generativelanguage.v1beta.GenerativeService.BidiGenerateContent")


class Portal(str, Enum):
    """Conversation portal chosen before the session starts."""
    SOULMATE = "Soulmate Search"
    CASUAL = "Stellar Fling"
    FRIENDSHIP = "Cosmic Friendship"
    UNDECIDED = "General Guidance"

    @classmethod
    def parse(cls, value: str) -> "Portal":
        """Accept either the enum name ("soulmate") or the label ("Soulmate Search")."""
        for portal in cls:
            if value.strip().lower() in (portal.name.lower(), portal.value.lower()):
                return portal
        names = ", ".join(p.name.lower() for p in cls)
        raise ValueError(f"Unknown portal {value!r} (expected one of: {names})")


_SYSTEM_INSTRUCTION = """\
You are 'Astro Buddy', a friendly, mystical, and supportive astrology companion.
Your goal is to guide the user through the '{portal}' portal.

STRICT CONVERSATION FLOW:
1. When the session starts or the user says Hello, ask for their NAME immediately.
2. Once they give their name, greet them warmly by name (e.g., "Hi [Name]! It's written in the stars that we meet.") and IMMEDIATELY ask for their BIRTH DETAILS (Date, Time, and Place of birth) to align their stars.
3. Wait for the user to provide the details.
4. CRITICAL STEP: When you receive the birth details, FIRST call the tool 'start_analysis' to trigger the analysis animation. Say something like "Hmm, let me read the celestial map for you..."
5. Pause for a brief moment (simulated), then calculate their Sun Sign and the corresponding Hindi Rashi.
6. Call the tool 'set_user_profile' with their Name, Sun Sign, and Rashi.
7. After the tool call, verbally announce their sign with excitement (e.g., "Ah! You are a Leo, the Simha rashi! That explains your radiance.").
8. Then, invite them to ask a question related to {portal} or their life.

TONE:
- Casual, like a best friend.
- Use emojis in your voice (warmth, chuckles).
- Keep responses concise but insightful.
"""


def build_system_instruction(portal: Portal) -> str:
    return _SYSTEM_INSTRUCTION.format(portal=portal.value)


@dataclass
class SessionConfig:
    """Everything fixed at session open."""
    portal: Portal = Portal.UNDECIDED
    model: str = DEFAULT_MODEL
    voice: str = DEFAULT_VOICE
    url: str = LIVE_URL
    capture_sample_rate: int = CAPTURE_SAMPLE_RATE
    playback_sample_rate: int = PLAYBACK_SAMPLE_RATE
    frame_size: int = FRAME_SIZE
    transcript_max_chars: int = MAX_CAPTION_CHARS
    transcript_clear_delay: float = CLEAR_DELAY_SECONDS
    open_timeout: float = 15.0

    @property
    def system_instruction(self) -> str:
        return build_system_instruction(self.portal)

    @classmethod
    def from_env(cls, **overrides) -> "SessionConfig":
        """Defaults, then ASTRO_BUDDY_* environment variables, then overrides."""
        values = {}
        if os.environ.get("ASTRO_BUDDY_MODEL"):
            values["model"] = os.environ["ASTRO_BUDDY_MODEL"]
        if os.environ.get("ASTRO_BUDDY_VOICE"):
            values["voice"] = os.environ["ASTRO_BUDDY_VOICE"]
        if os.environ.get("ASTRO_BUDDY_PORTAL"):
            values["portal"] = Portal.parse(os.environ["ASTRO_BUDDY_PORTAL"])
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)
