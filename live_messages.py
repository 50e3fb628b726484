"""Typed messages exchanged with the live conversation service.

Inbound server payloads are parsed into a short list of tagged messages (one
server payload can carry a tool-call batch and an audio chunk at once).
Outbound builders produce the JSON objects the service expects.
"""

import json
import re
from dataclasses import dataclass, field
from enum import Enum, auto

from audio_codec import CHANNELS, PLAYBACK_SAMPLE_RATE, pcm_mime_type
from session_errors import MalformedMessageError
from tool_calls import TOOL_DECLARATIONS

_RATE_RE = re.compile(r'rate=(\d+)')


class MessageType(Enum):
    SETUP_COMPLETE = auto()   # Handshake accepted
    TOOL_CALL = auto()        # Batch of function calls
    AUDIO = auto()            # PCM16 chunk of the model's voice
    TRANSCRIPTION = auto()    # Output transcription fragment
    TURN_COMPLETE = auto()    # Model finished its turn
    INTERRUPTED = auto()      # Barge-in: stop playback now
    GO_AWAY = auto()          # Server will close the connection soon


@dataclass
class InboundMessage:
    type: MessageType


@dataclass
class SetupComplete(InboundMessage):
    type: MessageType = field(default=MessageType.SETUP_COMPLETE, init=False)


@dataclass
class ToolCallBatch(InboundMessage):
    calls: list = field(default_factory=list)
    type: MessageType = field(default=MessageType.TOOL_CALL, init=False)


@dataclass
class AudioChunk(InboundMessage):
    data: str = ""  # base64 PCM16
    sample_rate: int = PLAYBACK_SAMPLE_RATE
    channels: int = CHANNELS
    type: MessageType = field(default=MessageType.AUDIO, init=False)


@dataclass
class TranscriptionFragment(InboundMessage):
    text: str = ""
    type: MessageType = field(default=MessageType.TRANSCRIPTION, init=False)


@dataclass
class TurnComplete(InboundMessage):
    type: MessageType = field(default=MessageType.TURN_COMPLETE, init=False)


@dataclass
class Interrupted(InboundMessage):
    type: MessageType = field(default=MessageType.INTERRUPTED, init=False)


@dataclass
class GoAway(InboundMessage):
    time_left: str = ""
    type: MessageType = field(default=MessageType.GO_AWAY, init=False)


# ── Inbound ────────────────────────────────────────────────────────

def _rate_from_mime(mime_type: str) -> int:
    match = _RATE_RE.search(mime_type or "")
    return int(match.group(1)) if match else PLAYBACK_SAMPLE_RATE


def parse_server_message(raw) -> list[InboundMessage]:
    """Parse one server payload into messages, in dispatch order.

    Order: setup ack, tool calls, audio, transcription, turn complete,
    interrupted, go-away. Raises MalformedMessageError if the payload is not
    a JSON object.
    """
    if isinstance(raw, (bytes, bytearray)):
        try:
            raw = raw.decode('utf-8')
        except UnicodeDecodeError as e:
            raise MalformedMessageError(f"Server message is not UTF-8: {e}")
    try:
        data = json.loads(raw)
    except (json.JSONDecodeError, TypeError) as e:
        raise MalformedMessageError(f"Server message is not JSON: {e}")
    if not isinstance(data, dict):
        raise MalformedMessageError(f"Server message is not an object: {type(data).__name__}")

    messages: list[InboundMessage] = []

    if "setupComplete" in data:
        messages.append(SetupComplete())

    tool_call = data.get("toolCall")
    if isinstance(tool_call, dict):
        calls = tool_call.get("functionCalls") or []
        if isinstance(calls, list) and calls:
            messages.append(ToolCallBatch(calls=calls))

    content = data.get("serverContent")
    if isinstance(content, dict):
        model_turn = content.get("modelTurn") or {}
        parts = model_turn.get("parts") if isinstance(model_turn, dict) else None
        for part in parts or []:
            inline = part.get("inlineData") if isinstance(part, dict) else None
            if isinstance(inline, dict) and inline.get("data"):
                messages.append(AudioChunk(
                    data=inline["data"],
                    sample_rate=_rate_from_mime(inline.get("mimeType", "")),
                ))

        transcription = content.get("outputTranscription")
        if isinstance(transcription, dict) and transcription.get("text"):
            messages.append(TranscriptionFragment(text=transcription["text"]))

        if content.get("turnComplete"):
            messages.append(TurnComplete())
        if content.get("interrupted"):
            messages.append(Interrupted())

    go_away = data.get("goAway")
    if isinstance(go_away, dict):
        messages.append(GoAway(time_left=str(go_away.get("timeLeft", ""))))

    return messages


# ── Outbound ───────────────────────────────────────────────────────

def setup_message(config) -> dict:
    """Session setup: audio replies, voice, persona, tools, output transcription."""
    return {
        "setup": {
            "model": config.model,
            "generationConfig": {
                "responseModalities": ["AUDIO"],
                "speechConfig": {
                    "voiceConfig": {"prebuiltVoiceConfig": {"voiceName": config.voice}},
                },
            },
            "systemInstruction": {"parts": [{"text": config.system_instruction}]},
            "tools": [{"functionDeclarations": TOOL_DECLARATIONS}],
            "outputAudioTranscription": {},
        }
    }


def realtime_audio_message(data: str, sample_rate: int) -> dict:
    return {
        "realtimeInput": {
            "mediaChunks": [{"mimeType": pcm_mime_type(sample_rate), "data": data}]
        }
    }


def tool_response_message(responses) -> dict:
    return {
        "toolResponse": {
            "functionResponses": [r.to_dict() for r in responses]
        }
    }


def client_turn_message(text: str) -> dict:
    return {
        "clientContent": {
            "turns": [{"role": "user", "parts": [{"text": text}]}],
            "turnComplete": True,
        }
    }
