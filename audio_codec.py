"""PCM16 conversion between float sample buffers and base64 transport payloads.

Capture side: float32 in [-1, 1] -> int16 -> little-endian bytes -> base64.
Playback side: base64 -> int16 -> float32, the inverse scale.
"""

import base64
import binascii

import numpy as np

from session_errors import MalformedMessageError

CAPTURE_SAMPLE_RATE = 16000
PLAYBACK_SAMPLE_RATE = 24000
CHANNELS = 1
BYTES_PER_SAMPLE = 2  # 16-bit PCM

_PCM16_SCALE = 32768.0
_PCM16_MIN = -32768
_PCM16_MAX = 32767


def pcm_mime_type(sample_rate: int) -> str:
    return f"audio/pcm;rate={sample_rate}"


def float_to_pcm16(samples) -> np.ndarray:
    """Scale float samples by 32768 and truncate toward zero.

    Out-of-range input is clamped to the int16 range instead of wrapping, so
    a clipped mic produces a clipped signal rather than sign-flipped noise.
    """
    data = np.asarray(samples, dtype=np.float32)
    scaled = np.trunc(data.astype(np.float64) * _PCM16_SCALE)
    return np.clip(scaled, _PCM16_MIN, _PCM16_MAX).astype('<i2')


def encode_pcm16_base64(samples) -> str:
    """float samples -> base64 text of little-endian PCM16."""
    return base64.b64encode(float_to_pcm16(samples).tobytes()).decode('ascii')


def decode_pcm16_base64(data: str, channels: int = CHANNELS) -> np.ndarray:
    """Decode a base64 PCM16 payload into float32 samples.

    Mono returns a 1-D array; for channels > 1 the interleaved samples are
    split into a (frames, channels) array. Raises MalformedMessageError on
    bad base64 or a byte count that is not a whole number of frames.
    """
    try:
        raw = base64.b64decode(data, validate=True)
    except (binascii.Error, ValueError, TypeError) as e:
        raise MalformedMessageError(f"Audio payload is not valid base64: {e}")

    frame_bytes = BYTES_PER_SAMPLE * channels
    if len(raw) % frame_bytes:
        raise MalformedMessageError(
            f"Audio payload of {len(raw)} bytes is not a whole number of "
            f"{channels}-channel PCM16 frames"
        )

    samples = np.frombuffer(raw, dtype='<i2').astype(np.float32) / _PCM16_SCALE
    if channels > 1:
        return samples.reshape(-1, channels)
    return samples


def duration_of(samples, sample_rate: int) -> float:
    """Duration in seconds of a decoded buffer (frames / rate)."""
    return len(samples) / float(sample_rate)
