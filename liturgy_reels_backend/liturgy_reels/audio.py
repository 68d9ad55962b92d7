"""Speech clip duration probing."""
import base64
import binascii
import io
import math
import struct
import wave
from typing import Union

import numpy as np

from .session_log import SessionLog
from .settings import AUDIO_SAMPLE_RATE, FALLBACK_DURATION_MS

CHANNELS = 1
SAMPLE_WIDTH = 2  # 16-bit


def _decode_frames(raw: bytes, sample_rate: int):
    """Return (frame_count, sample_rate) for a WAV container or headerless PCM."""
    if raw[:4] == b"RIFF":
        with io.BytesIO(raw) as buf, wave.open(buf, "rb") as wf:
            return wf.getnframes(), wf.getframerate()
    samples = np.frombuffer(raw, dtype=f"<i{SAMPLE_WIDTH}")
    return samples.size // CHANNELS, sample_rate


def probe_duration_ms(
    audio: Union[bytes, str],
    log: SessionLog,
    sample_rate: int = AUDIO_SAMPLE_RATE,
    fallback_ms: int = FALLBACK_DURATION_MS,
) -> int:
    """Playable duration of a speech clip in milliseconds.

    Accepts raw bytes or base64 text. Never raises: a clip that cannot be
    decoded, or that yields a non-finite duration, gets `fallback_ms`.
    """
    try:
        raw = base64.b64decode(audio, validate=True) if isinstance(audio, str) else bytes(audio)
        if not raw:
            raise ValueError("empty audio clip")
        frames, rate = _decode_frames(raw, sample_rate)
        duration = frames / rate * 1000.0
    except (binascii.Error, ValueError, TypeError, ZeroDivisionError, EOFError, struct.error, wave.Error) as e:
        log.error(f"Could not decode audio for duration, defaulting to {fallback_ms}ms", e)
        return fallback_ms

    if not math.isfinite(duration):
        log.warning(f"Audio duration is not finite, defaulting to {fallback_ms}ms", duration=duration)
        return fallback_ms
    return int(duration)
