"""Decoded leading samples for containers that cannot be cut at a byte offset."""

from __future__ import annotations

import io
import logging
import tempfile
from pathlib import Path

import librosa
import soundfile as sf

from tracksafe.moderation.errors import AudioUnreadableError

logger = logging.getLogger(__name__)

# Speech models resample to 16 kHz mono internally
SAMPLE_RATE = 16000


def decode_leading_sample(
    audio: bytes, audio_format: str, max_seconds: float, sample_rate: int = SAMPLE_RATE
) -> bytes:
    """Decode the first *max_seconds* of *audio* and return them as 16-bit WAV.

    Raises ``AudioUnreadableError`` when the container cannot be decoded.
    """
    with tempfile.TemporaryDirectory(prefix="tracksafe-") as tmpdir:
        path = Path(tmpdir) / f"source.{audio_format or 'bin'}"
        path.write_bytes(audio)
        try:
            samples, sr = librosa.load(
                str(path), sr=sample_rate, mono=True, duration=max_seconds
            )
        except Exception as exc:
            raise AudioUnreadableError(f"Cannot decode {audio_format} audio: {exc}") from exc

    if samples.size == 0:
        raise AudioUnreadableError(f"Decoded {audio_format} audio is empty")

    buffer = io.BytesIO()
    sf.write(buffer, samples, sr, format="WAV", subtype="PCM_16")
    logger.debug(
        "Decoded %.1fs leading sample from %d bytes of %s",
        samples.size / sr, len(audio), audio_format,
    )
    return buffer.getvalue()
