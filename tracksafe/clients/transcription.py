"""Speech-to-text capability backed by an OpenAI-compatible transcription API."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

import httpx
from tenacity.wait import wait_base

from tracksafe.clients.audio import decode_leading_sample
from tracksafe.clients.retry import call_with_retry, check_response
from tracksafe.moderation.errors import (
    AudioUnreadableError,
    NonRetryableProcessingError,
    TransientServiceError,
)
from tracksafe.moderation.models import Transcript

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "whisper-1"

# Formats whose leading bytes are still decodable on their own.  Anything
# else (m4a, flac) is decoded and re-encoded to trim it.
STREAMABLE_FORMATS = frozenset({"mp3", "aac", "ogg", "webm", "wav"})


def sample_byte_limit(
    duration_seconds: float,
    bitrate_kbps: int,
    audio_format: str,
    max_seconds: Optional[float],
) -> Optional[int]:
    """Bytes to read for a leading sample, or ``None`` to read everything."""
    if not max_seconds or duration_seconds <= max_seconds:
        return None
    if audio_format not in STREAMABLE_FORMATS or bitrate_kbps <= 0:
        return None
    return int(bitrate_kbps * 1000 / 8 * max_seconds)


def needs_decoded_sample(
    duration_seconds: float,
    bitrate_kbps: int,
    audio_format: str,
    max_seconds: Optional[float],
) -> bool:
    """True when long content cannot be sampled by byte range alone."""
    if not max_seconds or duration_seconds <= max_seconds:
        return False
    return sample_byte_limit(duration_seconds, bitrate_kbps, audio_format, max_seconds) is None


class WhisperTranscriber:
    """Transcribes stored audio through ``POST {base_url}/audio/transcriptions``.

    Audio is fetched from an ``http(s)`` URL or read from a local path.  For
    long content only a leading sample is sent: a byte prefix for streamable
    formats, a decoded and re-encoded WAV excerpt for the rest.
    """

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://api.openai.com/v1",
        model: str = DEFAULT_MODEL,
        timeout: float = 120.0,
        max_attempts: int = 3,
        http_client: Optional[httpx.Client] = None,
        retry_wait: Optional[wait_base] = None,
    ) -> None:
        self.model = model or DEFAULT_MODEL
        self.base_url = base_url.rstrip("/")
        self.max_attempts = max_attempts
        self._api_key = api_key
        self._retry_wait = retry_wait
        self._http = http_client or httpx.Client(timeout=timeout)

    # -- audio access --------------------------------------------------------

    def _read_remote(self, url: str, limit: Optional[int]) -> bytes:
        chunks: list[bytes] = []
        received = 0
        try:
            with self._http.stream("GET", url) as response:
                if response.status_code in (408, 429) or response.status_code >= 500:
                    raise TransientServiceError(f"Audio fetch returned {response.status_code}")
                if response.status_code >= 400:
                    raise AudioUnreadableError(f"Audio fetch returned {response.status_code}")
                for chunk in response.iter_bytes():
                    chunks.append(chunk)
                    received += len(chunk)
                    if limit is not None and received >= limit:
                        break
        except httpx.TimeoutException as exc:
            raise TransientServiceError(f"Timed out fetching audio: {exc}") from exc
        except httpx.TransportError as exc:
            raise TransientServiceError(f"Could not fetch audio: {exc}") from exc
        data = b"".join(chunks)
        return data[:limit] if limit is not None else data

    @staticmethod
    def _read_local(ref: str, limit: Optional[int]) -> bytes:
        path = Path(ref[len("file://"):] if ref.startswith("file://") else ref)
        if not path.is_file():
            raise AudioUnreadableError(f"Audio file not found: {path}")
        try:
            with open(path, "rb") as fh:
                return fh.read(limit if limit is not None else -1)
        except OSError as exc:
            raise AudioUnreadableError(f"Cannot read {path}: {exc}") from exc

    def fetch_audio(self, audio_ref: str, limit: Optional[int] = None) -> bytes:
        if audio_ref.startswith(("http://", "https://")):
            data = self._read_remote(audio_ref, limit)
        else:
            data = self._read_local(audio_ref, limit)
        if not data:
            raise AudioUnreadableError(f"Audio at {audio_ref} is empty")
        return data

    # -- transcription -------------------------------------------------------

    def _post(self, audio: bytes, audio_format: str) -> str:
        try:
            response = self._http.post(
                f"{self.base_url}/audio/transcriptions",
                headers={"Authorization": f"Bearer {self._api_key}"},
                data={"model": self.model, "response_format": "json"},
                files={"file": (f"audio.{audio_format or 'mp3'}", audio)},
            )
        except httpx.TimeoutException as exc:
            raise TransientServiceError(f"Transcription timed out: {exc}") from exc
        except httpx.TransportError as exc:
            raise TransientServiceError(f"Transcription service unreachable: {exc}") from exc

        try:
            check_response(response, "transcription")
        except NonRetryableProcessingError as exc:
            raise AudioUnreadableError(str(exc)) from exc
        try:
            return str(response.json().get("text", ""))
        except ValueError as exc:
            raise TransientServiceError("Transcription returned invalid JSON") from exc

    def transcribe(
        self,
        audio_ref: str,
        *,
        duration_seconds: float = 0.0,
        bitrate_kbps: int = 0,
        audio_format: str = "",
        max_seconds: Optional[float] = None,
    ) -> Transcript:
        limit = sample_byte_limit(duration_seconds, bitrate_kbps, audio_format, max_seconds)
        decode = needs_decoded_sample(duration_seconds, bitrate_kbps, audio_format, max_seconds)
        audio = call_with_retry(
            self.fetch_audio, audio_ref, limit,
            max_attempts=self.max_attempts, wait=self._retry_wait,
        )
        upload_format = audio_format
        if decode:
            audio = decode_leading_sample(audio, audio_format, max_seconds)
            upload_format = "wav"
        text = call_with_retry(
            self._post, audio, upload_format,
            max_attempts=self.max_attempts, wait=self._retry_wait,
        )
        sampled = limit is not None or decode
        if sampled:
            logger.debug("Transcribed %d-byte leading sample of %s", len(audio), audio_ref)
        return Transcript(text=text.strip(), sampled=sampled, model=self.model)
