"""Capability interfaces for the external services the pipeline consumes.

The decision pipeline depends only on the two protocols below; concrete
vendors are chosen from configuration by the ``build_*`` factories.
"""

from __future__ import annotations

from typing import Optional, Protocol

from tracksafe.config import ConfigError, ServiceConfig
from tracksafe.moderation.models import ClassificationResult, Transcript


class Transcriber(Protocol):
    def transcribe(
        self,
        audio_ref: str,
        *,
        duration_seconds: float = 0.0,
        bitrate_kbps: int = 0,
        audio_format: str = "",
        max_seconds: Optional[float] = None,
    ) -> Transcript: ...


class Classifier(Protocol):
    def classify(self, text: str) -> ClassificationResult: ...


def build_transcriber(config: ServiceConfig) -> Transcriber:
    if config.provider == "fake":
        from tracksafe.clients.fakes import FakeTranscriber

        return FakeTranscriber()
    if config.provider == "openai":
        from tracksafe.clients.transcription import WhisperTranscriber

        return WhisperTranscriber(
            api_key=config.api_key,
            base_url=config.base_url,
            model=config.model,
            timeout=config.timeout_seconds,
            max_attempts=config.max_attempts,
        )
    raise ConfigError(f"Unknown transcription provider '{config.provider}'")


def build_classifier(config: ServiceConfig, flag_threshold: float = 0.85) -> Classifier:
    if config.provider == "fake":
        from tracksafe.clients.fakes import FakeClassifier

        return FakeClassifier(flag_threshold=flag_threshold)
    if config.provider == "openai":
        from tracksafe.clients.classification import OpenAIModerationClassifier

        return OpenAIModerationClassifier(
            api_key=config.api_key,
            base_url=config.base_url,
            model=config.model,
            timeout=config.timeout_seconds,
            max_attempts=config.max_attempts,
        )
    if config.provider == "anthropic":
        from tracksafe.clients.classification import AnthropicClassifier

        return AnthropicClassifier(
            api_key=config.api_key,
            model=config.model,
            timeout=config.timeout_seconds,
            max_attempts=config.max_attempts,
            flag_threshold=flag_threshold,
        )
    raise ConfigError(f"Unknown classification provider '{config.provider}'")


__all__ = ["Transcriber", "Classifier", "build_transcriber", "build_classifier"]
