"""Configuration for tracksafe.

Settings are plain dataclasses populated from a YAML file.  Secrets may be
supplied through environment variables instead of the file.

Lookup order for the file: explicit path, ``$TRACKSAFE_CONFIG``,
``~/.tracksafe/config.yaml``.  A missing file yields the defaults.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field, fields, is_dataclass
from pathlib import Path
from typing import Any, Optional

import yaml

DEFAULT_HOME = Path.home() / ".tracksafe"


class ConfigError(ValueError):
    """Raised when a configuration file is malformed or out of range."""


@dataclass
class IntakeConfig:
    allowed_formats: list[str] = field(
        default_factory=lambda: ["mp3", "wav", "m4a", "aac", "ogg", "flac", "webm"]
    )
    min_bytes: int = 64 * 1024
    max_bytes: int = 100 * 1024 * 1024
    min_bitrate_kbps: dict[str, int] = field(
        default_factory=lambda: {"music": 96, "spoken_word": 32}
    )
    min_duration_seconds: float = 10.0
    max_duration_seconds: float = 7200.0


@dataclass
class SchedulerConfig:
    batch_size: int = 10
    stale_claim_seconds: int = 1200
    concurrency: int = 3
    interval_seconds: int = 300


@dataclass
class PipelineConfig:
    sample_seconds: int = 120


@dataclass
class DecisionConfig:
    flag_threshold: float = 0.85
    category_thresholds: dict[str, float] = field(
        default_factory=lambda: {
            "hate": 0.5,
            "harassment": 0.5,
            "violence": 0.5,
            "self_harm": 0.5,
            "sexual": 0.5,
            "sexual_minors": 0.1,
        }
    )
    unknown_category_threshold: float = 0.5


@dataclass
class HeuristicsConfig:
    short_duration_seconds: float = 20.0
    short_duration_score: float = 0.3
    repetition_min_words: int = 30
    repetition_unique_ratio: float = 0.2
    repetition_score: float = 0.7
    silence_min_words_per_minute: float = 20.0
    silence_score: float = 0.5
    filler_ratio: float = 0.3
    filler_score: float = 0.4
    spam_score: float = 0.6
    # Below decision.flag_threshold, so spam cues alone never hide an item
    spam_multi_score: float = 0.8


@dataclass
class ServiceConfig:
    """Connection settings for an external capability."""

    provider: str = "openai"
    base_url: str = "https://api.openai.com/v1"
    api_key: str = ""
    model: str = ""
    timeout_seconds: float = 60.0
    max_attempts: int = 3


@dataclass
class NotificationConfig:
    webhook_url: str = ""
    webhook_secret: str = ""
    timeout_seconds: float = 10.0
    max_workers: int = 4


@dataclass
class ApiConfig:
    cron_secret: str = ""
    # bearer token -> {"user_id": ..., "role": "admin" | "user"}
    tokens: dict[str, dict[str, str]] = field(default_factory=dict)


@dataclass
class Config:
    data_dir: str = str(DEFAULT_HOME)
    log_level: str = "INFO"
    log_json: bool = False
    intake: IntakeConfig = field(default_factory=IntakeConfig)
    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)
    pipeline: PipelineConfig = field(default_factory=PipelineConfig)
    decision: DecisionConfig = field(default_factory=DecisionConfig)
    heuristics: HeuristicsConfig = field(default_factory=HeuristicsConfig)
    transcription: ServiceConfig = field(
        default_factory=lambda: ServiceConfig(model="whisper-1", timeout_seconds=120.0)
    )
    classification: ServiceConfig = field(default_factory=ServiceConfig)
    notifications: NotificationConfig = field(default_factory=NotificationConfig)
    api: ApiConfig = field(default_factory=ApiConfig)

    @property
    def data_path(self) -> Path:
        return Path(self.data_dir).expanduser()


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------


def _coerce(name: str, default: Any, value: Any) -> Any:
    """Check *value* against the type of its default; ints widen to floats."""
    if default is None:
        return value
    if value is None:
        raise ConfigError(f"Setting '{name}' cannot be empty")
    if isinstance(default, bool):
        if not isinstance(value, bool):
            raise ConfigError(f"Setting '{name}' must be true or false")
        return value
    if isinstance(default, (int, float)):
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ConfigError(f"Setting '{name}' must be a number, got {value!r}")
        if isinstance(default, int) and not isinstance(value, int):
            raise ConfigError(f"Setting '{name}' must be an integer, got {value!r}")
        return float(value) if isinstance(default, float) else value
    if isinstance(default, dict):
        if not isinstance(value, dict):
            raise ConfigError(f"Setting '{name}' must be a mapping")
        # Keys not mentioned keep their defaults.
        merged = dict(default)
        merged.update(value)
        return merged
    if not isinstance(value, type(default)):
        raise ConfigError(
            f"Setting '{name}' must be {type(default).__name__}, got {type(value).__name__}"
        )
    return value


def _build(cls: type, data: dict[str, Any], section: str) -> Any:
    if not isinstance(data, dict):
        raise ConfigError(f"Section '{section}' must be a mapping")
    kwargs: dict[str, Any] = {}
    defaults = cls()
    by_name = {f.name: f for f in fields(cls)}
    for key, value in data.items():
        name = f"{section}.{key}" if section else key
        if key not in by_name:
            raise ConfigError(f"Unknown setting '{name}'")
        current = getattr(defaults, key)
        if is_dataclass(current):
            if value is not None and not isinstance(value, dict):
                raise ConfigError(f"Section '{name}' must be a mapping")
            merged = {f.name: getattr(current, f.name) for f in fields(current)}
            merged.update(value or {})
            kwargs[key] = _build(type(current), merged, name)
        else:
            kwargs[key] = _coerce(name, current, value)
    return cls(**kwargs)


def _apply_env(config: Config) -> None:
    env = os.environ
    if env.get("TRACKSAFE_DATA_DIR"):
        config.data_dir = env["TRACKSAFE_DATA_DIR"]
    if env.get("TRACKSAFE_LOG_LEVEL"):
        config.log_level = env["TRACKSAFE_LOG_LEVEL"]
    if env.get("TRACKSAFE_CRON_SECRET"):
        config.api.cron_secret = env["TRACKSAFE_CRON_SECRET"]
    if env.get("TRACKSAFE_WEBHOOK_SECRET"):
        config.notifications.webhook_secret = env["TRACKSAFE_WEBHOOK_SECRET"]

    for service in (config.transcription, config.classification):
        if service.api_key:
            continue
        if service.provider == "openai":
            service.api_key = env.get("OPENAI_API_KEY", "")
        elif service.provider == "anthropic":
            service.api_key = env.get("ANTHROPIC_API_KEY", "")


# Longest back-off sleep between retries of one external call
RETRY_MAX_WAIT_SECONDS = 8.0
# Headroom a stale claim must leave beyond the slowest possible item
STALE_CLAIM_MARGIN_SECONDS = 120.0


def _call_budget(service: ServiceConfig) -> float:
    attempts = max(1, service.max_attempts)
    return attempts * service.timeout_seconds + (attempts - 1) * RETRY_MAX_WAIT_SECONDS


def worst_case_item_seconds(config: Config) -> float:
    """Upper bound on one item's processing time.

    Covers the audio fetch and the transcription upload (both bounded by the
    transcription timeout and retry policy) followed by classification.
    """
    return 2 * _call_budget(config.transcription) + _call_budget(config.classification)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def validate_config(config: Config) -> None:
    """Raise ``ConfigError`` for values outside their allowed range."""
    d = config.decision
    if not 0.0 <= d.flag_threshold <= 1.0:
        raise ConfigError("decision.flag_threshold must be within [0, 1]")
    for name, value in d.category_thresholds.items():
        if not _is_number(value) or not 0.0 <= value <= 1.0:
            raise ConfigError(f"decision.category_thresholds.{name} must be within [0, 1]")
    i = config.intake
    if i.min_bytes <= 0 or i.max_bytes <= i.min_bytes:
        raise ConfigError("intake byte bounds must satisfy 0 < min_bytes < max_bytes")
    if i.min_duration_seconds <= 0 or i.max_duration_seconds <= i.min_duration_seconds:
        raise ConfigError("intake duration bounds must satisfy 0 < min < max")
    for name, value in i.min_bitrate_kbps.items():
        if not _is_number(value) or value < 0:
            raise ConfigError(f"intake.min_bitrate_kbps.{name} must be a non-negative number")
    for section, service in (
        ("transcription", config.transcription),
        ("classification", config.classification),
    ):
        if service.timeout_seconds <= 0:
            raise ConfigError(f"{section}.timeout_seconds must be positive")
        if service.max_attempts < 1:
            raise ConfigError(f"{section}.max_attempts must be at least 1")
    s = config.scheduler
    if s.batch_size < 1:
        raise ConfigError("scheduler.batch_size must be at least 1")
    if s.concurrency < 1:
        raise ConfigError("scheduler.concurrency must be at least 1")
    required = worst_case_item_seconds(config) + STALE_CLAIM_MARGIN_SECONDS
    if s.stale_claim_seconds <= required:
        raise ConfigError(
            f"scheduler.stale_claim_seconds ({s.stale_claim_seconds}) must exceed the "
            f"worst-case item time plus margin ({required:.0f}s); lower the service "
            "timeouts or attempts, or raise the stale-claim timeout"
        )
    if config.pipeline.sample_seconds <= 0:
        raise ConfigError("pipeline.sample_seconds must be positive")


def load_config(path: Optional[str | Path] = None) -> Config:
    """Load configuration from YAML, apply environment overrides, validate."""
    if path is None:
        env_path = os.environ.get("TRACKSAFE_CONFIG")
        path = Path(env_path) if env_path else DEFAULT_HOME / "config.yaml"
    path = Path(path).expanduser()

    data: dict[str, Any] = {}
    if path.exists():
        try:
            with open(path) as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as exc:
            raise ConfigError(f"Failed to parse {path}: {exc}") from exc

    config = _build(Config, data, "")
    _apply_env(config)
    validate_config(config)
    return config
