"""Tests for YAML configuration loading and logging setup."""

import logging
import tempfile
from pathlib import Path

import pytest
import yaml

from tracksafe.config import (
    STALE_CLAIM_MARGIN_SECONDS,
    Config,
    ConfigError,
    load_config,
    validate_config,
    worst_case_item_seconds,
)
from tracksafe.logging_config import JSONFormatter, SecretFilter


def _write(tmpdir: str, data) -> Path:
    path = Path(tmpdir) / "config.yaml"
    path.write_text(yaml.dump(data))
    return path


def test_defaults_when_file_missing(monkeypatch):
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    with tempfile.TemporaryDirectory() as tmpdir:
        config = load_config(Path(tmpdir) / "absent.yaml")
        assert config.decision.flag_threshold == 0.85
        assert config.scheduler.batch_size == 10
        assert config.scheduler.stale_claim_seconds == 1200
        assert config.pipeline.sample_seconds == 120
        assert config.transcription.model == "whisper-1"
        assert config.intake.min_bitrate_kbps == {"music": 96, "spoken_word": 32}


def test_nested_values_merge_with_defaults():
    with tempfile.TemporaryDirectory() as tmpdir:
        path = _write(
            tmpdir,
            {
                "data_dir": tmpdir,
                "scheduler": {"concurrency": 5},
                "decision": {"category_thresholds": {"hate": 0.4}},
                "classification": {"provider": "anthropic", "api_key": "key-1"},
                "api": {"tokens": {"tok-admin": {"user_id": "mod-1", "role": "admin"}}},
            },
        )
        config = load_config(path)
        assert config.scheduler.concurrency == 5
        assert config.scheduler.batch_size == 10
        assert config.decision.category_thresholds["hate"] == 0.4
        assert config.decision.category_thresholds["sexual_minors"] == 0.1
        assert config.intake.min_bitrate_kbps == {"music": 96, "spoken_word": 32}
        assert config.classification.provider == "anthropic"
        assert config.classification.api_key == "key-1"
        assert config.api.tokens["tok-admin"]["role"] == "admin"
        assert config.data_path == Path(tmpdir)


def test_unknown_key_rejected():
    with tempfile.TemporaryDirectory() as tmpdir:
        with pytest.raises(ConfigError, match="scheduler.batch"):
            load_config(_write(tmpdir, {"scheduler": {"batch": 3}}))


def test_section_must_be_mapping():
    with tempfile.TemporaryDirectory() as tmpdir:
        with pytest.raises(ConfigError):
            load_config(_write(tmpdir, {"scheduler": [1, 2]}))


def test_out_of_range_values_rejected():
    with tempfile.TemporaryDirectory() as tmpdir:
        with pytest.raises(ConfigError):
            load_config(_write(tmpdir, {"decision": {"flag_threshold": 1.5}}))
        with pytest.raises(ConfigError):
            load_config(_write(tmpdir, {"scheduler": {"concurrency": 0}}))


def test_wrong_types_rejected():
    with tempfile.TemporaryDirectory() as tmpdir:
        with pytest.raises(ConfigError, match="scheduler.batch_size"):
            load_config(_write(tmpdir, {"scheduler": {"batch_size": "ten"}}))
        with pytest.raises(ConfigError, match="log_json"):
            load_config(_write(tmpdir, {"log_json": "yes"}))
        with pytest.raises(ConfigError, match="category_thresholds"):
            load_config(_write(tmpdir, {"decision": {"category_thresholds": {"hate": "low"}}}))
        with pytest.raises(ConfigError, match="allowed_formats"):
            load_config(_write(tmpdir, {"intake": {"allowed_formats": "mp3"}}))


def test_integer_accepted_for_float_setting():
    with tempfile.TemporaryDirectory() as tmpdir:
        config = load_config(_write(tmpdir, {"decision": {"flag_threshold": 1}}))
        assert config.decision.flag_threshold == 1.0
        assert isinstance(config.decision.flag_threshold, float)


def test_default_stale_claim_outlasts_slowest_item():
    config = Config()
    worst = worst_case_item_seconds(config)
    # fetch and upload: 2 x (3 x 120s + 2 x 8s); classification: 3 x 60s + 2 x 8s
    assert worst == 948.0
    assert config.scheduler.stale_claim_seconds > worst + STALE_CLAIM_MARGIN_SECONDS
    validate_config(config)


def test_stale_claim_shorter_than_slowest_item_rejected():
    with tempfile.TemporaryDirectory() as tmpdir:
        with pytest.raises(ConfigError, match="stale_claim_seconds"):
            load_config(_write(tmpdir, {"scheduler": {"stale_claim_seconds": 600}}))
        # Shorter service timeouts make a 600s stale claim safe again.
        config = load_config(
            _write(
                tmpdir,
                {
                    "scheduler": {"stale_claim_seconds": 600},
                    "transcription": {"timeout_seconds": 50},
                    "classification": {"timeout_seconds": 20},
                },
            )
        )
        assert worst_case_item_seconds(config) < 600 - STALE_CLAIM_MARGIN_SECONDS


def test_malformed_yaml():
    with tempfile.TemporaryDirectory() as tmpdir:
        path = Path(tmpdir) / "config.yaml"
        path.write_text("scheduler: [unclosed")
        with pytest.raises(ConfigError):
            load_config(path)


def test_environment_overrides(monkeypatch):
    with tempfile.TemporaryDirectory() as tmpdir:
        monkeypatch.setenv("TRACKSAFE_CONFIG", str(_write(tmpdir, {"log_level": "DEBUG"})))
        monkeypatch.setenv("TRACKSAFE_DATA_DIR", tmpdir)
        monkeypatch.setenv("TRACKSAFE_CRON_SECRET", "cron-123")
        monkeypatch.setenv("OPENAI_API_KEY", "sk-env")
        config = load_config()
        assert config.log_level == "DEBUG"
        assert config.data_dir == tmpdir
        assert config.api.cron_secret == "cron-123"
        assert config.transcription.api_key == "sk-env"
        assert config.classification.api_key == "sk-env"


def test_config_defaults_are_independent():
    a, b = Config(), Config()
    a.decision.category_thresholds["hate"] = 0.1
    assert b.decision.category_thresholds["hate"] == 0.5


# --- Logging ---


def _record(msg: str, *args) -> logging.LogRecord:
    return logging.LogRecord("tracksafe.test", logging.INFO, __file__, 1, msg, args, None)


def test_secret_filter_redacts_tokens():
    record = _record("calling with Authorization: Bearer %s", "abc.def-123")
    SecretFilter().filter(record)
    assert "abc.def-123" not in record.getMessage()
    assert "Bearer ***" in record.getMessage()

    record = _record("key sk-abcdefghijklmnop leaked")
    SecretFilter().filter(record)
    assert "abcdefghijklmnop" not in record.getMessage()


def test_json_formatter_includes_extra_fields():
    record = _record("run finished")
    record.run_id = "abc123"
    line = JSONFormatter().format(record)
    assert '"run_id": "abc123"' in line
    assert '"logger": "tracksafe.test"' in line
