"""Tests for timeline configuration loading and validation."""

from __future__ import annotations

from pathlib import Path

import pytest

from timeline_sync.config import (
    DEFAULT_BASE_URL,
    ConfigError,
    TimelineConfig,
    load_config,
    parse_config,
    resolve_env_vars,
)

pytestmark = pytest.mark.unit

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

FULL_TOML = """\
[backend]
base_url = "https://planner.example.com/"
timeout_seconds = 12.5
max_retries = 5
retry_backoff_seconds = 0.5

[window]
past_months = 6
future_months = 18
default_span_months = 2

[apply]
batch_size = 250
yield_seconds = 0

[logging]
level = "debug"
format = "json"
log_root = "/var/log/timeline"
"""

MINIMAL_TOML = """\
[backend]
base_url = "http://localhost:5175"
"""


def _write_toml(tmp_path: Path, content: str, filename: str = "timeline.toml") -> Path:
    path = tmp_path / filename
    path.write_text(content)
    return path


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------


def test_load_full_config(tmp_path: Path):
    config = load_config(_write_toml(tmp_path, FULL_TOML))

    assert config.backend.base_url == "https://planner.example.com"
    assert config.backend.timeout_seconds == 12.5
    assert config.backend.max_retries == 5
    assert config.window.past_months == 6
    assert config.window.future_months == 18
    assert config.window.default_span_months == 2
    assert config.apply.batch_size == 250
    assert config.apply.yield_seconds == 0.0
    assert config.logging.level == "DEBUG"
    assert config.logging.format == "json"
    assert config.logging.log_root == "/var/log/timeline"


def test_minimal_config_uses_defaults(tmp_path: Path):
    config = load_config(_write_toml(tmp_path, MINIMAL_TOML))

    assert config.window.past_months == 3
    assert config.window.future_months == 12
    assert config.apply.batch_size == 1000
    assert config.apply.yield_seconds == 0.01
    assert config.logging.format == "text"


def test_load_from_directory(tmp_path: Path):
    _write_toml(tmp_path, MINIMAL_TOML)
    config = load_config(tmp_path)
    assert config.backend.base_url == "http://localhost:5175"


def test_missing_file(tmp_path: Path):
    with pytest.raises(ConfigError, match="Config file not found"):
        load_config(tmp_path / "nope.toml")


def test_invalid_toml(tmp_path: Path):
    with pytest.raises(ConfigError, match="Invalid TOML"):
        load_config(_write_toml(tmp_path, "[backend\nbase_url = "))


def test_env_var_resolution(tmp_path: Path, monkeypatch):
    monkeypatch.setenv("PLANNER_HOST", "planner.internal")
    config = load_config(_write_toml(tmp_path, '[backend]\nbase_url = "http://${PLANNER_HOST}"\n'))
    assert config.backend.base_url == "http://planner.internal"


def test_default_reads_environment(monkeypatch):
    monkeypatch.delenv("TIMELINE_SYNC_BASE_URL", raising=False)
    assert TimelineConfig.default().backend.base_url == DEFAULT_BASE_URL
    monkeypatch.setenv("TIMELINE_SYNC_BASE_URL", "http://other:9000")
    assert TimelineConfig.default().backend.base_url == "http://other:9000"


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


class TestValidation:
    def test_missing_base_url(self):
        with pytest.raises(ConfigError, match="backend.base_url"):
            parse_config({"backend": {}})

    def test_base_url_must_be_http(self):
        with pytest.raises(ConfigError, match="http"):
            parse_config({"backend": {"base_url": "ftp://planner"}})

    def test_section_must_be_table(self):
        with pytest.raises(ConfigError, match=r"\[window\] must be a table"):
            parse_config({"backend": {"base_url": "http://x"}, "window": 3})

    def test_batch_size_must_be_positive(self):
        with pytest.raises(ConfigError, match="apply.batch_size"):
            parse_config({"backend": {"base_url": "http://x"}, "apply": {"batch_size": 0}})

    def test_boolean_is_not_an_integer(self):
        with pytest.raises(ConfigError, match="must be an integer"):
            parse_config({"backend": {"base_url": "http://x"}, "window": {"past_months": True}})

    def test_unknown_log_format(self):
        with pytest.raises(ConfigError, match="logging.format"):
            parse_config({"backend": {"base_url": "http://x"}, "logging": {"format": "xml"}})


class TestResolveEnvVars:
    def test_nested_values(self, monkeypatch):
        monkeypatch.setenv("A", "1")
        assert resolve_env_vars({"x": ["${A}", 2], "y": {"z": "v${A}"}}) == {
            "x": ["1", 2],
            "y": {"z": "v1"},
        }

    def test_missing_variables_reported_together(self, monkeypatch):
        monkeypatch.delenv("MISSING_ONE", raising=False)
        monkeypatch.delenv("MISSING_TWO", raising=False)
        with pytest.raises(ConfigError, match="MISSING_ONE, MISSING_TWO"):
            resolve_env_vars("${MISSING_ONE}/${MISSING_TWO}")
