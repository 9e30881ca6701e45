"""Timeline configuration loading and validation.

Reads a ``timeline.toml`` file, resolves ``${VAR}`` references, and returns a
validated TimelineConfig dataclass.
"""

from __future__ import annotations

import os
import re
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

DEFAULT_BASE_URL = "http://localhost:5175"
DEFAULT_CONFIG_FILENAME = "timeline.toml"

# Allowed date window relative to "now".
DEFAULT_PAST_MONTHS = 3
DEFAULT_FUTURE_MONTHS = 12
DEFAULT_SPAN_MONTHS = 3

# Bulk-apply chunking.
DEFAULT_BATCH_SIZE = 1000
DEFAULT_YIELD_SECONDS = 0.01

# Pattern matching ${VAR_NAME}: alphanumeric + underscore variable names.
_ENV_VAR_PATTERN = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)\}")
_LOG_FORMATS = ("text", "json")


class ConfigError(Exception):
    """Raised when timeline configuration is missing, malformed, or invalid."""


@dataclass
class BackendConfig:
    """Planner backend connection settings from the [backend] section."""

    base_url: str = DEFAULT_BASE_URL
    timeout_seconds: float = 30.0
    max_retries: int = 3
    retry_backoff_seconds: float = 1.0


@dataclass
class WindowConfig:
    """Date window horizons from the [window] section."""

    past_months: int = DEFAULT_PAST_MONTHS
    future_months: int = DEFAULT_FUTURE_MONTHS
    default_span_months: int = DEFAULT_SPAN_MONTHS


@dataclass
class ApplyConfig:
    """Bulk-apply chunking from the [apply] section.

    ``yield_seconds`` is the pause between item batches; ``0`` still yields
    control to the event loop once per batch.
    """

    batch_size: int = DEFAULT_BATCH_SIZE
    yield_seconds: float = DEFAULT_YIELD_SECONDS


@dataclass
class LoggingConfig:
    """Logging configuration from the [logging] section."""

    level: str = "INFO"
    format: str = "text"  # "text" or "json"
    log_root: str | None = None


@dataclass
class TimelineConfig:
    """Parsed and validated timeline configuration."""

    backend: BackendConfig = field(default_factory=BackendConfig)
    window: WindowConfig = field(default_factory=WindowConfig)
    apply: ApplyConfig = field(default_factory=ApplyConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @classmethod
    def default(cls) -> TimelineConfig:
        """Build a config without a file, honouring ``TIMELINE_SYNC_BASE_URL``."""
        base_url = os.environ.get("TIMELINE_SYNC_BASE_URL", DEFAULT_BASE_URL)
        return cls(backend=BackendConfig(base_url=base_url))


def resolve_env_vars(value: Any) -> Any:
    """Recursively resolve ``${VAR_NAME}`` references in config values.

    Walks dicts, lists, and strings.  Non-string leaf values are returned
    unchanged.

    Raises
    ------
    ConfigError
        If a referenced environment variable is not set.
    """
    if isinstance(value, dict):
        return {k: resolve_env_vars(v) for k, v in value.items()}

    if isinstance(value, list):
        return [resolve_env_vars(item) for item in value]

    if isinstance(value, str):
        return _resolve_string(value)

    return value


def _resolve_string(s: str) -> str:
    """Replace all ``${VAR_NAME}`` occurrences in *s* with env var values.

    Collects all missing variable names and reports them in a single error.
    """
    missing: list[str] = []

    def _replace(match: re.Match) -> str:
        var_name = match.group(1)
        env_value = os.environ.get(var_name)
        if env_value is None:
            missing.append(var_name)
            return match.group(0)
        return env_value

    result = _ENV_VAR_PATTERN.sub(_replace, s)

    if missing:
        vars_str = ", ".join(missing)
        raise ConfigError(
            f"Unresolved environment variable(s) in config value: {vars_str} (original: {s!r})"
        )

    return result


def _section(data: dict[str, Any], name: str) -> dict[str, Any]:
    section = data.get(name, {})
    if not isinstance(section, dict):
        raise ConfigError(f"[{name}] must be a table")
    return section


def _coerce_int(
    section: dict[str, Any], key: str, default: int, *, where: str, minimum: int
) -> int:
    raw = section.get(key, default)
    if isinstance(raw, bool) or not isinstance(raw, int):
        raise ConfigError(f"{where}.{key} must be an integer, got {raw!r}")
    if raw < minimum:
        raise ConfigError(f"{where}.{key} must be >= {minimum}, got {raw}")
    return raw


def _coerce_float(
    section: dict[str, Any], key: str, default: float, *, where: str, minimum: float
) -> float:
    raw = section.get(key, default)
    if isinstance(raw, bool) or not isinstance(raw, int | float):
        raise ConfigError(f"{where}.{key} must be a number, got {raw!r}")
    if raw < minimum:
        raise ConfigError(f"{where}.{key} must be >= {minimum}, got {raw}")
    return float(raw)


def _parse_backend(data: dict[str, Any]) -> BackendConfig:
    section = _section(data, "backend")
    base_url = section.get("base_url")
    if base_url is None:
        raise ConfigError("Missing required field: backend.base_url")
    if not isinstance(base_url, str) or not base_url.strip():
        raise ConfigError("backend.base_url must be a non-empty string")
    normalized = base_url.strip().rstrip("/")
    if not normalized.startswith(("http://", "https://")):
        raise ConfigError(f"backend.base_url must be an http(s) URL, got {base_url!r}")
    return BackendConfig(
        base_url=normalized,
        timeout_seconds=_coerce_float(section, "timeout_seconds", 30.0, where="backend", minimum=0),
        max_retries=_coerce_int(section, "max_retries", 3, where="backend", minimum=0),
        retry_backoff_seconds=_coerce_float(
            section, "retry_backoff_seconds", 1.0, where="backend", minimum=0
        ),
    )


def _parse_window(data: dict[str, Any]) -> WindowConfig:
    section = _section(data, "window")
    return WindowConfig(
        past_months=_coerce_int(
            section, "past_months", DEFAULT_PAST_MONTHS, where="window", minimum=0
        ),
        future_months=_coerce_int(
            section, "future_months", DEFAULT_FUTURE_MONTHS, where="window", minimum=0
        ),
        default_span_months=_coerce_int(
            section, "default_span_months", DEFAULT_SPAN_MONTHS, where="window", minimum=0
        ),
    )


def _parse_apply(data: dict[str, Any]) -> ApplyConfig:
    section = _section(data, "apply")
    return ApplyConfig(
        batch_size=_coerce_int(section, "batch_size", DEFAULT_BATCH_SIZE, where="apply", minimum=1),
        yield_seconds=_coerce_float(
            section, "yield_seconds", DEFAULT_YIELD_SECONDS, where="apply", minimum=0
        ),
    )


def _parse_logging(data: dict[str, Any]) -> LoggingConfig:
    section = _section(data, "logging")
    level = section.get("level", "INFO")
    fmt = section.get("format", "text")
    log_root = section.get("log_root")
    if not isinstance(level, str) or not level.strip():
        raise ConfigError("logging.level must be a non-empty string")
    if fmt not in _LOG_FORMATS:
        raise ConfigError(f"logging.format must be one of {_LOG_FORMATS}, got {fmt!r}")
    if log_root is not None and not isinstance(log_root, str):
        raise ConfigError("logging.log_root must be a string")
    return LoggingConfig(level=level.strip().upper(), format=fmt, log_root=log_root)


def parse_config(data: dict[str, Any]) -> TimelineConfig:
    """Validate an already-decoded TOML document."""
    data = resolve_env_vars(data)
    return TimelineConfig(
        backend=_parse_backend(data),
        window=_parse_window(data),
        apply=_parse_apply(data),
        logging=_parse_logging(data),
    )


def load_config(path: Path) -> TimelineConfig:
    """Load and validate a timeline config file.

    Parameters
    ----------
    path:
        Either the TOML file itself or a directory containing ``timeline.toml``.

    Raises
    ------
    ConfigError
        If the file is missing, contains invalid TOML, or lacks required fields.
    """
    path = Path(path)
    toml_path = path / DEFAULT_CONFIG_FILENAME if path.is_dir() else path

    if not toml_path.exists():
        raise ConfigError(f"Config file not found: {toml_path}")

    try:
        data = tomllib.loads(toml_path.read_bytes().decode())
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"Invalid TOML in {toml_path}: {exc}") from exc

    return parse_config(data)
