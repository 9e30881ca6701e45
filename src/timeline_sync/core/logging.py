"""Structured logging for timeline sessions.

All modules log through ``logging.getLogger(__name__)``; ``configure_logging``
routes those records through structlog's ProcessorFormatter so they come out
as coloured console lines (``text``) or JSON lines (``json``).

Every record carries the session name, the generation token of the
reconciliation cycle that emitted it (``cycle``, ``None`` outside a cycle)
and the current OTel trace/span ids.

With ``log_root`` set, JSON copies are also written to::

    {log_root}/sessions/{session}.log   engine records
    {log_root}/http/{session}.log       httpx/httpcore records
"""

from __future__ import annotations

import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from pathlib import Path
from typing import TYPE_CHECKING

import structlog
from opentelemetry import trace

if TYPE_CHECKING:
    from timeline_sync.config import LoggingConfig

_session_context: ContextVar[str | None] = ContextVar("timeline_session", default=None)
_cycle_context: ContextVar[int | None] = ContextVar("timeline_cycle", default=None)

_NOISE_LOGGERS = ("httpx", "httpcore")

_DIR_SESSIONS = "sessions"
_DIR_HTTP = "http"
_DEFAULT_LOG_NAME = "timeline"

_ZERO_TRACE_ID = "0" * 32
_ZERO_SPAN_ID = "0" * 16


def set_session_context(name: str) -> None:
    _session_context.set(name)


def get_session_context() -> str | None:
    return _session_context.get()


def get_cycle_context() -> int | None:
    return _cycle_context.get()


@contextmanager
def bind_cycle(token: int) -> Iterator[None]:
    """Tag every record logged inside the block with cycle *token*.

    The binding is per asyncio task, so overlapping cycles keep their own.
    """
    reset_token = _cycle_context.set(token)
    try:
        yield
    finally:
        _cycle_context.reset(reset_token)


# ---------------------------------------------------------------------------
# Processors
# ---------------------------------------------------------------------------


def add_session_context(
    logger: logging.Logger,  # noqa: ARG001
    method_name: str,  # noqa: ARG001
    event_dict: dict,
) -> dict:
    """Inject ``session`` and ``cycle`` from the context variables."""
    event_dict["session"] = _session_context.get()
    event_dict["cycle"] = _cycle_context.get()
    return event_dict


def add_otel_context(
    logger: logging.Logger,  # noqa: ARG001
    method_name: str,  # noqa: ARG001
    event_dict: dict,
) -> dict:
    """Inject ``trace_id``/``span_id``; zeros when no span is recording."""
    ctx = trace.get_current_span().get_span_context()
    if ctx.is_valid:
        event_dict["trace_id"] = format(ctx.trace_id, "032x")
        event_dict["span_id"] = format(ctx.span_id, "016x")
    else:
        event_dict["trace_id"] = _ZERO_TRACE_ID
        event_dict["span_id"] = _ZERO_SPAN_ID
    return event_dict


def _pre_chain(time_fmt: str) -> list[structlog.types.Processor]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt=time_fmt),
        add_session_context,
        add_otel_context,
        structlog.stdlib.ExtraAdder(),
    ]


def _formatter(
    renderer: structlog.types.Processor, pre_chain: list[structlog.types.Processor]
) -> structlog.stdlib.ProcessorFormatter:
    return structlog.stdlib.ProcessorFormatter(
        processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
        foreign_pre_chain=pre_chain,
    )


def _json_file_handler(path: Path) -> logging.FileHandler:
    path.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(path)
    handler.setFormatter(_formatter(structlog.processors.JSONRenderer(), _pre_chain("iso")))
    handler.setLevel(logging.DEBUG)
    return handler


def _reset_handlers(logger: logging.Logger) -> None:
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()


# ---------------------------------------------------------------------------
# Entry points
# ---------------------------------------------------------------------------


def configure_logging(
    level: str = "INFO",
    fmt: str = "text",
    log_root: Path | str | None = None,
    session_name: str | None = None,
) -> None:
    """(Re)configure process logging.

    Calling it again replaces the handlers installed by the previous call.
    """
    if session_name:
        set_session_context(session_name)

    if fmt == "json":
        console_chain = _pre_chain("iso")
        renderer: structlog.types.Processor = structlog.processors.JSONRenderer()
    else:
        console_chain = _pre_chain("%H:%M:%S")
        renderer = structlog.dev.ConsoleRenderer()

    console = logging.StreamHandler(sys.stderr)
    console.setFormatter(_formatter(renderer, console_chain))

    root = logging.getLogger()
    _reset_handlers(root)
    root.addHandler(console)
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    noisy = [logging.getLogger(name) for name in _NOISE_LOGGERS]
    for noisy_logger in noisy:
        _reset_handlers(noisy_logger)
        noisy_logger.setLevel(logging.WARNING)

    if log_root is not None:
        log_root = Path(log_root)
        log_name = f"{session_name or _DEFAULT_LOG_NAME}.log"
        root.addHandler(_json_file_handler(log_root / _DIR_SESSIONS / log_name))
        http_handler = _json_file_handler(log_root / _DIR_HTTP / log_name)
        for noisy_logger in noisy:
            noisy_logger.addHandler(http_handler)

    structlog.configure(
        processors=[*console_chain, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def configure_from_config(config: LoggingConfig, session_name: str | None = None) -> None:
    """Apply a ``[logging]`` section."""
    configure_logging(
        level=config.level,
        fmt=config.format,
        log_root=config.log_root,
        session_name=session_name,
    )
