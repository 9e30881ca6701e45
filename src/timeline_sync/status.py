"""Human-readable status side channel for the rendering layer."""

from __future__ import annotations

import logging
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum

logger = logging.getLogger(__name__)

DEFAULT_HISTORY_SIZE = 50


class StatusKind(StrEnum):
    loading = "loading"
    info = "info"
    success = "success"
    empty = "empty"
    error = "error"
    invalid_range = "invalid_range"


@dataclass(frozen=True)
class StatusMessage:
    kind: StatusKind
    text: str
    at: datetime = field(default_factory=lambda: datetime.now(UTC))


StatusListener = Callable[[StatusMessage], None]


class StatusChannel:
    """Fan-out of status messages with a bounded history.

    A listener that raises is logged and skipped; publishing never fails.
    """

    def __init__(self, *, history_size: int = DEFAULT_HISTORY_SIZE) -> None:
        self._listeners: list[StatusListener] = []
        self._history: deque[StatusMessage] = deque(maxlen=history_size)

    @property
    def latest(self) -> StatusMessage | None:
        return self._history[-1] if self._history else None

    @property
    def history(self) -> list[StatusMessage]:
        return list(self._history)

    def subscribe(self, listener: StatusListener) -> Callable[[], None]:
        """Register *listener*; returns a callable that unsubscribes it."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def publish(self, kind: StatusKind, text: str) -> StatusMessage:
        message = StatusMessage(kind=kind, text=text)
        self._history.append(message)
        for listener in list(self._listeners):
            try:
                listener(message)
            except Exception:
                logger.exception("Status listener %r failed", listener)
        return message
