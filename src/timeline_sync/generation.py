"""Generation counter used to discard superseded reconciliation cycles."""

from __future__ import annotations


class GenerationGuard:
    """Last-invocation-wins guard.

    ``begin()`` never suspends, so the token is taken before the caller's
    first ``await``. ``is_current()`` compares against the counter's value at
    call time, not at ``begin()`` time.
    """

    def __init__(self) -> None:
        self._counter = 0

    @property
    def current(self) -> int:
        return self._counter

    def begin(self) -> int:
        self._counter += 1
        return self._counter

    def is_current(self, token: int) -> bool:
        return token == self._counter

    def __repr__(self) -> str:
        return f"GenerationGuard(current={self._counter})"
