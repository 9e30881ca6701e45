"""Date window parsing and clamping.

The planner only lets operators look a fixed number of months into the past
and future. Every requested window is clamped into those bounds before it
reaches the backend, and clamping never produces an inverted range.
"""

from __future__ import annotations

import calendar
import re
from dataclasses import dataclass
from datetime import date, datetime

from timeline_sync.config import DEFAULT_FUTURE_MONTHS, DEFAULT_PAST_MONTHS
from timeline_sync.models import DateWindow

_ISO_DATE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_DOTTED_DATE = re.compile(r"^(\d{1,2})\.(\d{1,2})\.(\d{4})$")


class InvalidDateRange(ValueError):
    """Raised when a window boundary cannot be parsed as a date."""

    def __init__(self, value: object, *, field: str | None = None) -> None:
        self.value = value
        self.field = field
        where = f" for {field}" if field else ""
        super().__init__(f"Invalid date input{where}: {value!r}")


@dataclass(frozen=True)
class WindowBounds:
    min_day: date
    max_day: date


def add_months(day: date, months: int) -> date:
    """Shift *day* by whole months, clamping to the target month's last day."""
    month_index = day.month - 1 + months
    year = day.year + month_index // 12
    month = month_index % 12 + 1
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, min(day.day, last_day))


def _as_day(value: date | datetime) -> date:
    return value.date() if isinstance(value, datetime) else value


def window_bounds(
    now: date | datetime,
    *,
    past_months: int = DEFAULT_PAST_MONTHS,
    future_months: int = DEFAULT_FUTURE_MONTHS,
) -> WindowBounds:
    today = _as_day(now)
    return WindowBounds(
        min_day=add_months(today, -past_months),
        max_day=add_months(today, future_months),
    )


def parse_date_input(value: object, *, field: str | None = None) -> date:
    """Parse a date input as typed into the planner's date fields.

    Accepts ``YYYY-MM-DD``, ``D.M.YYYY`` / ``DD.MM.YYYY`` and ISO date-times
    (the date part is used). ``date``/``datetime`` objects pass through.
    """
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str) or not value.strip():
        raise InvalidDateRange(value, field=field)

    text = value.strip()
    try:
        if _ISO_DATE.match(text):
            return date.fromisoformat(text)
        dotted = _DOTTED_DATE.match(text)
        if dotted:
            day, month, year = (int(part) for part in dotted.groups())
            return date(year, month, day)
        normalized = f"{text[:-1]}+00:00" if text.endswith("Z") else text
        return datetime.fromisoformat(normalized).date()
    except ValueError as exc:
        raise InvalidDateRange(value, field=field) from exc


def clamp(
    from_day: date,
    to_day: date,
    now: date | datetime,
    *,
    past_months: int = DEFAULT_PAST_MONTHS,
    future_months: int = DEFAULT_FUTURE_MONTHS,
) -> DateWindow:
    """Clamp ``[from_day, to_day]`` into the allowed horizon around *now*.

    Idempotent: clamping an already clamped window returns it unchanged.
    """
    bounds = window_bounds(now, past_months=past_months, future_months=future_months)
    clamped_from = max(from_day, bounds.min_day)
    clamped_to = min(to_day, bounds.max_day)
    clamped_to = max(clamped_to, clamped_from)
    return DateWindow(from_day=clamped_from, to_day=clamped_to)


def clamp_input(
    from_raw: object,
    to_raw: object,
    now: date | datetime,
    *,
    past_months: int = DEFAULT_PAST_MONTHS,
    future_months: int = DEFAULT_FUTURE_MONTHS,
) -> DateWindow:
    """Parse both raw inputs, then clamp. Raises ``InvalidDateRange``."""
    from_day = parse_date_input(from_raw, field="from")
    to_day = parse_date_input(to_raw, field="to")
    return clamp(
        from_day,
        to_day,
        now,
        past_months=past_months,
        future_months=future_months,
    )


def default_window(
    now: date | datetime,
    *,
    span_months: int,
    past_months: int = DEFAULT_PAST_MONTHS,
    future_months: int = DEFAULT_FUTURE_MONTHS,
) -> DateWindow:
    """Start of the current month through the end of the month *span_months* on."""
    today = _as_day(now)
    start = today.replace(day=1)
    last_month = add_months(start, span_months)
    end = last_month.replace(day=calendar.monthrange(last_month.year, last_month.month)[1])
    return clamp(start, end, today, past_months=past_months, future_months=future_months)


def format_for_display(value: object) -> str:
    """Render a date input as ``DD.MM.YYYY``; unparseable input is echoed back."""
    try:
        day = parse_date_input(value)
    except InvalidDateRange:
        return value if isinstance(value, str) else ""
    return f"{day.day:02d}.{day.month:02d}.{day.year}"
