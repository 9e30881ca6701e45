"""Tests for date window parsing and clamping."""

from __future__ import annotations

from datetime import UTC, date, datetime

import pytest

from timeline_sync.models import DateWindow
from timeline_sync.window import (
    InvalidDateRange,
    add_months,
    clamp,
    clamp_input,
    default_window,
    format_for_display,
    parse_date_input,
    window_bounds,
)

pytestmark = pytest.mark.unit

NOW = datetime(2025, 6, 15, 8, 30, tzinfo=UTC)


class TestAddMonths:
    def test_forward_across_year(self):
        assert add_months(date(2025, 11, 10), 3) == date(2026, 2, 10)

    def test_backward_across_year(self):
        assert add_months(date(2025, 2, 10), -3) == date(2024, 11, 10)

    def test_clamps_to_month_end(self):
        assert add_months(date(2025, 1, 31), 1) == date(2025, 2, 28)
        assert add_months(date(2024, 3, 31), -1) == date(2024, 2, 29)


class TestParseDateInput:
    @pytest.mark.parametrize(
        ("raw", "expected"),
        [
            ("2025-06-01", date(2025, 6, 1)),
            ("1.6.2025", date(2025, 6, 1)),
            ("01.06.2025", date(2025, 6, 1)),
            ("2025-06-01T22:15:00Z", date(2025, 6, 1)),
            (" 2025-06-01 ", date(2025, 6, 1)),
            (date(2025, 6, 1), date(2025, 6, 1)),
            (datetime(2025, 6, 1, 9, 0), date(2025, 6, 1)),
        ],
    )
    def test_accepted_forms(self, raw, expected):
        assert parse_date_input(raw) == expected

    @pytest.mark.parametrize("raw", ["", "tomorrow", "31.02.2025", "2025-13-01", None, 20250601])
    def test_rejected_forms(self, raw):
        with pytest.raises(InvalidDateRange):
            parse_date_input(raw)

    def test_error_names_field(self):
        with pytest.raises(InvalidDateRange) as excinfo:
            parse_date_input("nope", field="from")
        assert excinfo.value.field == "from"
        assert excinfo.value.value == "nope"
        assert "for from" in str(excinfo.value)


class TestClamp:
    def test_bounds(self):
        bounds = window_bounds(NOW)
        assert bounds.min_day == date(2025, 3, 15)
        assert bounds.max_day == date(2026, 6, 15)

    def test_inside_window_unchanged(self):
        window = clamp(date(2025, 6, 1), date(2025, 8, 31), NOW)
        assert window == DateWindow(from_day=date(2025, 6, 1), to_day=date(2025, 8, 31))

    def test_outside_window_clamped(self):
        window = clamp(date(2024, 1, 1), date(2027, 1, 1), NOW)
        assert window.from_day == date(2025, 3, 15)
        assert window.to_day == date(2026, 6, 15)

    def test_inverted_input_never_inverts_output(self):
        window = clamp(date(2025, 9, 1), date(2025, 7, 1), NOW)
        assert window.from_day == window.to_day == date(2025, 9, 1)

    def test_range_entirely_in_past_collapses_to_minimum(self):
        window = clamp(date(2020, 1, 1), date(2020, 2, 1), NOW)
        assert window.from_day == window.to_day == date(2025, 3, 15)

    def test_idempotent(self):
        once = clamp(date(2024, 1, 1), date(2027, 1, 1), NOW)
        twice = clamp(once.from_day, once.to_day, NOW)
        assert twice == once

    def test_custom_horizons(self):
        window = clamp(date(2024, 1, 1), date(2027, 1, 1), NOW, past_months=1, future_months=1)
        assert window.as_query() == ("2025-05-15", "2025-07-15")

    def test_clamp_input_parses_then_clamps(self):
        window = clamp_input("01.01.2020", "2025-07-01", NOW)
        assert window.as_query() == ("2025-03-15", "2025-07-01")

    def test_clamp_input_reports_bad_field(self):
        with pytest.raises(InvalidDateRange) as excinfo:
            clamp_input("2025-06-01", "soon", NOW)
        assert excinfo.value.field == "to"


class TestDefaultWindow:
    def test_spans_whole_months(self):
        window = default_window(NOW, span_months=3)
        assert window.as_query() == ("2025-06-01", "2025-09-30")

    def test_limited_by_future_horizon(self):
        window = default_window(NOW, span_months=24)
        assert window.to_day == date(2026, 6, 15)


class TestFormatForDisplay:
    def test_iso_to_dotted(self):
        assert format_for_display("2025-06-01") == "01.06.2025"

    def test_unparseable_echoed(self):
        assert format_for_display("whenever") == "whenever"
        assert format_for_display(None) == ""
