"""Shared fixtures: an in-memory planner backend and a pinned clock."""

from __future__ import annotations

import pytest

from tests._fakes import (
    CAL_HOME,
    CAL_WORK,
    FIXED_NOW,
    FakePlannerBackend,
    make_calendar,
    make_event,
)
from timeline_sync.config import ApplyConfig, TimelineConfig
from timeline_sync.engine import ReconciliationEngine


@pytest.fixture
def config() -> TimelineConfig:
    return TimelineConfig(apply=ApplyConfig(batch_size=1000, yield_seconds=0))


@pytest.fixture
def backend() -> FakePlannerBackend:
    return FakePlannerBackend(
        calendars=[
            make_calendar(CAL_WORK, "Work", "#3366ff"),
            make_calendar(CAL_HOME, "Home"),
        ],
        events=[
            make_event("evt-1", CAL_WORK, "2025-06-10", "2025-06-12", title="Release"),
            make_event(
                "evt-2", CAL_WORK, "2025-06-20T09:00:00Z", "2025-06-20T10:30:00Z", title="Sync"
            ),
            make_event("evt-3", CAL_HOME, "2025-07-04", title="Holiday"),
        ],
    )


@pytest.fixture
def engine(backend: FakePlannerBackend, config: TimelineConfig) -> ReconciliationEngine:
    return ReconciliationEngine(backend, config, clock=lambda: FIXED_NOW)
