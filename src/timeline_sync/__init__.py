"""Client-side reconciliation of remote planner calendars into a local timeline."""

from __future__ import annotations

from timeline_sync.config import ConfigError, TimelineConfig, load_config
from timeline_sync.core.logging import configure_logging
from timeline_sync.core.telemetry import init_telemetry
from timeline_sync.engine import ReconcileOutcome, ReconciliationEngine
from timeline_sync.models import DateWindow, EventDraft, EventPatch, EventRecord, Lane
from timeline_sync.mutations import MutationLayer, MutationOutcome
from timeline_sync.remote import HttpPlannerBackend, PlannerBackend, PlannerError
from timeline_sync.status import StatusChannel, StatusKind
from timeline_sync.store import LocalEventStore
from timeline_sync.window import InvalidDateRange

__all__ = [
    "ConfigError",
    "DateWindow",
    "EventDraft",
    "EventPatch",
    "EventRecord",
    "HttpPlannerBackend",
    "InvalidDateRange",
    "Lane",
    "LocalEventStore",
    "MutationLayer",
    "MutationOutcome",
    "PlannerBackend",
    "PlannerError",
    "ReconcileOutcome",
    "ReconciliationEngine",
    "StatusChannel",
    "StatusKind",
    "TimelineConfig",
    "configure_logging",
    "init_telemetry",
    "load_config",
]
