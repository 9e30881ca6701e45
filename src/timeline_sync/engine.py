"""Reconciliation engine: mirror the remote calendars into the local store.

One cycle lists calendars, queries events for the clamped window, remaps
calendar URLs onto fresh lane ids, transforms the items and replaces the
store wholesale. Cycles may overlap; the generation guard makes the most
recently *started* cycle the only one allowed to write. A superseded cycle
still runs its network calls to completion, it just never applies them.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
from collections.abc import Callable, Sequence
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from timeline_sync.config import TimelineConfig
from timeline_sync.core.telemetry import cycle_span, get_tracer, tag_cycle_span
from timeline_sync.generation import GenerationGuard
from timeline_sync.models import DateWindow, EventDraft, EventRecord, Provenance
from timeline_sync.remap import IdentifierMaps, remap
from timeline_sync.remote import PlannerBackend, PlannerError
from timeline_sync.status import StatusChannel, StatusKind
from timeline_sync.store import LocalEventStore
from timeline_sync.transform import build_local_id, to_local_span, transform_all
from timeline_sync.window import InvalidDateRange, clamp, clamp_input, default_window

logger = logging.getLogger(__name__)

INVALID_RANGE_MESSAGE = "Invalid date input. Please use YYYY-MM-DD or DD.MM.YYYY"
EMPTY_CALENDARS_MESSAGE = "No calendars available"
NOT_YET_VISIBLE_MESSAGE = "Event created but not yet visible. Click Refresh to load from server."

WindowRequest = DateWindow | tuple[Any, Any] | None


class ReconcileOutcome(StrEnum):
    """How a single reconciliation cycle ended."""

    applied = "applied"
    empty = "empty"
    stale = "stale"
    failed = "failed"
    invalid_range = "invalid_range"


def _batched(records: Sequence[EventRecord], size: int) -> list[Sequence[EventRecord]]:
    return [records[index : index + size] for index in range(0, len(records), size)]


class ReconciliationEngine:
    """Owns the store, identifier maps, generation guard and status channel.

    Construct one per session and hand it to every consumer; nothing here is
    module-global.
    """

    def __init__(
        self,
        backend: PlannerBackend,
        config: TimelineConfig | None = None,
        *,
        store: LocalEventStore | None = None,
        status: StatusChannel | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._backend = backend
        self._config = config or TimelineConfig.default()
        self.store = store or LocalEventStore()
        self.status = status or StatusChannel()
        self.guard = GenerationGuard()
        self._maps = IdentifierMaps.empty()
        self._clock = clock or (lambda: datetime.now(UTC))
        self._active_window: DateWindow | None = None
        self._last_clicked_lane: str | None = None
        self._tasks: set[asyncio.Task[ReconcileOutcome]] = set()
        self._temp_seq = itertools.count(1)
        self._tracer = get_tracer()

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def backend(self) -> PlannerBackend:
        return self._backend

    @property
    def config(self) -> TimelineConfig:
        return self._config

    @property
    def maps(self) -> IdentifierMaps:
        return self._maps

    @property
    def active_window(self) -> DateWindow | None:
        return self._active_window

    @property
    def last_clicked_lane(self) -> str | None:
        return self._last_clicked_lane

    def now(self) -> datetime:
        return self._clock()

    def select_lane(self, lane_id: str | None) -> str | None:
        """Remember the lane an operator clicked; returns its calendar URL."""
        self._last_clicked_lane = lane_id
        return self._maps.resolve_url(lane_id)

    # ------------------------------------------------------------------
    # Window resolution
    # ------------------------------------------------------------------

    def resolve_window(self, window: WindowRequest = None) -> DateWindow:
        """Clamp a requested window; ``None`` reuses the active or default one.

        Raises ``InvalidDateRange`` for unparseable inputs.
        """
        horizons = self._config.window
        now = self.now()
        if window is None:
            if self._active_window is not None:
                window = self._active_window
            else:
                return default_window(
                    now,
                    span_months=horizons.default_span_months,
                    past_months=horizons.past_months,
                    future_months=horizons.future_months,
                )
        if isinstance(window, DateWindow):
            return clamp(
                window.from_day,
                window.to_day,
                now,
                past_months=horizons.past_months,
                future_months=horizons.future_months,
            )
        if isinstance(window, tuple) and len(window) == 2:
            return clamp_input(
                window[0],
                window[1],
                now,
                past_months=horizons.past_months,
                future_months=horizons.future_months,
            )
        raise InvalidDateRange(window)

    # ------------------------------------------------------------------
    # Reconciliation
    # ------------------------------------------------------------------

    def reconcile(self, window: WindowRequest = None) -> asyncio.Task[ReconcileOutcome]:
        """Start a cycle in the background; requires a running loop.

        The generation token is taken here, synchronously, so the cycle
        counts as started the moment this is called. The returned task may
        be awaited for the outcome or ignored; the engine keeps it alive
        until it finishes.
        """
        token = self.guard.begin()
        task = asyncio.get_running_loop().create_task(self._reconcile(token, window))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def run_cycle(self, window: WindowRequest = None) -> ReconcileOutcome:
        """Run one cycle inline and return its outcome.

        The token is taken when the coroutine starts running, not when it
        is created.
        """
        return await self._reconcile(self.guard.begin(), window)

    async def wait_idle(self) -> None:
        """Wait for every scheduled cycle to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def _reconcile(self, token: int, window: WindowRequest) -> ReconcileOutcome:
        with cycle_span(self._tracer, token) as span:
            try:
                outcome = await self._run_cycle(token, window, span)
            except Exception as exc:
                span.record_exception(exc)
                if not self.guard.is_current(token):
                    logger.debug("Cycle %d failed after being superseded: %s", token, exc)
                    return ReconcileOutcome.stale
                logger.error("Reconciliation cycle %d crashed: %s", token, exc, exc_info=True)
                self.status.publish(StatusKind.error, f"Error loading events: {exc}")
                return ReconcileOutcome.failed
            span.set_attribute("timeline.outcome", str(outcome))
            return outcome

    async def _run_cycle(self, token: int, window: WindowRequest, span: Any) -> ReconcileOutcome:
        if not self.guard.is_current(token):
            logger.debug("Cycle %d superseded before it started", token)
            return ReconcileOutcome.stale

        try:
            resolved = self.resolve_window(window)
        except InvalidDateRange as exc:
            logger.info("Cycle %d rejected window: %s", token, exc)
            self.status.publish(StatusKind.invalid_range, INVALID_RANGE_MESSAGE)
            return ReconcileOutcome.invalid_range

        self._active_window = resolved
        from_text, to_text = resolved.as_query()
        tag_cycle_span(span, token=token, from_day=from_text, to_day=to_text)
        self.status.publish(StatusKind.loading, "Loading calendars...")

        try:
            calendars = await self._backend.list_calendars()
        except PlannerError as exc:
            return self._report_failure(token, f"Failed to load calendars: {exc}")

        if not self.guard.is_current(token):
            logger.debug("Cycle %d superseded after listing calendars", token)
            return ReconcileOutcome.stale

        if not calendars:
            self.store.clear()
            self._maps = IdentifierMaps.empty()
            self.status.publish(StatusKind.empty, EMPTY_CALENDARS_MESSAGE)
            logger.info("Cycle %d: no calendars, store cleared", token)
            return ReconcileOutcome.empty

        maps = remap(calendars)
        self.status.publish(StatusKind.loading, f"Loading {len(maps)} calendars...")

        try:
            page = await self._backend.query_events(
                calendar_urls=[lane.calendar_url for lane in maps.lanes],
                from_day=resolved.from_day,
                to_day=resolved.to_day,
            )
        except PlannerError as exc:
            return self._report_failure(token, f"Error loading events: {exc}")

        if not self.guard.is_current(token):
            logger.debug("Cycle %d superseded after event query; result discarded", token)
            return ReconcileOutcome.stale

        records = transform_all(page.items, maps.url_to_lane, server_lanes=page.lanes)
        applied = await self._apply(token, maps, records)
        if not applied:
            return ReconcileOutcome.stale

        self.status.publish(
            StatusKind.success,
            f"Loaded {len(records)} items in {len(maps)} calendars"
            f" | Window: {from_text} → {to_text}",
        )
        logger.info(
            "Cycle %d applied %d items in %d lanes for %s..%s",
            token,
            len(records),
            len(maps),
            from_text,
            to_text,
        )
        return ReconcileOutcome.applied

    async def _apply(self, token: int, maps: IdentifierMaps, records: list[EventRecord]) -> bool:
        """Clear once, then add lanes and item batches in order.

        Returns ``False`` as soon as the cycle is superseded; nothing is
        written after that point.
        """
        if not self.guard.is_current(token):
            return False

        apply_config = self._config.apply
        self._maps = maps
        self.store.clear()
        self.store.add_lanes(maps.lanes)

        for batch in _batched(records, apply_config.batch_size):
            self.store.add_items(batch)
            await asyncio.sleep(apply_config.yield_seconds)
            if not self.guard.is_current(token):
                logger.debug("Cycle %d superseded during bulk apply", token)
                return False

        return self.guard.is_current(token)

    def _report_failure(self, token: int, message: str) -> ReconcileOutcome:
        if not self.guard.is_current(token):
            logger.debug("Cycle %d failed after being superseded: %s", token, message)
            return ReconcileOutcome.stale
        logger.warning("Cycle %d failed: %s", token, message)
        self.status.publish(StatusKind.error, message)
        return ReconcileOutcome.failed

    # ------------------------------------------------------------------
    # Optimistic insert
    # ------------------------------------------------------------------

    def create_local_optimistic(
        self,
        calendar_url: str,
        draft: EventDraft,
        *,
        confirmed_uid: str | None = None,
    ) -> EventRecord | None:
        """Show a just-created event without running a cycle.

        The record lives until the next applied cycle clears the store. When
        no lane can be resolved the insert is skipped.
        """
        lane_id = self._maps.resolve_lane(calendar_url) or self._last_clicked_lane
        if not lane_id:
            logger.warning("No lane for calendar %s; optimistic insert skipped", calendar_url)
            self.status.publish(StatusKind.info, NOT_YET_VISIBLE_MESSAGE)
            return None

        if confirmed_uid:
            uid = confirmed_uid
        else:
            # Sequence suffix keeps same-millisecond creates apart.
            uid = f"temp-{int(self.now().timestamp() * 1000)}-{next(self._temp_seq)}"
        start, end, all_day = to_local_span(draft.start, draft.end)
        record = EventRecord(
            local_id=build_local_id(lane_id, calendar_url, uid),
            remote_uid=uid,
            lane_id=lane_id,
            calendar_url=calendar_url,
            title=draft.summary,
            start=start,
            end=end,
            all_day=all_day,
            location=draft.location,
            description=draft.description,
            metadata=dict(draft.meta),
            provenance=Provenance.optimistic,
        )
        self.store.add_items([record])
        logger.debug("Optimistic record %s added to lane %s", record.local_id, lane_id)
        return record
