"""Tests for the create/update/move/delete flows."""

from __future__ import annotations

from datetime import date

import pytest

from tests._fakes import CAL_HOME, CAL_WORK
from timeline_sync.engine import ReconcileOutcome
from timeline_sync.models import META_ORDER_NUMBER, META_TICKET_LINK, EventDraft, EventPatch
from timeline_sync.mutations import (
    CREATED_NOT_SYNCED_MESSAGE,
    ORDER_NUMBER_MAX_CHARS,
    DraftValidationError,
    MutationLayer,
    normalize_meta,
    validate_draft,
    validate_patch,
)
from timeline_sync.remote import PlannerRequestError
from timeline_sync.status import StatusKind
from timeline_sync.transform import build_local_id

pytestmark = pytest.mark.unit


def _draft(**overrides) -> EventDraft:
    fields = {"summary": "Planning", "start": "2025-06-23", "end": "2025-06-24"}
    fields.update(overrides)
    return EventDraft.model_validate(fields)


@pytest.fixture
def layer(engine) -> MutationLayer:
    return MutationLayer(engine)


# ---------------------------------------------------------------------------
# Validation helpers
# ---------------------------------------------------------------------------


class TestNormalizeMeta:
    def test_empty_values_dropped(self):
        assert normalize_meta({META_ORDER_NUMBER: "", "systemType": None}) == {}

    def test_ticket_link_gets_scheme(self):
        meta = normalize_meta({META_TICKET_LINK: "jira.example.com/browse/OPS-1"})
        assert meta[META_TICKET_LINK] == "https://jira.example.com/browse/OPS-1"

    def test_ticket_link_with_scheme_kept(self):
        meta = normalize_meta({META_TICKET_LINK: "http://tickets.local/42"})
        assert meta[META_TICKET_LINK] == "http://tickets.local/42"

    def test_invalid_ticket_link_rejected(self):
        with pytest.raises(DraftValidationError, match="valid URL"):
            normalize_meta({META_TICKET_LINK: "not a link"})

    def test_order_number_length_enforced(self):
        with pytest.raises(DraftValidationError, match="too long"):
            normalize_meta({META_ORDER_NUMBER: "x" * (ORDER_NUMBER_MAX_CHARS + 1)})


class TestValidateDraft:
    def test_summary_trimmed(self):
        assert validate_draft(_draft(summary="  Planning  ")).summary == "Planning"

    def test_blank_summary_rejected(self):
        with pytest.raises(DraftValidationError, match="title"):
            validate_draft(_draft(summary="   "))

    def test_patch_without_summary_passes_through(self):
        patch = EventPatch(location="Room 4")
        assert validate_patch(patch) is patch

    def test_patch_blank_summary_rejected(self):
        with pytest.raises(DraftValidationError):
            validate_patch(EventPatch(summary=""))


# ---------------------------------------------------------------------------
# Create
# ---------------------------------------------------------------------------


class TestCreate:
    async def test_create_inserts_optimistic_record(self, layer, engine, backend):
        await engine.reconcile()
        queries = len(backend.query_calls)
        backend.next_uid = "created-1"

        outcome = await layer.create_event(CAL_HOME, _draft())

        assert outcome.ok is True
        assert outcome.uid == "created-1"
        assert outcome.record.local_id == build_local_id("lane-2", CAL_HOME, "created-1")
        assert outcome.record.end == date(2025, 6, 25)
        assert outcome.reconcile is None
        assert len(backend.query_calls) == queries
        assert engine.status.latest.kind is StatusKind.info
        assert engine.status.latest.text == CREATED_NOT_SYNCED_MESSAGE

    async def test_create_sends_normalized_draft(self, layer, engine, backend):
        await engine.reconcile()

        await layer.create_event(
            CAL_WORK, _draft(summary=" Audit ", meta={META_TICKET_LINK: "jira.example.com/A-1"})
        )

        action, details = backend.mutations[-1]
        assert action == "create"
        assert details["calendar_url"] == CAL_WORK
        assert details["draft"].summary == "Audit"
        assert details["draft"].meta == {META_TICKET_LINK: "https://jira.example.com/A-1"}

    async def test_invalid_draft_never_reaches_backend(self, layer, engine, backend):
        outcome = await layer.create_event(CAL_WORK, _draft(summary=""))

        assert outcome.ok is False
        assert outcome.error == "Please enter a title"
        assert backend.mutations == []
        assert engine.status.latest.kind is StatusKind.error

    async def test_backend_failure_reported(self, layer, engine, backend):
        await engine.reconcile()
        backend.mutation_error = PlannerRequestError(status_code=500, message="CalDAV down")

        outcome = await layer.create_event(CAL_WORK, _draft())

        assert outcome.ok is False
        assert "CalDAV down" in outcome.error
        assert engine.store.optimistic_items() == []

    async def test_create_with_last_clicked_lane(self, layer, engine, backend):
        await engine.reconcile()
        url = layer.select_lane("lane-1")

        outcome = await layer.create_event(url, _draft())

        assert url == CAL_WORK
        assert outcome.record.lane_id == "lane-1"


# ---------------------------------------------------------------------------
# Update / move / delete / refresh
# ---------------------------------------------------------------------------


class TestReconcilingMutations:
    async def test_update_reconciles_active_window(self, layer, engine, backend):
        await engine.reconcile(("2025-06-01", "2025-06-30"))
        window = engine.active_window

        outcome = await layer.update_event("evt-1", EventPatch(summary="Release v2"))

        assert outcome.ok is True
        assert outcome.reconcile is ReconcileOutcome.applied
        assert backend.mutations[-1][0] == "update"
        assert backend.query_calls[-1]["from_day"] == window.from_day
        assert backend.query_calls[-1]["to_day"] == window.to_day

    async def test_move_sends_target_and_reconciles(self, layer, engine, backend):
        await engine.reconcile()
        queries = len(backend.query_calls)

        outcome = await layer.move_event("evt-1", CAL_HOME)

        assert outcome.ok is True
        assert backend.mutations[-1] == (
            "move",
            {"uid": "evt-1", "target_calendar_url": CAL_HOME},
        )
        assert len(backend.query_calls) == queries + 1

    async def test_delete_reconciles(self, layer, engine, backend):
        await engine.reconcile()
        backend.events = [event for event in backend.events if event.id != "evt-3"]

        outcome = await layer.delete_event("evt-3")

        assert outcome.ok is True
        assert outcome.reconcile is ReconcileOutcome.applied
        assert build_local_id("lane-2", CAL_HOME, "evt-3") not in engine.store

    async def test_failed_update_skips_reconcile(self, layer, engine, backend):
        await engine.reconcile()
        queries = len(backend.query_calls)
        backend.mutation_error = PlannerRequestError(status_code=404, message="Event not found")

        outcome = await layer.update_event("missing", EventPatch(summary="x"))

        assert outcome.ok is False
        assert len(backend.query_calls) == queries
        assert engine.status.latest.kind is StatusKind.error

    async def test_force_refresh(self, layer, engine, backend):
        outcome = await layer.force_refresh()

        assert backend.refreshes == 1
        assert outcome.ok is True
        assert outcome.reconcile is ReconcileOutcome.applied
