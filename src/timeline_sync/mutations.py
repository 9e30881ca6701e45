"""Editor-side mutations layered over the reconciliation engine.

Creates are shown optimistically and left for the next cycle to replace;
updates, moves and deletes re-run a full cycle of the active window instead
of patching the store.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any
from urllib.parse import urlparse

from timeline_sync.engine import ReconcileOutcome, ReconciliationEngine
from timeline_sync.models import (
    META_ORDER_NUMBER,
    META_TICKET_LINK,
    EventDraft,
    EventPatch,
    EventRecord,
)
from timeline_sync.remote import PlannerError
from timeline_sync.status import StatusKind

logger = logging.getLogger(__name__)

ORDER_NUMBER_MAX_CHARS = 64
CREATED_NOT_SYNCED_MESSAGE = "Event created (not yet synced). Click Refresh to load from server."

_URL_SCHEME = re.compile(r"^https?://", re.IGNORECASE)


class DraftValidationError(ValueError):
    """Raised when editor input fails validation before any remote call."""


@dataclass(frozen=True)
class MutationOutcome:
    ok: bool
    uid: str | None = None
    record: EventRecord | None = None
    reconcile: ReconcileOutcome | None = None
    error: str | None = None


def normalize_meta(meta: dict[str, Any] | None) -> dict[str, Any]:
    """Validate editor metadata; ticket links without a scheme get ``https://``."""
    if not meta:
        return {}
    normalized = {key: value for key, value in meta.items() if value not in (None, "")}

    ticket_link = normalized.get(META_TICKET_LINK)
    if ticket_link is not None:
        link = str(ticket_link).strip()
        if not _URL_SCHEME.match(link):
            link = f"https://{link}"
        parsed = urlparse(link)
        if not parsed.netloc or " " in link:
            raise DraftValidationError("Please enter a valid URL for Ticket Link")
        normalized[META_TICKET_LINK] = link

    order_number = normalized.get(META_ORDER_NUMBER)
    if order_number is not None and len(str(order_number)) > ORDER_NUMBER_MAX_CHARS:
        raise DraftValidationError(
            f"Order Number is too long (max {ORDER_NUMBER_MAX_CHARS} characters)."
        )
    return normalized


def validate_draft(draft: EventDraft) -> EventDraft:
    summary = draft.summary.strip()
    if not summary:
        raise DraftValidationError("Please enter a title")
    return draft.model_copy(update={"summary": summary, "meta": normalize_meta(draft.meta)})


def validate_patch(patch: EventPatch) -> EventPatch:
    update: dict[str, Any] = {}
    if patch.summary is not None:
        summary = patch.summary.strip()
        if not summary:
            raise DraftValidationError("Please enter a title")
        update["summary"] = summary
    if patch.meta is not None:
        update["meta"] = normalize_meta(patch.meta)
    return patch.model_copy(update=update) if update else patch


class MutationLayer:
    """Create/update/move/delete flows for one engine.

    Every method reports through the engine's status channel and returns a
    ``MutationOutcome``; none of them raise for remote or validation errors.
    """

    def __init__(self, engine: ReconciliationEngine) -> None:
        self._engine = engine

    @property
    def engine(self) -> ReconciliationEngine:
        return self._engine

    def _fail(self, message: str) -> MutationOutcome:
        self._engine.status.publish(StatusKind.error, message)
        return MutationOutcome(ok=False, error=message)

    def select_lane(self, lane_id: str | None) -> str | None:
        """Record the lane a create flow started from."""
        return self._engine.select_lane(lane_id)

    async def create_event(self, calendar_url: str, draft: EventDraft) -> MutationOutcome:
        try:
            draft = validate_draft(draft)
        except DraftValidationError as exc:
            return self._fail(str(exc))

        self._engine.status.publish(StatusKind.loading, "Creating new event...")
        try:
            ack = await self._engine.backend.create_event(calendar_url=calendar_url, draft=draft)
        except PlannerError as exc:
            logger.warning("Create in %s failed: %s", calendar_url, exc)
            return self._fail(f"Error: {exc}")

        record = self._engine.create_local_optimistic(
            calendar_url, draft, confirmed_uid=ack.uid
        )
        if record is not None:
            self._engine.status.publish(StatusKind.info, CREATED_NOT_SYNCED_MESSAGE)
        return MutationOutcome(ok=True, uid=ack.uid, record=record)

    async def update_event(self, uid: str, patch: EventPatch) -> MutationOutcome:
        try:
            patch = validate_patch(patch)
        except DraftValidationError as exc:
            return self._fail(str(exc))

        self._engine.status.publish(StatusKind.loading, "Saving changes...")
        try:
            ack = await self._engine.backend.update_event(uid, patch)
        except PlannerError as exc:
            logger.warning("Update of %s failed: %s", uid, exc)
            return self._fail(f"Error: {exc}")

        self._engine.status.publish(
            StatusKind.info, "Event updated successfully, refreshing data..."
        )
        outcome = await self._engine.run_cycle(self._engine.active_window)
        return MutationOutcome(ok=True, uid=ack.uid or uid, reconcile=outcome)

    async def move_event(self, uid: str, target_calendar_url: str) -> MutationOutcome:
        self._engine.status.publish(StatusKind.loading, "Moving event...")
        try:
            ack = await self._engine.backend.move_event(
                uid, target_calendar_url=target_calendar_url
            )
        except PlannerError as exc:
            logger.warning("Move of %s to %s failed: %s", uid, target_calendar_url, exc)
            return self._fail(f"Error: {exc}")

        self._engine.status.publish(StatusKind.info, "Event moved, refreshing data...")
        outcome = await self._engine.run_cycle(self._engine.active_window)
        return MutationOutcome(ok=True, uid=ack.uid or uid, reconcile=outcome)

    async def delete_event(self, uid: str) -> MutationOutcome:
        self._engine.status.publish(StatusKind.loading, "Deleting event...")
        try:
            await self._engine.backend.delete_event(uid)
        except PlannerError as exc:
            logger.warning("Delete of %s failed: %s", uid, exc)
            return self._fail(f"Error: {exc}")

        self._engine.status.publish(StatusKind.info, "Event deleted, refreshing data...")
        outcome = await self._engine.run_cycle(self._engine.active_window)
        return MutationOutcome(ok=True, uid=uid, reconcile=outcome)

    async def force_refresh(self) -> MutationOutcome:
        """Have the backend re-read its calendars, then run a cycle."""
        self._engine.status.publish(StatusKind.loading, "Refreshing calendar data...")
        try:
            await self._engine.backend.refresh_cache()
        except PlannerError as exc:
            logger.warning("Backend cache refresh failed: %s", exc)
            return self._fail(f"Error: {exc}")

        outcome = await self._engine.run_cycle(self._engine.active_window)
        return MutationOutcome(ok=outcome is not ReconcileOutcome.failed, reconcile=outcome)
