"""Remote event -> local record transformation.

The backend describes an all-day span by its last *included* day; the
renderer wants the first *excluded* day. ``transform`` shifts date-only ends
forward by one day and must run exactly once per remote item per cycle,
otherwise all-day events drift by an extra day.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from datetime import timedelta
from typing import Any

from timeline_sync.models import (
    Boundary,
    EventRecord,
    Provenance,
    RemoteEvent,
    RemoteLane,
    boundary_key,
    is_date_only,
)

logger = logging.getLogger(__name__)

ONE_DAY = timedelta(days=1)


def build_local_id(lane_id: str, calendar_url: str, remote_uid: str) -> str:
    return f"{lane_id}-{calendar_url}/{remote_uid}"


def to_local_span(start: Boundary, end: Boundary | None) -> tuple[Boundary, Boundary, bool]:
    """Convert an inclusive remote span to the renderer's exclusive-end span.

    Returns ``(start, end, all_day)``. A missing end means a single day (or
    an instant for timed events); an inverted end is pulled up to ``start``.
    """
    if end is None:
        end = start
    if boundary_key(end) < boundary_key(start):
        logger.debug("Inverted event span %s -> %s clamped to start", start, end)
        end = start
    if is_date_only(start) and is_date_only(end):
        return start, end + ONE_DAY, True
    return start, end, False


def to_remote_end(record: EventRecord) -> Boundary:
    """Inverse of the all-day shift: the inclusive last day for date-only spans."""
    if is_date_only(record.start) and is_date_only(record.end):
        return record.end - ONE_DAY
    return record.end


def _clean_metadata(raw: Mapping[str, Any] | None) -> dict[str, Any]:
    if not raw:
        return {}
    return {str(key): value for key, value in raw.items() if value is not None}


def transform(remote_event: RemoteEvent, url_to_lane: Mapping[str, str]) -> EventRecord:
    """Build the local record for one remote event.

    The lane falls back to the remote calendar identifier itself when the
    current maps do not know it, so the event is never dropped.
    """
    calendar_url = remote_event.calendar_url or remote_event.group or ""
    lane_id = url_to_lane.get(calendar_url) or calendar_url
    start, end, date_only = to_local_span(remote_event.start, remote_event.end)

    return EventRecord(
        local_id=build_local_id(lane_id, calendar_url, remote_event.id),
        remote_uid=remote_event.id,
        lane_id=lane_id,
        calendar_url=calendar_url,
        title=remote_event.title,
        start=start,
        end=end,
        all_day=date_only or bool(remote_event.all_day),
        location=remote_event.location or "",
        description=remote_event.description or "",
        metadata=_clean_metadata(remote_event.metadata),
        provenance=Provenance.confirmed,
    )


def resolve_calendar_urls(
    items: Iterable[RemoteEvent],
    server_lanes: Iterable[RemoteLane] = (),
) -> list[RemoteEvent]:
    """Fill ``calendar_url`` from the backend's own lane ids where items omit it."""
    url_by_server_lane = {lane.id: lane.calendar_url for lane in server_lanes}
    resolved: list[RemoteEvent] = []
    for item in items:
        if item.calendar_url:
            resolved.append(item)
            continue
        url = url_by_server_lane.get(item.group or "")
        if url:
            resolved.append(item.model_copy(update={"calendar_url": url}))
        else:
            resolved.append(item)
    return resolved


def transform_all(
    items: Iterable[RemoteEvent],
    url_to_lane: Mapping[str, str],
    *,
    server_lanes: Iterable[RemoteLane] = (),
) -> list[EventRecord]:
    """Transform each item once, skipping items with no calendar identifier."""
    records: list[EventRecord] = []
    skipped = 0
    for item in resolve_calendar_urls(items, server_lanes):
        if not (item.calendar_url or item.group):
            skipped += 1
            continue
        try:
            records.append(transform(item, url_to_lane))
        except ValueError as exc:
            skipped += 1
            logger.warning("Skipping untransformable event %s: %s", item.id, exc)
    if skipped:
        logger.info("Skipped %d event(s) without a usable calendar or span", skipped)
    return records
