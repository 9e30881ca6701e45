"""Local event store read by the rendering layer."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass

from timeline_sync.models import EventRecord, Lane, Provenance


@dataclass(frozen=True)
class StoreSnapshot:
    """Immutable view of the store at one point in time."""

    revision: int
    lanes: tuple[Lane, ...]
    items: tuple[EventRecord, ...]

    def item_ids(self) -> list[str]:
        return [item.local_id for item in self.items]

    def lane_ids(self) -> list[str]:
        return [lane.lane_id for lane in self.lanes]


class LocalEventStore:
    """Insertion-ordered lanes and records.

    Re-adding a key replaces the previous entry in place, so the store never
    holds two records with the same ``local_id``.
    """

    def __init__(self) -> None:
        self._lanes: dict[str, Lane] = {}
        self._items: dict[str, EventRecord] = {}
        self._revision = 0

    @property
    def revision(self) -> int:
        return self._revision

    def clear(self) -> None:
        self._lanes.clear()
        self._items.clear()
        self._revision += 1

    def add_lanes(self, lanes: Iterable[Lane]) -> None:
        for lane in lanes:
            self._lanes[lane.lane_id] = lane
        self._revision += 1

    def add_items(self, items: Iterable[EventRecord]) -> None:
        for item in items:
            self._items[item.local_id] = item
        self._revision += 1

    def lanes(self) -> list[Lane]:
        return list(self._lanes.values())

    def items(self) -> list[EventRecord]:
        return list(self._items.values())

    def get(self, local_id: str) -> EventRecord | None:
        return self._items.get(local_id)

    def get_lane(self, lane_id: str) -> Lane | None:
        return self._lanes.get(lane_id)

    def items_for_lane(self, lane_id: str) -> list[EventRecord]:
        return [item for item in self._items.values() if item.lane_id == lane_id]

    def optimistic_items(self) -> list[EventRecord]:
        return [
            item for item in self._items.values() if item.provenance is Provenance.optimistic
        ]

    def snapshot(self) -> StoreSnapshot:
        return StoreSnapshot(
            revision=self._revision,
            lanes=tuple(self._lanes.values()),
            items=tuple(self._items.values()),
        )

    def __len__(self) -> int:
        return len(self._items)

    def __contains__(self, local_id: object) -> bool:
        return local_id in self._items
