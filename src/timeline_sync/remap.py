"""Calendar URL <-> lane id mapping, rebuilt from scratch every cycle."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from types import MappingProxyType

from timeline_sync.models import Lane, RemoteCalendar, RemoteLane

logger = logging.getLogger(__name__)

LANE_ID_PREFIX = "lane-"


def lane_id_for(position: int) -> str:
    """Positional lane id, 1-based."""
    return f"{LANE_ID_PREFIX}{position}"


@dataclass(frozen=True)
class IdentifierMaps:
    """Lanes of one cycle plus both lookup directions.

    Both maps are bijections over ``lanes``; instances are never updated in
    place, a new cycle builds a new object.
    """

    lanes: tuple[Lane, ...] = ()
    url_to_lane: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))
    lane_to_url: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))

    @classmethod
    def empty(cls) -> IdentifierMaps:
        return cls()

    def resolve_lane(self, calendar_url: str | None) -> str | None:
        if not calendar_url:
            return None
        return self.url_to_lane.get(calendar_url)

    def resolve_url(self, lane_id: str | None) -> str | None:
        if not lane_id:
            return None
        return self.lane_to_url.get(lane_id)

    def __len__(self) -> int:
        return len(self.lanes)


def remap(calendars: Iterable[RemoteCalendar | RemoteLane]) -> IdentifierMaps:
    """Assign ``lane-1``, ``lane-2``, ... to *calendars* in input order.

    Every input calendar gets a lane, whether or not it has events. A URL
    that appears twice keeps its first lane.
    """
    lanes: list[Lane] = []
    url_to_lane: dict[str, str] = {}
    lane_to_url: dict[str, str] = {}

    for calendar in calendars:
        url = calendar.calendar_url if isinstance(calendar, RemoteLane) else calendar.url
        if url in url_to_lane:
            logger.debug("Duplicate calendar URL in remap input ignored: %s", url)
            continue
        lane_id = lane_id_for(len(lanes) + 1)
        lanes.append(
            Lane(
                lane_id=lane_id,
                calendar_url=url,
                display_name=calendar.display_name or url,
                color=calendar.color,
                order=len(lanes) + 1,
            )
        )
        url_to_lane[url] = lane_id
        lane_to_url[lane_id] = url

    return IdentifierMaps(
        lanes=tuple(lanes),
        url_to_lane=MappingProxyType(url_to_lane),
        lane_to_url=MappingProxyType(lane_to_url),
    )
