"""Wire and record models shared by the reconciliation engine.

Remote models (``RemoteCalendar``, ``RemoteLane``, ``RemoteEvent``,
``EventsPage``) accept the planner backend's JSON field names. Local models
(``Lane``, ``EventRecord``, ``DateWindow``) are what the rendering layer reads.
"""

from __future__ import annotations

import re
from datetime import UTC, date, datetime, time
from enum import StrEnum
from typing import Any

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)

# Metadata keys used by the planner's event editor.
META_ORDER_NUMBER = "orderNumber"
META_TICKET_LINK = "ticketLink"
META_SYSTEM_TYPE = "systemType"

_DATE_ONLY_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$")

Boundary = date | datetime


class Provenance(StrEnum):
    """Where a local record came from."""

    confirmed = "confirmed"
    optimistic = "optimistic"


# ---------------------------------------------------------------------------
# Boundary helpers
# ---------------------------------------------------------------------------


def is_date_only(value: Any) -> bool:
    """True for calendar dates without a time component."""
    return isinstance(value, date) and not isinstance(value, datetime)


def parse_boundary(value: Any) -> Any:
    """Parse a wire boundary into ``date`` (``YYYY-MM-DD``) or ``datetime``.

    Non-string values are returned unchanged for pydantic to validate.
    """
    if not isinstance(value, str):
        return value
    normalized = value.strip()
    if _DATE_ONLY_PATTERN.match(normalized):
        return date.fromisoformat(normalized)
    if normalized.endswith("Z"):
        normalized = f"{normalized[:-1]}+00:00"
    try:
        return datetime.fromisoformat(normalized)
    except ValueError as exc:
        raise ValueError(f"Invalid date/datetime value: {value!r}") from exc


def boundary_key(value: Boundary) -> datetime:
    """Map a boundary onto an aware UTC datetime so mixed kinds compare."""
    if is_date_only(value):
        return datetime.combine(value, time.min, tzinfo=UTC)
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def boundary_to_wire(value: Boundary) -> str:
    """Serialize a boundary the way the backend expects it."""
    if is_date_only(value):
        return value.isoformat()
    if value.tzinfo is not None:
        return value.astimezone(UTC).isoformat().replace("+00:00", "Z")
    return value.isoformat()


# ---------------------------------------------------------------------------
# Remote (wire) models
# ---------------------------------------------------------------------------


class RemoteCalendar(BaseModel):
    """One calendar as returned by the calendar listing."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    url: str = Field(min_length=1)
    display_name: str = Field(
        default="",
        validation_alias=AliasChoices("displayName", "display_name", "content", "name"),
    )
    color: str | None = None


class RemoteLane(BaseModel):
    """One lane (group) from the event query response.

    ``id`` is the backend's own lane id; ``url`` is the stable calendar URL
    when the backend provides it.
    """

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    id: str = Field(min_length=1)
    display_name: str = Field(
        default="",
        validation_alias=AliasChoices("displayName", "display_name", "content", "name"),
    )
    url: str | None = None
    color: str | None = None

    @property
    def calendar_url(self) -> str:
        return self.url or self.id


class RemoteEvent(BaseModel):
    """One event item from the event query response."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    id: str = Field(validation_alias=AliasChoices("id", "uid"))
    calendar_url: str | None = Field(
        default=None,
        validation_alias=AliasChoices("calendarUrl", "calendar_url", "calendar"),
    )
    group: str | None = None
    title: str = Field(
        default="",
        validation_alias=AliasChoices("title", "summary", "content"),
    )
    start: Boundary
    end: Boundary | None = None
    all_day: bool | None = Field(default=None, validation_alias=AliasChoices("allDay", "all_day"))
    location: str | None = None
    description: str | None = None
    metadata: dict[str, Any] | None = Field(
        default=None,
        validation_alias=AliasChoices("meta", "metadata"),
    )

    @field_validator("start", "end", mode="before")
    @classmethod
    def _parse_boundary(cls, value: Any) -> Any:
        return parse_boundary(value)

    @field_validator("id")
    @classmethod
    def _normalize_id(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError("event id must be a non-empty string")
        return normalized


class EventsPage(BaseModel):
    """Combined event query response for a set of calendars and a window."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    lanes: list[RemoteLane] = Field(
        default_factory=list, validation_alias=AliasChoices("groups", "lanes")
    )
    items: list[RemoteEvent] = Field(default_factory=list)


class MutationAck(BaseModel):
    """Backend acknowledgement of a create/update/delete/move call."""

    model_config = ConfigDict(extra="ignore")

    success: bool = True
    uid: str | None = None
    message: str | None = None
    event: dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="after")
    def _lift_uid(self) -> MutationAck:
        if self.uid is None:
            candidate = self.event.get("uid") or self.event.get("id")
            if isinstance(candidate, str) and candidate.strip():
                self.uid = candidate.strip()
        return self


class EventDraft(BaseModel):
    """Fields the editor submits when creating an event."""

    model_config = ConfigDict(extra="forbid")

    summary: str
    start: Boundary
    end: Boundary
    description: str = ""
    location: str = ""
    meta: dict[str, Any] = Field(default_factory=dict)

    @field_validator("start", "end", mode="before")
    @classmethod
    def _parse_boundary(cls, value: Any) -> Any:
        return parse_boundary(value)

    @model_validator(mode="after")
    def _validate_boundary_types_consistent(self) -> EventDraft:
        if is_date_only(self.start) != is_date_only(self.end):
            raise ValueError(
                "start and end must be the same type: "
                "both date or both datetime (mixed date/datetime is not allowed)"
            )
        return self

    @property
    def all_day(self) -> bool:
        return is_date_only(self.start) and is_date_only(self.end)

    def to_payload(self, calendar_url: str) -> dict[str, Any]:
        return {
            "calendarUrl": calendar_url,
            "summary": self.summary,
            "description": self.description,
            "location": self.location,
            "start": boundary_to_wire(self.start),
            "end": boundary_to_wire(self.end),
            "meta": self.meta or None,
        }


class EventPatch(BaseModel):
    """Partial update for an existing event.

    Setting ``target_calendar_url`` asks the backend to move the event.
    """

    model_config = ConfigDict(extra="forbid")

    summary: str | None = None
    description: str | None = None
    location: str | None = None
    start: Boundary | None = None
    end: Boundary | None = None
    meta: dict[str, Any] | None = None
    target_calendar_url: str | None = None

    @field_validator("start", "end", mode="before")
    @classmethod
    def _parse_boundary(cls, value: Any) -> Any:
        return parse_boundary(value)

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {}
        for key in ("summary", "description", "location", "meta"):
            value = getattr(self, key)
            if value is not None:
                payload[key] = value
        if self.start is not None:
            payload["start"] = boundary_to_wire(self.start)
        if self.end is not None:
            payload["end"] = boundary_to_wire(self.end)
        if self.target_calendar_url is not None:
            payload["targetCalendarUrl"] = self.target_calendar_url
        return payload


# ---------------------------------------------------------------------------
# Local (renderable) models
# ---------------------------------------------------------------------------


class Lane(BaseModel):
    """One calendar's rendering row. ``lane_id`` is only valid for one cycle."""

    model_config = ConfigDict(frozen=True)

    lane_id: str
    calendar_url: str
    display_name: str = ""
    color: str | None = None
    order: int = 0


class EventRecord(BaseModel):
    """One displayable event, stored in the exclusive-end convention."""

    model_config = ConfigDict(frozen=True)

    local_id: str
    remote_uid: str
    lane_id: str
    calendar_url: str
    title: str = ""
    start: Boundary
    end: Boundary
    all_day: bool = False
    location: str = ""
    description: str = ""
    metadata: dict[str, Any] = Field(default_factory=dict)
    provenance: Provenance = Provenance.confirmed

    @model_validator(mode="after")
    def _validate_span(self) -> EventRecord:
        if boundary_key(self.end) < boundary_key(self.start):
            raise ValueError("end must not be earlier than start")
        return self


class DateWindow(BaseModel):
    """Inclusive day range requested from the backend."""

    model_config = ConfigDict(frozen=True)

    from_day: date
    to_day: date

    @model_validator(mode="after")
    def _validate_order(self) -> DateWindow:
        if self.to_day < self.from_day:
            raise ValueError("to_day must not be earlier than from_day")
        return self

    def as_query(self) -> tuple[str, str]:
        return self.from_day.isoformat(), self.to_day.isoformat()
