"""Planner backend contract and its HTTP implementation.

The reconciliation engine only talks to ``PlannerBackend``. Retries for
rate-limited or temporarily unavailable responses live here, at the network
boundary; the engine itself never retries.
"""

from __future__ import annotations

import abc
import asyncio
import logging
from collections.abc import Sequence
from datetime import date
from typing import Any
from urllib.parse import quote

import httpx
from pydantic import ValidationError

from timeline_sync.config import BackendConfig
from timeline_sync.models import (
    EventDraft,
    EventPatch,
    EventsPage,
    MutationAck,
    RemoteCalendar,
    RemoteEvent,
)

logger = logging.getLogger(__name__)

RATE_LIMIT_RETRY_STATUS_CODES = {429, 503}
ERROR_MESSAGE_MAX_CHARS = 200


class PlannerError(RuntimeError):
    """Base error raised by planner backend helpers."""


class PlannerTransportError(PlannerError):
    """Raised when a request could not be sent or no response was received."""


class PlannerRequestError(PlannerError):
    """Raised when the backend answers with a non-success status."""

    def __init__(self, *, status_code: int, message: str) -> None:
        self.status_code = status_code
        self.message = message
        super().__init__(f"Planner request failed ({status_code}): {message}")


class PlannerResponseError(PlannerError):
    """Raised when a successful response does not have the expected shape."""


def _squash(text: str) -> str:
    return " ".join(text.split())[:ERROR_MESSAGE_MAX_CHARS]


def _safe_error_message(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        payload = None

    if isinstance(payload, dict):
        parts: list[str] = []
        for key in ("error", "message", "details"):
            value = payload.get(key)
            if isinstance(value, dict):
                value = value.get("message")
            if isinstance(value, str) and value.strip():
                parts.append(value.strip())
        if parts:
            return _squash(": ".join(parts[:2]))

    raw_text = response.text.strip()
    if raw_text:
        return _squash(raw_text)
    return response.reason_phrase or "Request failed without an error payload"


class PlannerBackend(abc.ABC):
    """Remote collaborator used by the reconciliation engine."""

    @abc.abstractmethod
    async def list_calendars(self) -> list[RemoteCalendar]:
        """Return every calendar the operator can see, in display order."""
        ...

    @abc.abstractmethod
    async def query_events(
        self,
        *,
        calendar_urls: Sequence[str],
        from_day: date,
        to_day: date,
    ) -> EventsPage:
        """Return lanes and items for *calendar_urls* overlapping the window.

        ``calendar_urls`` must be non-empty.
        """
        ...

    @abc.abstractmethod
    async def get_event(self, uid: str) -> RemoteEvent | None:
        """Fetch a single event by uid, or ``None`` if it does not exist."""
        ...

    @abc.abstractmethod
    async def create_event(self, *, calendar_url: str, draft: EventDraft) -> MutationAck:
        """Create an event; the ack carries the confirmed uid when known."""
        ...

    @abc.abstractmethod
    async def update_event(self, uid: str, patch: EventPatch) -> MutationAck:
        """Update an event. A ``target_calendar_url`` in the patch moves it."""
        ...

    @abc.abstractmethod
    async def delete_event(self, uid: str) -> MutationAck:
        """Delete an event."""
        ...

    @abc.abstractmethod
    async def move_event(self, uid: str, *, target_calendar_url: str) -> MutationAck:
        """Move an event to another calendar."""
        ...

    @abc.abstractmethod
    async def refresh_cache(self) -> None:
        """Ask the backend to re-read its upstream calendars."""
        ...

    async def aclose(self) -> None:
        """Release backend resources."""
        return None


class HttpPlannerBackend(PlannerBackend):
    """``PlannerBackend`` over the planner proxy's JSON routes."""

    def __init__(
        self,
        config: BackendConfig,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._config = config
        self._base_url = config.base_url.rstrip("/")
        self._owns_http_client = http_client is None
        self._http_client = http_client or httpx.AsyncClient(timeout=config.timeout_seconds)

    async def _request_json(
        self,
        method: str,
        path: str,
        *,
        json_body: dict[str, Any] | None = None,
        allow_not_found: bool = False,
    ) -> dict[str, Any] | None:
        response = await self._request_with_retry(method=method, path=path, json_body=json_body)

        if allow_not_found and response.status_code == 404:
            return None
        if response.status_code < 200 or response.status_code >= 300:
            raise PlannerRequestError(
                status_code=response.status_code,
                message=_safe_error_message(response),
            )

        if response.status_code == 204 or not response.content:
            return {}

        try:
            payload = response.json()
        except ValueError as exc:
            raise PlannerResponseError(
                f"Planner backend returned invalid JSON for {method} {path}"
            ) from exc

        if not isinstance(payload, dict):
            raise PlannerResponseError(
                f"Planner backend returned an unexpected JSON payload shape for {method} {path}"
            )
        return payload

    async def _request_with_retry(
        self,
        *,
        method: str,
        path: str,
        json_body: dict[str, Any] | None = None,
    ) -> httpx.Response:
        normalized_path = path if path.startswith("/") else f"/{path}"
        url = f"{self._base_url}{normalized_path}"

        response = await self._request_once(method=method, url=url, json_body=json_body)

        # Honour Retry-After on 429, exponential backoff otherwise.
        retry = 0
        while (
            response.status_code in RATE_LIMIT_RETRY_STATUS_CODES
            and retry < self._config.max_retries
        ):
            backoff = self._config.retry_backoff_seconds * (2**retry)
            if response.status_code == 429:
                retry_after_header = response.headers.get("Retry-After")
                if retry_after_header is not None:
                    try:
                        backoff = float(retry_after_header)
                    except ValueError:
                        pass
            logger.warning(
                "Planner backend unavailable (status=%d), retrying in %.1fs (attempt %d/%d)",
                response.status_code,
                backoff,
                retry + 1,
                self._config.max_retries,
            )
            await asyncio.sleep(backoff)
            response = await self._request_once(method=method, url=url, json_body=json_body)
            retry += 1

        return response

    async def _request_once(
        self,
        *,
        method: str,
        url: str,
        json_body: dict[str, Any] | None,
    ) -> httpx.Response:
        try:
            return await self._http_client.request(
                method,
                url,
                json=json_body,
                headers={"Accept": "application/json"},
            )
        except httpx.HTTPError as exc:
            raise PlannerTransportError(f"Planner request failed: {exc}") from exc

    @staticmethod
    def _ack(payload: dict[str, Any] | None, *, action: str) -> MutationAck:
        try:
            ack = MutationAck.model_validate(payload or {})
        except ValidationError as exc:
            raise PlannerResponseError(f"Planner {action} response is malformed: {exc}") from exc
        if not ack.success:
            message = (payload or {}).get("error") or ack.message or f"Failed to {action} event"
            raise PlannerRequestError(status_code=200, message=_squash(str(message)))
        return ack

    async def list_calendars(self) -> list[RemoteCalendar]:
        payload = await self._request_json("GET", "/api/calendars")
        raw = (payload or {}).get("calendars", [])
        if not isinstance(raw, list):
            raise PlannerResponseError("Planner calendars response missing calendars array")
        calendars: list[RemoteCalendar] = []
        for entry in raw:
            try:
                calendars.append(RemoteCalendar.model_validate(entry))
            except ValidationError as exc:
                logger.warning("Ignoring malformed calendar entry %r: %s", entry, exc)
        return calendars

    async def query_events(
        self,
        *,
        calendar_urls: Sequence[str],
        from_day: date,
        to_day: date,
    ) -> EventsPage:
        if not calendar_urls:
            raise ValueError("calendar_urls must be a non-empty sequence")
        payload = await self._request_json(
            "POST",
            "/api/events",
            json_body={
                "calendarUrls": list(calendar_urls),
                "from": from_day.isoformat(),
                "to": to_day.isoformat(),
            },
        )
        try:
            return EventsPage.model_validate(payload or {})
        except ValidationError as exc:
            raise PlannerResponseError(f"Planner events response is malformed: {exc}") from exc

    async def get_event(self, uid: str) -> RemoteEvent | None:
        normalized_uid = uid.strip()
        if not normalized_uid:
            raise ValueError("uid must be a non-empty string")
        payload = await self._request_json(
            "GET",
            f"/api/events/{quote(normalized_uid, safe='')}",
            allow_not_found=True,
        )
        if payload is None:
            return None
        event = payload.get("event", payload)
        try:
            return RemoteEvent.model_validate(event)
        except ValidationError as exc:
            raise PlannerResponseError(f"Planner event response is malformed: {exc}") from exc

    async def create_event(self, *, calendar_url: str, draft: EventDraft) -> MutationAck:
        payload = await self._request_json(
            "POST",
            "/api/events/all-day",
            json_body=draft.to_payload(calendar_url),
        )
        return self._ack(payload, action="create")

    async def update_event(self, uid: str, patch: EventPatch) -> MutationAck:
        payload = await self._request_json(
            "PUT",
            f"/api/events/{quote(uid, safe='')}",
            json_body=patch.to_payload(),
        )
        return self._ack(payload, action="update")

    async def delete_event(self, uid: str) -> MutationAck:
        payload = await self._request_json("DELETE", f"/api/events/{quote(uid, safe='')}")
        return self._ack(payload, action="delete")

    async def move_event(self, uid: str, *, target_calendar_url: str) -> MutationAck:
        payload = await self._request_json(
            "POST",
            f"/api/events/{quote(uid, safe='')}/move",
            json_body={"targetCalendarUrl": target_calendar_url},
        )
        return self._ack(payload, action="move")

    async def refresh_cache(self) -> None:
        payload = await self._request_json("POST", "/api/refresh-caldav")
        if payload is not None and payload.get("success") is False:
            raise PlannerRequestError(
                status_code=200,
                message=_squash(str(payload.get("error") or "Failed to refresh calendar data")),
            )

    async def aclose(self) -> None:
        if self._owns_http_client:
            await self._http_client.aclose()
