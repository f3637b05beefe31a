"""Google Calendar REST implementation of the calendar store."""
from __future__ import annotations

import logging
from typing import Any, Dict, Optional
from urllib.parse import quote

import httpx

from taskflow.services.calendar.base import CalendarStore, EventFields, RemoteEvent
from taskflow.services.errors import CalendarStoreError, EventConflictError
from taskflow.services.task_request import parse_instant

logger = logging.getLogger(__name__)

ERROR_MESSAGE_LIMIT = 300


def _error_message(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        payload = None

    if isinstance(payload, dict):
        error_payload = payload.get("error")
        if isinstance(error_payload, dict):
            message = error_payload.get("message")
            if isinstance(message, str) and message.strip():
                return " ".join(message.split())[:ERROR_MESSAGE_LIMIT]
        if isinstance(error_payload, str) and error_payload.strip():
            return " ".join(error_payload.split())[:ERROR_MESSAGE_LIMIT]

    raw_text = response.text.strip()
    if raw_text:
        return " ".join(raw_text.split())[:ERROR_MESSAGE_LIMIT]
    return f"Google Calendar API responded with {response.status_code}."


def _to_remote_event(payload: Dict[str, Any], fallback_id: str) -> RemoteEvent:
    start = payload.get("start") if isinstance(payload.get("start"), dict) else {}
    end = payload.get("end") if isinstance(payload.get("end"), dict) else {}
    return RemoteEvent(
        id=payload.get("id") or fallback_id,
        summary=payload.get("summary"),
        html_link=payload.get("htmlLink"),
        status=payload.get("status"),
        start_at=parse_instant(start.get("dateTime")),
        end_at=parse_instant(end.get("dateTime")),
    )


def _read_event(response: httpx.Response, fallback_id: str) -> RemoteEvent:
    try:
        payload = response.json()
    except ValueError as exc:
        raise CalendarStoreError(
            status_code=response.status_code,
            message=f"Google Calendar returned a non-JSON body: {_error_message(response)}",
        ) from exc
    if not isinstance(payload, dict):
        raise CalendarStoreError(
            status_code=response.status_code,
            message=f"Google Calendar returned {type(payload).__name__} instead of an event object.",
        )
    return _to_remote_event(payload, fallback_id)


class GoogleCalendarStore(CalendarStore):
    def __init__(
        self,
        access_token: str,
        *,
        base_url: str = "https://www.googleapis.com/calendar/v3",
        timeout: float = 15.0,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self._client = httpx.Client(
            base_url=base_url.rstrip("/"),
            timeout=timeout,
            headers={"Authorization": f"Bearer {access_token}"},
            transport=transport,
        )

    def _send(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        try:
            return self._client.request(method, path, **kwargs)
        except httpx.TimeoutException as exc:
            raise CalendarStoreError(status_code=0, message=f"Google Calendar request timed out: {exc}") from exc
        except httpx.HTTPError as exc:
            raise CalendarStoreError(status_code=0, message=f"Google Calendar transport error: {exc}") from exc

    def create_event(self, *, calendar_id: str, event_id: str, fields: EventFields) -> RemoteEvent:
        body = {
            "id": event_id,
            "summary": fields.summary,
            "description": fields.description,
            "start": {"dateTime": fields.start_at.isoformat(), "timeZone": fields.timezone},
            "end": {"dateTime": fields.end_at.isoformat(), "timeZone": fields.timezone},
        }
        response = self._send("POST", f"/calendars/{quote(calendar_id, safe='')}/events", json=body)
        if response.status_code == 409:
            raise EventConflictError(event_id)
        if response.is_error:
            raise CalendarStoreError(status_code=response.status_code, message=_error_message(response))
        return _read_event(response, event_id)

    def get_event(self, *, calendar_id: str, event_id: str) -> Optional[RemoteEvent]:
        response = self._send(
            "GET",
            f"/calendars/{quote(calendar_id, safe='')}/events/{quote(event_id, safe='')}",
        )
        if response.status_code in (404, 410):
            return None
        if response.is_error:
            raise CalendarStoreError(status_code=response.status_code, message=_error_message(response))
        return _read_event(response, event_id)

    def close(self) -> None:
        self._client.close()
