"""In-process calendar store for local runs and tests."""
from __future__ import annotations

import logging
from threading import Lock
from typing import Dict, Optional, Tuple

from taskflow.services.calendar.base import CalendarStore, EventFields, RemoteEvent
from taskflow.services.errors import EventConflictError

logger = logging.getLogger(__name__)


class InMemoryCalendarStore(CalendarStore):
    """Enforces id uniqueness per calendar the same way the remote API does."""

    def __init__(self) -> None:
        self._events: Dict[Tuple[str, str], RemoteEvent] = {}
        self._lock = Lock()
        self.create_calls = 0

    def create_event(self, *, calendar_id: str, event_id: str, fields: EventFields) -> RemoteEvent:
        with self._lock:
            self.create_calls += 1
            key = (calendar_id, event_id)
            if key in self._events:
                raise EventConflictError(event_id)
            event = RemoteEvent(
                id=event_id,
                summary=fields.summary,
                html_link=f"memory://{calendar_id}/{event_id}",
                status="confirmed",
                start_at=fields.start_at,
                end_at=fields.end_at,
            )
            self._events[key] = event
        logger.info("Event stored (memory) calendar=%s id=%s", calendar_id, event_id)
        return event

    def get_event(self, *, calendar_id: str, event_id: str) -> Optional[RemoteEvent]:
        with self._lock:
            return self._events.get((calendar_id, event_id))

    def event_ids(self, calendar_id: str) -> list[str]:
        with self._lock:
            return [event_id for (cal, event_id) in self._events if cal == calendar_id]
