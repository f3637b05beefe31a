"""Remote calendar store interface."""
from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel


class EventFields(BaseModel):
    summary: str
    description: str
    start_at: datetime
    end_at: datetime
    timezone: str


class RemoteEvent(BaseModel):
    id: str
    summary: Optional[str] = None
    html_link: Optional[str] = None
    status: Optional[str] = None
    start_at: Optional[datetime] = None
    end_at: Optional[datetime] = None


class CalendarStore:
    """Opaque remote store of calendar events keyed by caller-chosen ids.

    ``create_event`` raises ``EventConflictError`` when the id is taken and
    ``CalendarStoreError`` for any other failure. ``get_event`` returns None
    when the event does not exist.
    """

    def create_event(self, *, calendar_id: str, event_id: str, fields: EventFields) -> RemoteEvent:
        raise NotImplementedError

    def get_event(self, *, calendar_id: str, event_id: str) -> Optional[RemoteEvent]:
        raise NotImplementedError

    def close(self) -> None:
        return None
