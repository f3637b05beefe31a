"""Calendar store factory."""
from __future__ import annotations

from functools import lru_cache

from taskflow.core.config import settings
from taskflow.services.calendar.base import CalendarStore
from taskflow.services.calendar.google import GoogleCalendarStore
from taskflow.services.calendar.memory import InMemoryCalendarStore


@lru_cache
def get_memory_store() -> InMemoryCalendarStore:
    return InMemoryCalendarStore()


def get_calendar_store(access_token: str) -> CalendarStore:
    """Build a store for one user's token according to ``calendar_provider``."""
    provider = settings.calendar_provider.lower()
    if provider == "memory":
        return get_memory_store()
    return GoogleCalendarStore(
        access_token,
        base_url=settings.google_calendar_api_base,
        timeout=settings.calendar_timeout_seconds,
    )
