"""Calendar sync step: project plan subtasks onto the user's calendar.

Every subtask maps to an event whose id is derived from the workflow id and
the subtask position, so re-running the step converges on the same events.
A create that hits an existing id is treated as a replay and the stored event
is fetched instead.
"""
from __future__ import annotations

import base64
import hashlib
import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Callable, Optional, Protocol, Tuple

from taskflow.core.config import Settings, settings
from taskflow.observability.metrics import log_metric
from taskflow.observability.tracing import trace
from taskflow.services.calendar.base import CalendarStore, EventFields, RemoteEvent
from taskflow.services.calendar.factory import get_calendar_store
from taskflow.services.errors import (
    CalendarPermissionError,
    CalendarStoreError,
    CalendarSyncError,
    EventConflictError,
)
from taskflow.services.task_plan import CalendarCreatedEvent, CalendarSyncResult, Plan, Subtask
from taskflow.services.task_request import TaskDecomposeRequest, normalize_timezone

logger = logging.getLogger(__name__)

BASE32HEX_ALPHABET = "0123456789abcdefghijklmnopqrstuv"
EVENT_ID_PREFIX = "a"
EVENT_ID_HASH_LENGTH = 30
SUMMARY_TASK_LIMIT = 80
PERMISSION_STATUS_CODES = {401, 403}
PERMISSION_KEYWORDS = ("insufficient", "permission", "forbidden")


class TokenSource(Protocol):
    def get_access_token(self, user_id: str, provider_id: str) -> Optional[str]:
        ...


StoreFactory = Callable[[str], CalendarStore]


@dataclass(frozen=True)
class CalendarSyncConfig:
    calendar_id: str = "primary"
    default_timezone: str = "UTC"
    min_duration_minutes: int = 15
    provider_id: str = "google"

    @classmethod
    def from_settings(cls, source: Settings | None = None) -> "CalendarSyncConfig":
        cfg = source or settings
        return cls(
            calendar_id=cfg.calendar_id,
            default_timezone=cfg.default_timezone,
            min_duration_minutes=cfg.min_duration_minutes,
            provider_id=cfg.oauth_provider_id,
        )


def _to_base32(number: int) -> str:
    if number == 0:
        return BASE32HEX_ALPHABET[0]
    digits = []
    while number:
        number, remainder = divmod(number, 32)
        digits.append(BASE32HEX_ALPHABET[remainder])
    return "".join(reversed(digits))


def derive_event_id(workflow_id: str, index: int) -> str:
    """Stable calendar event id for subtask ``index`` of ``workflow_id``.

    Output uses only ``[0-9a-v]``, the alphabet Google accepts for event ids.
    """
    digest = hashlib.sha256(f"{workflow_id}:{index}".encode("utf-8")).digest()
    encoded = base64.b32hexencode(digest).decode("ascii").rstrip("=").lower()
    return f"{EVENT_ID_PREFIX}{encoded[:EVENT_ID_HASH_LENGTH]}{_to_base32(index)}"


def _single_line(value: str) -> str:
    return " ".join(value.split())


def _truncate(value: str, limit: int) -> str:
    if len(value) <= limit:
        return value
    return f"{value[: max(0, limit - 1)]}…"


def build_event_summary(index: int, total: int, subtask_title: str, task: str) -> str:
    overall = _truncate(_single_line(task), SUMMARY_TASK_LIMIT)
    return f"[{index + 1}/{total}] {_single_line(subtask_title)} | {overall}"


def build_event_description(workflow_id: str, request: TaskDecomposeRequest, plan: Plan, subtask: Subtask) -> str:
    return "\n".join(
        [
            f"Original task: {request.task}",
            f"Goal: {plan.goal}",
            f"Workflow ID: {workflow_id}",
            "",
            subtask.description,
        ]
    )


def is_permission_error(status_code: int, message: str) -> bool:
    if status_code in PERMISSION_STATUS_CODES:
        return True
    lowered = (message or "").lower()
    return any(keyword in lowered for keyword in PERMISSION_KEYWORDS)


def _classify(exc: CalendarStoreError, partial: CalendarSyncResult) -> CalendarSyncError:
    snapshot = partial.model_copy(deep=True)
    if is_permission_error(exc.status_code, exc.message):
        return CalendarPermissionError(exc.message, partial_result=snapshot)
    return CalendarSyncError(exc.message, partial_result=snapshot)


def _create_or_fetch(
    store: CalendarStore, calendar_id: str, event_id: str, fields: EventFields
) -> Tuple[RemoteEvent, bool]:
    """Return the remote event and whether it already existed."""
    try:
        return store.create_event(calendar_id=calendar_id, event_id=event_id, fields=fields), False
    except EventConflictError:
        existing = store.get_event(calendar_id=calendar_id, event_id=event_id)
        if existing is None:
            raise CalendarStoreError(
                status_code=409,
                message=f"Event {event_id} already exists but could not be fetched.",
            )
        return existing, True


def sync_plan_to_calendar(
    workflow_id: str,
    user_id: str,
    request: TaskDecomposeRequest,
    plan: Plan,
    *,
    credentials: TokenSource,
    store_factory: StoreFactory = get_calendar_store,
    config: Optional[CalendarSyncConfig] = None,
) -> CalendarSyncResult:
    """Create one event per subtask, strictly in order.

    On failure the events synced so far stay in place and are attached to the
    raised error; a later run skips them through the conflict path.
    """
    cfg = config or CalendarSyncConfig.from_settings()
    zone_name = normalize_timezone(request.timezone, cfg.default_timezone) or "UTC"
    result = CalendarSyncResult(calendar_id=cfg.calendar_id, timezone=zone_name, created_events=[])

    token = credentials.get_access_token(user_id, cfg.provider_id)
    if not token:
        log_metric("calendar.sync.failure", 1, {"kind": "missing_token"})
        raise CalendarPermissionError("no usable calendar access token", partial_result=result)

    store = store_factory(token)
    total = max(len(plan.subtasks), 1)
    created = 0
    replayed = 0
    try:
        with trace(
            "calendar.sync",
            metadata={"subtasks": len(plan.subtasks), "calendar_id": cfg.calendar_id},
            user_id=user_id,
            workflow_id=workflow_id,
        ):
            for index, subtask in enumerate(plan.subtasks):
                duration = max(subtask.duration_minutes, cfg.min_duration_minutes)
                end_at = subtask.due_at
                start_at = end_at - timedelta(minutes=duration)
                event_id = derive_event_id(workflow_id, index)
                summary = build_event_summary(index, total, subtask.title, request.task)
                fields = EventFields(
                    summary=summary,
                    description=build_event_description(workflow_id, request, plan, subtask),
                    start_at=start_at,
                    end_at=end_at,
                    timezone=zone_name,
                )
                try:
                    event, existed = _create_or_fetch(store, cfg.calendar_id, event_id, fields)
                except CalendarStoreError as exc:
                    error = _classify(exc, result)
                    kind = "permission" if isinstance(error, CalendarPermissionError) else "generic"
                    logger.warning(
                        "Calendar sync stopped at subtask %s/%s (%s): %s", index + 1, total, kind, exc.message
                    )
                    log_metric("calendar.sync.failure", 1, {"kind": kind, "index": index})
                    raise error from exc

                if existed:
                    replayed += 1
                    logger.info("Event %s already existed; reusing it", event_id)
                else:
                    created += 1
                result.created_events.append(
                    CalendarCreatedEvent(
                        id=event.id or event_id,
                        remote_link=event.html_link,
                        remote_status=event.status,
                        title=event.summary or summary,
                        source_subtask_title=subtask.title,
                        start_at=event.start_at or start_at,
                        end_at=event.end_at or end_at,
                    )
                )
    finally:
        store.close()

    log_metric("calendar.sync.events_created", created)
    log_metric("calendar.sync.events_replayed", replayed)
    return result
