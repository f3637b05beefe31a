"""Validation of incoming decomposition requests."""
from __future__ import annotations

import math
from datetime import datetime, timezone
from typing import Any, Mapping, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, ConfigDict

from taskflow.core.config import settings
from taskflow.services.errors import InputValidationError

TASK_REQUIRED_MESSAGE = "Request body must include a non-empty `task` field."
USER_REQUIRED_MESSAGE = "Workflow requests must include a non-empty `user_id`."


class TaskDecomposeRequest(BaseModel):
    """Validated request. Instances are only built through ``to_request_payload``."""

    model_config = ConfigDict(frozen=True)

    task: str
    context: Optional[str] = None
    user_id: Optional[str] = None
    deadline: Optional[datetime] = None
    timezone: Optional[str] = None
    max_steps: Optional[int] = None


def parse_instant(value: Any) -> datetime | None:
    """Parse an ISO 8601 instant into an aware UTC datetime.

    Naive values are read as UTC. Anything unparsable yields None.
    """
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str) and value.strip():
        candidate = value.strip()
        if candidate.endswith(("Z", "z")):
            candidate = f"{candidate[:-1]}+00:00"
        try:
            parsed = datetime.fromisoformat(candidate)
        except ValueError:
            return None
    else:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    try:
        return parsed.astimezone(timezone.utc)
    except (ValueError, OverflowError):
        # An offset can push year 1 or 9999 out of range.
        return None


def normalize_timezone(value: Any, default: str | None = None) -> str | None:
    """Return a valid IANA zone name, or ``default`` when blank or unknown."""
    if not isinstance(value, str) or not value.strip():
        return default
    candidate = value.strip()
    try:
        ZoneInfo(candidate)
    except (ZoneInfoNotFoundError, ValueError):
        return default
    return candidate


def sanitize_max_steps(value: Any, limit: int) -> int | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if isinstance(value, float) and not math.isfinite(value):
        return None
    rounded = int(value)
    if rounded < 1:
        return 1
    return min(rounded, limit)


def _optional_text(value: Any) -> str | None:
    if not isinstance(value, str):
        return None
    trimmed = value.strip()
    return trimmed or None


def to_request_payload(raw: Any, *, max_steps_limit: int | None = None) -> TaskDecomposeRequest:
    """Leniently coerce an untyped body into a request, rejecting only a missing task."""
    if not isinstance(raw, Mapping):
        raise InputValidationError(TASK_REQUIRED_MESSAGE)

    task = raw.get("task")
    if not isinstance(task, str) or not task.strip():
        raise InputValidationError(TASK_REQUIRED_MESSAGE)

    limit = max_steps_limit if max_steps_limit is not None else settings.max_steps_limit
    user_id = raw.get("user_id", raw.get("userId"))
    max_steps = raw.get("max_steps", raw.get("maxSteps"))
    return TaskDecomposeRequest(
        task=task.strip(),
        context=_optional_text(raw.get("context")),
        user_id=_optional_text(user_id),
        deadline=parse_instant(raw.get("deadline")),
        timezone=normalize_timezone(raw.get("timezone")),
        max_steps=sanitize_max_steps(max_steps, limit),
    )


def require_user(request: TaskDecomposeRequest) -> str:
    """Return the owning user id or reject the request."""
    if not request.user_id:
        raise InputValidationError(USER_REQUIRED_MESSAGE)
    return request.user_id
