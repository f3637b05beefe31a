"""Exception hierarchy shared by the workflow services."""
from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:  # pragma: no cover - typing helper
    from taskflow.services.task_plan import CalendarSyncResult

CALENDAR_REAUTH_MARKER = "REAUTH_REQUIRED_CALENDAR_SCOPE"


class TaskflowError(Exception):
    """Base class for errors raised by taskflow services."""


class InputValidationError(TaskflowError):
    """Raised when a decomposition request is malformed."""


class InvalidTransitionError(TaskflowError):
    """Raised when a workflow status change is not in the transition table."""

    def __init__(self, current: str, target: str) -> None:
        self.current = current
        self.target = target
        super().__init__(f"Cannot move workflow from {current!r} to {target!r}")


class WorkflowNotFoundError(TaskflowError):
    def __init__(self, workflow_id: str) -> None:
        self.workflow_id = workflow_id
        super().__init__(f"Workflow {workflow_id} not found")


class WorkflowStateError(TaskflowError):
    """Raised when an operation is not allowed in the workflow's current status."""


class ModelUnavailableError(TaskflowError):
    """Raised when the generative model cannot be called at all."""


class CalendarSyncError(TaskflowError):
    """Generic calendar sync failure.

    ``partial_result`` holds the events synced before the failure, in
    subtask order, so callers can surface partial progress.
    """

    def __init__(self, message: str, *, partial_result: "CalendarSyncResult | None" = None) -> None:
        self.partial_result = partial_result
        super().__init__(message)


class CalendarPermissionError(CalendarSyncError):
    """Calendar access was denied; the user has to grant consent again."""

    def __init__(self, detail: str | None = None, *, partial_result: "CalendarSyncResult | None" = None) -> None:
        message = (
            f"{CALENDAR_REAUTH_MARKER}: Google Calendar permission is missing. "
            "Sign in with Google again and re-grant calendar access."
        )
        if detail:
            message = f"{message} ({detail})"
        super().__init__(message, partial_result=partial_result)


class CalendarStoreError(TaskflowError):
    """Raised by calendar store implementations when a remote call fails."""

    def __init__(self, *, status_code: int, message: str) -> None:
        self.status_code = status_code
        self.message = message
        super().__init__(f"Calendar request failed ({status_code}): {message}")


class EventConflictError(CalendarStoreError):
    """The remote calendar already holds an event with the requested id."""

    def __init__(self, event_id: str) -> None:
        self.event_id = event_id
        super().__init__(status_code=409, message=f"Event {event_id} already exists")


class WorkflowPersistenceError(TaskflowError):
    """Repository write failed after (some) workflow output was computed."""

    def __init__(self, message: str, *, output: Any = None) -> None:
        self.output = output
        super().__init__(message)


def is_reauth_required(message: str | None) -> bool:
    """Return True when a persisted error message carries the re-consent marker."""
    return bool(message) and message.startswith(CALENDAR_REAUTH_MARKER)
