"""Workflow status enumeration and transition rules."""
from __future__ import annotations

from enum import Enum
from typing import Dict, FrozenSet

from taskflow.services.errors import InvalidTransitionError


class WorkflowStatus(str, Enum):
    QUEUED = "queued"
    RUNNING = "running"
    CALENDAR_SYNCING = "calendar_syncing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES: FrozenSet[WorkflowStatus] = frozenset({WorkflowStatus.COMPLETED, WorkflowStatus.FAILED})

_TRANSITIONS: Dict[WorkflowStatus, FrozenSet[WorkflowStatus]] = {
    WorkflowStatus.QUEUED: frozenset({WorkflowStatus.RUNNING, WorkflowStatus.FAILED}),
    WorkflowStatus.RUNNING: frozenset({WorkflowStatus.CALENDAR_SYNCING, WorkflowStatus.FAILED}),
    WorkflowStatus.CALENDAR_SYNCING: frozenset({WorkflowStatus.COMPLETED, WorkflowStatus.FAILED}),
    WorkflowStatus.COMPLETED: frozenset(),
    WorkflowStatus.FAILED: frozenset(),
}


def can_transition(current: WorkflowStatus | str, target: WorkflowStatus | str) -> bool:
    """Return True if ``target`` is reachable from ``current`` in one step.

    Re-asserting the current status is allowed so repeated upserts stay no-ops.
    """
    current_status = WorkflowStatus(current)
    target_status = WorkflowStatus(target)
    if current_status == target_status:
        return True
    return target_status in _TRANSITIONS[current_status]


def transition(current: WorkflowStatus | str, target: WorkflowStatus | str) -> WorkflowStatus:
    """Validate a forward transition and return the new status."""
    if not can_transition(current, target):
        raise InvalidTransitionError(WorkflowStatus(current).value, WorkflowStatus(target).value)
    return WorkflowStatus(target)


def reopen(current: WorkflowStatus | str) -> WorkflowStatus:
    """Start a new attempt for a failed workflow.

    This is the only way out of a terminal status and is paired with an
    attempt increment by the caller.
    """
    if WorkflowStatus(current) != WorkflowStatus.FAILED:
        raise InvalidTransitionError(WorkflowStatus(current).value, WorkflowStatus.QUEUED.value)
    return WorkflowStatus.QUEUED
