"""Typed plan, calendar, and workflow record models."""
from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from taskflow.services.workflow_state import WorkflowStatus


class Subtask(BaseModel):
    """One schedulable unit of the decomposed task."""

    title: str = Field(..., min_length=1)
    description: str
    due_at: datetime
    duration_minutes: int = Field(..., ge=1)


class Plan(BaseModel):
    """Normalized decomposition result."""

    goal: str = Field(..., min_length=1)
    summary: str = Field(..., min_length=1)
    subtasks: List[Subtask] = Field(..., min_length=1)
    assumptions: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(
        default_factory=list,
        description="Machine-readable codes for every value substituted during normalization.",
    )


class CalendarCreatedEvent(BaseModel):
    id: str
    remote_link: Optional[str] = None
    remote_status: Optional[str] = None
    title: str
    source_subtask_title: str
    start_at: datetime
    end_at: datetime


class CalendarSyncResult(BaseModel):
    calendar_id: str
    timezone: str
    created_events: List[CalendarCreatedEvent] = Field(default_factory=list)


class WorkflowRecord(BaseModel):
    """In-memory view of one persisted workflow instance."""

    workflow_id: str
    user_id: str
    status: WorkflowStatus = WorkflowStatus.QUEUED
    attempt: int = 1
    task_input: str
    context: Optional[str] = None
    deadline: Optional[datetime] = None
    timezone: Optional[str] = None
    max_steps: Optional[int] = None
    plan_output: Optional[Plan] = None
    calendar_output: Optional[CalendarSyncResult] = None
    calendar_progress: Optional[CalendarSyncResult] = None
    error_message: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


class WorkflowOutput(BaseModel):
    plan: Plan
    calendar: CalendarSyncResult
