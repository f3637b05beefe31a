"""Schemas for workflow endpoints."""
from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel

from taskflow.services.errors import is_reauth_required
from taskflow.services.task_plan import CalendarSyncResult, Plan, WorkflowRecord
from taskflow.services.workflow_state import WorkflowStatus


class WorkflowResponse(BaseModel):
    workflow_id: str
    user_id: str
    status: WorkflowStatus
    attempt: int
    task_input: str
    context: Optional[str] = None
    deadline: Optional[datetime] = None
    timezone: Optional[str] = None
    max_steps: Optional[int] = None
    plan_output: Optional[Plan] = None
    calendar_output: Optional[CalendarSyncResult] = None
    calendar_progress: Optional[CalendarSyncResult] = None
    error_message: Optional[str] = None
    reauth_required: bool = False
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    request_id: str = ""

    @classmethod
    def from_record(cls, record: WorkflowRecord, request_id: Optional[str] = None) -> "WorkflowResponse":
        return cls(
            **record.model_dump(),
            reauth_required=is_reauth_required(record.error_message),
            request_id=request_id or "",
        )


class WorkflowHistoryResponse(BaseModel):
    user_id: str
    workflows: List[WorkflowResponse]
    request_id: str


class WorkflowRetryRequest(BaseModel):
    user_id: str
