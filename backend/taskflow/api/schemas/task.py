"""Schemas for the synchronous decomposition endpoints."""
from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel

from taskflow.services.task_plan import Plan


class NormalizedTaskRequest(BaseModel):
    task: str
    context: Optional[str] = None
    user_id: Optional[str] = None
    deadline: Optional[datetime] = None
    timezone: Optional[str] = None
    max_steps: Optional[int] = None


class TaskValidateResponse(BaseModel):
    valid: bool
    normalized: NormalizedTaskRequest
    request_id: str


class TaskDecomposeResponse(BaseModel):
    plan: Plan
    request_id: str
