"""Schemas for job operations endpoints."""
from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, Field


class JobRunRequest(BaseModel):
    stale_after_minutes: Optional[int] = Field(default=None, ge=0)
    limit: Optional[int] = Field(default=None, ge=1, le=500)


class JobRunResponse(BaseModel):
    job: str
    workflows_found: int
    workflows_completed: int
    workflows_failed: int
    workflow_ids: List[str]
    request_id: str
