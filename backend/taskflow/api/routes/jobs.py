"""Operational endpoints for scheduler jobs."""
from __future__ import annotations

from datetime import timedelta
from time import perf_counter

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.orm import Session

from taskflow.api.routes.workflows import OrchestratorFactory, get_orchestrator_factory
from taskflow.api.schemas.jobs import JobRunRequest, JobRunResponse
from taskflow.core.config import settings
from taskflow.db.deps import get_db
from taskflow.observability.metrics import log_metric
from taskflow.observability.tracing import trace
from taskflow.services.job_runner import resume_stale_workflows

router = APIRouter()


@router.get("/jobs", tags=["jobs"])
def get_jobs_config(request: Request) -> dict:
    request_id = getattr(request.state, "request_id", None)
    with trace("jobs.config", metadata={"request_id": request_id}, request_id=request_id):
        data = {
            "scheduler_enabled": settings.scheduler_enabled,
            "schedule": {
                "timezone": settings.scheduler_timezone,
                "resume_interval_minutes": settings.resume_job_interval_minutes,
                "stale_after_minutes": settings.resume_stale_after_minutes,
                "batch_size": settings.resume_batch_size,
            },
        }
    return {**data, "request_id": request_id or ""}


@router.post("/jobs/run-now", response_model=JobRunResponse, tags=["jobs"])
def run_job_now(
    request: Request,
    payload: JobRunRequest | None = None,
    db: Session = Depends(get_db),
    orchestrator_factory: OrchestratorFactory = Depends(get_orchestrator_factory),
) -> JobRunResponse:
    if not settings.debug:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Run-now only allowed in debug mode")

    params = payload or JobRunRequest()
    request_id = getattr(request.state, "request_id", None)
    stale_after = timedelta(minutes=params.stale_after_minutes) if params.stale_after_minutes is not None else None
    start = perf_counter()
    with trace("jobs.run_now", metadata={"job": "resume_stale_workflows", "request_id": request_id}, request_id=request_id):
        result = resume_stale_workflows(
            db,
            stale_after=stale_after,
            limit=params.limit,
            orchestrator_factory=orchestrator_factory,
        )

    log_metric("jobs.run_now.latency_ms", (perf_counter() - start) * 1000, metadata={"job": "resume_stale_workflows"})
    return JobRunResponse(
        job="resume_stale_workflows",
        workflows_found=result.workflows_found,
        workflows_completed=result.workflows_completed,
        workflows_failed=result.workflows_failed,
        workflow_ids=result.workflow_ids,
        request_id=request_id or "",
    )
