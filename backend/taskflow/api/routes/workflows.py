"""Workflow endpoints: start, inspect, and retry decomposition workflows."""
from __future__ import annotations

from typing import Any, Callable, Mapping

from fastapi import APIRouter, BackgroundTasks, Body, Depends, HTTPException, Query, Request, status
from sqlalchemy.orm import Session

from taskflow.api.schemas.workflow import WorkflowHistoryResponse, WorkflowResponse, WorkflowRetryRequest
from taskflow.core.config import settings
from taskflow.db.deps import get_db, get_session_factory
from taskflow.observability.metrics import log_metric
from taskflow.observability.tracing import trace
from taskflow.services.errors import (
    InputValidationError,
    InvalidTransitionError,
    TaskflowError,
    WorkflowNotFoundError,
    WorkflowStateError,
)
from taskflow.services.task_request import to_request_payload
from taskflow.services.workflow_orchestrator import (
    WorkflowOrchestrator,
    build_orchestrator,
    run_workflow_in_background,
)
from taskflow.services.workflow_repository import WorkflowRepository

router = APIRouter()

OrchestratorFactory = Callable[[Session], WorkflowOrchestrator]


def get_orchestrator_factory() -> OrchestratorFactory:
    """Overridable in tests to swap the model and calendar collaborators."""
    return build_orchestrator


def _to_http_error(exc: TaskflowError) -> HTTPException:
    if isinstance(exc, InputValidationError):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    if isinstance(exc, WorkflowNotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Workflow not found")
    if isinstance(exc, (WorkflowStateError, InvalidTransitionError)):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc))


def _client_workflow_id(payload: Any) -> str | None:
    if not isinstance(payload, Mapping):
        return None
    value = payload.get("workflow_id", payload.get("workflowId"))
    if value is None:
        return None
    if not isinstance(value, str):
        raise InputValidationError("`workflow_id` must be a string.")
    return value.strip() or None


@router.post(
    "/workflows/decompose",
    response_model=WorkflowResponse,
    status_code=status.HTTP_202_ACCEPTED,
    tags=["workflows"],
)
def start_workflow(
    http_request: Request,
    background_tasks: BackgroundTasks,
    payload: Any = Body(default=None),
    db: Session = Depends(get_db),
    session_factory: Callable[[], Session] = Depends(get_session_factory),
    orchestrator_factory: OrchestratorFactory = Depends(get_orchestrator_factory),
) -> WorkflowResponse:
    """Queue a decomposition workflow and run it after the response is sent."""
    request_id = getattr(http_request.state, "request_id", None)
    try:
        request = to_request_payload(payload)
        workflow_id = _client_workflow_id(payload)
        with trace(
            "http.workflow_start",
            metadata={"route": "/workflows/decompose", "request_id": request_id},
            user_id=request.user_id,
            request_id=request_id,
        ):
            record = orchestrator_factory(db).create(request, workflow_id)
    except TaskflowError as exc:
        log_metric("workflow.start.rejected", 1, metadata={"error": type(exc).__name__})
        raise _to_http_error(exc) from exc

    if not record.status.is_terminal:
        background_tasks.add_task(
            run_workflow_in_background,
            session_factory,
            record.workflow_id,
            record.user_id,
            orchestrator_factory=orchestrator_factory,
        )
    log_metric("workflow.start.accepted", 1)
    return WorkflowResponse.from_record(record, request_id)


@router.get("/workflows/history", response_model=WorkflowHistoryResponse, tags=["workflows"])
def workflow_history(
    http_request: Request,
    user_id: str = Query(..., min_length=1, description="Owner of the workflows"),
    limit: int = Query(default=settings.workflow_history_limit),
    db: Session = Depends(get_db),
) -> WorkflowHistoryResponse:
    """Newest-first workflows of one user; ``limit`` is clamped to 1..100."""
    request_id = getattr(http_request.state, "request_id", None)
    with trace(
        "http.workflow_history",
        metadata={"route": "/workflows/history", "limit": limit},
        user_id=user_id,
        request_id=request_id,
    ):
        records = WorkflowRepository(db).list_by_user(user_id, limit)
    return WorkflowHistoryResponse(
        user_id=user_id,
        workflows=[WorkflowResponse.from_record(record, request_id) for record in records],
        request_id=request_id or "",
    )


@router.get("/workflows/{workflow_id}", response_model=WorkflowResponse, tags=["workflows"])
def get_workflow(
    workflow_id: str,
    http_request: Request,
    user_id: str = Query(..., min_length=1),
    db: Session = Depends(get_db),
    orchestrator_factory: OrchestratorFactory = Depends(get_orchestrator_factory),
) -> WorkflowResponse:
    request_id = getattr(http_request.state, "request_id", None)
    record = orchestrator_factory(db).get_status(workflow_id, user_id)
    if record is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Workflow not found")
    return WorkflowResponse.from_record(record, request_id)


@router.post(
    "/workflows/{workflow_id}/retry",
    response_model=WorkflowResponse,
    status_code=status.HTTP_202_ACCEPTED,
    tags=["workflows"],
)
def retry_workflow(
    workflow_id: str,
    payload: WorkflowRetryRequest,
    http_request: Request,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    session_factory: Callable[[], Session] = Depends(get_session_factory),
    orchestrator_factory: OrchestratorFactory = Depends(get_orchestrator_factory),
) -> WorkflowResponse:
    """Reopen a failed workflow or resume a stalled one with the same id."""
    request_id = getattr(http_request.state, "request_id", None)
    try:
        with trace(
            "http.workflow_retry",
            metadata={"route": f"/workflows/{workflow_id}/retry"},
            user_id=payload.user_id,
            request_id=request_id,
            workflow_id=workflow_id,
        ):
            record = orchestrator_factory(db).prepare_retry(workflow_id, payload.user_id)
    except TaskflowError as exc:
        raise _to_http_error(exc) from exc

    if not record.status.is_terminal:
        background_tasks.add_task(
            run_workflow_in_background,
            session_factory,
            record.workflow_id,
            record.user_id,
            orchestrator_factory=orchestrator_factory,
        )
    log_metric("workflow.retry.accepted", 1, metadata={"attempt": record.attempt})
    return WorkflowResponse.from_record(record, request_id)
