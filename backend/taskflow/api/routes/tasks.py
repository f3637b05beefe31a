"""Synchronous task decomposition endpoints."""
from __future__ import annotations

from time import perf_counter
from typing import Any

from fastapi import APIRouter, Body, HTTPException, Request, status

from taskflow.api.schemas.task import NormalizedTaskRequest, TaskDecomposeResponse, TaskValidateResponse
from taskflow.observability.metrics import log_metric
from taskflow.observability.tracing import trace
from taskflow.services.errors import InputValidationError
from taskflow.services.task_decomposer import decompose_task
from taskflow.services.task_request import to_request_payload

router = APIRouter()


@router.post("/tasks/decompose/validate", response_model=TaskValidateResponse, tags=["tasks"])
def validate_task_request(http_request: Request, payload: Any = Body(default=None)) -> TaskValidateResponse:
    """Validate and normalize a request without calling the model."""
    request_id = getattr(http_request.state, "request_id", None)
    try:
        request = to_request_payload(payload)
    except InputValidationError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    return TaskValidateResponse(
        valid=True,
        normalized=NormalizedTaskRequest(**request.model_dump()),
        request_id=request_id or "",
    )


@router.post("/tasks/decompose", response_model=TaskDecomposeResponse, tags=["tasks"])
def decompose_task_endpoint(http_request: Request, payload: Any = Body(default=None)) -> TaskDecomposeResponse:
    """Decompose a task into a plan. Calendar sync is only done by workflows."""
    request_id = getattr(http_request.state, "request_id", None)
    try:
        request = to_request_payload(payload)
    except InputValidationError as exc:
        log_metric("task.decompose.rejected", 1, metadata={"route": "/tasks/decompose"})
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc

    start = perf_counter()
    with trace(
        "http.task_decompose",
        metadata={"route": "/tasks/decompose", "request_id": request_id},
        user_id=request.user_id,
        request_id=request_id,
    ):
        plan = decompose_task(request, request_id=request_id)

    log_metric("http.task_decompose.latency_ms", (perf_counter() - start) * 1000)
    return TaskDecomposeResponse(plan=plan, request_id=request_id or "")
