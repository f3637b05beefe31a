"""Per-request and per-workflow context utilities."""
from __future__ import annotations

from contextlib import contextmanager
from contextvars import ContextVar
from typing import Iterator

request_id_ctx_var: ContextVar[str | None] = ContextVar("request_id", default=None)
workflow_id_ctx_var: ContextVar[str | None] = ContextVar("workflow_id", default=None)


def get_request_id() -> str | None:
    """Return the current request id if available."""
    return request_id_ctx_var.get()


def get_workflow_id() -> str | None:
    """Return the workflow id bound to the current run, if any."""
    return workflow_id_ctx_var.get()


@contextmanager
def bind_workflow_id(workflow_id: str) -> Iterator[None]:
    """Attach a workflow id to every log record emitted inside the block."""
    token = workflow_id_ctx_var.set(workflow_id)
    try:
        yield
    finally:
        workflow_id_ctx_var.reset(token)
