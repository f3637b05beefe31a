"""Main FastAPI application for the Taskflow backend."""
from fastapi import FastAPI, Request

from taskflow.api.routes.jobs import router as jobs_router
from taskflow.api.routes.tasks import router as tasks_router
from taskflow.api.routes.workflows import router as workflows_router
from taskflow.core.config import settings
from taskflow.core.logging import configure_logging
from taskflow.core.middleware import RequestIDMiddleware
from taskflow.observability.client import init_opik
from taskflow.observability.tracing import trace

configure_logging(log_level=settings.log_level)

app = FastAPI(title=settings.app_name, version="0.1.0")
app.add_middleware(RequestIDMiddleware)
app.include_router(tasks_router)
app.include_router(workflows_router)
app.include_router(jobs_router)


@app.on_event("startup")
async def startup_observability() -> None:
    """Initialize observability backends after the event loop starts."""
    init_opik()


@app.get("/health", tags=["health"], summary="Readiness probe")
async def health_check(request: Request) -> dict[str, str]:
    """Return a simple status payload so automation can probe the API."""
    with trace("http.health_check", metadata={"route": "/health"}, request_id=request.state.request_id):
        return {"status": "ok"}
