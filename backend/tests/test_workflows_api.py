from __future__ import annotations

from datetime import datetime, timezone
from functools import partial

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from taskflow.api.routes.workflows import get_orchestrator_factory
from taskflow.db.base import Base
from taskflow.db import models  # noqa: F401  ensure models are loaded
from taskflow.db.deps import get_db, get_session_factory
from taskflow.main import app
from taskflow.services.calendar.memory import InMemoryCalendarStore
from taskflow.services.calendar_sync import CalendarSyncConfig, sync_plan_to_calendar
from taskflow.services.errors import CALENDAR_REAUTH_MARKER, CalendarStoreError
from taskflow.services.plan_normalizer import PlannerConfig
from taskflow.services.task_decomposer import decompose_task
from taskflow.services.workflow_orchestrator import WorkflowOrchestrator
from taskflow.services.workflow_repository import WorkflowRepository

NOW = datetime(2026, 7, 1, 9, 0, tzinfo=timezone.utc)


class _Tokens:
    def get_access_token(self, user_id, provider_id):
        return "token"


class _HarnessStore(InMemoryCalendarStore):
    """Per-run store view over the harness events; denies the configured create calls."""

    def __init__(self, harness: "_Harness") -> None:
        super().__init__()
        self._events = harness.store._events
        self._harness = harness

    def create_event(self, *, calendar_id, event_id, fields):
        self._harness.create_calls += 1
        if self._harness.create_calls in self._harness.deny_calls:
            raise CalendarStoreError(status_code=401, message="Invalid Credentials")
        return super().create_event(calendar_id=calendar_id, event_id=event_id, fields=fields)


class _Harness:
    """Collaborators shared by every orchestrator the app builds during a test."""

    def __init__(self) -> None:
        self.store = InMemoryCalendarStore()
        self.deny_calls = set()
        self.create_calls = 0
        self.model_calls = 0

    def generate(self, prompt: str) -> str:
        self.model_calls += 1
        return "Sorry, no JSON today."

    def store_for(self, token: str) -> InMemoryCalendarStore:
        return _HarnessStore(self)

    def orchestrator(self, session) -> WorkflowOrchestrator:
        return WorkflowOrchestrator(
            WorkflowRepository(session),
            decompose=partial(decompose_task, generate=self.generate, now=NOW, config=PlannerConfig()),
            sync_calendar=partial(
                sync_plan_to_calendar,
                credentials=_Tokens(),
                store_factory=self.store_for,
                config=CalendarSyncConfig(),
            ),
        )


@pytest.fixture()
def client():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    Base.metadata.create_all(bind=engine)
    TestingSessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)
    harness = _Harness()

    def override_get_db():
        db = TestingSessionLocal()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = lambda: TestingSessionLocal
    app.dependency_overrides[get_orchestrator_factory] = lambda: harness.orchestrator
    with TestClient(app) as test_client:
        yield test_client, harness
    app.dependency_overrides.clear()


def _start(test_client: TestClient, **extra) -> dict:
    body = {"task": "Organise the team retreat", "userId": "user-1", "maxSteps": 4}
    body.update(extra)
    response = test_client.post("/workflows/decompose", json=body)
    assert response.status_code == 202, response.text
    return response.json()


def test_start_workflow_runs_in_background(client):
    test_client, harness = client

    started = _start(test_client)
    assert started["status"] == "queued"
    assert started["request_id"]

    status_resp = test_client.get(f"/workflows/{started['workflow_id']}", params={"user_id": "user-1"})
    assert status_resp.status_code == 200
    data = status_resp.json()
    assert data["status"] == "completed"
    assert len(data["plan_output"]["subtasks"]) == 4
    assert len(data["calendar_output"]["created_events"]) == 4
    assert "model_output_unparsable" in data["plan_output"]["warnings"]
    assert data["reauth_required"] is False
    assert harness.model_calls == 1


def test_start_requires_task_and_user(client):
    test_client, _ = client

    missing_task = test_client.post("/workflows/decompose", json={"userId": "user-1"})
    assert missing_task.status_code == 400
    assert "task" in missing_task.json()["detail"]

    missing_user = test_client.post("/workflows/decompose", json={"task": "Something"})
    assert missing_user.status_code == 400

    not_an_object = test_client.post("/workflows/decompose", json=["task"])
    assert not_an_object.status_code == 400


def test_client_supplied_workflow_id_is_reused(client):
    test_client, harness = client

    first = _start(test_client, workflowId="retreat-2026")
    second = _start(test_client, workflowId="retreat-2026", task="Other task")

    assert first["workflow_id"] == second["workflow_id"] == "retreat-2026"
    assert second["task_input"] == "Organise the team retreat"
    assert harness.model_calls == 1
    assert len(harness.store.event_ids("primary")) == 4


def test_workflow_id_owned_by_another_user_conflicts(client):
    test_client, _ = client
    _start(test_client, workflowId="shared-id")

    response = test_client.post(
        "/workflows/decompose",
        json={"task": "Mine", "userId": "user-2", "workflowId": "shared-id"},
    )
    assert response.status_code == 409


def test_unknown_workflow_returns_404(client):
    test_client, _ = client

    assert test_client.get("/workflows/nope", params={"user_id": "user-1"}).status_code == 404
    started = _start(test_client)
    other_user = test_client.get(f"/workflows/{started['workflow_id']}", params={"user_id": "user-2"})
    assert other_user.status_code == 404
    retry = test_client.post("/workflows/nope/retry", json={"user_id": "user-1"})
    assert retry.status_code == 404


def test_history_is_newest_first(client):
    test_client, _ = client
    ids = [_start(test_client, task=f"Task {index}")["workflow_id"] for index in range(3)]
    _start(test_client, userId="user-2")

    response = test_client.get("/workflows/history", params={"user_id": "user-1", "limit": 2})
    assert response.status_code == 200
    listed = [item["workflow_id"] for item in response.json()["workflows"]]
    assert listed == [ids[2], ids[1]]


def test_permission_failure_then_retry(client):
    test_client, harness = client
    harness.deny_calls = {3}

    started = _start(test_client, maxSteps=6)
    workflow_id = started["workflow_id"]

    failed = test_client.get(f"/workflows/{workflow_id}", params={"user_id": "user-1"}).json()
    assert failed["status"] == "failed"
    assert failed["error_message"].startswith(CALENDAR_REAUTH_MARKER)
    assert failed["reauth_required"] is True
    assert len(failed["calendar_progress"]["created_events"]) == 2
    assert failed["calendar_output"] is None

    harness.deny_calls = set()
    retry = test_client.post(f"/workflows/{workflow_id}/retry", json={"user_id": "user-1"})
    assert retry.status_code == 202
    assert retry.json()["status"] == "queued"
    assert retry.json()["attempt"] == 2

    final = test_client.get(f"/workflows/{workflow_id}", params={"user_id": "user-1"}).json()
    assert final["status"] == "completed"
    assert final["error_message"] is None
    assert len(final["calendar_output"]["created_events"]) == 6
    assert len(harness.store.event_ids("primary")) == 6
    assert harness.model_calls == 1


def test_retry_of_completed_workflow_is_a_no_op(client):
    test_client, harness = client
    started = _start(test_client)

    retry = test_client.post(f"/workflows/{started['workflow_id']}/retry", json={"user_id": "user-1"})

    assert retry.status_code == 202
    assert retry.json()["status"] == "completed"
    assert retry.json()["attempt"] == 1
    assert harness.create_calls == 4
