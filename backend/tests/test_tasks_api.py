from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from taskflow.api.routes import tasks as tasks_routes
from taskflow.main import app
from taskflow.services.task_plan import Plan, Subtask


@pytest.fixture()
def client():
    with TestClient(app) as test_client:
        yield test_client


def test_validate_normalizes_request(client):
    response = client.post(
        "/tasks/decompose/validate",
        json={"task": "  Renew passport ", "maxSteps": 99, "timezone": "Nowhere/City", "deadline": "2026-09-01"},
    )

    assert response.status_code == 200
    normalized = response.json()["normalized"]
    assert normalized["task"] == "Renew passport"
    assert normalized["max_steps"] == 12
    assert normalized["timezone"] is None
    assert normalized["deadline"].startswith("2026-09-01T00:00:00")


def test_validate_rejects_missing_task(client):
    response = client.post("/tasks/decompose/validate", json={"context": "no task"})

    assert response.status_code == 400


def test_decompose_returns_plan(client, monkeypatch):
    captured = {}

    def fake_decompose(request, request_id=None):
        captured["request"] = request
        captured["request_id"] = request_id
        return Plan(
            goal=request.task,
            summary="One step",
            subtasks=[
                Subtask(title="Book appointment", description="Call", due_at="2026-08-01T09:00:00Z", duration_minutes=30)
            ],
        )

    monkeypatch.setattr(tasks_routes, "decompose_task", fake_decompose)

    response = client.post("/tasks/decompose", json={"task": "Renew passport"}, headers={"X-Request-Id": "req-7"})

    assert response.status_code == 200
    body = response.json()
    assert body["plan"]["goal"] == "Renew passport"
    assert body["plan"]["subtasks"][0]["title"] == "Book appointment"
    assert body["request_id"] == "req-7"
    assert captured["request_id"] == "req-7"


def test_decompose_rejects_blank_task(client):
    response = client.post("/tasks/decompose", json={"task": "   "})

    assert response.status_code == 400
