from __future__ import annotations

import pytest

from taskflow.core.context import bind_workflow_id
from taskflow.observability import tracing
from taskflow.observability.tracing import trace


class _DummyTrace:
    def __init__(self, name, metadata=None):
        self.name = name
        self.metadata = metadata or {}
        self.error_info = None
        self.ended = False

    def update(self, metadata=None, error_info=None, **kwargs):
        if metadata:
            self.metadata.update(metadata)
        if error_info:
            self.error_info = error_info

    def end(self):
        self.ended = True


class _DummyOpik:
    def __init__(self):
        self.traces = []

    def trace(self, name, metadata=None, **kwargs):
        created = _DummyTrace(name, metadata)
        self.traces.append(created)
        return created


@pytest.fixture()
def opik_client(monkeypatch):
    client = _DummyOpik()
    monkeypatch.setattr(tracing, "get_opik_client", lambda: client)
    return client


def test_trace_carries_bound_workflow_id(opik_client):
    with bind_workflow_id("wf-42"):
        with trace("workflow.step", metadata={"step": "decompose"}, user_id="user-1", request_id="req-1"):
            pass

    recorded = opik_client.traces[0]
    assert recorded.name == "workflow.step"
    assert recorded.metadata["workflow_id"] == "wf-42"
    assert recorded.metadata["user_id"] == "user-1"
    assert recorded.metadata["request_id"] == "req-1"
    assert recorded.ended is True


def test_trace_records_errors_and_reraises(opik_client):
    with pytest.raises(ValueError):
        with trace("workflow.step"):
            raise ValueError("bad input")

    recorded = opik_client.traces[0]
    assert recorded.error_info == {"exception_type": "ValueError", "message": "bad input"}
    assert recorded.ended is True


def test_trace_is_noop_without_client(monkeypatch):
    monkeypatch.setattr(tracing, "get_opik_client", lambda: None)

    with trace("workflow.step") as current:
        assert current is None
