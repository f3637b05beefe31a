"""Tests ensuring observability wiring is safe by default."""
from __future__ import annotations

import importlib


def test_app_import_succeeds_when_opik_is_disabled(monkeypatch) -> None:
    monkeypatch.setenv("OPIK_ENABLED", "false")
    monkeypatch.delenv("OPIK_API_KEY", raising=False)

    import taskflow.core.config as core_config
    import taskflow.observability.client as client_module
    import taskflow.main as main_module

    importlib.reload(core_config)
    importlib.reload(client_module)
    reloaded_app = importlib.reload(main_module)

    assert hasattr(reloaded_app, "app")


def test_reloaded_app_serves_workflow_routes(monkeypatch) -> None:
    monkeypatch.setenv("OPIK_ENABLED", "false")

    import taskflow.main as main_module

    reloaded_app = importlib.reload(main_module)
    paths = {route.path for route in reloaded_app.app.routes}

    assert {"/tasks/decompose", "/workflows/decompose", "/workflows/{workflow_id}", "/jobs"} <= paths


def test_log_records_carry_bound_workflow_id() -> None:
    import logging

    from taskflow.core.context import bind_workflow_id
    from taskflow.core.logging import ContextFilter

    record = logging.LogRecord("taskflow", logging.INFO, __file__, 1, "step", None, None)
    with bind_workflow_id("wf-7"):
        ContextFilter().filter(record)
    assert record.workflow_id == "wf-7"

    ContextFilter().filter(record)
    assert record.workflow_id == "-"
