from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone

from taskflow.services.errors import ModelUnavailableError
from taskflow.services.plan_normalizer import PlannerConfig
from taskflow.services.task_decomposer import build_prompt, decompose_task
from taskflow.services.task_request import to_request_payload

NOW = datetime(2026, 2, 19, 23, 30, tzinfo=timezone.utc)
CONFIG = PlannerConfig(default_timezone="UTC")


def test_prompt_mentions_limits_and_reference_time() -> None:
    request = to_request_payload({"task": "Move flats", "context": "Two rooms", "timezone": "Asia/Tokyo", "max_steps": 4})

    prompt = build_prompt(request, now=NOW, config=CONFIG)

    assert "Generate at most 4 subtasks." in prompt
    assert "integer between 15 and 240" in prompt
    assert "Reference timezone: Asia/Tokyo" in prompt
    assert "Fri 2026-02-20 08:30:00" in prompt
    assert "No explicit final deadline is provided." in prompt
    assert "Task: Move flats" in prompt
    assert "Context: Two rooms" in prompt


def test_prompt_with_deadline_states_hard_constraint() -> None:
    request = to_request_payload({"task": "Move flats", "deadline": "2026-03-01T00:00:00Z"})

    prompt = build_prompt(request, now=NOW, config=CONFIG)

    assert "Final deadline (hard constraint): 2026-03-01T00:00:00+00:00" in prompt
    assert "Context:" not in prompt


def test_model_json_becomes_plan() -> None:
    payload = {
        "goal": "Move",
        "summary": "Pack then move",
        "subtasks": [
            {"title": "Pack", "description": "Boxes", "dueAt": "2026-02-21T09:00:00.000Z", "durationMinutes": 120}
        ],
        "assumptions": ["Weekend move"],
    }
    request = to_request_payload({"task": "Move flats"})

    plan = decompose_task(request, generate=lambda prompt: json.dumps(payload), now=NOW, config=CONFIG)

    assert plan.goal == "Move"
    assert plan.subtasks[0].due_at == datetime(2026, 2, 21, 9, 0, tzinfo=timezone.utc)
    assert plan.warnings == []


def test_model_failure_is_absorbed() -> None:
    def unavailable(prompt: str) -> str:
        raise ModelUnavailableError("no key")

    def crashing(prompt: str) -> str:
        raise TimeoutError("slow")

    request = to_request_payload({"task": "Move flats", "max_steps": 2})
    for generator in (unavailable, crashing):
        plan = decompose_task(request, generate=generator, now=NOW, config=CONFIG)

        assert len(plan.subtasks) == 2
        assert plan.subtasks[-1].due_at == NOW + timedelta(days=2)
        assert "model_unavailable" in plan.warnings
        assert any("fallback task plan" in item for item in plan.assumptions)


def test_out_of_range_due_at_from_model_is_replaced() -> None:
    raw = '{"subtasks": [{"title": "A", "dueAt": "0001-01-01T00:00:00+09:00", "durationMinutes": 30}]}'
    request = to_request_payload({"task": "Move flats", "max_steps": 1})

    plan = decompose_task(request, generate=lambda prompt: raw, now=NOW, config=CONFIG)

    assert plan.subtasks[0].title == "A"
    assert plan.subtasks[0].due_at > NOW
    assert "due_at_fallback" in plan.warnings
