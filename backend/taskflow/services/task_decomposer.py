"""Decomposition step: prompt the model and normalize its answer into a Plan."""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from time import perf_counter
from typing import Callable, List, Optional
from zoneinfo import ZoneInfo

from taskflow.observability.metrics import log_metric
from taskflow.observability.tracing import trace
from taskflow.services.errors import ModelUnavailableError
from taskflow.services.model_client import generate_text
from taskflow.services.plan_normalizer import PlannerConfig, normalize_plan
from taskflow.services.task_plan import Plan
from taskflow.services.task_request import TaskDecomposeRequest, normalize_timezone

logger = logging.getLogger(__name__)

DEFAULT_INFERRED_DEADLINE_DAYS = 7

MODEL_FAILED_ASSUMPTION = "Generative model call failed ({reason}). Used a fallback task plan."

Generator = Callable[[str], str]


def _format_local_time(now: datetime, zone_name: str) -> str:
    return now.astimezone(ZoneInfo(zone_name)).strftime("%a %Y-%m-%d %H:%M:%S")


def build_prompt(
    request: TaskDecomposeRequest,
    *,
    now: Optional[datetime] = None,
    config: Optional[PlannerConfig] = None,
) -> str:
    cfg = config or PlannerConfig.from_settings()
    current = now or datetime.now(timezone.utc)
    max_steps = cfg.resolve_max_steps(request.max_steps)
    zone_name = normalize_timezone(request.timezone, cfg.default_timezone) or "UTC"

    if request.deadline:
        deadline_guidance = [
            f"Final deadline (hard constraint): {request.deadline.isoformat()}",
            "All subtask dueAt values must be on or before the final deadline.",
        ]
    else:
        deadline_guidance = [
            "No explicit final deadline is provided.",
            "Infer a realistic final deadline from the task text/context when possible.",
            "Use explicit dates first; if not available, resolve relative terms against current date/time.",
            f"If no clues exist, set a provisional final deadline to about {DEFAULT_INFERRED_DEADLINE_DAYS} days from now.",
            "When you infer or assume a deadline, explain it in assumptions.",
        ]

    lines = [
        "You are a task-planning assistant.",
        "Break down the task into actionable subtasks.",
        f"Generate at most {max_steps} subtasks.",
        "Return strict JSON only.",
        "Each subtask must include:",
        '- "title": short actionable title',
        '- "description": concrete next action',
        '- "dueAt": ISO 8601 datetime in UTC (example: 2026-02-20T09:00:00.000Z). Always output UTC (with Z).',
        f'- "durationMinutes": integer between {cfg.min_duration_minutes} and {cfg.max_duration_minutes}',
        f"Current datetime (UTC): {current.astimezone(timezone.utc).isoformat()}",
        f"Reference timezone: {zone_name}",
        f"Current datetime in reference timezone: {_format_local_time(current, zone_name)}",
        "Resolve relative expressions such as today/tomorrow/next week using the reference timezone, "
        "but convert all final dueAt values to UTC before returning JSON.",
        *deadline_guidance,
        f"Task: {request.task}",
        f"Context: {request.context}" if request.context else "",
        'Output format: {"goal":"string","summary":"string","subtasks":[{"title":"string","description":"string",'
        '"dueAt":"string","durationMinutes":60}],"assumptions":["..."]}',
    ]
    return "\n".join(line for line in lines if line)


def decompose_task(
    request: TaskDecomposeRequest,
    *,
    generate: Optional[Generator] = None,
    now: Optional[datetime] = None,
    config: Optional[PlannerConfig] = None,
    request_id: Optional[str] = None,
) -> Plan:
    """Run one model call and return a valid Plan. Never raises for model failures."""
    cfg = config or PlannerConfig.from_settings()
    current = now or datetime.now(timezone.utc)
    generator = generate or (lambda prompt: generate_text(prompt, cfg))
    prompt = build_prompt(request, now=current, config=cfg)

    raw_text: Optional[str] = None
    extra_assumptions: List[str] = []
    extra_warnings: List[str] = []
    start = perf_counter()
    with trace(
        "task.decompose",
        metadata={"task_length": len(request.task), "max_steps": request.max_steps, "model": cfg.model},
        user_id=request.user_id,
        request_id=request_id,
    ) as decompose_trace:
        try:
            raw_text = generator(prompt)
        except ModelUnavailableError as exc:
            logger.warning("%s", exc)
            extra_warnings.append("model_unavailable")
            extra_assumptions.append(MODEL_FAILED_ASSUMPTION.format(reason="model unavailable"))
        except Exception as exc:
            logger.warning("Generative model call failed: %s", exc, exc_info=True)
            extra_warnings.append("model_unavailable")
            extra_assumptions.append(MODEL_FAILED_ASSUMPTION.format(reason=type(exc).__name__))

        plan = normalize_plan(
            raw_text,
            request,
            now=current,
            config=cfg,
            extra_assumptions=extra_assumptions,
            extra_warnings=extra_warnings,
        )
        if decompose_trace:
            decompose_trace.update(
                metadata={
                    "subtask_titles": [subtask.title for subtask in plan.subtasks][:6],
                    "warnings": plan.warnings,
                }
            )

    fallback_used = any(code in plan.warnings for code in ("model_unavailable", "model_output_unparsable", "subtasks_fallback"))
    latency_ms = (perf_counter() - start) * 1000
    log_metric("task.decompose.fallback_used", 1 if fallback_used else 0)
    log_metric("task.decompose.subtasks_generated", len(plan.subtasks))
    log_metric("task.decompose.latency_ms", latency_ms)
    return plan
