"""Reduce raw model output to a structurally valid Plan.

The normalizer never raises. Every field the model gets wrong is replaced by
a value from a deterministic fallback plan, and each substitution is recorded
as a warning code on the resulting Plan.
"""
from __future__ import annotations

import json
import logging
import math
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Tuple

from taskflow.core.config import Settings, settings
from taskflow.services.task_plan import Plan, Subtask
from taskflow.services.task_request import TaskDecomposeRequest, parse_instant

logger = logging.getLogger(__name__)

RAW_RESPONSE_PREVIEW_CHARS = 800
MAX_FALLBACK_STEPS = 6

UNPARSABLE_ASSUMPTION = "Model response was not valid JSON. Used a fallback task plan."
SUBTASKS_FALLBACK_ASSUMPTION = "Model response contained no usable subtasks. Used fallback milestones."

FALLBACK_MILESTONES: List[Tuple[str, str]] = [
    ("Clarify requirements", "Write down the deliverable, its constraints, and how it will be judged."),
    ("Collect inputs", "Gather the information, material, and dependencies the work needs."),
    ("Plan the work", "Decide the order of work and time estimates so execution can start."),
    ("Execute the work", "Complete the main body of work and list anything still open."),
    ("Verify and adjust", "Review the result and apply the fixes it needs."),
    ("Final check and submit", "Run a last check and hand in the result before the deadline."),
]


@dataclass(frozen=True)
class PlannerConfig:
    default_max_steps: int = 6
    max_steps_limit: int = 12
    min_duration_minutes: int = 15
    max_duration_minutes: int = 240
    fallback_duration_minutes: int = 60
    default_timezone: str = "UTC"
    model: str = "gpt-4o-mini"
    api_key: Optional[str] = None
    timeout_seconds: float = 60.0
    max_tokens: int = 1100

    @classmethod
    def from_settings(cls, source: Settings | None = None) -> "PlannerConfig":
        cfg = source or settings
        return cls(
            default_max_steps=cfg.default_max_steps,
            max_steps_limit=cfg.max_steps_limit,
            min_duration_minutes=cfg.min_duration_minutes,
            max_duration_minutes=cfg.max_duration_minutes,
            fallback_duration_minutes=cfg.fallback_duration_minutes,
            default_timezone=cfg.default_timezone,
            model=cfg.openai_model,
            api_key=cfg.openai_api_key,
            timeout_seconds=cfg.openai_timeout_seconds,
            max_tokens=cfg.openai_max_tokens,
        )

    def resolve_max_steps(self, requested: Optional[int]) -> int:
        if requested is None:
            requested = self.default_max_steps
        return max(1, min(int(requested), self.max_steps_limit))


def clean_model_text(raw: str) -> str:
    """Strip one outer code fence (optionally tagged ``json``)."""
    trimmed = raw.strip()
    if not trimmed.startswith("```"):
        return trimmed
    body = trimmed[3:]
    if body[:4].lower() == "json":
        body = body[4:]
    if body.rstrip().endswith("```"):
        body = body.rstrip()[:-3]
    return body.strip()


def parse_model_output(raw: str | None) -> Optional[Dict[str, Any]]:
    """Return the top-level JSON object, or None when the text is not one."""
    if not isinstance(raw, str):
        return None
    try:
        parsed = json.loads(clean_model_text(raw))
    except ValueError:
        return None
    return parsed if isinstance(parsed, dict) else None


def fallback_summary(task: str) -> str:
    return f'Plan that breaks "{task}" into actionable steps.'


def fallback_end_time(now: datetime, deadline: Optional[datetime], count: int) -> datetime:
    if deadline is not None and deadline > now:
        return deadline
    return now + timedelta(days=max(count, 1))


def build_fallback_subtasks(
    task: str,
    deadline: Optional[datetime],
    max_steps: int,
    *,
    now: datetime,
    config: PlannerConfig,
) -> List[Subtask]:
    """Milestone subtasks spread evenly between ``now`` and the end time."""
    count = min(max(max_steps, 1), MAX_FALLBACK_STEPS)
    end_at = fallback_end_time(now, deadline, count)
    span = end_at - now

    subtasks: List[Subtask] = []
    for index, (title, description) in enumerate(FALLBACK_MILESTONES[:count]):
        subtasks.append(
            Subtask(
                title=f"{title} ({index + 1}/{count})",
                description=f"{description} Target task: {task}",
                due_at=now + span * (index + 1) / count,
                duration_minutes=config.fallback_duration_minutes,
            )
        )
    return subtasks


def _sanitize_duration(value: Any, config: PlannerConfig, warnings: List[str]) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        warnings.append("duration_fallback")
        return config.fallback_duration_minutes
    if isinstance(value, float) and not math.isfinite(value):
        warnings.append("duration_fallback")
        return config.fallback_duration_minutes
    rounded = int(value)
    clamped = max(config.min_duration_minutes, min(rounded, config.max_duration_minutes))
    if clamped != rounded:
        warnings.append("duration_clamped")
    return clamped


def _resolve_due_at(value: Any, fallback_due: datetime, deadline: Optional[datetime], warnings: List[str]) -> datetime:
    due_at = parse_instant(value) if isinstance(value, str) else None
    if due_at is None:
        warnings.append("due_at_fallback")
        return fallback_due
    if deadline is not None and due_at > deadline:
        warnings.append("due_at_fallback")
        return fallback_due
    return due_at


def _normalize_subtask(
    entry: Any,
    fallback_step: Subtask,
    deadline: Optional[datetime],
    config: PlannerConfig,
    warnings: List[str],
) -> Optional[Subtask]:
    if isinstance(entry, str):
        title = entry.strip()
        if not title:
            return None
        return Subtask(
            title=title,
            description=fallback_step.description,
            due_at=fallback_step.due_at,
            duration_minutes=fallback_step.duration_minutes,
        )

    if not isinstance(entry, dict):
        return None

    raw_title = entry.get("title")
    if not isinstance(raw_title, str) or not raw_title.strip():
        return None

    raw_description = entry.get("description")
    description = (
        raw_description.strip()
        if isinstance(raw_description, str) and raw_description.strip()
        else fallback_step.description
    )
    return Subtask(
        title=raw_title.strip(),
        description=description,
        due_at=_resolve_due_at(entry.get("dueAt", entry.get("due_at")), fallback_step.due_at, deadline, warnings),
        duration_minutes=_sanitize_duration(
            entry.get("durationMinutes", entry.get("duration_minutes")), config, warnings
        ),
    )


def normalize_subtasks(
    raw_subtasks: Any,
    fallback: List[Subtask],
    max_steps: int,
    *,
    deadline: Optional[datetime],
    config: PlannerConfig,
    warnings: List[str],
) -> List[Subtask]:
    if not isinstance(raw_subtasks, list):
        warnings.append("subtasks_fallback")
        return list(fallback)

    if len(raw_subtasks) > max_steps:
        warnings.append("subtasks_truncated")

    normalized: List[Subtask] = []
    for index, entry in enumerate(raw_subtasks[:max_steps]):
        fallback_step = fallback[min(index, len(fallback) - 1)]
        subtask = _normalize_subtask(entry, fallback_step, deadline, config, warnings)
        if subtask is not None:
            normalized.append(subtask)

    if not normalized:
        warnings.append("subtasks_fallback")
        return list(fallback)

    return sorted(normalized, key=lambda item: item.due_at)


def _string_list(value: Any) -> List[str]:
    if not isinstance(value, list):
        return []
    return [item.strip() for item in value if isinstance(item, str) and item.strip()]


def _text_or(value: Any, default: str) -> str:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return default


def normalize_plan(
    raw_text: Optional[str],
    request: TaskDecomposeRequest,
    *,
    now: Optional[datetime] = None,
    config: Optional[PlannerConfig] = None,
    extra_assumptions: Optional[List[str]] = None,
    extra_warnings: Optional[List[str]] = None,
) -> Plan:
    """Turn raw model text into a Plan, degrading to the fallback plan as needed."""
    cfg = config or PlannerConfig.from_settings()
    current = now or datetime.now(timezone.utc)
    max_steps = cfg.resolve_max_steps(request.max_steps)
    deadline = request.deadline if request.deadline and request.deadline > current else None
    warnings: List[str] = list(extra_warnings or [])
    assumptions: List[str] = list(extra_assumptions or [])

    candidate = parse_model_output(raw_text)
    if candidate is None:
        if raw_text is not None:
            preview = clean_model_text(raw_text)[:RAW_RESPONSE_PREVIEW_CHARS]
            logger.info("Model output was not a JSON object; using fallback plan")
            warnings.append("model_output_unparsable")
            assumptions.extend([UNPARSABLE_ASSUMPTION, f"Raw response: {preview}"])
        candidate = {}

    fallback = build_fallback_subtasks(request.task, request.deadline, max_steps, now=current, config=cfg)
    subtasks = normalize_subtasks(
        candidate.get("subtasks"),
        fallback,
        max_steps,
        deadline=deadline,
        config=cfg,
        warnings=warnings,
    )
    if "subtasks_fallback" in warnings and candidate:
        assumptions.append(SUBTASKS_FALLBACK_ASSUMPTION)

    return Plan(
        goal=_text_or(candidate.get("goal"), request.task),
        summary=_text_or(candidate.get("summary"), fallback_summary(request.task)),
        subtasks=subtasks,
        assumptions=_string_list(candidate.get("assumptions")) + assumptions,
        warnings=list(dict.fromkeys(warnings)),
    )
