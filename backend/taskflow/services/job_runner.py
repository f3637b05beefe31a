"""Batch job that resumes workflows left behind by crashed or restarted processes."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional

from sqlalchemy.orm import Session

from taskflow.core.config import settings
from taskflow.services.errors import TaskflowError
from taskflow.services.workflow_orchestrator import WorkflowOrchestrator, build_orchestrator
from taskflow.services.workflow_repository import WorkflowRepository


logger = logging.getLogger(__name__)


@dataclass
class JobRunResult:
    workflows_found: int
    workflows_completed: int
    workflows_failed: int = 0
    workflow_ids: List[str] = field(default_factory=list)


def resume_stale_workflows(
    db: Session,
    *,
    stale_after: Optional[timedelta] = None,
    limit: Optional[int] = None,
    now: Optional[datetime] = None,
    orchestrator_factory: Callable[[Session], WorkflowOrchestrator] = build_orchestrator,
) -> JobRunResult:
    """Resume every non-terminal workflow untouched for longer than ``stale_after``.

    Failed workflows are never picked up; those are retried by their owner.
    """
    threshold = stale_after if stale_after is not None else timedelta(minutes=settings.resume_stale_after_minutes)
    batch_size = limit if limit is not None else settings.resume_batch_size
    cutoff = (now or datetime.now(timezone.utc)) - threshold

    stale = WorkflowRepository(db).list_stale(cutoff, batch_size)
    orchestrator = orchestrator_factory(db)
    completed = 0
    failed = 0
    for record in stale:
        try:
            orchestrator.retry(record.workflow_id, record.user_id)
        except TaskflowError as exc:
            failed += 1
            logger.warning("Resuming workflow %s failed: %s", record.workflow_id, exc)
            continue
        except Exception:  # pragma: no cover - defensive guard
            failed += 1
            logger.exception("Resuming workflow %s crashed", record.workflow_id)
            continue
        completed += 1
    return JobRunResult(
        workflows_found=len(stale),
        workflows_completed=completed,
        workflows_failed=failed,
        workflow_ids=[record.workflow_id for record in stale],
    )
