"""Durable storage of workflow records with merge-preserving upserts."""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Callable, List, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from taskflow.db.models.workflow_job import TaskWorkflowJob
from taskflow.db.types import as_utc
from taskflow.services.errors import WorkflowStateError
from taskflow.services.task_plan import CalendarSyncResult, Plan, WorkflowRecord
from taskflow.services.workflow_state import WorkflowStatus, can_transition

logger = logging.getLogger(__name__)

MAX_LIST_LIMIT = 100

Clock = Callable[[], datetime]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _dump(model) -> Optional[dict]:
    return model.model_dump(mode="json") if model is not None else None


def _to_record(row: TaskWorkflowJob) -> WorkflowRecord:
    return WorkflowRecord(
        workflow_id=row.workflow_id,
        user_id=row.user_id,
        status=WorkflowStatus(row.status),
        attempt=row.attempt or 1,
        task_input=row.task_input,
        context=row.context,
        deadline=as_utc(row.deadline),
        timezone=row.timezone,
        max_steps=row.max_steps,
        plan_output=Plan.model_validate(row.plan_output) if row.plan_output else None,
        calendar_output=CalendarSyncResult.model_validate(row.calendar_output) if row.calendar_output else None,
        calendar_progress=(
            CalendarSyncResult.model_validate(row.calendar_progress) if row.calendar_progress else None
        ),
        error_message=row.error_message,
        created_at=as_utc(row.created_at),
        updated_at=as_utc(row.updated_at),
        completed_at=as_utc(row.completed_at),
    )


class WorkflowRepository:
    """One row per workflow id; every write is an idempotent merge.

    Merge rules:
    - input columns are written once, at insert;
    - ``plan_output``/``calendar_output`` are never replaced by null;
    - status only moves along the transition table within an attempt, and a
      write carrying a higher attempt number reopens a failed record;
    - ``completed_at`` is stamped on the first terminal status of an attempt;
    - ``error_message`` is kept only while the status is ``failed``.
    """

    def __init__(self, db: Session, *, clock: Clock = _utcnow) -> None:
        self.db = db
        self._clock = clock

    def upsert(self, record: WorkflowRecord) -> WorkflowRecord:
        now = self._clock()
        # Another session may have written the row since this one last read it.
        row = self.db.get(TaskWorkflowJob, record.workflow_id, populate_existing=True, with_for_update=True)
        if row is None:
            row = self._insert(record, now)
            if row is None:
                # Lost an insert race; merge into the winner's row.
                row = self.db.get(TaskWorkflowJob, record.workflow_id)
                self._merge(row, record, now)
        else:
            self._merge(row, record, now)
        try:
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            raise
        self.db.refresh(row)
        return _to_record(row)

    def _insert(self, record: WorkflowRecord, now: datetime) -> Optional[TaskWorkflowJob]:
        status = WorkflowStatus(record.status)
        row = TaskWorkflowJob(
            workflow_id=record.workflow_id,
            user_id=record.user_id,
            status=status.value,
            attempt=record.attempt,
            task_input=record.task_input,
            context=record.context,
            deadline=record.deadline,
            timezone=record.timezone,
            max_steps=record.max_steps,
            plan_output=_dump(record.plan_output),
            calendar_output=_dump(record.calendar_output),
            calendar_progress=_dump(record.calendar_progress),
            error_message=record.error_message if status == WorkflowStatus.FAILED else None,
            created_at=record.created_at or now,
            updated_at=now,
            completed_at=(record.completed_at or now) if status.is_terminal else None,
        )
        self.db.add(row)
        try:
            self.db.flush()
        except IntegrityError:
            self.db.rollback()
            logger.info("Concurrent insert for workflow %s; merging instead", record.workflow_id)
            return None
        return row

    def _merge(self, row: TaskWorkflowJob, record: WorkflowRecord, now: datetime) -> None:
        if row.user_id != record.user_id:
            self.db.rollback()
            raise WorkflowStateError(f"Workflow {row.workflow_id} belongs to another user")
        current = WorkflowStatus(row.status)
        incoming = WorkflowStatus(record.status)
        stored_attempt = row.attempt or 1

        if record.attempt > stored_attempt:
            if current != WorkflowStatus.FAILED:
                logger.warning(
                    "Ignoring reopen of workflow %s in status %s", row.workflow_id, current.value
                )
            else:
                row.attempt = record.attempt
                row.status = incoming.value
                row.error_message = record.error_message if incoming == WorkflowStatus.FAILED else None
                row.completed_at = now if incoming.is_terminal else None
        elif record.attempt == stored_attempt and incoming != current and can_transition(current, incoming):
            row.status = incoming.value
            if incoming == WorkflowStatus.FAILED:
                row.error_message = record.error_message
            else:
                row.error_message = None
            if incoming.is_terminal and row.completed_at is None:
                row.completed_at = now
        elif incoming != current:
            logger.debug(
                "Stale status write for workflow %s ignored (%s -> %s, attempt %s/%s)",
                row.workflow_id,
                current.value,
                incoming.value,
                record.attempt,
                stored_attempt,
            )

        if row.plan_output is None and record.plan_output is not None:
            row.plan_output = _dump(record.plan_output)
        if row.calendar_output is None and record.calendar_output is not None:
            row.calendar_output = _dump(record.calendar_output)
        if record.calendar_progress is not None:
            row.calendar_progress = _dump(record.calendar_progress)
        row.updated_at = now

    def get_by_id(self, workflow_id: str, user_id: str) -> Optional[WorkflowRecord]:
        row = (
            self.db.query(TaskWorkflowJob)
            .filter(TaskWorkflowJob.workflow_id == workflow_id, TaskWorkflowJob.user_id == user_id)
            .one_or_none()
        )
        return _to_record(row) if row else None

    def list_by_user(self, user_id: str, limit: int = 20) -> List[WorkflowRecord]:
        safe_limit = max(1, min(int(limit), MAX_LIST_LIMIT))
        rows = (
            self.db.query(TaskWorkflowJob)
            .filter(TaskWorkflowJob.user_id == user_id)
            .order_by(TaskWorkflowJob.created_at.desc(), TaskWorkflowJob.workflow_id.desc())
            .limit(safe_limit)
            .all()
        )
        return [_to_record(row) for row in rows]

    def list_stale(self, older_than: datetime, limit: int = 50) -> List[WorkflowRecord]:
        """Non-terminal workflows not touched since ``older_than``, oldest first."""
        rows = (
            self.db.query(TaskWorkflowJob)
            .filter(
                TaskWorkflowJob.status.in_(
                    [status.value for status in WorkflowStatus if not status.is_terminal]
                ),
                TaskWorkflowJob.updated_at < older_than,
            )
            .order_by(TaskWorkflowJob.updated_at.asc())
            .limit(max(1, limit))
            .all()
        )
        return [_to_record(row) for row in rows]
