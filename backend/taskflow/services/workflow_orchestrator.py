"""Workflow orchestration: decomposition then calendar sync, persisted step by step."""
from __future__ import annotations

import logging
import re
from functools import partial
from typing import Callable, Optional
from uuid import uuid4

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from taskflow.core.context import bind_workflow_id
from taskflow.observability.metrics import log_metric
from taskflow.observability.tracing import trace
from taskflow.services.calendar_sync import sync_plan_to_calendar
from taskflow.services.credentials import CredentialProvider
from taskflow.services.errors import (
    CalendarPermissionError,
    CalendarSyncError,
    InputValidationError,
    TaskflowError,
    WorkflowNotFoundError,
    WorkflowPersistenceError,
    WorkflowStateError,
)
from taskflow.services.task_decomposer import decompose_task
from taskflow.services.task_plan import CalendarSyncResult, Plan, WorkflowOutput, WorkflowRecord
from taskflow.services.task_request import TaskDecomposeRequest, require_user
from taskflow.services.workflow_repository import WorkflowRepository
from taskflow.services.workflow_state import WorkflowStatus, reopen, transition

logger = logging.getLogger(__name__)

WORKFLOW_ID_PATTERN = re.compile(r"^[A-Za-z0-9_-]{1,64}$")
ERROR_MESSAGE_LIMIT = 1000

DecomposeStep = Callable[[TaskDecomposeRequest], Plan]
SyncStep = Callable[[str, str, TaskDecomposeRequest, Plan], CalendarSyncResult]


def _error_message(exc: Exception) -> str:
    if isinstance(exc, TaskflowError):
        message = str(exc)
    else:
        message = f"{type(exc).__name__}: {exc}"
    return message[:ERROR_MESSAGE_LIMIT]


def _failure_kind(exc: Exception) -> str:
    if isinstance(exc, CalendarPermissionError):
        return "calendar_permission"
    if isinstance(exc, CalendarSyncError):
        return "calendar"
    if isinstance(exc, WorkflowPersistenceError):
        return "persistence"
    return "unexpected"


def request_from_record(record: WorkflowRecord) -> TaskDecomposeRequest:
    return TaskDecomposeRequest(
        task=record.task_input,
        context=record.context,
        user_id=record.user_id,
        deadline=record.deadline,
        timezone=record.timezone,
        max_steps=record.max_steps,
    )


def _output_of(record: WorkflowRecord) -> WorkflowOutput:
    if record.plan_output is None or record.calendar_output is None:
        raise WorkflowStateError(f"Workflow {record.workflow_id} is completed but has no stored output")
    return WorkflowOutput(plan=record.plan_output, calendar=record.calendar_output)


def _settled_output(record: WorkflowRecord) -> WorkflowOutput:
    """Outcome of a record that another run moved to a terminal status."""
    logger.info("Workflow was settled as %s by another run; stopping", record.status.value)
    if record.status == WorkflowStatus.COMPLETED:
        return _output_of(record)
    raise WorkflowStateError(f"Workflow {record.workflow_id} was marked {record.status.value} by another run")


class WorkflowOrchestrator:
    """Runs one workflow instance through its steps.

    Every transition is written before the next step starts, and a step whose
    output is already stored is skipped, so ``run`` can be repeated for the
    same workflow id without redoing finished work.
    """

    def __init__(
        self,
        repository: WorkflowRepository,
        *,
        decompose: DecomposeStep = decompose_task,
        sync_calendar: SyncStep,
    ) -> None:
        self.repository = repository
        self._decompose = decompose
        self._sync_calendar = sync_calendar

    def create(self, request: TaskDecomposeRequest, workflow_id: Optional[str] = None) -> WorkflowRecord:
        """Persist a queued record. Reusing a workflow id returns the stored record."""
        user_id = require_user(request)
        if workflow_id is not None and not WORKFLOW_ID_PATTERN.match(workflow_id):
            raise InputValidationError("`workflow_id` must be 1-64 characters of [A-Za-z0-9_-].")
        record = WorkflowRecord(
            workflow_id=workflow_id or uuid4().hex,
            user_id=user_id,
            status=WorkflowStatus.QUEUED,
            task_input=request.task,
            context=request.context,
            deadline=request.deadline,
            timezone=request.timezone,
            max_steps=request.max_steps,
        )
        stored = self._persist(record)
        logger.info("Workflow %s queued for user %s", stored.workflow_id, user_id)
        return stored

    def start(self, request: TaskDecomposeRequest, workflow_id: Optional[str] = None) -> WorkflowRecord:
        """Create and run synchronously; returns the final record."""
        record = self.create(request, workflow_id)
        self.run(record.workflow_id, record.user_id)
        return self._require(record.workflow_id, record.user_id)

    def get_status(self, workflow_id: str, user_id: str) -> Optional[WorkflowRecord]:
        return self.repository.get_by_id(workflow_id, user_id)

    def run(self, workflow_id: str, user_id: str) -> WorkflowOutput:
        record = self._require(workflow_id, user_id)
        with bind_workflow_id(workflow_id):
            if record.status == WorkflowStatus.COMPLETED:
                logger.info("Workflow already completed; returning stored output")
                return _output_of(record)
            if record.status == WorkflowStatus.FAILED:
                raise WorkflowStateError(
                    f"Workflow {workflow_id} failed (attempt {record.attempt}); retry it to start a new attempt"
                )
            with trace(
                "workflow.run",
                metadata={"status": record.status.value, "attempt": record.attempt},
                user_id=user_id,
                workflow_id=workflow_id,
            ):
                return self._execute(record)

    def retry(self, workflow_id: str, user_id: str) -> WorkflowOutput:
        """Resume a stalled workflow or reopen a failed one as a new attempt."""
        self.prepare_retry(workflow_id, user_id)
        return self.run(workflow_id, user_id)

    def prepare_retry(self, workflow_id: str, user_id: str) -> WorkflowRecord:
        """Reopen a failed workflow; any other status is returned unchanged."""
        record = self._require(workflow_id, user_id)
        if record.status == WorkflowStatus.FAILED:
            reopened = record.model_copy(
                update={
                    "status": reopen(record.status),
                    "attempt": record.attempt + 1,
                    "error_message": None,
                    "completed_at": None,
                }
            )
            record = self._persist(reopened)
            logger.info("Workflow %s reopened as attempt %s", workflow_id, record.attempt)
        return record

    def _require(self, workflow_id: str, user_id: str) -> WorkflowRecord:
        record = self.repository.get_by_id(workflow_id, user_id)
        if record is None:
            raise WorkflowNotFoundError(workflow_id)
        return record

    def _persist(self, record: WorkflowRecord, *, output: Optional[WorkflowOutput] = None) -> WorkflowRecord:
        try:
            return self.repository.upsert(record)
        except SQLAlchemyError as exc:
            raise WorkflowPersistenceError(
                f"Failed to persist workflow {record.workflow_id} as {record.status.value}: {exc}",
                output=output,
            ) from exc

    def _advance(self, record: WorkflowRecord, target: WorkflowStatus, **fields) -> WorkflowRecord:
        status = transition(record.status, target)
        output = fields.pop("output", None)
        return self._persist(record.model_copy(update={"status": status, **fields}), output=output)

    def _execute(self, record: WorkflowRecord) -> WorkflowOutput:
        request = request_from_record(record)
        try:
            if record.status == WorkflowStatus.QUEUED:
                record = self._advance(record, WorkflowStatus.RUNNING)
                if record.status.is_terminal:
                    return _settled_output(record)

            plan = record.plan_output
            if plan is None:
                plan = self._decompose(request)
            else:
                logger.info("Reusing stored plan with %s subtasks", len(plan.subtasks))
            if record.status == WorkflowStatus.RUNNING:
                record = self._advance(record, WorkflowStatus.CALENDAR_SYNCING, plan_output=plan)
                if record.status.is_terminal:
                    return _settled_output(record)

            calendar = record.calendar_output
            if calendar is None:
                calendar = self._sync_calendar(record.workflow_id, record.user_id, request, plan)
            output = WorkflowOutput(plan=plan, calendar=calendar)
            record = self._advance(
                record,
                WorkflowStatus.COMPLETED,
                calendar_output=calendar,
                calendar_progress=calendar,
                output=output,
            )
            if record.status != WorkflowStatus.COMPLETED:
                return _settled_output(record)
        except Exception as exc:
            # A record another run already settled keeps that run's outcome.
            if not record.status.is_terminal:
                self._mark_failed(record, exc)
            raise

        log_metric("workflow.completed", 1, {"attempt": record.attempt, "events": len(calendar.created_events)})
        logger.info("Workflow completed with %s calendar events", len(calendar.created_events))
        return output

    def _mark_failed(self, record: WorkflowRecord, exc: Exception) -> None:
        kind = _failure_kind(exc)
        message = _error_message(exc)
        logger.warning("Workflow failed (%s): %s", kind, message)
        log_metric("workflow.failed", 1, {"kind": kind, "attempt": record.attempt})
        failed = record.model_copy(
            update={
                "status": WorkflowStatus.FAILED,
                "error_message": message,
                "calendar_progress": getattr(exc, "partial_result", None),
            }
        )
        try:
            self.repository.upsert(failed)
        except (SQLAlchemyError, TaskflowError):
            logger.exception("Could not persist failure for workflow %s", record.workflow_id)


def build_orchestrator(db: Session) -> WorkflowOrchestrator:
    """Wire the production collaborators around one database session."""
    credentials = CredentialProvider(db)
    return WorkflowOrchestrator(
        WorkflowRepository(db),
        decompose=decompose_task,
        sync_calendar=partial(sync_plan_to_calendar, credentials=credentials),
    )


def run_workflow_in_background(
    session_factory: Callable[[], Session],
    workflow_id: str,
    user_id: str,
    *,
    orchestrator_factory: Callable[[Session], WorkflowOrchestrator] = build_orchestrator,
    retry: bool = False,
) -> None:
    """Background-task entry point; failures are already persisted, so they are only logged."""
    session = session_factory()
    try:
        orchestrator = orchestrator_factory(session)
        if retry:
            orchestrator.retry(workflow_id, user_id)
        else:
            orchestrator.run(workflow_id, user_id)
    except TaskflowError as exc:
        logger.warning("Background workflow %s ended with error: %s", workflow_id, exc)
    except Exception:  # pragma: no cover - defensive guard
        logger.exception("Background workflow %s crashed", workflow_id)
    finally:
        session.close()
