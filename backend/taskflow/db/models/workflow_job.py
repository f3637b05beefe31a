"""Task workflow job ORM model."""
from __future__ import annotations

from sqlalchemy import Column, DateTime, Index, Integer, String, Text, func, text as sa_text

from taskflow.db.base import Base
from taskflow.db.types import JSONBCompat


class TaskWorkflowJob(Base):
    __tablename__ = "task_workflow_jobs"
    __table_args__ = (Index("ix_task_workflow_jobs_user_created_at", "user_id", "created_at"),)

    workflow_id = Column(String(length=64), primary_key=True)
    user_id = Column(String(length=255), nullable=False)
    status = Column(String(length=32), nullable=False, server_default=sa_text("'queued'"))
    attempt = Column(Integer, nullable=False, server_default=sa_text("1"))
    task_input = Column(Text, nullable=False)
    context = Column(Text, nullable=True)
    deadline = Column(DateTime(timezone=True), nullable=True)
    timezone = Column(String(length=64), nullable=True)
    max_steps = Column(Integer, nullable=True)
    plan_output = Column(JSONBCompat, nullable=True)
    calendar_output = Column(JSONBCompat, nullable=True)
    # Events created before the last sync failure; replaced on every attempt.
    calendar_progress = Column(JSONBCompat, nullable=True)
    error_message = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    completed_at = Column(DateTime(timezone=True), nullable=True)
