"""Dedicated APScheduler worker process."""
from __future__ import annotations

import logging
import signal
import threading

from apscheduler.schedulers.background import BackgroundScheduler

from taskflow.core.config import settings
from taskflow.core.logging import configure_logging
from taskflow.db.session import SessionLocal
from taskflow.observability.client import init_opik
from taskflow.services.job_runner import resume_stale_workflows


logger = logging.getLogger(__name__)


def main() -> None:
    configure_logging(log_level=settings.log_level)
    init_opik()
    logger.info("Scheduler worker starting (enabled=%s)", settings.scheduler_enabled)

    scheduler = BackgroundScheduler(timezone=settings.scheduler_timezone)

    if settings.scheduler_enabled:
        _register_jobs(scheduler)
        scheduler.start()
        if settings.jobs_run_on_startup:
            logger.info("Running jobs once on startup")
            _run_resume_job()
    else:
        logger.warning("Scheduler disabled via config; worker will idle")

    stop_event = threading.Event()

    def shutdown(signum, frame):  # pragma: no cover - signal handler
        logger.info("Scheduler worker shutting down (signal=%s)", signum)
        if scheduler.running:
            scheduler.shutdown(wait=False)
        stop_event.set()

    signal.signal(signal.SIGINT, shutdown)
    signal.signal(signal.SIGTERM, shutdown)

    try:
        stop_event.wait()
    except KeyboardInterrupt:  # pragma: no cover - manual stop
        shutdown(signal.SIGINT, None)


def _register_jobs(scheduler: BackgroundScheduler) -> None:
    scheduler.add_job(
        _run_resume_job,
        trigger="interval",
        minutes=settings.resume_job_interval_minutes,
        id="resume_stale_workflows",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )
    logger.info(
        "Registered scheduler jobs (resume every %s min, stale after %s min)",
        settings.resume_job_interval_minutes,
        settings.resume_stale_after_minutes,
    )


def _run_resume_job() -> None:
    session = SessionLocal()
    try:
        result = resume_stale_workflows(session)
        logger.info(
            "Resume job complete: found=%s, completed=%s, failed=%s",
            result.workflows_found,
            result.workflows_completed,
            result.workflows_failed,
        )
    except Exception:  # pragma: no cover - defensive guard
        logger.exception("Resume job failed")
    finally:
        session.close()


if __name__ == "__main__":  # pragma: no cover - manual launch
    main()
