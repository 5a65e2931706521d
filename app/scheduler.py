"""
APScheduler Background Jobs

Periodic outbox health report and idempotency key cleanup.
Jobs run via BackgroundScheduler in the FastAPI process.
"""

import structlog
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger
from apscheduler.triggers.cron import CronTrigger

from app.config import settings

logger = structlog.get_logger(__name__)


def run_outbox_health_check():
    """
    Log outbox backlog counts.

    Warns when unprocessed entries carry an error, which is how poison entries
    (retries exhausted) show up.
    """
    try:
        from app.database import SessionLocal
        from app.services.outbox import OutboxStore

        if SessionLocal is None:
            logger.warning("outbox_health_skipped", reason="database_not_configured")
            return None

        stats = OutboxStore(SessionLocal).stats()
        if stats["failed"]:
            logger.warning("outbox_health_degraded", **stats)
        else:
            logger.info("outbox_health_ok", **stats)
        return stats

    except Exception as e:
        logger.error("outbox_health_crashed", error=str(e), exc_info=True)
        return None


def run_idempotency_cleanup():
    """
    Delete expired notification idempotency keys (daily at 03:00).
    """
    try:
        from app.database import SessionLocal
        from app.services.idempotency import IdempotencyService

        if SessionLocal is None:
            logger.warning("idempotency_cleanup_skipped", reason="database_not_configured")
            return

        IdempotencyService(SessionLocal).cleanup_expired()

    except Exception as e:
        logger.error("idempotency_cleanup_crashed", error=str(e), exc_info=True)


def start_scheduler(environment: str = "production") -> BackgroundScheduler:
    """
    Start background scheduler with all jobs.

    Args:
        environment: Current environment (skip scheduler in testing)

    Returns:
        BackgroundScheduler instance
    """
    scheduler = BackgroundScheduler(timezone="UTC")

    if environment == "testing":
        logger.info("scheduler_skipped", reason="testing_environment")
        return scheduler

    # Job 1: Outbox health report
    scheduler.add_job(
        run_outbox_health_check,
        trigger=IntervalTrigger(minutes=settings.outbox_health_interval_minutes),
        id="outbox_health",
        name="Outbox Backlog Health Report",
        replace_existing=True
    )
    logger.info("job_registered", job="outbox_health", interval_minutes=settings.outbox_health_interval_minutes)

    # Job 2: Daily idempotency key cleanup (at 03:00 UTC)
    scheduler.add_job(
        run_idempotency_cleanup,
        trigger=CronTrigger(hour=3, minute=0),
        id="idempotency_cleanup",
        name="Expired Idempotency Key Cleanup",
        replace_existing=True
    )
    logger.info("job_registered", job="idempotency_cleanup", schedule="daily_03:00")

    scheduler.start()
    logger.info("scheduler_started", jobs=["outbox_health", "idempotency_cleanup"])

    return scheduler


def stop_scheduler(scheduler: BackgroundScheduler):
    """
    Stop background scheduler gracefully.
    """
    if scheduler and scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("scheduler_stopped")


__all__ = [
    "start_scheduler",
    "stop_scheduler",
    "run_outbox_health_check",
    "run_idempotency_cleanup",
]
