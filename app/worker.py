"""
Dramatiq Worker Entrypoint

This module serves as the entry point for Dramatiq workers.
It imports the actor modules to register them with the broker.

Usage:
    dramatiq app.worker --processes 2 --threads 4 --verbose

Procfile Configuration:
    worker: dramatiq app.worker --processes 2 --threads 4 --verbose

Outbox jobs are I/O-bound (database reads, SMTP, SMS and Anthropic calls),
so threads are the cheaper way to add concurrency. Jobs for the same
appointment may run concurrently or out of order; handlers re-read current
state instead of trusting the job payload.
"""

import structlog

from app.services.monitoring import init_sentry, setup_logging

setup_logging(service="outbox-worker")
init_sentry(process="worker")

from app.actors import broker  # noqa: E402
from app.database import init_db  # noqa: E402
from app.handlers import registered_job_names  # noqa: E402

logger = structlog.get_logger()

init_db()

# Worker health check log
logger.info("worker_ready", broker=type(broker).__name__, handlers=registered_job_names())
