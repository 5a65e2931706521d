"""
Sentry Error Tracking
Provides error tracking with outbox context for the API, relay and worker processes
"""

from typing import Optional

import structlog

logger = structlog.get_logger(__name__)


def init_sentry(process: str = "api") -> None:
    """
    Initialize Sentry SDK.

    The API gets the FastAPI integration, the worker gets the Dramatiq one.
    If SENTRY_DSN is not configured, logs warning and returns (disabled).

    Args:
        process: "api", "relay" or "worker"
    """
    from app.config import settings

    if settings.sentry_dsn is None:
        logger.warning("sentry_disabled", reason="dsn_not_configured", process=process)
        return

    try:
        import sentry_sdk

        integrations = []
        if process == "api":
            from sentry_sdk.integrations.fastapi import FastApiIntegration
            integrations.append(FastApiIntegration())
        elif process == "worker":
            from sentry_sdk.integrations.dramatiq import DramatiqIntegration
            integrations.append(DramatiqIntegration())

        sentry_sdk.init(
            dsn=settings.sentry_dsn,
            environment=settings.sentry_environment or settings.environment,
            traces_sample_rate=0.1,  # 10% of requests traced
            integrations=integrations,
        )
        sentry_sdk.set_tag("process", process)

        logger.info(
            "sentry_initialized",
            environment=settings.sentry_environment or settings.environment,
            process=process,
        )
    except Exception as e:
        logger.error("sentry_init_failed", error=str(e))


def set_outbox_context(
    outbox_id: str,
    event_type: str,
    tenant_id: Optional[str] = None,
    aggregate_id: Optional[str] = None,
) -> None:
    """
    Tag the current Sentry scope with the outbox entry being handled.

    Lets an error report be traced back to the hms_outbox row that a
    poison job left behind.
    """
    import sentry_sdk

    sentry_sdk.set_context("outbox", {
        "outbox_id": outbox_id,
        "event_type": event_type,
        "tenant_id": tenant_id,
        "aggregate_id": aggregate_id,
    })
    sentry_sdk.set_tag("outbox_id", outbox_id)
    sentry_sdk.set_tag("event_type", event_type)


def add_breadcrumb(category: str, message: str, level: str = "info", data: Optional[dict] = None) -> None:
    """
    Add breadcrumb to Sentry for the handler trail (e.g. which channels were attempted).
    """
    import sentry_sdk

    sentry_sdk.add_breadcrumb(category=category, message=message, level=level, data=data or {})
