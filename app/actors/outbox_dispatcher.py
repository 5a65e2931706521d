"""
Outbox Dispatcher Actor
Single dramatiq consumer for the outbox queue: routes each job to its event handler
"""

import dramatiq
import structlog
from pydantic import ValidationError

from app.config import settings
from app.services.dispatch_queue import DISPATCHER_ACTOR_NAME

logger = structlog.get_logger()

POISON_CALLBACK_ACTOR_NAME = "report_poison_outbox_job"


@dramatiq.actor(
    actor_name=POISON_CALLBACK_ACTOR_NAME,
    queue_name=settings.outbox_queue_name,
    max_retries=0,
)
def report_poison_outbox_job(message_data: dict, retry_info: dict) -> None:
    """
    Callback sent by the Retries middleware once an outbox job has used up
    its retries (on_retry_exhausted).

    Jobs rejected through `throws` never reach this actor; the dispatcher
    reports those itself. The outbox row stays unprocessed with last_error
    set; this only makes the poison entry visible.

    Args:
        message_data: Failed message as a dict (args = [event_type, data])
        retry_info: {"retries": ..., "max_retries": ...}
    """
    from app.services.failure_notifier import notify_poison_outbox_entry

    args = message_data.get("args") or []
    event_type = args[0] if args else None
    data = args[1] if len(args) > 1 and isinstance(args[1], dict) else {}
    outbox_id = data.get("outbox_id")

    error = f"retries exhausted ({retry_info.get('retries')}/{retry_info.get('max_retries')})"
    if not outbox_id:
        logger.error("poison_job_without_outbox_id", event_type=event_type, error=error)
        return

    notify_poison_outbox_entry(outbox_id, event_type, error)


@dramatiq.actor(
    actor_name=DISPATCHER_ACTOR_NAME,
    queue_name=settings.outbox_queue_name,
    max_retries=settings.dispatch_max_retries,
    min_backoff=settings.dispatch_min_backoff_ms,
    max_backoff=settings.dispatch_max_backoff_ms,
    throws=(ValidationError,),  # malformed job data is never retried
    on_retry_exhausted=POISON_CALLBACK_ACTOR_NAME,
)
def dispatch_outbox_job(event_type: str, data: dict) -> None:
    """
    Handle one outbox job.

    1. Validate job data (OutboxJob)
    2. Run the handler registered for event_type
    3. mark_processed on success; unknown event types are logged and marked processed
    4. On any exception: mark_failed and re-raise so dramatiq retries with backoff

    Args:
        event_type: Job name (the outbox row's event_type)
        data: {outbox_id, tenant_id, aggregate_type, aggregate_id, payload}
    """
    from app.handlers import get_handler
    from app.handlers.context import get_handler_context
    from app.middleware.correlation_id import bind_correlation_id
    from app.models.event_schemas import OutboxJob
    from app.services.monitoring.error_tracking import set_outbox_context

    outbox_id = data.get("outbox_id") if isinstance(data, dict) else None
    log = logger.bind(outbox_id=outbox_id, event_type=event_type)

    ctx = get_handler_context()

    with bind_correlation_id(outbox_id):
        try:
            job = OutboxJob.model_validate(data)
            set_outbox_context(job.outbox_id, event_type, job.tenant_id, job.aggregate_id)

            handler = get_handler(event_type)
            if handler is None:
                log.warning("unknown_event_type")
                ctx.outbox_store.mark_processed(job.outbox_id)
                return

            log.info("outbox_job_started", handler=handler.__name__)
            handler(job, ctx)
            ctx.outbox_store.mark_processed(job.outbox_id)
            log.info("outbox_job_processed")

        except Exception as e:
            log.error("outbox_job_failed", error=str(e), exception_type=type(e).__name__)
            if outbox_id:
                try:
                    ctx.outbox_store.mark_failed(outbox_id, f"{type(e).__name__}: {e}")
                except Exception as mark_error:
                    log.error("outbox_mark_failed_error", error=str(mark_error))
            if isinstance(e, ValidationError) and outbox_id:
                # Not retried, so the retry-exhausted callback never sees it
                from app.services.failure_notifier import notify_poison_outbox_entry

                notify_poison_outbox_entry(outbox_id, event_type, f"{type(e).__name__}: {e}")
            # Re-raise so dramatiq retry/backoff applies
            raise
