"""
Outbox Event Handlers
Registry mapping job names (outbox event types) to handler functions
"""

from typing import Callable, Dict, List, Optional

import structlog

logger = structlog.get_logger(__name__)

_HANDLERS: Dict[str, Callable] = {}


def register_handler(job_name: str, handler: Callable) -> Callable:
    """
    Register the consumer for one job name. Re-registering replaces it.

    Handlers are called as handler(job: OutboxJob, ctx: HandlerContext).
    """
    if job_name in _HANDLERS and _HANDLERS[job_name] is not handler:
        logger.warning("handler_replaced", job_name=job_name)
    _HANDLERS[job_name] = handler
    return handler


def on_job(job_name: str, handler: Optional[Callable] = None):
    """
    Register a handler directly or as a decorator.

    Usage:
        @on_job("appointment.created")
        def handle_created(job, ctx):
            ...
    """
    if handler is not None:
        return register_handler(job_name, handler)

    def decorator(func):
        return register_handler(job_name, func)
    return decorator


def get_handler(job_name: str) -> Optional[Callable]:
    return _HANDLERS.get(job_name)


def registered_job_names() -> List[str]:
    return sorted(_HANDLERS)


# Handler modules register themselves on import
from app.handlers import appointments  # noqa: E402,F401
