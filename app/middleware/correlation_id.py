"""
Correlation ID Middleware
Provides correlation ID injection for HTTP requests and outbox jobs
"""

from contextlib import contextmanager

from asgi_correlation_id import CorrelationIdMiddleware
from asgi_correlation_id.context import correlation_id

# Re-export CorrelationIdMiddleware for convenience
__all__ = ["CorrelationIdMiddleware", "get_correlation_id", "bind_correlation_id"]


def get_correlation_id() -> str:
    """
    Get current correlation ID from context.

    Returns:
        str: The correlation ID or 'none' if not available
    """
    return correlation_id.get() or 'none'


@contextmanager
def bind_correlation_id(value):
    """
    Set the correlation ID for code running outside a request.

    Dramatiq workers have no request context; the outbox dispatcher binds the
    outbox id so every log line of one job can be grouped.
    """
    token = correlation_id.set(value)
    try:
        yield value
    finally:
        correlation_id.reset(token)
