"""
Middleware Module
ASGI middleware and correlation helpers
"""

from app.middleware.correlation_id import CorrelationIdMiddleware, get_correlation_id, bind_correlation_id

__all__ = ["CorrelationIdMiddleware", "get_correlation_id", "bind_correlation_id"]
