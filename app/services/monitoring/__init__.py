"""
Monitoring Module
Exports for structured logging, circuit breakers and error tracking
"""

from app.services.monitoring.logging import setup_logging, configure_structlog, CorrelationJsonFormatter
from app.services.monitoring.circuit_breakers import (
    AI_ENRICHMENT,
    SMS_GATEWAY,
    get_breaker,
    reset_breakers,
    with_circuit_breaker,
    CircuitBreakerError,
    CircuitBreakerAlertListener,
)
from app.services.monitoring.error_tracking import init_sentry, set_outbox_context, add_breadcrumb

__all__ = [
    "setup_logging",
    "configure_structlog",
    "CorrelationJsonFormatter",
    "AI_ENRICHMENT",
    "SMS_GATEWAY",
    "get_breaker",
    "reset_breakers",
    "with_circuit_breaker",
    "CircuitBreakerError",
    "CircuitBreakerAlertListener",
    "init_sentry",
    "set_outbox_context",
    "add_breadcrumb",
]
