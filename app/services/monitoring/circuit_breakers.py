"""
Circuit Breaker Implementation for Notification and Enrichment Providers

Opens a circuit after consecutive provider failures so event handlers stop
waiting on a dead dependency, and retries the provider after a timeout.

Services protected:
- Anthropic API (pre-visit summary enrichment)
- SMS gateway (Twilio or generic HTTP provider)
"""

import functools
import smtplib
from email.mime.text import MIMEText
from typing import Dict, Optional

import pybreaker
import structlog

from app.config import settings

logger = structlog.get_logger(__name__)

AI_ENRICHMENT = "ai_enrichment"
SMS_GATEWAY = "sms_gateway"

_KNOWN_SERVICES = (AI_ENRICHMENT, SMS_GATEWAY)


class CircuitBreakerAlertListener(pybreaker.CircuitBreakerListener):
    """
    Logs every state change and emails the operator when a circuit opens.
    """

    def __init__(self, admin_email: Optional[str]):
        self.admin_email = admin_email

    def state_change(self, cb, old_state, new_state):
        logger.warning(
            "circuit_breaker_state_change",
            circuit_breaker=cb.name,
            old_state=old_state.name if old_state else None,
            new_state=new_state.name,
            fail_count=cb.fail_counter,
        )

        if new_state.name == pybreaker.STATE_OPEN:
            self._send_alert_email(cb)

    def _send_alert_email(self, cb: pybreaker.CircuitBreaker):
        if not settings.smtp_host or not self.admin_email:
            logger.warning("circuit_breaker_alert_skipped", circuit_breaker=cb.name, reason="smtp_not_configured")
            return

        body = f"""
CIRCUIT BREAKER ALERT

Service: {cb.name}
Status: OPEN (provider calls are short-circuited)
Failure Count: {cb.fail_counter}
Reset Timeout: {cb.reset_timeout} seconds

Outbox jobs keep being processed; notifications or summaries for this
provider are skipped and logged until the circuit closes again.

Environment: {settings.environment}
        """.strip()

        msg = MIMEText(body, "plain")
        msg["From"] = settings.email_from
        msg["To"] = self.admin_email
        msg["Subject"] = f"ALERT: Circuit Breaker Opened - {cb.name}"

        try:
            with smtplib.SMTP(settings.smtp_host, settings.smtp_port, timeout=10) as server:
                if settings.smtp_username and settings.smtp_password:
                    server.starttls()
                    server.login(settings.smtp_username, settings.smtp_password)
                server.send_message(msg)
            logger.info("circuit_breaker_alert_sent", circuit_breaker=cb.name, recipient=self.admin_email)
        except Exception as e:
            # Alerting must never break the caller
            logger.error("circuit_breaker_alert_failed", circuit_breaker=cb.name, error=str(e))


# Lazily created, one breaker per provider
_breakers: Dict[str, pybreaker.CircuitBreaker] = {}
_listener: Optional[CircuitBreakerAlertListener] = None


def get_breaker(service_name: str) -> pybreaker.CircuitBreaker:
    """
    Get circuit breaker for a provider.

    Args:
        service_name: AI_ENRICHMENT or SMS_GATEWAY

    Raises:
        ValueError: If service_name is not recognized
    """
    global _listener

    if service_name not in _KNOWN_SERVICES:
        raise ValueError(f"Unknown service name: {service_name}. Must be one of {', '.join(_KNOWN_SERVICES)}")

    if _listener is None:
        _listener = CircuitBreakerAlertListener(settings.admin_email)

    breaker = _breakers.get(service_name)
    if breaker is None:
        breaker = pybreaker.CircuitBreaker(
            name=service_name,
            fail_max=settings.circuit_breaker_fail_max,
            reset_timeout=settings.circuit_breaker_reset_timeout,
            listeners=[_listener],
        )
        _breakers[service_name] = breaker
        logger.info("circuit_breaker_initialized", circuit_breaker=service_name)
    return breaker


def reset_breakers():
    """Drop all breaker state (tests and process restarts)."""
    _breakers.clear()


def with_circuit_breaker(service_name: str):
    """
    Decorator to wrap a provider call with circuit breaker protection.

    Usage:
        @with_circuit_breaker(SMS_GATEWAY)
        def post_sms(payload):
            ...

    Raises:
        CircuitBreakerError: If circuit is open (provider unavailable)
    """
    def decorator(func):
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            return get_breaker(service_name).call(func, *args, **kwargs)
        return wrapper
    return decorator


# Re-export exception for caller handling
from pybreaker import CircuitBreakerError  # noqa: E402

__all__ = [
    "AI_ENRICHMENT",
    "SMS_GATEWAY",
    "CircuitBreakerAlertListener",
    "get_breaker",
    "reset_breakers",
    "with_circuit_breaker",
    "CircuitBreakerError",
]
