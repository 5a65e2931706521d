"""
Structured JSON Logging with Correlation ID
Provides JSON formatter that automatically injects correlation IDs into all log entries
"""

import logging
import sys
import os

import structlog
from pythonjsonlogger import jsonlogger
from asgi_correlation_id.context import correlation_id


class CorrelationJsonFormatter(jsonlogger.JsonFormatter):
    """
    JSON formatter with automatic correlation ID injection.

    Extends python-json-logger to add correlation_id field to every log record.
    The correlation ID is retrieved from context (set by CorrelationIdMiddleware
    for HTTP requests, and by the outbox dispatcher for worker jobs).
    """

    service = 'appointment-outbox'

    def add_fields(self, log_record, record, message_dict):
        """
        Add custom fields to log record.

        Adds:
        - correlation_id: From context or 'none' if not available
        - service: Process role (api / relay / worker)
        - environment: Deployment environment (development/production)
        """
        super().add_fields(log_record, record, message_dict)

        log_record['correlation_id'] = correlation_id.get() or 'none'
        log_record['service'] = self.service
        log_record['environment'] = os.getenv('ENVIRONMENT', 'development')


def configure_structlog():
    """
    Configure structlog for event-name style JSON logs.

    Shared by the API, the relay process and the dramatiq worker so every
    process emits the same shape.
    """
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.add_log_level,
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer()
        ]
    )


def setup_logging(service: str = 'appointment-outbox'):
    """
    Configure structured JSON logging to stdout.

    Sets up root logger with:
    - CorrelationJsonFormatter for machine-parseable JSON output
    - INFO level logging (production default)
    - StreamHandler outputting to stdout

    Args:
        service: Process role written into every stdlib log record

    Returns:
        logging.Handler: The configured handler (for testing)
    """
    handler = logging.StreamHandler(sys.stdout)

    formatter = CorrelationJsonFormatter(
        '%(timestamp)s %(level)s %(name)s %(message)s',
        rename_fields={
            'timestamp': 'asctime',
            'level': 'levelname'
        }
    )
    formatter.service = service
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.addHandler(handler)
    root_logger.setLevel(logging.INFO)  # INFO level for production

    configure_structlog()

    return handler
