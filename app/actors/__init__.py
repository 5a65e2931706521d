"""
Dramatiq Actors - Outbox Job Processing

This module sets up the Dramatiq broker and registers all actors.
The broker is configured to use:
- RedisBroker when REDIS_URL is set (production)
- StubBroker when REDIS_URL is not set (testing/development)

Both the relay (producer) and the worker (consumer) import it: the relay needs
the outbox queue declared before it can enqueue.

Usage:
    from app.actors import broker
"""

import structlog
from app.config import settings

logger = structlog.get_logger()


def setup_broker():
    """
    Initialize and configure Dramatiq broker.

    Returns:
        Broker instance (RedisBroker or StubBroker)
    """
    import dramatiq

    if settings.redis_url:
        # Production mode - use Redis
        from dramatiq.brokers.redis import RedisBroker

        broker = RedisBroker(
            url=settings.redis_url,
            namespace="appointment_outbox",
            max_connections=10,
            socket_timeout=5,
            socket_connect_timeout=5,
            socket_keepalive=True,
            retry_on_timeout=True,
            heartbeat_timeout=30000,
            dead_message_ttl=7 * 86400000  # keep dead-lettered jobs a week
        )
        dramatiq.set_broker(broker)
        logger.info("broker_configured", type="RedisBroker")
    else:
        # Testing/development mode - use StubBroker
        from dramatiq.brokers.stub import StubBroker

        broker = StubBroker()
        dramatiq.set_broker(broker)
        logger.info("broker_configured", type="StubBroker", mode="testing")

    return broker


# Initialize broker at module level
broker = setup_broker()

# Actor imports (registered with broker on import)
from app.actors import outbox_dispatcher  # noqa: E402,F401

# Export specific actors for convenience
from app.actors.outbox_dispatcher import dispatch_outbox_job, report_poison_outbox_job  # noqa: E402,F401
