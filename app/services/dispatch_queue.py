"""
Dispatch Queue
Durable job queue on dramatiq: enqueue outbox jobs with a retry policy
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional

import dramatiq
import structlog

from app.config import settings

logger = structlog.get_logger(__name__)

DISPATCHER_ACTOR_NAME = "dispatch_outbox_job"


class UnknownQueueError(LookupError):
    """Raised when enqueueing onto a queue no consumer has declared."""


@dataclass
class RetryPolicy:
    """
    Retry behaviour attached to each enqueued job.

    max_retries counts retries after the first delivery, so the default of 4
    gives five attempts. Backoff doubles from min_backoff_ms up to
    max_backoff_ms (dramatiq adds jitter).
    """
    max_retries: int = 4
    min_backoff_ms: int = 2000
    max_backoff_ms: int = 300000

    @classmethod
    def from_settings(cls) -> "RetryPolicy":
        return cls(
            max_retries=settings.dispatch_max_retries,
            min_backoff_ms=settings.dispatch_min_backoff_ms,
            max_backoff_ms=settings.dispatch_max_backoff_ms,
        )

    def as_message_options(self) -> dict:
        return {
            "max_retries": self.max_retries,
            "min_backoff": self.min_backoff_ms,
            "max_backoff": self.max_backoff_ms,
        }


class DispatchQueue:
    """
    Thin producer over a dramatiq broker.

    Every job is a message for the dispatcher actor carrying (job_name, data);
    the worker routes it to the handler registered for job_name. The broker
    persists the message, so enqueue returns as soon as it is stored.
    """

    def __init__(self, broker: Optional[dramatiq.Broker] = None, actor_name: str = DISPATCHER_ACTOR_NAME):
        self._broker = broker
        self.actor_name = actor_name
        self.logger = logger.bind(service="dispatch_queue")

    @property
    def broker(self) -> dramatiq.Broker:
        return self._broker or dramatiq.get_broker()

    def enqueue(
        self,
        queue_name: str,
        job_name: str,
        data: Dict[str, Any],
        retry_policy: Optional[RetryPolicy] = None,
    ) -> dramatiq.Message:
        """
        Store one job on the broker.

        Raises:
            UnknownQueueError: If no actor has declared queue_name
            Broker errors (e.g. redis ConnectionError) propagate to the caller
        """
        broker = self.broker
        if queue_name not in broker.get_declared_queues():
            raise UnknownQueueError(f"Queue '{queue_name}' is not declared on the broker")

        policy = retry_policy or RetryPolicy.from_settings()
        message = dramatiq.Message(
            queue_name=queue_name,
            actor_name=self.actor_name,
            args=(job_name, data),
            kwargs={},
            options=policy.as_message_options(),
        )
        enqueued = broker.enqueue(message)

        self.logger.info(
            "job_enqueued",
            queue=queue_name,
            job_name=job_name,
            message_id=enqueued.message_id,
            outbox_id=data.get("outbox_id"),
        )
        return enqueued
