"""
Outbox Relay
Moves claimed outbox entries onto the dispatch queue
"""

import threading
from typing import Optional

import structlog

from app.config import settings
from app.services.dispatch_queue import DispatchQueue, RetryPolicy
from app.services.outbox import OutboxRecord, OutboxStore

logger = structlog.get_logger(__name__)


class OutboxRelay:
    """
    Poll loop: claim_batch -> enqueue each entry -> repeat.

    - Empty batch: wait poll_interval before the next claim.
    - Claim error: log and wait error_backoff; the loop keeps running.
    - Enqueue error: mark_failed on that entry and continue with the batch.
      The lease expires after the store's lease window and the entry is
      claimed again.

    stop() is cooperative: the current batch is finished, no new claim is made.
    Several relays may run against the same table; the claim statement keeps
    their batches disjoint.
    """

    def __init__(
        self,
        store: OutboxStore,
        dispatch_queue: DispatchQueue,
        queue_name: Optional[str] = None,
        batch_size: Optional[int] = None,
        poll_interval: Optional[float] = None,
        error_backoff: Optional[float] = None,
        retry_policy: Optional[RetryPolicy] = None,
    ):
        self.store = store
        self.dispatch_queue = dispatch_queue
        self.queue_name = queue_name or settings.outbox_queue_name
        self.batch_size = batch_size or settings.outbox_batch_size
        self.poll_interval = poll_interval if poll_interval is not None else settings.outbox_poll_interval_seconds
        self.error_backoff = error_backoff if error_backoff is not None else settings.outbox_error_backoff_seconds
        self.retry_policy = retry_policy or RetryPolicy.from_settings()
        self._stop_event = threading.Event()
        self.logger = logger.bind(service="outbox_relay", queue=self.queue_name)

    @property
    def stopping(self) -> bool:
        return self._stop_event.is_set()

    def stop(self) -> None:
        """Request shutdown; safe to call from a signal handler."""
        if not self._stop_event.is_set():
            self.logger.info("relay_stop_requested")
        self._stop_event.set()

    def run_once(self) -> int:
        """
        Claim one batch and enqueue it.

        Returns:
            Number of entries claimed (enqueue failures included)

        Raises:
            Exceptions from claim_batch (run_forever handles them)
        """
        batch = self.store.claim_batch(self.batch_size)
        for record in batch:
            self._relay(record)
        return len(batch)

    def run_forever(self) -> None:
        self.logger.info(
            "relay_started",
            batch_size=self.batch_size,
            poll_interval=self.poll_interval,
            lease_seconds=self.store.lease_seconds,
        )

        while not self._stop_event.is_set():
            try:
                claimed = self.run_once()
            except Exception as e:
                self.logger.error("relay_claim_failed", error=str(e), exc_info=True)
                self._stop_event.wait(self.error_backoff)
                continue

            if claimed == 0:
                self._stop_event.wait(self.poll_interval)

        self.logger.info("relay_stopped")

    def _relay(self, record: OutboxRecord) -> None:
        data = {
            "outbox_id": record.id,
            "tenant_id": record.tenant_id,
            "aggregate_type": record.aggregate_type,
            "aggregate_id": record.aggregate_id,
            "payload": record.payload,
        }
        log = self.logger.bind(outbox_id=record.id, event_type=record.event_type, attempts=record.attempts)

        try:
            self.dispatch_queue.enqueue(self.queue_name, record.event_type, data, self.retry_policy)
        except Exception as e:
            log.error("relay_enqueue_failed", error=str(e))
            try:
                self.store.mark_failed(record.id, f"enqueue failed: {e}")
            except Exception as mark_error:
                log.error("relay_mark_failed_error", error=str(mark_error))
            return

        log.info("relay_enqueued")
