"""
Tests for OutboxRelay

Tests cover:
- run_once enqueues every claimed entry with the outbox job data
- Enqueue failures mark the entry failed and do not stop the batch
- run_forever survives claim errors and exits on stop()
"""

from datetime import timedelta
from unittest.mock import Mock

import pytest

from conftest import TENANT_ID
from app.database import transaction_scope
from app.services.dispatch_queue import RetryPolicy
from app.services.outbox import OutboxEvent
from app.services.outbox_relay import OutboxRelay


def _append(store, session_factory, event_type="appointment.created", aggregate_id="appt-1"):
    with transaction_scope(session_factory) as session:
        return store.append(session, OutboxEvent(
            tenant_id=TENANT_ID,
            aggregate_type="appointment",
            aggregate_id=aggregate_id,
            event_type=event_type,
            payload={"appointment": {"id": aggregate_id}},
        ))


@pytest.fixture
def dispatch_queue():
    return Mock()


@pytest.fixture
def relay(outbox_store, dispatch_queue):
    return OutboxRelay(
        store=outbox_store,
        dispatch_queue=dispatch_queue,
        queue_name="outbox-publisher",
        batch_size=10,
        poll_interval=0,
        error_backoff=0,
        retry_policy=RetryPolicy(max_retries=1),
    )


class TestRunOnce:
    """Tests for a single relay iteration."""

    def test_enqueues_claimed_entries(self, relay, outbox_store, dispatch_queue, session_factory):
        outbox_id = _append(outbox_store, session_factory)

        claimed = relay.run_once()

        assert claimed == 1
        dispatch_queue.enqueue.assert_called_once()
        queue_name, job_name, data, policy = dispatch_queue.enqueue.call_args.args
        assert queue_name == "outbox-publisher"
        assert job_name == "appointment.created"
        assert data == {
            "outbox_id": outbox_id,
            "tenant_id": TENANT_ID,
            "aggregate_type": "appointment",
            "aggregate_id": "appt-1",
            "payload": {"appointment": {"id": "appt-1"}},
        }
        assert policy.max_retries == 1

    def test_empty_outbox(self, relay, dispatch_queue):
        assert relay.run_once() == 0
        dispatch_queue.enqueue.assert_not_called()

    def test_enqueued_entries_are_leased(self, relay, outbox_store, session_factory):
        """A second pass inside the lease window finds nothing."""
        _append(outbox_store, session_factory)

        assert relay.run_once() == 1
        assert relay.run_once() == 0

    def test_enqueue_failure_marks_failed_and_continues(self, relay, outbox_store, dispatch_queue, session_factory):
        first = _append(outbox_store, session_factory, aggregate_id="appt-1")
        second = _append(outbox_store, session_factory, aggregate_id="appt-2")
        dispatch_queue.enqueue.side_effect = [ConnectionError("redis unavailable"), Mock()]

        claimed = relay.run_once()

        assert claimed == 2
        assert dispatch_queue.enqueue.call_count == 2
        failed = outbox_store.get_entry(first)
        assert failed.last_error == "enqueue failed: redis unavailable"
        assert failed.processed_at is None
        assert outbox_store.get_entry(second).last_error is None

    def test_failed_enqueue_is_retried_after_lease(self, relay, outbox_store, dispatch_queue, session_factory):
        outbox_id = _append(outbox_store, session_factory)
        dispatch_queue.enqueue.side_effect = ConnectionError("redis unavailable")
        relay.run_once()

        later = outbox_store.claim_batch(10, now=outbox_store.get_entry(outbox_id).locked_at + timedelta(seconds=61))

        assert [record.id for record in later] == [outbox_id]


class TestRunForever:
    """Tests for the poll loop."""

    def test_stop_ends_loop(self, relay):
        relay.store = Mock()
        relay.store.claim_batch.side_effect = lambda limit: relay.stop() or []

        relay.run_forever()

        assert relay.stopping is True
        assert relay.store.claim_batch.call_count == 1

    def test_claim_error_does_not_kill_loop(self, relay):
        calls = []

        def claim(limit):
            calls.append(limit)
            if len(calls) == 1:
                raise RuntimeError("database restarting")
            relay.stop()
            return []

        relay.store = Mock()
        relay.store.claim_batch.side_effect = claim

        relay.run_forever()

        assert calls == [10, 10]

    def test_stop_is_idempotent(self, relay):
        relay.stop()
        relay.stop()

        assert relay.stopping is True
