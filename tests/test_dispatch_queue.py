"""
Tests for DispatchQueue (dramatiq StubBroker)

Tests cover:
- Jobs are stored as dispatcher messages carrying (job_name, data)
- Retry policy travels with the message options
- Enqueue onto an undeclared queue is refused
"""

import dramatiq
import pytest
from dramatiq.brokers.stub import StubBroker

from app.services.dispatch_queue import (
    DISPATCHER_ACTOR_NAME,
    DispatchQueue,
    RetryPolicy,
    UnknownQueueError,
)

QUEUE = "outbox-publisher"


@pytest.fixture
def stub_broker():
    broker = StubBroker()
    broker.declare_queue(QUEUE)
    yield broker
    broker.close()


class TestDispatchQueue:
    """Tests for DispatchQueue.enqueue."""

    def test_enqueue_stores_dispatcher_message(self, stub_broker):
        queue = DispatchQueue(stub_broker)
        data = {"outbox_id": "ob-1", "tenant_id": "t-1", "payload": {}}

        message = queue.enqueue(QUEUE, "appointment.created", data)

        assert message.queue_name == QUEUE
        assert message.actor_name == DISPATCHER_ACTOR_NAME
        assert message.args == ("appointment.created", data)
        assert stub_broker.queues[QUEUE].qsize() == 1

        stored = dramatiq.Message.decode(stub_broker.queues[QUEUE].get_nowait())
        assert stored.message_id == message.message_id
        assert list(stored.args) == ["appointment.created", data]

    def test_retry_policy_in_message_options(self, stub_broker):
        queue = DispatchQueue(stub_broker)
        policy = RetryPolicy(max_retries=2, min_backoff_ms=100, max_backoff_ms=1000)

        message = queue.enqueue(QUEUE, "appointment.cancelled", {"outbox_id": "ob-2"}, retry_policy=policy)

        assert message.options["max_retries"] == 2
        assert message.options["min_backoff"] == 100
        assert message.options["max_backoff"] == 1000

    def test_default_policy_from_settings(self, stub_broker):
        message = DispatchQueue(stub_broker).enqueue(QUEUE, "appointment.created", {"outbox_id": "ob-3"})

        assert message.options["max_retries"] == 4
        assert message.options["min_backoff"] == 2000

    def test_unknown_queue_rejected(self, stub_broker):
        queue = DispatchQueue(stub_broker)

        with pytest.raises(UnknownQueueError):
            queue.enqueue("nobody-listens", "appointment.created", {"outbox_id": "ob-4"})

    def test_falls_back_to_global_broker(self):
        """Without an explicit broker the process-wide one is used."""
        from app.actors import broker

        queue = DispatchQueue()

        assert queue.broker is broker
        assert QUEUE in broker.get_declared_queues()


class TestRetryPolicy:

    def test_defaults_give_five_attempts(self):
        policy = RetryPolicy()

        assert policy.max_retries == 4
        assert policy.as_message_options() == {
            "max_retries": 4,
            "min_backoff": 2000,
            "max_backoff": 300000,
        }
