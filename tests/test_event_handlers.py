"""
Tests for the outbox dispatcher actor and appointment event handlers

Tests cover:
- Created / rescheduled / cancelled notifications from re-read database state
- Redelivered jobs skip channels already sent (idempotency keys)
- One failing channel does not stop the others
- Missing appointment fails the job (mark_failed + re-raise for retry)
- Unknown event types are acknowledged, malformed job data is rejected
- Worker end-to-end on the StubBroker and the poison callback
"""

from unittest.mock import patch

import pytest
from pydantic import ValidationError

from conftest import CLINICIAN_ID, PATIENT_ID, TENANT_ID, at
from app.actors.outbox_dispatcher import dispatch_outbox_job, report_poison_outbox_job
from app.handlers import get_handler, on_job, registered_job_names
from app.handlers.context import AppointmentNotFoundError
from app.models import AuditLogEntry
from app.models.event_schemas import OutboxJob
from app.services.idempotency import notification_key


def _job_data(record):
    return {
        "outbox_id": record.id,
        "tenant_id": record.tenant_id,
        "aggregate_type": record.aggregate_type,
        "aggregate_id": record.aggregate_id,
        "payload": record.payload,
    }


def _claim_one(outbox_store, event_type):
    records = [r for r in outbox_store.claim_batch(100) if r.event_type == event_type]
    assert len(records) == 1
    return records[0]


def _audit_entries(session_factory, event):
    session = session_factory()
    try:
        return session.query(AuditLogEntry).filter(AuditLogEntry.event == event).all()
    finally:
        session.close()


@pytest.fixture
def booked(write_service, seeded):
    result = write_service.create_appointment(
        tenant_id=TENANT_ID,
        clinician_id=CLINICIAN_ID,
        patient_id=PATIENT_ID,
        starts_at=at(9),
        ends_at=at(10),
        actor_id="user-1",
        metadata={"notes": "knee pain"},
    )
    assert result.ok
    return result.appointment


class TestHandlerRegistry:

    def test_appointment_handlers_registered(self):
        assert registered_job_names() == [
            "appointment.cancelled",
            "appointment.created",
            "appointment.rescheduled",
        ]

    def test_on_job_decorator_registers(self):
        @on_job("test.registry")
        def handler(job, ctx):
            return None

        try:
            assert get_handler("test.registry") is handler
        finally:
            from app import handlers
            handlers._HANDLERS.pop("test.registry", None)


class TestAppointmentCreated:
    """appointment.created: AI summary, patient SMS + email, clinician email."""

    def test_notifies_patient_and_clinician(self, handler_context, booked, outbox_store, session_factory,
                                            mock_notifier, mock_enricher):
        record = _claim_one(outbox_store, "appointment.created")

        dispatch_outbox_job("appointment.created", _job_data(record))

        mock_notifier.send_sms.assert_called_once()
        phone, sms_text = mock_notifier.send_sms.call_args.args
        assert phone == "+15550001111"
        assert "Rui Costa" in sms_text
        assert "20 Oct 2026, 09:00 UTC" in sms_text

        recipients = [c.args[0] for c in mock_notifier.send_email.call_args_list]
        assert recipients == ["ana@example.com", "dr.costa@example.com"]
        patient_html = mock_notifier.send_email.call_args_list[0].args[2]
        assert "Bring your medication list." in patient_html

        context = mock_enricher.generate_summary.call_args.args[0]
        assert context["patient_name"] == "Ana Silva"
        assert context["notes"] == "knee pain"

        entry = outbox_store.get_entry(record.id)
        assert entry.processed_at is not None
        assert entry.last_error is None

        audit = _audit_entries(session_factory, "worker_notified")
        assert len(audit) == 1
        assert audit[0].payload["channels"] == {"sms_patient": True, "email_patient": True, "email_clinician": True}
        assert audit[0].payload["summary_generated"] is True
        assert audit[0].created_by is None

    def test_redelivery_skips_channels_already_sent(self, handler_context, booked, outbox_store,
                                                    mock_notifier):
        """The same outbox entry delivered twice notifies once per channel."""
        record = _claim_one(outbox_store, "appointment.created")
        job = OutboxJob.model_validate(_job_data(record))
        handler = get_handler("appointment.created")

        handler(job, handler_context)
        result = handler(job, handler_context)

        assert mock_notifier.send_sms.call_count == 1
        assert mock_notifier.send_email.call_count == 2
        assert all(channel.get("skipped") for channel in result["channels"].values())

    def test_idempotency_key_format(self, handler_context, booked, outbox_store):
        record = _claim_one(outbox_store, "appointment.created")

        dispatch_outbox_job("appointment.created", _job_data(record))

        key = notification_key(record.id, "sms", "+15550001111")
        assert key == f"{record.id}:sms:+15550001111"
        assert handler_context.idempotency.check(key)["provider"] == "twilio"

    def test_failing_channel_does_not_block_others(self, handler_context, booked, outbox_store,
                                                   mock_notifier):
        mock_notifier.send_sms.side_effect = RuntimeError("gateway 503")
        record = _claim_one(outbox_store, "appointment.created")
        job = OutboxJob.model_validate(_job_data(record))

        result = get_handler("appointment.created")(job, handler_context)

        assert result["channels"]["sms_patient"]["success"] is False
        assert result["channels"]["email_patient"]["success"] is True
        assert result["channels"]["email_clinician"]["success"] is True

    def test_unsuccessful_channel_is_retried_on_redelivery(self, handler_context, booked, outbox_store,
                                                          mock_notifier):
        """Only successful sends are recorded, so a redelivery tries the failed channel again."""
        mock_notifier.send_sms.return_value = {"provider": "twilio", "success": False, "error": "timeout"}
        record = _claim_one(outbox_store, "appointment.created")
        job = OutboxJob.model_validate(_job_data(record))
        handler = get_handler("appointment.created")

        handler(job, handler_context)
        handler(job, handler_context)

        assert mock_notifier.send_sms.call_count == 2
        assert mock_notifier.send_email.call_count == 2

    def test_ai_failure_still_notifies(self, handler_context, booked, outbox_store, session_factory,
                                       mock_notifier, mock_enricher):
        mock_enricher.generate_summary.side_effect = RuntimeError("anthropic down")
        record = _claim_one(outbox_store, "appointment.created")

        dispatch_outbox_job("appointment.created", _job_data(record))

        assert mock_notifier.send_email.call_count == 2
        assert outbox_store.get_entry(record.id).processed_at is not None
        assert _audit_entries(session_factory, "worker_notified")[0].payload["summary_generated"] is False

    def test_missing_contact_is_reported_not_sent(self, handler_context, booked, outbox_store, session_factory,
                                                  mock_notifier):
        from app.models import Patient

        session = session_factory()
        try:
            session.query(Patient).filter(Patient.id == PATIENT_ID).update({"phone": None})
            session.commit()
        finally:
            session.close()
        record = _claim_one(outbox_store, "appointment.created")
        job = OutboxJob.model_validate(_job_data(record))

        result = get_handler("appointment.created")(job, handler_context)

        mock_notifier.send_sms.assert_not_called()
        assert result["channels"]["sms_patient"]["error"] == "no_recipient"

    def test_cancelled_appointment_is_not_announced(self, handler_context, booked, write_service, outbox_store,
                                                    session_factory, mock_notifier):
        """The handler trusts the database, not the payload snapshot."""
        write_service.cancel_appointment(TENANT_ID, booked["id"])
        record = _claim_one(outbox_store, "appointment.created")

        dispatch_outbox_job("appointment.created", _job_data(record))

        mock_notifier.send_sms.assert_not_called()
        mock_notifier.send_email.assert_not_called()
        assert outbox_store.get_entry(record.id).processed_at is not None
        assert _audit_entries(session_factory, "worker_notified")[0].payload["skipped"] == "cancelled"


class TestAppointmentRescheduled:

    def test_notifies_patient_with_previous_time(self, handler_context, booked, write_service, outbox_store,
                                                 session_factory, mock_notifier):
        write_service.reschedule_appointment(TENANT_ID, booked["id"], at(14), at(15))
        record = _claim_one(outbox_store, "appointment.rescheduled")

        dispatch_outbox_job("appointment.rescheduled", _job_data(record))

        sms_text = mock_notifier.send_sms.call_args.args[1]
        assert "moved to" in sms_text
        assert "14:00 UTC" in sms_text

        _, subject, html = mock_notifier.send_email.call_args.args
        assert subject == "Appointment rescheduled"
        assert "09:00 UTC" in html
        assert "14:00 UTC" in html

        assert outbox_store.get_entry(record.id).processed_at is not None
        assert len(_audit_entries(session_factory, "worker_rescheduled_notified")) == 1


class TestAppointmentCancelled:

    def test_notifies_patient_with_reason(self, handler_context, booked, write_service, outbox_store,
                                          session_factory, mock_notifier):
        write_service.cancel_appointment(TENANT_ID, booked["id"], reason="clinic closed")
        record = _claim_one(outbox_store, "appointment.cancelled")

        dispatch_outbox_job("appointment.cancelled", _job_data(record))

        sms_text = mock_notifier.send_sms.call_args.args[1]
        assert "has been cancelled" in sms_text
        assert "clinic closed" in sms_text
        assert mock_notifier.send_email.call_count == 1
        assert len(_audit_entries(session_factory, "worker_cancelled_notified")) == 1


class TestDispatcher:
    """Failure handling in dispatch_outbox_job."""

    def test_missing_appointment_fails_job(self, handler_context, seeded, outbox_store, session_factory):
        from app.database import transaction_scope
        from app.services.outbox import OutboxEvent

        with transaction_scope(session_factory) as session:
            outbox_id = outbox_store.append(session, OutboxEvent(
                tenant_id=TENANT_ID,
                aggregate_type="appointment",
                aggregate_id="gone",
                event_type="appointment.created",
                payload={"appointment": {"id": "gone"}},
            ))
        record = outbox_store.get_entry(outbox_id)

        with pytest.raises(AppointmentNotFoundError):
            dispatch_outbox_job("appointment.created", _job_data(record))

        entry = outbox_store.get_entry(outbox_id)
        assert entry.processed_at is None
        assert entry.last_error.startswith("AppointmentNotFoundError: appointment_not_found")

    def test_unknown_event_type_is_acknowledged(self, handler_context, booked, outbox_store):
        record = _claim_one(outbox_store, "appointment.created")

        dispatch_outbox_job("appointment.archived", _job_data(record))

        assert outbox_store.get_entry(record.id).processed_at is not None

    def test_malformed_job_data_is_rejected(self, handler_context, booked, outbox_store):
        record = _claim_one(outbox_store, "appointment.created")
        data = _job_data(record)
        del data["tenant_id"]

        with pytest.raises(ValidationError):
            dispatch_outbox_job("appointment.created", data)

        assert outbox_store.get_entry(record.id).last_error.startswith("ValidationError")

    def test_malformed_payload_is_rejected(self, handler_context, booked, outbox_store):
        """A created payload routed to the rescheduled handler lacks old/new."""
        record = _claim_one(outbox_store, "appointment.created")

        with pytest.raises(ValidationError):
            dispatch_outbox_job("appointment.rescheduled", _job_data(record))

        assert outbox_store.get_entry(record.id).processed_at is None


class TestWorkerEndToEnd:
    """Relay -> dramatiq StubBroker -> worker -> handler -> mark_processed."""

    def _run(self, outbox_store, retry_policy, fail_fast=None):
        from dramatiq import Worker

        from app.actors import broker
        from app.config import settings
        from app.services.dispatch_queue import DispatchQueue
        from app.services.outbox_relay import OutboxRelay

        relay = OutboxRelay(
            store=outbox_store,
            dispatch_queue=DispatchQueue(broker),
            retry_policy=retry_policy,
        )
        worker = Worker(broker, worker_timeout=100)
        worker.start()
        try:
            assert relay.run_once() == 1
            broker.join(settings.outbox_queue_name, fail_fast=fail_fast)
            worker.join()
        finally:
            worker.stop()
            broker.flush_all()

        return outbox_store.list_entries()[0]

    def test_job_processed_by_worker(self, handler_context, booked, outbox_store, mock_notifier):
        from app.services.dispatch_queue import RetryPolicy

        entry = self._run(outbox_store, RetryPolicy(max_retries=0))

        assert entry.processed_at is not None
        assert entry.attempts == 1
        assert mock_notifier.send_sms.call_count == 1

    def test_transient_failure_retried_without_alert(self, handler_context, booked, outbox_store, mock_notifier):
        """A job that fails once and then succeeds is not reported as poison."""
        from app.handlers import appointments
        from app.services.dispatch_queue import RetryPolicy

        real_load = appointments.load_appointment_view
        calls = []

        def flaky_load(*args, **kwargs):
            calls.append(args)
            if len(calls) == 1:
                raise RuntimeError("database restarting")
            return real_load(*args, **kwargs)

        with patch("app.handlers.appointments.load_appointment_view", side_effect=flaky_load), \
                patch("app.services.failure_notifier.notify_poison_outbox_entry") as notify:
            entry = self._run(outbox_store, RetryPolicy(max_retries=3, min_backoff_ms=1, max_backoff_ms=10))

        assert len(calls) == 2
        assert entry.processed_at is not None
        notify.assert_not_called()

    def test_exhausted_retries_alert_once(self, handler_context, booked, outbox_store, mock_notifier):
        from app.services.dispatch_queue import RetryPolicy

        with patch("app.handlers.appointments.load_appointment_view",
                   side_effect=RuntimeError("database down")) as load, \
                patch("app.services.failure_notifier.notify_poison_outbox_entry") as notify:
            entry = self._run(
                outbox_store,
                RetryPolicy(max_retries=1, min_backoff_ms=1, max_backoff_ms=10),
                fail_fast=False,
            )

        assert load.call_count == 2
        notify.assert_called_once_with(entry.id, "appointment.created", "retries exhausted (1/1)")
        assert entry.processed_at is None
        assert entry.last_error == "RuntimeError: database down"


class TestPoisonCallback:

    def test_reports_outbox_entry(self):
        message_data = {"args": ["appointment.created", {"outbox_id": "ob-9"}]}

        with patch("app.services.failure_notifier.notify_poison_outbox_entry") as notify:
            report_poison_outbox_job(message_data, {"retries": 4, "max_retries": 4})

        notify.assert_called_once_with("ob-9", "appointment.created", "retries exhausted (4/4)")

    def test_ignores_message_without_outbox_id(self):
        with patch("app.services.failure_notifier.notify_poison_outbox_entry") as notify:
            report_poison_outbox_job({"args": []}, {"retries": 0, "max_retries": 0})

        notify.assert_not_called()

    def test_registered_for_exhausted_retries_only(self):
        from app.actors.outbox_dispatcher import POISON_CALLBACK_ACTOR_NAME

        options = dispatch_outbox_job.options
        assert options["on_retry_exhausted"] == POISON_CALLBACK_ACTOR_NAME
        assert "on_failure" not in options

    def test_rejected_job_data_is_reported_by_dispatcher(self, handler_context, booked, outbox_store):
        """Malformed data is never retried, so the dispatcher alerts for it directly."""
        record = _claim_one(outbox_store, "appointment.created")
        data = _job_data(record)
        del data["tenant_id"]

        with patch("app.services.failure_notifier.notify_poison_outbox_entry") as notify, \
                pytest.raises(ValidationError):
            dispatch_outbox_job("appointment.created", data)

        notify.assert_called_once()
        outbox_id, event_type, error = notify.call_args.args
        assert (outbox_id, event_type) == (record.id, "appointment.created")
        assert error.startswith("ValidationError")

    def test_retryable_failure_is_not_reported_by_dispatcher(self, handler_context, seeded, outbox_store):
        from app.database import transaction_scope
        from app.services.outbox import OutboxEvent

        with transaction_scope(outbox_store.session_factory) as session:
            outbox_id = outbox_store.append(session, OutboxEvent(
                tenant_id=TENANT_ID,
                aggregate_type="appointment",
                aggregate_id="gone",
                event_type="appointment.created",
                payload={"appointment": {"id": "gone"}},
            ))

        with patch("app.services.failure_notifier.notify_poison_outbox_entry") as notify, \
                pytest.raises(AppointmentNotFoundError):
            dispatch_outbox_job("appointment.created", _job_data(outbox_store.get_entry(outbox_id)))

        notify.assert_not_called()
