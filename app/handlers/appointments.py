"""
Appointment Event Handlers
Notify patients and clinicians about appointment changes
"""

from dataclasses import dataclass
from typing import Callable, Dict

import structlog
from sqlalchemy.orm import Session, sessionmaker

from app.handlers import on_job
from app.handlers.context import AppointmentNotFoundError, HandlerContext
from app.models.appointment import Appointment, AppointmentStatus, Clinician, Patient
from app.models.event_schemas import (
    APPOINTMENT_CANCELLED,
    APPOINTMENT_CREATED,
    APPOINTMENT_RESCHEDULED,
    OutboxJob,
)
from app.services.appointments import contact_details
from app.services.idempotency import notification_key
from app.services.monitoring.error_tracking import add_breadcrumb
from app.services.notification_templates import format_when, notification_renderer

logger = structlog.get_logger(__name__)

BLANK_CONTACT = {
    "id": None,
    "first_name": None,
    "last_name": None,
    "full_name": "",
    "phone": None,
    "email": None,
}


@dataclass
class AppointmentView:
    """Current state re-read from the database; the job payload is only a hint."""
    appointment: dict
    patient: dict
    clinician: dict

    @property
    def is_cancelled(self) -> bool:
        return self.appointment.get("status") == AppointmentStatus.CANCELLED.value


def load_appointment_view(session_factory: sessionmaker, tenant_id: str, appointment_id: str) -> AppointmentView:
    """
    Raises:
        AppointmentNotFoundError: If the appointment is gone
    """
    session: Session = session_factory()
    try:
        appointment = session.query(Appointment).filter(
            Appointment.tenant_id == tenant_id,
            Appointment.id == appointment_id,
        ).first()
        if appointment is None:
            raise AppointmentNotFoundError(tenant_id, appointment_id)

        patient = session.query(Patient).filter(
            Patient.tenant_id == tenant_id,
            Patient.id == appointment.patient_id,
        ).first()
        clinician = session.query(Clinician).filter(
            Clinician.tenant_id == tenant_id,
            Clinician.id == appointment.clinician_id,
        ).first()

        return AppointmentView(
            appointment=appointment.to_dict(),
            patient=contact_details(patient) or dict(BLANK_CONTACT),
            clinician=contact_details(clinician) or dict(BLANK_CONTACT),
        )
    finally:
        session.close()


def deliver(ctx: HandlerContext, job: OutboxJob, log, channel: str, recipient: str, send: Callable[[], dict]) -> dict:
    """
    Attempt one notification channel.

    Never raises. Skips the send when this outbox entry already reached the
    same recipient on the same channel (redelivered job).
    """
    if not recipient:
        log.info("notification_skipped", channel=channel, reason="no_recipient")
        return {"provider": None, "success": False, "error": "no_recipient"}

    key = notification_key(job.outbox_id, channel, recipient)
    previous = ctx.idempotency.check(key)
    if previous is not None:
        log.info("notification_already_sent", channel=channel, recipient=recipient)
        return dict(previous, skipped=True)

    try:
        result = send()
    except Exception as e:
        log.warning("notification_failed", channel=channel, recipient=recipient, error=str(e))
        return {"provider": None, "success": False, "error": str(e)}

    add_breadcrumb("notification", f"{channel} to {recipient}", data={"success": result.get("success")})
    if result.get("success"):
        ctx.idempotency.store(key, result)
    else:
        log.warning("notification_unsuccessful", channel=channel, recipient=recipient, error=result.get("error"))
    return result


def _notify_patient(ctx, job, log, view: AppointmentView, template: str, variables: dict) -> Dict[str, dict]:
    phone = view.patient.get("phone")
    email = view.patient.get("email")

    def sms():
        return ctx.notifier.send_sms(phone, notification_renderer.render_sms(template, variables))

    def mail():
        subject, html_body = notification_renderer.render_email(template, variables)
        return ctx.notifier.send_email(email, subject, html_body)

    return {
        "sms_patient": deliver(ctx, job, log, "sms", phone, sms),
        "email_patient": deliver(ctx, job, log, "email", email, mail),
    }


def _complete(ctx: HandlerContext, job: OutboxJob, event_type: str, audit_event: str, channels: dict, **extra) -> dict:
    ctx.audit_writer.record_best_effort(
        ctx.session_factory,
        tenant_id=job.tenant_id,
        aggregate_id=job.aggregate_id,
        event=audit_event,
        payload={
            "outbox_id": job.outbox_id,
            "event_type": event_type,
            "channels": {name: bool(result.get("success")) for name, result in channels.items()},
            **extra,
        },
    )
    return {"channels": channels, **extra}


@on_job(APPOINTMENT_CREATED)
def handle_appointment_created(job: OutboxJob, ctx: HandlerContext) -> dict:
    """
    AI pre-visit summary, then SMS + email to the patient and email to the clinician.
    """
    log = logger.bind(outbox_id=job.outbox_id, event_type=APPOINTMENT_CREATED, appointment_id=job.aggregate_id)
    job.payload_as(APPOINTMENT_CREATED)

    view = load_appointment_view(ctx.session_factory, job.tenant_id, job.aggregate_id)
    if view.is_cancelled:
        log.info("appointment_no_longer_scheduled")
        return _complete(ctx, job, APPOINTMENT_CREATED, "worker_notified", {}, skipped="cancelled")

    try:
        enrichment = ctx.enricher.generate_summary({
            "patient_name": view.patient["full_name"],
            "clinician_name": view.clinician["full_name"],
            "starts_at": view.appointment["starts_at"],
            "type": view.appointment.get("type"),
            "notes": view.appointment.get("notes"),
        })
    except Exception as e:
        enrichment = {"error": str(e)}
    summary = enrichment.get("summary")
    if summary is None:
        log.info("ai_summary_unavailable", error=enrichment.get("error"))

    variables = {
        "appointment": view.appointment,
        "patient": view.patient,
        "clinician": view.clinician,
        "when": format_when(view.appointment["starts_at"]),
        "summary": summary,
    }
    channels = _notify_patient(ctx, job, log, view, "created.patient", variables)

    clinician_email = view.clinician.get("email")

    def mail_clinician():
        subject, html_body = notification_renderer.render_email("created.clinician", variables)
        return ctx.notifier.send_email(clinician_email, subject, html_body)

    channels["email_clinician"] = deliver(ctx, job, log, "email", clinician_email, mail_clinician)

    log.info("appointment_created_handled", channels={k: v.get("success") for k, v in channels.items()})
    return _complete(ctx, job, APPOINTMENT_CREATED, "worker_notified", channels, summary_generated=summary is not None)


@on_job(APPOINTMENT_RESCHEDULED)
def handle_appointment_rescheduled(job: OutboxJob, ctx: HandlerContext) -> dict:
    log = logger.bind(outbox_id=job.outbox_id, event_type=APPOINTMENT_RESCHEDULED, appointment_id=job.aggregate_id)
    payload = job.payload_as(APPOINTMENT_RESCHEDULED)

    view = load_appointment_view(ctx.session_factory, job.tenant_id, job.aggregate_id)
    if view.is_cancelled:
        log.info("appointment_no_longer_scheduled")
        return _complete(ctx, job, APPOINTMENT_RESCHEDULED, "worker_rescheduled_notified", {}, skipped="cancelled")

    variables = {
        "appointment": view.appointment,
        "patient": view.patient,
        "clinician": view.clinician,
        "when": format_when(view.appointment["starts_at"]),
        "previous_when": format_when(payload.old.get("starts_at")) if payload.old.get("starts_at") else None,
    }
    channels = _notify_patient(ctx, job, log, view, "rescheduled.patient", variables)

    log.info("appointment_rescheduled_handled", channels={k: v.get("success") for k, v in channels.items()})
    return _complete(ctx, job, APPOINTMENT_RESCHEDULED, "worker_rescheduled_notified", channels)


@on_job(APPOINTMENT_CANCELLED)
def handle_appointment_cancelled(job: OutboxJob, ctx: HandlerContext) -> dict:
    log = logger.bind(outbox_id=job.outbox_id, event_type=APPOINTMENT_CANCELLED, appointment_id=job.aggregate_id)
    payload = job.payload_as(APPOINTMENT_CANCELLED)

    view = load_appointment_view(ctx.session_factory, job.tenant_id, job.aggregate_id)

    variables = {
        "appointment": view.appointment,
        "patient": view.patient,
        "clinician": view.clinician,
        "when": format_when(view.appointment["starts_at"]),
        "reason": payload.reason,
    }
    channels = _notify_patient(ctx, job, log, view, "cancelled.patient", variables)

    log.info("appointment_cancelled_handled", channels={k: v.get("success") for k, v in channels.items()})
    return _complete(ctx, job, APPOINTMENT_CANCELLED, "worker_cancelled_notified", channels)
