"""
Database Models
"""

from app.models.appointment import Appointment, AppointmentStatus, Patient, Clinician
from app.models.audit_log import AuditLogEntry
from app.models.outbox_entry import OutboxEntry
from app.models.idempotency_key import IdempotencyKey

__all__ = [
    "Appointment",
    "AppointmentStatus",
    "Patient",
    "Clinician",
    "AuditLogEntry",
    "OutboxEntry",
    "IdempotencyKey",
]
