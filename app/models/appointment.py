"""
Appointment Models
Appointments plus the patient/clinician rows the event handlers read
"""

import enum
import uuid
from datetime import timezone

from sqlalchemy import Column, String, DateTime, Text, Index
from sqlalchemy.sql import func
from app.database import Base


def _new_id() -> str:
    return str(uuid.uuid4())


class AppointmentStatus(str, enum.Enum):
    SCHEDULED = "scheduled"
    CANCELLED = "cancelled"


class Patient(Base):
    """
    Patient contact details (owned by the patient CRUD screens, read-only here)
    """
    __tablename__ = "hms_patients"

    id = Column(String(36), primary_key=True, default=_new_id)
    tenant_id = Column(String(36), nullable=False, index=True)
    first_name = Column(String(255), nullable=True)
    last_name = Column(String(255), nullable=True)
    phone = Column(String(50), nullable=True)
    email = Column(String(255), nullable=True)

    @property
    def full_name(self) -> str:
        return f"{self.first_name or ''} {self.last_name or ''}".strip()


class Clinician(Base):
    """
    Clinician contact details. A clinician is the lockable resource for scheduling.
    """
    __tablename__ = "hms_clinicians"

    id = Column(String(36), primary_key=True, default=_new_id)
    tenant_id = Column(String(36), nullable=False, index=True)
    first_name = Column(String(255), nullable=True)
    last_name = Column(String(255), nullable=True)
    phone = Column(String(50), nullable=True)
    email = Column(String(255), nullable=True)

    @property
    def full_name(self) -> str:
        return f"{self.first_name or ''} {self.last_name or ''}".strip()


class Appointment(Base):
    """
    Appointment aggregate.

    Occupies the half-open range [starts_at, ends_at) of one clinician's calendar.
    Never hard-deleted: cancellation flips status to 'cancelled', which frees the range.
    """
    __tablename__ = "hms_appointments"

    # Primary Key
    id = Column(String(36), primary_key=True, default=_new_id)

    # Tenancy
    tenant_id = Column(String(36), nullable=False)
    company_id = Column(String(36), nullable=True)

    # Participants
    patient_id = Column(String(36), nullable=False)
    clinician_id = Column(String(36), nullable=False)

    # Time range [starts_at, ends_at)
    starts_at = Column(DateTime(timezone=True), nullable=False)
    ends_at = Column(DateTime(timezone=True), nullable=False)

    # Lifecycle
    status = Column(String(20), nullable=False, default=AppointmentStatus.SCHEDULED.value)

    # Free-form metadata
    type = Column(String(50), nullable=False, default="consultation")
    mode = Column(String(50), nullable=False, default="in_person")
    priority = Column(String(20), nullable=False, default="normal")
    notes = Column(Text, nullable=True)
    source = Column(String(50), nullable=False, default="api")

    # Audit columns
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    created_by = Column(String(36), nullable=True)
    updated_at = Column(DateTime(timezone=True), nullable=True)
    updated_by = Column(String(36), nullable=True)

    # Overlap queries always filter by tenant + clinician
    __table_args__ = (
        Index('ix_appointments_clinician_range', 'tenant_id', 'clinician_id', 'starts_at', 'ends_at'),
        Index('ix_appointments_patient', 'tenant_id', 'patient_id'),
    )

    @property
    def is_cancelled(self) -> bool:
        return self.status == AppointmentStatus.CANCELLED.value

    def to_dict(self) -> dict:
        """JSON-ready snapshot used for audit and outbox payloads."""
        def iso(value):
            if value is None:
                return None
            if value.tzinfo is None:
                # SQLite hands back naive values; everything is stored as UTC
                value = value.replace(tzinfo=timezone.utc)
            return value.isoformat()

        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "company_id": self.company_id,
            "patient_id": self.patient_id,
            "clinician_id": self.clinician_id,
            "starts_at": iso(self.starts_at),
            "ends_at": iso(self.ends_at),
            "status": self.status,
            "type": self.type,
            "mode": self.mode,
            "priority": self.priority,
            "notes": self.notes,
            "source": self.source,
            "created_at": iso(self.created_at),
            "created_by": self.created_by,
            "updated_at": iso(self.updated_at),
            "updated_by": self.updated_by,
        }

    def __repr__(self):
        return f"<Appointment(id={self.id}, clinician={self.clinician_id}, status='{self.status}')>"
