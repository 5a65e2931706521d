"""
Appointment Write Service
Create / reschedule / cancel appointments with audit and outbox rows in the same transaction
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import structlog
from sqlalchemy import and_, not_, or_
from sqlalchemy.orm import Session, sessionmaker

from app.config import settings
from app.database import transaction_scope, utcnow
from app.models.appointment import Appointment, AppointmentStatus, Clinician, Patient
from app.models.event_schemas import (
    APPOINTMENT_AGGREGATE,
    APPOINTMENT_CANCELLED,
    APPOINTMENT_CREATED,
    APPOINTMENT_RESCHEDULED,
)
from app.services.audit_log import AuditLogWriter, audit_log_writer
from app.services.outbox import OutboxEvent, OutboxStore
from app.services.resource_lock import ResourceLockManager, clinician_lock_key, resource_lock_manager

logger = structlog.get_logger(__name__)

ERROR_CONFLICT = "conflict"
ERROR_NOT_FOUND = "not_found"
ERROR_VALIDATION = "validation_error"
ERROR_SERVER = "server_error"

LIST_LIMIT_MIN = 50
LIST_LIMIT_MAX = 2000

METADATA_FIELDS = ("type", "mode", "priority", "notes", "source", "company_id")


@dataclass
class WriteResult:
    """
    Outcome of a write operation.

    Expected failures (conflict, not found, bad range) are results, not
    exceptions, so the HTTP layer maps them to status codes.
    """
    ok: bool
    appointment: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    conflict_ids: List[str] = field(default_factory=list)
    detail: Optional[str] = None

    @classmethod
    def success(cls, appointment: Dict[str, Any]) -> "WriteResult":
        return cls(ok=True, appointment=appointment)

    @classmethod
    def conflict(cls, conflict_ids: List[str]) -> "WriteResult":
        return cls(ok=False, error=ERROR_CONFLICT, conflict_ids=list(conflict_ids))

    @classmethod
    def not_found(cls) -> "WriteResult":
        return cls(ok=False, error=ERROR_NOT_FOUND)

    @classmethod
    def validation_error(cls, detail: str) -> "WriteResult":
        return cls(ok=False, error=ERROR_VALIDATION, detail=detail)

    @classmethod
    def server_error(cls, detail: str) -> "WriteResult":
        return cls(ok=False, error=ERROR_SERVER, detail=detail)

    def to_dict(self) -> dict:
        if self.ok:
            return {"ok": True, "appointment": self.appointment}
        body = {"error": self.error}
        if self.error == ERROR_CONFLICT:
            body["conflict_ids"] = self.conflict_ids
        if self.detail is not None:
            body["detail"] = self.detail
        return body


def to_utc(value: datetime) -> datetime:
    """Normalize to aware UTC; naive input is taken to be UTC already."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _validate_range(starts_at: Optional[datetime], ends_at: Optional[datetime]) -> Optional[str]:
    if starts_at is None or ends_at is None:
        return "starts_at and ends_at are required"
    if to_utc(starts_at) >= to_utc(ends_at):
        return "starts_at must be before ends_at"
    return None


class AppointmentWriteService:
    """
    Performs one appointment mutation per transaction.

    Every write follows the same order inside a single transaction:
    row lock (reschedule/cancel) -> clinician lock -> overlap check ->
    mutation -> audit entry -> outbox entry -> commit. Any exception rolls the
    whole transaction back, so an audit or outbox row never exists without
    its mutation.
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        outbox_store: Optional[OutboxStore] = None,
        lock_manager: Optional[ResourceLockManager] = None,
        audit_writer: Optional[AuditLogWriter] = None,
        statement_timeout_ms: Optional[int] = None,
    ):
        self.session_factory = session_factory
        self.outbox_store = outbox_store or OutboxStore(session_factory)
        self.lock_manager = lock_manager or resource_lock_manager
        self.audit_writer = audit_writer or audit_log_writer
        self.statement_timeout_ms = (
            statement_timeout_ms if statement_timeout_ms is not None else settings.write_statement_timeout_ms
        )
        self.logger = logger.bind(service="appointment_writes")

    # -- writes ------------------------------------------------------------

    def create_appointment(
        self,
        tenant_id: str,
        clinician_id: str,
        patient_id: str,
        starts_at: datetime,
        ends_at: datetime,
        actor_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> WriteResult:
        log = self.logger.bind(operation="create", tenant_id=tenant_id, clinician_id=clinician_id)

        problem = _validate_range(starts_at, ends_at)
        if problem:
            return WriteResult.validation_error(problem)
        starts_at, ends_at = to_utc(starts_at), to_utc(ends_at)
        metadata = {k: v for k, v in (metadata or {}).items() if k in METADATA_FIELDS and v is not None}

        try:
            with self._transaction() as session:
                self.lock_manager.acquire(session, clinician_lock_key(tenant_id, clinician_id))

                conflict_ids = self._find_conflicts(session, tenant_id, clinician_id, starts_at, ends_at)
                if conflict_ids:
                    log.info("appointment_conflict", conflict_ids=conflict_ids)
                    return WriteResult.conflict(conflict_ids)

                appointment = Appointment(
                    tenant_id=tenant_id,
                    clinician_id=clinician_id,
                    patient_id=patient_id,
                    starts_at=starts_at,
                    ends_at=ends_at,
                    status=AppointmentStatus.SCHEDULED.value,
                    created_by=actor_id,
                    created_at=utcnow(),
                    **metadata,
                )
                session.add(appointment)
                session.flush()
                snapshot = appointment.to_dict()

                self.audit_writer.record(
                    session,
                    tenant_id=tenant_id,
                    aggregate_id=appointment.id,
                    event="created",
                    payload={"old": None, "new": snapshot, "source": snapshot["source"]},
                    created_by=actor_id,
                )
                self.outbox_store.append(session, OutboxEvent(
                    tenant_id=tenant_id,
                    aggregate_type=APPOINTMENT_AGGREGATE,
                    aggregate_id=appointment.id,
                    event_type=APPOINTMENT_CREATED,
                    payload={"appointment": snapshot},
                ))

            log.info("appointment_created", appointment_id=snapshot["id"])
            return WriteResult.success(snapshot)

        except Exception as e:
            log.error("appointment_write_failed", error=str(e), exc_info=True)
            return WriteResult.server_error(self._error_detail(e))

    def reschedule_appointment(
        self,
        tenant_id: str,
        appointment_id: str,
        starts_at: datetime,
        ends_at: datetime,
        actor_id: Optional[str] = None,
    ) -> WriteResult:
        log = self.logger.bind(operation="reschedule", tenant_id=tenant_id, appointment_id=appointment_id)

        problem = _validate_range(starts_at, ends_at)
        if problem:
            return WriteResult.validation_error(problem)
        starts_at, ends_at = to_utc(starts_at), to_utc(ends_at)

        try:
            with self._transaction() as session:
                appointment = self._load_for_update(session, tenant_id, appointment_id)
                if appointment is None or appointment.is_cancelled:
                    log.info("appointment_not_reschedulable", found=appointment is not None)
                    return WriteResult.not_found()

                self.lock_manager.acquire(session, clinician_lock_key(tenant_id, appointment.clinician_id))

                conflict_ids = self._find_conflicts(
                    session, tenant_id, appointment.clinician_id, starts_at, ends_at, exclude_id=appointment.id
                )
                if conflict_ids:
                    log.info("appointment_conflict", conflict_ids=conflict_ids)
                    return WriteResult.conflict(conflict_ids)

                old = appointment.to_dict()
                appointment.starts_at = starts_at
                appointment.ends_at = ends_at
                appointment.updated_at = utcnow()
                appointment.updated_by = actor_id
                session.flush()
                new = appointment.to_dict()

                self.audit_writer.record(
                    session,
                    tenant_id=tenant_id,
                    aggregate_id=appointment.id,
                    event="rescheduled",
                    payload={"old": old, "new": new},
                    created_by=actor_id,
                )
                self.outbox_store.append(session, OutboxEvent(
                    tenant_id=tenant_id,
                    aggregate_type=APPOINTMENT_AGGREGATE,
                    aggregate_id=appointment.id,
                    event_type=APPOINTMENT_RESCHEDULED,
                    payload={"old": old, "new": new, "changed_by": actor_id},
                ))

            log.info("appointment_rescheduled", old_starts_at=old["starts_at"], new_starts_at=new["starts_at"])
            return WriteResult.success(new)

        except Exception as e:
            log.error("appointment_write_failed", error=str(e), exc_info=True)
            return WriteResult.server_error(self._error_detail(e))

    def cancel_appointment(
        self,
        tenant_id: str,
        appointment_id: str,
        actor_id: Optional[str] = None,
        reason: Optional[str] = None,
    ) -> WriteResult:
        log = self.logger.bind(operation="cancel", tenant_id=tenant_id, appointment_id=appointment_id)

        try:
            with self._transaction() as session:
                appointment = self._load_for_update(session, tenant_id, appointment_id)
                if appointment is None:
                    return WriteResult.not_found()

                if appointment.is_cancelled:
                    # Repeated cancel: success, but no second audit/outbox row
                    log.info("appointment_already_cancelled")
                    return WriteResult.success(appointment.to_dict())

                self.lock_manager.acquire(session, clinician_lock_key(tenant_id, appointment.clinician_id))

                old_status = appointment.status
                appointment.status = AppointmentStatus.CANCELLED.value
                appointment.updated_at = utcnow()
                appointment.updated_by = actor_id
                session.flush()
                snapshot = appointment.to_dict()

                self.audit_writer.record(
                    session,
                    tenant_id=tenant_id,
                    aggregate_id=appointment.id,
                    event="cancelled",
                    payload={"old": {"status": old_status}, "new": snapshot, "reason": reason},
                    created_by=actor_id,
                )
                self.outbox_store.append(session, OutboxEvent(
                    tenant_id=tenant_id,
                    aggregate_type=APPOINTMENT_AGGREGATE,
                    aggregate_id=appointment.id,
                    event_type=APPOINTMENT_CANCELLED,
                    payload={"appointment": snapshot, "cancelled_by": actor_id, "reason": reason},
                ))

            log.info("appointment_cancelled")
            return WriteResult.success(snapshot)

        except Exception as e:
            log.error("appointment_write_failed", error=str(e), exc_info=True)
            return WriteResult.server_error(self._error_detail(e))

    # -- reads -------------------------------------------------------------

    def get_appointment(self, tenant_id: str, appointment_id: str) -> Optional[dict]:
        """Appointment with patient and clinician contact details, or None."""
        session: Session = self.session_factory()
        try:
            row = session.query(Appointment, Patient, Clinician).outerjoin(
                Patient, and_(Patient.id == Appointment.patient_id, Patient.tenant_id == Appointment.tenant_id)
            ).outerjoin(
                Clinician, and_(Clinician.id == Appointment.clinician_id, Clinician.tenant_id == Appointment.tenant_id)
            ).filter(
                Appointment.tenant_id == tenant_id,
                Appointment.id == appointment_id,
            ).first()

            if row is None:
                return None

            appointment, patient, clinician = row
            result = appointment.to_dict()
            result["patient"] = contact_details(patient)
            result["clinician"] = contact_details(clinician)
            return result
        finally:
            session.close()

    def list_appointments(
        self,
        tenant_id: str,
        clinician_id: Optional[str] = None,
        patient_id: Optional[str] = None,
        range_from: Optional[datetime] = None,
        range_to: Optional[datetime] = None,
        limit: int = 500,
    ) -> List[dict]:
        """
        Appointments touching [range_from, range_to], ordered by start time.

        limit is clamped to [50, 2000].
        """
        limit = min(LIST_LIMIT_MAX, max(LIST_LIMIT_MIN, limit))

        session: Session = self.session_factory()
        try:
            query = session.query(Appointment, Patient, Clinician).outerjoin(
                Patient, and_(Patient.id == Appointment.patient_id, Patient.tenant_id == Appointment.tenant_id)
            ).outerjoin(
                Clinician, and_(Clinician.id == Appointment.clinician_id, Clinician.tenant_id == Appointment.tenant_id)
            ).filter(Appointment.tenant_id == tenant_id)

            if clinician_id:
                query = query.filter(Appointment.clinician_id == clinician_id)
            if patient_id:
                query = query.filter(Appointment.patient_id == patient_id)
            if range_from is not None:
                query = query.filter(Appointment.ends_at >= to_utc(range_from))
            if range_to is not None:
                query = query.filter(Appointment.starts_at <= to_utc(range_to))

            items = []
            for appointment, patient, clinician in query.order_by(Appointment.starts_at.asc()).limit(limit).all():
                item = appointment.to_dict()
                item["patient_name"] = patient.full_name if patient else None
                item["clinician_name"] = clinician.full_name if clinician else None
                items.append(item)
            return items
        finally:
            session.close()

    # -- internals -----------------------------------------------------------

    def _transaction(self):
        return transaction_scope(self.session_factory, statement_timeout_ms=self.statement_timeout_ms)

    @staticmethod
    def _load_for_update(session: Session, tenant_id: str, appointment_id: str) -> Optional[Appointment]:
        return session.query(Appointment).filter(
            Appointment.tenant_id == tenant_id,
            Appointment.id == appointment_id,
        ).with_for_update().first()

    @staticmethod
    def _find_conflicts(
        session: Session,
        tenant_id: str,
        clinician_id: str,
        starts_at: datetime,
        ends_at: datetime,
        exclude_id: Optional[str] = None,
    ) -> List[str]:
        """
        Ids of live appointments intersecting [starts_at, ends_at).

        Touching ranges do not conflict: NOT (ends_at <= :start OR starts_at >= :end).
        """
        query = session.query(Appointment.id).filter(
            Appointment.tenant_id == tenant_id,
            Appointment.clinician_id == clinician_id,
            Appointment.status != AppointmentStatus.CANCELLED.value,
            not_(or_(Appointment.ends_at <= starts_at, Appointment.starts_at >= ends_at)),
        )
        if exclude_id is not None:
            query = query.filter(Appointment.id != exclude_id)
        return [row.id for row in query.order_by(Appointment.starts_at).all()]

    @staticmethod
    def _error_detail(error: Exception) -> str:
        if settings.environment == "production":
            return "internal error"
        return str(error) or type(error).__name__


def contact_details(person) -> Optional[dict]:
    if person is None:
        return None
    return {
        "id": person.id,
        "first_name": person.first_name,
        "last_name": person.last_name,
        "full_name": person.full_name,
        "phone": person.phone,
        "email": person.email,
    }
