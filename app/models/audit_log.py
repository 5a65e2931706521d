"""
AuditLogEntry Model
Immutable record of every appointment mutation and every worker completion
"""

import uuid

from sqlalchemy import Column, String, DateTime, JSON, Index
from sqlalchemy.sql import func
from app.database import Base


class AuditLogEntry(Base):
    """
    Append-only audit trail.

    Mutation entries are written inside the same transaction as the mutation.
    Worker completion entries are written best-effort after delivery.
    Rows are never updated or deleted.
    """
    __tablename__ = "hms_audit_logs"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    tenant_id = Column(String(36), nullable=False)
    aggregate_id = Column(String(36), nullable=False)

    # e.g. 'created', 'rescheduled', 'cancelled', 'worker_notified'
    event = Column(String(100), nullable=False)
    payload = Column(JSON, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    created_by = Column(String(36), nullable=True)  # NULL for worker entries

    __table_args__ = (
        Index('ix_audit_logs_aggregate', 'tenant_id', 'aggregate_id'),
    )

    def __repr__(self):
        return f"<AuditLogEntry(id={self.id}, aggregate={self.aggregate_id}, event='{self.event}')>"
