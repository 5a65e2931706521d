"""
OutboxEntry Model
Domain events co-committed with appointment writes, relayed to the dispatch queue
"""

import uuid

from sqlalchemy import Column, Integer, String, DateTime, Text, JSON, Index
from sqlalchemy.sql import func
from app.database import Base


class OutboxEntry(Base):
    """
    Transactional outbox for reliable event delivery.

    Lifecycle:
    - inserted by the write service inside the mutation transaction
    - claimed by the relay (locked_at = now, attempts + 1)
    - processed_at set by the handler on success, last_error on failure

    processed_at IS NULL means pending or in flight. locked_at is a soft lease:
    once older than the lease window any relay may claim the row again.
    """
    __tablename__ = "hms_outbox"

    # Primary Key
    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))

    # Aggregate Information
    tenant_id = Column(String(36), nullable=False)
    aggregate_type = Column(String(100), nullable=False)
    # e.g., 'appointment'
    aggregate_id = Column(String(36), nullable=True)

    # Event Details
    event_type = Column(String(100), nullable=False)
    # e.g., 'appointment.created'
    payload = Column(JSON, nullable=False)
    # Snapshot of the aggregate at commit time (hint, not truth)

    # Delivery state
    attempts = Column(Integer, default=0, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    locked_at = Column(DateTime(timezone=True), nullable=True)
    processed_at = Column(DateTime(timezone=True), nullable=True)
    last_error = Column(Text, nullable=True)

    # Indexes for efficient claiming of unprocessed rows
    __table_args__ = (
        Index('ix_outbox_unprocessed', 'processed_at', 'locked_at'),
        Index('ix_outbox_created_at', 'created_at'),
        Index('ix_outbox_tenant', 'tenant_id'),
    )

    def __repr__(self):
        return (
            f"<OutboxEntry(id={self.id}, event='{self.event_type}', attempts={self.attempts}, "
            f"processed={self.processed_at is not None})>"
        )
