"""
IdempotencyKey Model
Records notification sends so redelivered outbox jobs skip channels already delivered
"""

from sqlalchemy import Column, Integer, String, DateTime, JSON, Index
from sqlalchemy.sql import func
from app.database import Base


class IdempotencyKey(Base):
    """
    Idempotency key storage for side effects of outbox jobs.

    Key format: {outbox_id}:{channel}:{recipient}. Holds the provider result of the
    first successful send. Expired keys are removed by the outbox health job.
    """
    __tablename__ = "idempotency_keys"

    # Primary Key
    id = Column(Integer, primary_key=True, autoincrement=True)

    # Idempotency Key
    key = Column(String(255), unique=True, nullable=False, index=True)

    # Cached provider result, e.g. {"provider": "twilio", "id": "SM...", "success": true}
    result = Column(JSON, nullable=True)

    # Timestamps
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False)

    # Index for cleanup queries
    __table_args__ = (
        Index('ix_idempotency_expires_at', 'expires_at'),
    )

    def __repr__(self):
        return f"<IdempotencyKey(id={self.id}, key='{self.key}', expires_at={self.expires_at})>"
