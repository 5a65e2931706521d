"""
Outbox Store
Durable at-least-once event log with lease-based claiming
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

import structlog
from sqlalchemy import func, or_, select, update
from sqlalchemy.orm import Session, sessionmaker

from app.config import settings
from app.database import transaction_scope, utcnow
from app.models.outbox_entry import OutboxEntry

logger = structlog.get_logger(__name__)

MAX_ERROR_LENGTH = 2000

STATE_PENDING = "pending"
STATE_PROCESSED = "processed"
STATE_FAILED = "failed"
ENTRY_STATES = (STATE_PENDING, STATE_PROCESSED, STATE_FAILED)


class OutboxTransactionRequired(RuntimeError):
    """Raised when append is called on a session with no open transaction."""


@dataclass
class OutboxEvent:
    """An event to co-commit with a business write."""
    tenant_id: str
    aggregate_type: str
    aggregate_id: Optional[str]
    event_type: str
    payload: Dict[str, Any] = field(default_factory=dict)


@dataclass
class OutboxRecord:
    """Detached snapshot of an hms_outbox row."""
    id: str
    tenant_id: str
    aggregate_type: str
    aggregate_id: Optional[str]
    event_type: str
    payload: Dict[str, Any]
    attempts: int
    created_at: Optional[datetime]
    locked_at: Optional[datetime] = None
    processed_at: Optional[datetime] = None
    last_error: Optional[str] = None

    @classmethod
    def from_row(cls, row) -> "OutboxRecord":
        """Build from an ORM instance or a Core result mapping."""
        get = row.get if hasattr(row, "get") else lambda name: getattr(row, name)
        return cls(
            id=get("id"),
            tenant_id=get("tenant_id"),
            aggregate_type=get("aggregate_type"),
            aggregate_id=get("aggregate_id"),
            event_type=get("event_type"),
            payload=get("payload") or {},
            attempts=get("attempts") or 0,
            created_at=get("created_at"),
            locked_at=get("locked_at"),
            processed_at=get("processed_at"),
            last_error=get("last_error"),
        )

    @property
    def state(self) -> str:
        if self.processed_at is not None:
            return STATE_PROCESSED
        if self.last_error:
            return STATE_FAILED
        return STATE_PENDING

    def to_dict(self) -> dict:
        def iso(value):
            return value.isoformat() if value is not None else None

        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "aggregate_type": self.aggregate_type,
            "aggregate_id": self.aggregate_id,
            "event_type": self.event_type,
            "payload": self.payload,
            "attempts": self.attempts,
            "state": self.state,
            "created_at": iso(self.created_at),
            "locked_at": iso(self.locked_at),
            "processed_at": iso(self.processed_at),
            "last_error": self.last_error,
        }


class OutboxStore:
    """
    Storage interface for hms_outbox.

    append() joins the caller's transaction so the event commits or rolls back
    with the business write. Every other operation opens and commits its own
    short transaction through the session factory.

    claim_batch() is a single UPDATE ... WHERE id IN (SELECT ... FOR UPDATE
    SKIP LOCKED) RETURNING statement: concurrent relays skip each other's
    candidates instead of waiting, and a relay that dies after claiming leaves
    a lease that expires after lease_seconds.
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        lease_seconds: Optional[int] = None,
        max_claim_attempts: Optional[int] = None,
    ):
        """
        Args:
            session_factory: SQLAlchemy sessionmaker (each call runs its own transaction)
            lease_seconds: Age after which a claim is considered stale
            max_claim_attempts: Stop claiming rows that were claimed this often (None = never stop)
        """
        self.session_factory = session_factory
        self.lease_seconds = lease_seconds if lease_seconds is not None else settings.outbox_lease_seconds
        self.max_claim_attempts = (
            max_claim_attempts if max_claim_attempts is not None else settings.outbox_max_claim_attempts
        )
        self.logger = logger.bind(service="outbox_store")

    # -- producer side ---------------------------------------------------

    def append(self, session: Session, event: OutboxEvent) -> str:
        """
        Insert an outbox entry inside the caller's open transaction.

        Raises:
            OutboxTransactionRequired: If the session has no active transaction
        """
        if session is None or not session.in_transaction():
            raise OutboxTransactionRequired(
                "outbox entries must be appended inside the business write transaction"
            )

        entry = OutboxEntry(
            tenant_id=event.tenant_id,
            aggregate_type=event.aggregate_type,
            aggregate_id=event.aggregate_id,
            event_type=event.event_type,
            payload=event.payload,
            attempts=0,
            created_at=utcnow(),
        )
        session.add(entry)
        session.flush()  # Get ID without committing

        self.logger.info(
            "outbox_appended",
            outbox_id=entry.id,
            event_type=entry.event_type,
            aggregate_id=entry.aggregate_id,
        )
        return entry.id

    # -- relay side --------------------------------------------------------

    def _claim_statement(self, limit: int, now: Optional[datetime] = None):
        """
        UPDATE ... WHERE id IN (SELECT ... FOR UPDATE SKIP LOCKED) RETURNING *.

        Without an explicit `now` the lease is stamped and expired by the
        database clock (now()), so relays on different hosts agree on it.
        """
        outbox = OutboxEntry.__table__
        if now is None:
            now = func.now()
            stale_before = func.now() - timedelta(seconds=self.lease_seconds)
        else:
            stale_before = now - timedelta(seconds=self.lease_seconds)

        candidates = (
            select(outbox.c.id)
            .where(outbox.c.processed_at.is_(None))
            .where(or_(outbox.c.locked_at.is_(None), outbox.c.locked_at < stale_before))
            .order_by(outbox.c.created_at)
            .limit(limit)
            .with_for_update(skip_locked=True)
        )
        if self.max_claim_attempts:
            candidates = candidates.where(outbox.c.attempts < self.max_claim_attempts)

        return (
            update(outbox)
            .where(outbox.c.id.in_(candidates.scalar_subquery()))
            .values(locked_at=now, attempts=outbox.c.attempts + 1)
            .returning(*outbox.c)
        )

    def claim_batch(self, limit: int, now: Optional[datetime] = None) -> List[OutboxRecord]:
        """
        Atomically lease up to `limit` unprocessed entries, oldest first.

        Eligible rows have processed_at IS NULL and either no lease or a lease
        older than lease_seconds. Claimed rows get locked_at = now and
        attempts + 1. The claim is committed before returning.

        On PostgreSQL `now` defaults to the database clock. SQLite stores
        timestamps as text, so there the host clock is used.
        """
        if limit <= 0:
            return []

        with transaction_scope(self.session_factory) as session:
            if now is None and session.get_bind().dialect.name != "postgresql":
                now = utcnow()
            rows = session.execute(self._claim_statement(limit, now)).mappings().all()
            records = [OutboxRecord.from_row(row) for row in rows]

        # RETURNING order is unspecified
        records.sort(key=lambda r: (r.created_at is None, r.created_at))

        if records:
            self.logger.info("outbox_batch_claimed", count=len(records), ids=[r.id for r in records])
        return records

    # -- consumer side ---------------------------------------------------

    def mark_processed(self, outbox_id: str) -> bool:
        """Set processed_at and clear last_error. Safe to repeat."""
        with transaction_scope(self.session_factory) as session:
            updated = session.query(OutboxEntry).filter(
                OutboxEntry.id == outbox_id
            ).update(
                {"processed_at": utcnow(), "last_error": None},
                synchronize_session=False,
            )

        if updated:
            self.logger.info("outbox_marked_processed", outbox_id=outbox_id)
        else:
            self.logger.warning("outbox_mark_processed_missing", outbox_id=outbox_id)
        return updated > 0

    def mark_failed(self, outbox_id: str, message: str) -> bool:
        """Record the latest failure (truncated). Safe to repeat."""
        error = (message or "unknown error")[:MAX_ERROR_LENGTH]
        with transaction_scope(self.session_factory) as session:
            updated = session.query(OutboxEntry).filter(
                OutboxEntry.id == outbox_id
            ).update({"last_error": error}, synchronize_session=False)

        if updated:
            self.logger.warning("outbox_marked_failed", outbox_id=outbox_id, error=error)
        else:
            self.logger.warning("outbox_mark_failed_missing", outbox_id=outbox_id)
        return updated > 0

    # -- operator side -------------------------------------------------------

    def get_entry(self, outbox_id: str, tenant_id: Optional[str] = None) -> Optional[OutboxRecord]:
        session: Session = self.session_factory()
        try:
            query = session.query(OutboxEntry).filter(OutboxEntry.id == outbox_id)
            if tenant_id is not None:
                query = query.filter(OutboxEntry.tenant_id == tenant_id)
            entry = query.first()
            return OutboxRecord.from_row(entry) if entry else None
        finally:
            session.close()

    def list_entries(
        self,
        tenant_id: Optional[str] = None,
        state: Optional[str] = None,
        limit: int = 100,
    ) -> List[OutboxRecord]:
        """
        List entries newest first.

        Args:
            tenant_id: Restrict to one tenant
            state: pending (unprocessed, no error), failed (unprocessed with
                last_error) or processed
            limit: Maximum rows
        """
        if state is not None and state not in ENTRY_STATES:
            raise ValueError(f"Unknown outbox state: {state}. Must be one of {', '.join(ENTRY_STATES)}")

        session: Session = self.session_factory()
        try:
            query = session.query(OutboxEntry)
            if tenant_id is not None:
                query = query.filter(OutboxEntry.tenant_id == tenant_id)
            if state == STATE_PENDING:
                query = query.filter(OutboxEntry.processed_at.is_(None), OutboxEntry.last_error.is_(None))
            elif state == STATE_FAILED:
                query = query.filter(OutboxEntry.processed_at.is_(None), OutboxEntry.last_error.isnot(None))
            elif state == STATE_PROCESSED:
                query = query.filter(OutboxEntry.processed_at.isnot(None))

            entries = query.order_by(OutboxEntry.created_at.desc()).limit(limit).all()
            return [OutboxRecord.from_row(entry) for entry in entries]
        finally:
            session.close()

    def requeue(self, outbox_id: str, reset_attempts: bool = False) -> bool:
        """
        Drop the lease of an unprocessed entry so the next claim picks it up.

        Returns False when the entry does not exist or is already processed.
        """
        values = {"locked_at": None}
        if reset_attempts:
            values["attempts"] = 0

        with transaction_scope(self.session_factory) as session:
            updated = session.query(OutboxEntry).filter(
                OutboxEntry.id == outbox_id,
                OutboxEntry.processed_at.is_(None),
            ).update(values, synchronize_session=False)

        self.logger.info("outbox_requeued", outbox_id=outbox_id, requeued=updated > 0, reset_attempts=reset_attempts)
        return updated > 0

    def stats(self, tenant_id: Optional[str] = None, now: Optional[datetime] = None) -> dict:
        """
        Counts for health reporting.

        in_flight: unprocessed with a live lease
        failed: unprocessed with last_error (includes poison entries)
        pending: every unprocessed entry
        """
        now = now or utcnow()
        stale_before = now - timedelta(seconds=self.lease_seconds)

        session: Session = self.session_factory()
        try:
            base = session.query(func.count(OutboxEntry.id))
            if tenant_id is not None:
                base = base.filter(OutboxEntry.tenant_id == tenant_id)

            unprocessed = base.filter(OutboxEntry.processed_at.is_(None))
            pending = unprocessed.scalar()
            in_flight = unprocessed.filter(
                OutboxEntry.locked_at.isnot(None),
                OutboxEntry.locked_at >= stale_before,
            ).scalar()
            failed = unprocessed.filter(OutboxEntry.last_error.isnot(None)).scalar()
            processed = base.filter(OutboxEntry.processed_at.isnot(None)).scalar()

            oldest_query = session.query(func.min(OutboxEntry.created_at)).filter(OutboxEntry.processed_at.is_(None))
            if tenant_id is not None:
                oldest_query = oldest_query.filter(OutboxEntry.tenant_id == tenant_id)
            oldest = oldest_query.scalar()
        finally:
            session.close()

        return {
            "pending": pending or 0,
            "in_flight": in_flight or 0,
            "failed": failed or 0,
            "processed": processed or 0,
            "oldest_pending_created_at": oldest.isoformat() if isinstance(oldest, datetime) else oldest,
        }
