"""
Audit Log Writer
Appends hms_audit_logs rows for appointment mutations and worker completions
"""

from typing import Any, Dict, Optional

import structlog
from sqlalchemy.orm import Session, sessionmaker

from app.database import transaction_scope, utcnow
from app.models.audit_log import AuditLogEntry

logger = structlog.get_logger(__name__)


class AuditLogWriter:
    """
    Does NOT commit in record() - caller controls the transaction, so the audit
    row lives or dies with the mutation it describes.
    """

    def record(
        self,
        session: Session,
        tenant_id: str,
        aggregate_id: str,
        event: str,
        payload: Optional[Dict[str, Any]] = None,
        created_by: Optional[str] = None,
    ) -> AuditLogEntry:
        entry = AuditLogEntry(
            tenant_id=tenant_id,
            aggregate_id=aggregate_id,
            event=event,
            payload=payload or {},
            created_by=created_by,
            created_at=utcnow(),
        )
        session.add(entry)
        session.flush()
        return entry

    def record_best_effort(
        self,
        session_factory: sessionmaker,
        tenant_id: str,
        aggregate_id: str,
        event: str,
        payload: Optional[Dict[str, Any]] = None,
    ) -> bool:
        """
        Write a completion entry in its own transaction.

        Failures are logged and swallowed so they never mask the outcome of the
        job that produced them.
        """
        try:
            with transaction_scope(session_factory) as session:
                self.record(session, tenant_id, aggregate_id, event, payload)
            return True
        except Exception as e:
            logger.warning(
                "audit_completion_write_failed",
                tenant_id=tenant_id,
                aggregate_id=aggregate_id,
                audit_event=event,
                error=str(e),
            )
            return False


audit_log_writer = AuditLogWriter()
