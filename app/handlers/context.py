"""
Handler dependencies
"""

from dataclasses import dataclass

from sqlalchemy.orm import sessionmaker

from app.services.ai_enrichment import AIEnrichmentService
from app.services.audit_log import AuditLogWriter, audit_log_writer
from app.services.idempotency import IdempotencyService
from app.services.notifications import NotificationService
from app.services.outbox import OutboxStore


class AppointmentNotFoundError(LookupError):
    """The aggregate referenced by a job no longer exists (retried by the queue)."""

    def __init__(self, tenant_id: str, appointment_id: str):
        super().__init__(f"appointment_not_found: {appointment_id} (tenant {tenant_id})")
        self.tenant_id = tenant_id
        self.appointment_id = appointment_id


@dataclass
class HandlerContext:
    session_factory: sessionmaker
    outbox_store: OutboxStore
    notifier: NotificationService
    enricher: AIEnrichmentService
    idempotency: IdempotencyService
    audit_writer: AuditLogWriter = audit_log_writer


def build_handler_context() -> HandlerContext:
    """
    Wire handler dependencies from settings.

    Initializes the database on first use inside a worker process.
    """
    from app import database

    if database.SessionLocal is None:
        database.init_db()
    if database.SessionLocal is None:
        raise RuntimeError("DATABASE_URL not configured - outbox jobs cannot be handled")

    session_factory = database.SessionLocal
    return HandlerContext(
        session_factory=session_factory,
        outbox_store=OutboxStore(session_factory),
        notifier=NotificationService(),
        enricher=AIEnrichmentService(),
        idempotency=IdempotencyService(session_factory),
    )


_context = None


def get_handler_context() -> HandlerContext:
    """Process-wide context, built on first use."""
    global _context
    if _context is None:
        _context = build_handler_context()
    return _context


def set_handler_context(context) -> None:
    """Replace (or with None, drop) the cached context."""
    global _context
    _context = context
