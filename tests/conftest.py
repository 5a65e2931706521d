"""
Shared fixtures: in-memory SQLite database, seeded patient/clinician, handler context.
"""

import os

# Must be set before app.config is imported anywhere
os.environ["ENVIRONMENT"] = "testing"
os.environ.pop("REDIS_URL", None)
os.environ.pop("DATABASE_URL", None)
os.environ.pop("SMTP_HOST", None)
os.environ.pop("ANTHROPIC_API_KEY", None)

from datetime import datetime, timezone
from unittest.mock import Mock

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.database import Base
from app.models import Clinician, Patient
from app.services.monitoring.circuit_breakers import reset_breakers

TENANT_ID = "tenant-1"
PATIENT_ID = "patient-1"
CLINICIAN_ID = "clinician-1"


def at(hour: int, minute: int = 0, day: int = 20) -> datetime:
    """Aware UTC timestamp on a fixed test day."""
    return datetime(2026, 10, day, hour, minute, tzinfo=timezone.utc)


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


@pytest.fixture
def file_session_factory(tmp_path):
    """File-backed SQLite with a connection per thread, for concurrency tests."""
    engine = create_engine(
        f"sqlite:///{tmp_path / 'outbox.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    Base.metadata.create_all(engine)
    yield sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    engine.dispose()


def seed_people(session_factory):
    """One patient and one clinician with full contact details."""
    session = session_factory()
    try:
        session.add(Patient(
            id=PATIENT_ID,
            tenant_id=TENANT_ID,
            first_name="Ana",
            last_name="Silva",
            phone="+15550001111",
            email="ana@example.com",
        ))
        session.add(Clinician(
            id=CLINICIAN_ID,
            tenant_id=TENANT_ID,
            first_name="Rui",
            last_name="Costa",
            phone="+15550002222",
            email="dr.costa@example.com",
        ))
        session.commit()
    finally:
        session.close()


@pytest.fixture
def seeded(session_factory):
    seed_people(session_factory)
    return {"tenant_id": TENANT_ID, "patient_id": PATIENT_ID, "clinician_id": CLINICIAN_ID}


@pytest.fixture
def outbox_store(session_factory):
    from app.services.outbox import OutboxStore
    return OutboxStore(session_factory, lease_seconds=60)


@pytest.fixture
def write_service(session_factory, outbox_store):
    from app.services.appointments import AppointmentWriteService
    return AppointmentWriteService(session_factory, outbox_store=outbox_store)


@pytest.fixture
def mock_notifier():
    notifier = Mock()
    notifier.send_sms.return_value = {"provider": "twilio", "success": True, "id": "SM1"}
    notifier.send_email.return_value = {"provider": "smtp", "success": True, "id": "<msg-1@example.com>"}
    return notifier


@pytest.fixture
def mock_enricher():
    enricher = Mock()
    enricher.generate_summary.return_value = {"summary": "Bring your medication list."}
    return enricher


@pytest.fixture
def handler_context(session_factory, outbox_store, mock_notifier, mock_enricher):
    """HandlerContext on the test database, installed as the process-wide context."""
    from app.handlers.context import HandlerContext, set_handler_context
    from app.services.idempotency import IdempotencyService

    ctx = HandlerContext(
        session_factory=session_factory,
        outbox_store=outbox_store,
        notifier=mock_notifier,
        enricher=mock_enricher,
        idempotency=IdempotencyService(session_factory),
    )
    set_handler_context(ctx)
    yield ctx
    set_handler_context(None)


@pytest.fixture(autouse=True)
def _reset_circuit_breakers():
    reset_breakers()
    yield
    reset_breakers()
