"""
Database Configuration and Session Management
"""

from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Iterator

from sqlalchemy import create_engine, text
from sqlalchemy.orm import declarative_base, sessionmaker, Session
from app.config import settings
import logging

logger = logging.getLogger(__name__)

# Create SQLAlchemy engine
engine = None
SessionLocal = None


def init_db():
    """Initialize database connection"""
    global engine, SessionLocal

    if not settings.database_url:
        logger.warning("DATABASE_URL not configured - database features disabled")
        return

    db_url = settings.database_url
    if db_url.startswith("postgresql://"):
        db_url = db_url.replace("postgresql://", "postgresql+psycopg://", 1)

    logger.info("Connecting to database...")
    engine = create_engine(
        db_url,
        pool_pre_ping=True,  # Verify connections before using them
        pool_size=5,
        max_overflow=10
    )

    SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    logger.info("Database connection established")


def get_db():
    """
    Dependency for getting database session
    Usage: db: Session = Depends(get_db)

    Yields None when the database is not configured.
    """
    if SessionLocal is None:
        logger.warning("PostgreSQL not configured")
        yield None
        return

    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_session_factory():
    """
    Dependency returning the configured sessionmaker (or None).

    Services open their own transactions through it instead of sharing the
    request session.
    """
    return SessionLocal


@contextmanager
def transaction_scope(session_factory: sessionmaker, statement_timeout_ms: int = None) -> Iterator[Session]:
    """
    Open a session, begin a transaction and guarantee release on every exit path.

    Commits when the block finishes, rolls back when it raises. Row locks and
    transaction-scoped advisory locks taken inside the block are released with it.

    Args:
        session_factory: SQLAlchemy sessionmaker
        statement_timeout_ms: Optional per-transaction statement timeout (PostgreSQL only)
    """
    session: Session = session_factory()
    try:
        with session.begin():
            if statement_timeout_ms and session.get_bind().dialect.name == "postgresql":
                session.execute(text(f"SET LOCAL statement_timeout = {int(statement_timeout_ms)}"))
            yield session
    finally:
        session.close()


def utcnow() -> datetime:
    """Timezone-aware current time; every timestamp the services write uses it."""
    return datetime.now(timezone.utc)


# Base class for all models
Base = declarative_base()
