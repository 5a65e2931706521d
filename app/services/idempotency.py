"""
Idempotency Service
Database-backed record of side effects already performed for an outbox entry
"""

from typing import Optional
from datetime import timedelta
import structlog
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert

from app.config import settings
from app.database import utcnow
from app.models.idempotency_key import IdempotencyKey

logger = structlog.get_logger(__name__)


def notification_key(outbox_id: str, channel: str, recipient: str) -> str:
    """
    Key for one notification of one outbox entry.

    Format: {outbox_id}:{channel}:{recipient}
    """
    return f"{outbox_id}:{channel}:{recipient}"


class IdempotencyService:
    """
    Tracks sends with TTL expiration in the idempotency_keys table.

    A redelivered job checks the key before sending and skips the channel when
    a result is recorded. Two deliveries racing on the same key can still both
    send; that duplicate is tolerated.
    """

    def __init__(self, session_factory: sessionmaker, ttl_seconds: Optional[int] = None):
        """
        Args:
            session_factory: SQLAlchemy sessionmaker (not session - creates independent transactions)
            ttl_seconds: Lifetime of stored keys
        """
        self.session_factory = session_factory
        self.ttl_seconds = ttl_seconds if ttl_seconds is not None else settings.notification_idempotency_ttl_seconds
        self.logger = logger.bind(service="idempotency")

    def check(self, key: str) -> Optional[dict]:
        """
        Returns:
            Cached result dict if key exists and not expired, None otherwise
        """
        session: Session = self.session_factory()
        try:
            record = session.query(IdempotencyKey).filter(
                IdempotencyKey.key == key,
                IdempotencyKey.expires_at > utcnow()
            ).first()

            if record:
                self.logger.info("idempotency_key_found", key=key)
                return record.result or {"success": True}
            return None

        except Exception as e:
            # Unknown state: let the caller send again rather than drop the notification
            self.logger.error("idempotency_check_failed", key=key, error=str(e))
            return None
        finally:
            session.close()

    def store(self, key: str, result: dict) -> bool:
        """
        Record a completed send.

        Uses INSERT ... ON CONFLICT DO NOTHING to handle races.

        Returns:
            True if stored, False if the key already existed or the write failed
        """
        session: Session = self.session_factory()
        try:
            now = utcnow()
            expires_at = now + timedelta(seconds=self.ttl_seconds)

            dialect = session.get_bind().dialect.name
            insert = pg_insert if dialect == "postgresql" else sqlite_insert
            stmt = insert(IdempotencyKey).values(
                key=key,
                result=result,
                created_at=now,
                expires_at=expires_at
            ).on_conflict_do_nothing(index_elements=['key'])

            result_proxy = session.execute(stmt)
            session.commit()

            inserted = result_proxy.rowcount > 0
            if inserted:
                self.logger.info("idempotency_key_stored", key=key, expires_at=expires_at.isoformat())
            else:
                self.logger.info("idempotency_key_already_exists", key=key)
            return inserted

        except Exception as e:
            self.logger.error("idempotency_store_failed", key=key, error=str(e))
            session.rollback()
            return False
        finally:
            session.close()

    def cleanup_expired(self) -> int:
        """
        Delete all expired keys. Called by the outbox health job.

        Returns:
            Number of keys deleted
        """
        session: Session = self.session_factory()
        try:
            deleted_count = session.query(IdempotencyKey).filter(
                IdempotencyKey.expires_at < utcnow()
            ).delete(synchronize_session=False)
            session.commit()

            self.logger.info("idempotency_cleanup_complete", deleted_count=deleted_count)
            return deleted_count

        except Exception as e:
            self.logger.error("idempotency_cleanup_failed", error=str(e))
            session.rollback()
            return 0
        finally:
            session.close()
