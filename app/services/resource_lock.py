"""
Resource Lock Manager
Transaction-scoped exclusive locks keyed by an arbitrary string
"""

import threading
from typing import Dict

import structlog
from sqlalchemy import event, text
from sqlalchemy.orm import Session

logger = structlog.get_logger(__name__)

_HELD_LOCKS_KEY = "resource_locks_held"
_LOCAL_LOCKS_KEY = "resource_locks_local"

_local_locks: Dict[str, threading.Lock] = {}
_local_locks_guard = threading.Lock()


def clinician_lock_key(tenant_id: str, clinician_id: str) -> str:
    """Lock key serializing all schedule writes for one clinician of one tenant."""
    return f"{tenant_id}:{clinician_id}"


def _local_lock(lock_key: str) -> threading.Lock:
    with _local_locks_guard:
        return _local_locks.setdefault(lock_key, threading.Lock())


class ResourceLockManager:
    """
    Serializes "check overlap, then write" sequences per resource.

    On PostgreSQL this is pg_advisory_xact_lock(hashtext(key)): it blocks while
    another transaction holds the same key and is released by commit or rollback,
    so there is no release call.

    Other backends (SQLite in tests and local runs) get a process-local lock per
    key instead, held until the outermost transaction ends. pysqlite only opens
    its transaction at the first write, so the overlap SELECT would otherwise run
    unserialized.

    Keys already taken in the current transaction are skipped, which makes
    acquire reentrant.
    """

    def acquire(self, session: Session, lock_key: str) -> None:
        if not session.in_transaction():
            raise RuntimeError("ResourceLockManager.acquire requires an active transaction")

        held = session.info.setdefault(_HELD_LOCKS_KEY, set())
        if lock_key in held:
            return

        if session.get_bind().dialect.name == "postgresql":
            session.execute(text("SELECT pg_advisory_xact_lock(hashtext(:key))"), {"key": lock_key})
        else:
            lock = _local_lock(lock_key)
            lock.acquire()
            session.info.setdefault(_LOCAL_LOCKS_KEY, []).append(lock)

        held.add(lock_key)
        logger.debug("resource_lock_acquired", lock_key=lock_key)

    @staticmethod
    def held_locks(session: Session) -> frozenset:
        return frozenset(session.info.get(_HELD_LOCKS_KEY, ()))


@event.listens_for(Session, "after_transaction_end")
def _forget_held_locks(session, transaction):
    # Locks die with the outermost transaction
    if transaction.parent is None:
        session.info.pop(_HELD_LOCKS_KEY, None)
        for lock in session.info.pop(_LOCAL_LOCKS_KEY, ()):
            lock.release()


resource_lock_manager = ResourceLockManager()
