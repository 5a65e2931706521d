"""
Outbox API Router
Operator visibility into the outbox and manual replay of poison entries
"""

from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query
import structlog

from app.database import get_session_factory
from app.models.appointment_schemas import OutboxRequeueResponse
from app.services.outbox import ENTRY_STATES, OutboxStore

logger = structlog.get_logger()

router = APIRouter(prefix="/api/v1/outbox", tags=["outbox"])


def get_outbox_store(session_factory=Depends(get_session_factory)) -> OutboxStore:
    if session_factory is None:
        raise HTTPException(status_code=503, detail="Database not configured")
    return OutboxStore(session_factory)


@router.get("")
def list_outbox_entries(
    state: Optional[str] = Query(None, description="pending | failed | processed"),
    limit: int = Query(100, ge=1, le=500),
    x_tenant_id: Optional[str] = Header(None, alias="X-Tenant-Id"),
    store: OutboxStore = Depends(get_outbox_store),
):
    """
    List outbox entries, newest first.

    Without X-Tenant-Id every tenant is listed (operator view).
    """
    if state is not None and state not in ENTRY_STATES:
        raise HTTPException(status_code=422, detail=f"state must be one of {', '.join(ENTRY_STATES)}")

    entries = store.list_entries(tenant_id=x_tenant_id, state=state, limit=limit)
    return {"items": [entry.to_dict() for entry in entries], "count": len(entries)}


@router.get("/stats")
def outbox_stats(
    x_tenant_id: Optional[str] = Header(None, alias="X-Tenant-Id"),
    store: OutboxStore = Depends(get_outbox_store),
):
    return store.stats(tenant_id=x_tenant_id)


@router.get("/{outbox_id}")
def get_outbox_entry(
    outbox_id: str,
    x_tenant_id: Optional[str] = Header(None, alias="X-Tenant-Id"),
    store: OutboxStore = Depends(get_outbox_store),
):
    entry = store.get_entry(outbox_id, tenant_id=x_tenant_id)
    if entry is None:
        raise HTTPException(status_code=404, detail="Outbox entry not found")
    return entry.to_dict()


@router.post("/{outbox_id}/requeue", response_model=OutboxRequeueResponse)
def requeue_outbox_entry(
    outbox_id: str,
    reset_attempts: bool = Query(False),
    store: OutboxStore = Depends(get_outbox_store),
):
    """
    Make an unprocessed entry claimable on the next relay poll.

    Raises:
        404: Entry missing or already processed
    """
    if not store.requeue(outbox_id, reset_attempts=reset_attempts):
        raise HTTPException(status_code=404, detail="Outbox entry not found or already processed")

    logger.info("outbox_entry_requeued", outbox_id=outbox_id)
    return {"id": outbox_id, "requeued": True}
