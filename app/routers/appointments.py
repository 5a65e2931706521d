"""
Appointments API Router
Thin HTTP adapter over AppointmentWriteService
"""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query
from fastapi.responses import JSONResponse
import structlog

from app.database import get_session_factory
from app.models.appointment_schemas import (
    AppointmentCancelRequest,
    AppointmentCreateRequest,
    AppointmentRescheduleRequest,
)
from app.services.appointments import (
    ERROR_CONFLICT,
    ERROR_NOT_FOUND,
    ERROR_VALIDATION,
    AppointmentWriteService,
    WriteResult,
)

logger = structlog.get_logger()

router = APIRouter(prefix="/api/v1/appointments", tags=["appointments"])

ERROR_STATUS = {
    ERROR_CONFLICT: 409,
    ERROR_NOT_FOUND: 404,
    ERROR_VALIDATION: 422,
}


def get_write_service(session_factory=Depends(get_session_factory)) -> AppointmentWriteService:
    if session_factory is None:
        raise HTTPException(status_code=503, detail="Database not configured")
    return AppointmentWriteService(session_factory)


def _respond(result: WriteResult, success_status: int = 200) -> JSONResponse:
    if result.ok:
        return JSONResponse(status_code=success_status, content=result.to_dict())
    return JSONResponse(status_code=ERROR_STATUS.get(result.error, 500), content=result.to_dict())


@router.post("")
def create_appointment(
    body: AppointmentCreateRequest,
    x_tenant_id: str = Header(..., alias="X-Tenant-Id"),
    x_user_id: Optional[str] = Header(None, alias="X-User-Id"),
    service: AppointmentWriteService = Depends(get_write_service),
):
    """
    Book an appointment.

    Returns:
        201 {ok, appointment} | 409 {error: conflict, conflict_ids} | 422 | 500
    """
    result = service.create_appointment(
        tenant_id=x_tenant_id,
        clinician_id=body.clinician_id,
        patient_id=body.patient_id,
        starts_at=body.starts_at,
        ends_at=body.ends_at,
        actor_id=x_user_id,
        metadata=body.model_dump(include={"type", "mode", "priority", "notes", "source", "company_id"}),
    )
    return _respond(result, success_status=201)


@router.post("/{appointment_id}/reschedule")
def reschedule_appointment(
    appointment_id: str,
    body: AppointmentRescheduleRequest,
    x_tenant_id: str = Header(..., alias="X-Tenant-Id"),
    x_user_id: Optional[str] = Header(None, alias="X-User-Id"),
    service: AppointmentWriteService = Depends(get_write_service),
):
    result = service.reschedule_appointment(
        tenant_id=x_tenant_id,
        appointment_id=appointment_id,
        starts_at=body.starts_at,
        ends_at=body.ends_at,
        actor_id=x_user_id,
    )
    return _respond(result)


@router.post("/{appointment_id}/cancel")
def cancel_appointment(
    appointment_id: str,
    body: Optional[AppointmentCancelRequest] = None,
    x_tenant_id: str = Header(..., alias="X-Tenant-Id"),
    x_user_id: Optional[str] = Header(None, alias="X-User-Id"),
    service: AppointmentWriteService = Depends(get_write_service),
):
    """
    Cancel an appointment. Cancelling twice returns 200 both times.
    """
    result = service.cancel_appointment(
        tenant_id=x_tenant_id,
        appointment_id=appointment_id,
        actor_id=x_user_id,
        reason=body.reason if body else None,
    )
    return _respond(result)


@router.get("/{appointment_id}")
def get_appointment(
    appointment_id: str,
    x_tenant_id: str = Header(..., alias="X-Tenant-Id"),
    service: AppointmentWriteService = Depends(get_write_service),
):
    appointment = service.get_appointment(x_tenant_id, appointment_id)
    if appointment is None:
        return JSONResponse(status_code=404, content={"error": ERROR_NOT_FOUND})
    return {"appointment": appointment}


@router.get("")
def list_appointments(
    clinician_id: Optional[str] = Query(None),
    patient_id: Optional[str] = Query(None),
    range_from: Optional[datetime] = Query(None, alias="from", description="Appointments ending at or after"),
    range_to: Optional[datetime] = Query(None, alias="to", description="Appointments starting at or before"),
    limit: int = Query(500, description="Clamped to 50..2000"),
    x_tenant_id: str = Header(..., alias="X-Tenant-Id"),
    service: AppointmentWriteService = Depends(get_write_service),
):
    items = service.list_appointments(
        tenant_id=x_tenant_id,
        clinician_id=clinician_id,
        patient_id=patient_id,
        range_from=range_from,
        range_to=range_to,
        limit=limit,
    )
    logger.info("appointments_listed", tenant_id=x_tenant_id, returned=len(items))
    return {"items": items, "count": len(items)}
