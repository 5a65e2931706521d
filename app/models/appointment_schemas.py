"""
Pydantic schemas for the appointment and outbox HTTP endpoints
"""

from pydantic import BaseModel, Field
from typing import Optional, List, Dict, Any
from datetime import datetime


class AppointmentCreateRequest(BaseModel):
    """
    Body of POST /api/v1/appointments
    """
    patient_id: str = Field(..., description="Patient attending the appointment")
    clinician_id: str = Field(..., description="Clinician whose calendar is booked")
    starts_at: datetime = Field(..., description="Start of the half-open range")
    ends_at: datetime = Field(..., description="End of the half-open range (exclusive)")
    type: str = Field("consultation", description="Appointment type")
    mode: str = Field("in_person", description="in_person / video / phone")
    priority: str = Field("normal", description="normal / urgent")
    notes: Optional[str] = None
    source: str = Field("api", description="Channel the booking came from")
    company_id: Optional[str] = None


class AppointmentRescheduleRequest(BaseModel):
    """
    Body of POST /api/v1/appointments/{id}/reschedule
    """
    starts_at: datetime
    ends_at: datetime


class AppointmentCancelRequest(BaseModel):
    """
    Body of POST /api/v1/appointments/{id}/cancel
    """
    reason: Optional[str] = Field(None, max_length=1000)


class AppointmentResponse(BaseModel):
    ok: bool = True
    appointment: Dict[str, Any]


class AppointmentListResponse(BaseModel):
    items: List[Dict[str, Any]]
    count: int


class OutboxRequeueResponse(BaseModel):
    id: str
    requeued: bool
