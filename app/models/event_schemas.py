"""
Pydantic schemas for outbox jobs
Job data is validated on consume; payload shape differs per event type
"""

from pydantic import BaseModel, Field
from typing import Optional, Dict, Any, Type

APPOINTMENT_AGGREGATE = "appointment"

APPOINTMENT_CREATED = "appointment.created"
APPOINTMENT_RESCHEDULED = "appointment.rescheduled"
APPOINTMENT_CANCELLED = "appointment.cancelled"


class AppointmentCreatedPayload(BaseModel):
    appointment: Dict[str, Any]


class AppointmentRescheduledPayload(BaseModel):
    old: Dict[str, Any]
    new: Dict[str, Any]
    changed_by: Optional[str] = None


class AppointmentCancelledPayload(BaseModel):
    appointment: Dict[str, Any]
    cancelled_by: Optional[str] = None
    reason: Optional[str] = None


EVENT_PAYLOAD_SCHEMAS: Dict[str, Type[BaseModel]] = {
    APPOINTMENT_CREATED: AppointmentCreatedPayload,
    APPOINTMENT_RESCHEDULED: AppointmentRescheduledPayload,
    APPOINTMENT_CANCELLED: AppointmentCancelledPayload,
}


class OutboxJob(BaseModel):
    """
    Data the relay enqueues for every claimed outbox entry.
    """
    outbox_id: str = Field(..., description="hms_outbox.id")
    tenant_id: str = Field(..., description="Tenant owning the aggregate")
    aggregate_type: str = Field(..., description="e.g. 'appointment'")
    aggregate_id: Optional[str] = Field(None, description="Aggregate primary key")
    payload: Dict[str, Any] = Field(default_factory=dict, description="Snapshot at commit time (hint only)")

    class Config:
        extra = "ignore"

    def payload_as(self, event_type: str) -> Optional[BaseModel]:
        """
        Parse the payload with the schema registered for event_type.

        Returns None for event types without a schema.
        Raises pydantic.ValidationError when the payload does not match.
        """
        schema = EVENT_PAYLOAD_SCHEMAS.get(event_type)
        if schema is None:
            return None
        return schema.model_validate(self.payload)
