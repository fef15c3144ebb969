"""Scheduling domain schemas - Pydantic models for validation"""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, field_validator

from ...models import APPOINTMENT_STATUSES, DEFAULT_DURATION_MINUTES
from ...shared.validators import to_utc_naive, validate_uuid


def _check_uuid(v: Optional[str], field: str) -> Optional[str]:
    if v is None or v == "":
        return None
    if not validate_uuid(v):
        raise ValueError(f"{field} must be a valid identifier")
    return v


class SelectedService(BaseModel):
    """Service picked at booking time; copied onto the appointment"""

    name: Optional[str] = None
    price: Optional[Decimal] = None
    currency: str = "USD"

    @field_validator("price")
    @classmethod
    def validate_price(cls, v):
        if v is not None and v < 0:
            raise ValueError("price must not be negative")
        return v

    @field_validator("currency")
    @classmethod
    def normalize_currency(cls, v):
        return (v or "USD").strip().upper()


class BookingRequest(BaseModel):
    """Schema for creating an appointment"""

    patientId: Optional[str] = None
    unregisteredPatientId: Optional[str] = None
    doctorId: Optional[str] = None
    organizationId: Optional[str] = None
    scheduledAt: datetime
    durationMinutes: Optional[int] = DEFAULT_DURATION_MINUTES
    reason: Optional[str] = None
    location: Optional[str] = None
    referralSource: Optional[str] = None
    selectedService: Optional[SelectedService] = None
    createdByRoleUserId: Optional[str] = None

    @field_validator("patientId", "unregisteredPatientId", "doctorId", "organizationId", "createdByRoleUserId")
    @classmethod
    def validate_identifier(cls, v, info):
        return _check_uuid(v, info.field_name)

    @field_validator("scheduledAt")
    @classmethod
    def normalize_scheduled_at(cls, v):
        return to_utc_naive(v)

    @field_validator("durationMinutes")
    @classmethod
    def validate_duration(cls, v):
        if v is not None and v <= 0:
            raise ValueError("durationMinutes must be positive")
        return v


class BookingResponse(BaseModel):
    success: bool = True
    appointmentId: str
    billingId: str
    billingCreated: bool
    notificationId: Optional[str] = None


class RescheduleRequest(BaseModel):
    scheduledAt: datetime
    durationMinutes: Optional[int] = None
    reason: Optional[str] = None

    @field_validator("scheduledAt")
    @classmethod
    def normalize_scheduled_at(cls, v):
        return to_utc_naive(v)

    @field_validator("durationMinutes")
    @classmethod
    def validate_duration(cls, v):
        if v is not None and v <= 0:
            raise ValueError("durationMinutes must be positive")
        return v


class CancelRequest(BaseModel):
    reason: Optional[str] = None


class StatusUpdateRequest(BaseModel):
    status: str

    @field_validator("status")
    @classmethod
    def validate_status(cls, v):
        v = v.strip().upper()
        if v not in APPOINTMENT_STATUSES:
            raise ValueError(f"status must be one of: {', '.join(APPOINTMENT_STATUSES)}")
        return v


class AppointmentResponse(BaseModel):
    id: str
    patientId: Optional[str] = None
    unregisteredPatientId: Optional[str] = None
    doctorId: str
    organizationId: str
    scheduledAt: datetime
    durationMinutes: Optional[int] = None
    status: str
    reason: Optional[str] = None
    location: Optional[str] = None
    referralSource: Optional[str] = None
    selectedService: Optional[dict] = None
    createdByRoleUserId: Optional[str] = None
    createdAt: Optional[datetime] = None
