"""Billing domain schemas - Pydantic models for validation"""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, field_validator

PAYMENT_METHODS = ("EFECTIVO", "PAGO_MOVIL", "TRANSFERENCIA", "TARJETA")
METHODS_REQUIRING_REFERENCE = ("PAGO_MOVIL", "TRANSFERENCIA")


class ReportPaymentRequest(BaseModel):
    """Patient or front desk reports that a payment was made"""

    metodoPago: str
    numeroReferencia: Optional[str] = None
    comprobanteUrl: Optional[str] = None

    @field_validator("metodoPago")
    @classmethod
    def validate_method(cls, v):
        v = v.strip().upper()
        if v not in PAYMENT_METHODS:
            raise ValueError(f"metodoPago must be one of: {', '.join(PAYMENT_METHODS)}")
        return v


class VerifyPaymentRequest(BaseModel):
    approved: bool
    note: Optional[str] = None


class AdjustmentRequest(BaseModel):
    total: Decimal
    reason: str

    @field_validator("total")
    @classmethod
    def validate_total(cls, v):
        if v < 0:
            raise ValueError("total must not be negative")
        return v


class AdjustmentResponse(BaseModel):
    id: str
    previousTotal: float
    newTotal: float
    delta: float
    reason: str
    actorId: str
    createdAt: Optional[datetime] = None


class BillingResponse(BaseModel):
    id: str
    appointmentId: str
    patientId: Optional[str] = None
    unregisteredPatientId: Optional[str] = None
    doctorId: str
    organizationId: str
    replacesId: Optional[str] = None
    subtotal: float
    impuestos: float
    total: float
    currency: str
    tipoCambio: float
    totalBs: float
    estadoPago: str
    estadoFactura: str
    metodoPago: Optional[str] = None
    numeroReferencia: Optional[str] = None
    notas: Optional[str] = None
    fechaEmision: Optional[datetime] = None
    fechaPago: Optional[datetime] = None
    adjustments: list[AdjustmentResponse] = []


class BillingListResponse(BaseModel):
    items: list[BillingResponse]
    total: int
    page: int
    pageSize: int


class PendingPaymentAlertResponse(BaseModel):
    billingId: str
    appointmentId: str
    patientName: str
    scheduledAt: datetime
    estadoPago: str
    total: float
    currency: str
