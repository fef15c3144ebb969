"""Billing router - FastAPI endpoints for facturación records"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ...auth import Principal, get_current_principal
from ...database import get_db
from ...models_billing import PAYMENT_STATES, BillingRecord
from ...errors import ValidationError
from .schemas import (
    AdjustmentRequest,
    AdjustmentResponse,
    BillingListResponse,
    BillingResponse,
    PendingPaymentAlertResponse,
    ReportPaymentRequest,
    VerifyPaymentRequest,
)
from .service import BillingService, billed_patient_name

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/facturacion", tags=["Billing"])


def get_billing_service(db: Session = Depends(get_db)) -> BillingService:
    """Dependency injection for BillingService"""
    return BillingService(db)


def to_response(record: BillingRecord) -> BillingResponse:
    return BillingResponse(
        id=record.id,
        appointmentId=record.appointment_id,
        patientId=record.patient_id,
        unregisteredPatientId=record.unregistered_patient_id,
        doctorId=record.doctor_id,
        organizationId=record.organization_id,
        replacesId=record.replaces_id,
        subtotal=float(record.subtotal),
        impuestos=float(record.impuestos or 0),
        total=float(record.total),
        currency=record.currency,
        tipoCambio=float(record.tipo_cambio),
        totalBs=round(float(record.total * record.tipo_cambio), 2),
        estadoPago=record.estado_pago,
        estadoFactura=record.estado_factura,
        metodoPago=record.metodo_pago,
        numeroReferencia=record.numero_referencia,
        notas=record.notas,
        fechaEmision=record.fecha_emision,
        fechaPago=record.fecha_pago,
        adjustments=[
            AdjustmentResponse(
                id=a.id,
                previousTotal=float(a.previous_total),
                newTotal=float(a.new_total),
                delta=float(a.delta),
                reason=a.reason,
                actorId=a.actor_id,
                createdAt=a.created_at,
            )
            for a in record.adjustments
        ],
    )


@router.get("", response_model=BillingListResponse)
async def list_billing(
    estado_pago: Optional[str] = Query(None),
    appointment_id: Optional[str] = Query(None),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    principal: Principal = Depends(get_current_principal),
    service: BillingService = Depends(get_billing_service),
):
    """Billing records visible to the caller (own organization, or own records for patients)"""
    if estado_pago and estado_pago not in PAYMENT_STATES:
        raise ValidationError(f"estado_pago must be one of: {', '.join(PAYMENT_STATES)}")
    items, total = service.list_records(principal, estado_pago, appointment_id, page, page_size)
    return BillingListResponse(
        items=[to_response(r) for r in items], total=total, page=page, pageSize=page_size
    )


@router.get("/pending-alerts", response_model=list[PendingPaymentAlertResponse])
async def pending_payment_alerts(
    principal: Principal = Depends(get_current_principal),
    service: BillingService = Depends(get_billing_service),
):
    """The doctor's unpaid appointments due today or earlier"""
    return [
        PendingPaymentAlertResponse(
            billingId=record.id,
            appointmentId=record.appointment_id,
            patientName=billed_patient_name(record),
            scheduledAt=record.appointment.scheduled_at,
            estadoPago=record.estado_pago,
            total=float(record.total),
            currency=record.currency,
        )
        for record in service.pending_payment_alerts(principal)
    ]


@router.get("/{billing_id}", response_model=BillingResponse)
async def get_billing(
    billing_id: str,
    principal: Principal = Depends(get_current_principal),
    service: BillingService = Depends(get_billing_service),
):
    return to_response(service.get(billing_id, principal))


@router.post("/{billing_id}/report-payment", response_model=BillingResponse)
async def report_payment(
    billing_id: str,
    data: ReportPaymentRequest,
    principal: Principal = Depends(get_current_principal),
    service: BillingService = Depends(get_billing_service),
):
    record = service.report_payment(
        billing_id, principal, data.metodoPago, data.numeroReferencia, data.comprobanteUrl
    )
    return to_response(record)


@router.post("/{billing_id}/verify", response_model=BillingResponse)
async def verify_payment(
    billing_id: str,
    data: VerifyPaymentRequest,
    principal: Principal = Depends(get_current_principal),
    service: BillingService = Depends(get_billing_service),
):
    """Approve or reject a reported payment (owning doctor only)"""
    return to_response(service.verify(billing_id, principal, data.approved, data.note))


@router.post("/{billing_id}/adjust", response_model=BillingResponse)
async def adjust_billing(
    billing_id: str,
    data: AdjustmentRequest,
    principal: Principal = Depends(get_current_principal),
    service: BillingService = Depends(get_billing_service),
):
    return to_response(service.adjust(billing_id, principal, data.total, data.reason))


@router.post("/{billing_id}/reissue", response_model=BillingResponse, status_code=201)
async def reissue_billing(
    billing_id: str,
    principal: Principal = Depends(get_current_principal),
    service: BillingService = Depends(get_billing_service),
):
    return to_response(service.reissue(billing_id, principal))
