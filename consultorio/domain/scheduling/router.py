"""Scheduling router - FastAPI endpoints for booking and appointment lifecycle"""

import logging
from datetime import datetime

from fastapi import APIRouter, BackgroundTasks, Depends
from sqlalchemy.orm import Session

from ...auth import Principal, get_current_principal
from ...database import get_db
from ...errors import ValidationError
from ...models import Appointment
from ...services.exchange_rates import RateSource, get_rate_source
from ..notifications.router import get_notification_dispatcher
from ..notifications.service import NotificationDispatcher
from .schemas import (
    AppointmentResponse,
    BookingRequest,
    BookingResponse,
    CancelRequest,
    RescheduleRequest,
    StatusUpdateRequest,
)
from .service import AppointmentService, BookingResult, BookingService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/appointments", tags=["Appointments"])
public_router = APIRouter(prefix="/public/appointments", tags=["Public Booking"])


def get_booking_service(
    db: Session = Depends(get_db), rate_source: RateSource = Depends(get_rate_source)
) -> BookingService:
    """Dependency injection for BookingService"""
    return BookingService(db, rate_source)


def get_appointment_service(db: Session = Depends(get_db)) -> AppointmentService:
    """Dependency injection for AppointmentService"""
    return AppointmentService(db)


def to_response(appointment: Appointment) -> AppointmentResponse:
    return AppointmentResponse(
        id=appointment.id,
        patientId=appointment.patient_id,
        unregisteredPatientId=appointment.unregistered_patient_id,
        doctorId=appointment.doctor_id,
        organizationId=appointment.organization_id,
        scheduledAt=appointment.scheduled_at,
        durationMinutes=appointment.duration_minutes,
        status=appointment.status,
        reason=appointment.reason,
        location=appointment.location,
        referralSource=appointment.referral_source,
        selectedService=appointment.selected_service,
        createdByRoleUserId=appointment.created_by_role_user_id,
        createdAt=appointment.created_at,
    )


def booking_response(
    result: BookingResult, background_tasks: BackgroundTasks, dispatcher: NotificationDispatcher
) -> BookingResponse:
    if result.notification_id:
        background_tasks.add_task(dispatcher.dispatch, result.notification_id)
    return BookingResponse(
        appointmentId=result.appointment_id,
        billingId=result.billing_id,
        billingCreated=result.billing_created,
        notificationId=result.notification_id,
    )


@router.post("", response_model=BookingResponse, status_code=201)
async def create_appointment(
    data: BookingRequest,
    background_tasks: BackgroundTasks,
    principal: Principal = Depends(get_current_principal),
    service: BookingService = Depends(get_booking_service),
    dispatcher: NotificationDispatcher = Depends(get_notification_dispatcher),
):
    """Book an appointment and create its billing record"""
    logger.info(f"📥 Booking request from {principal.kind} {principal.user_id}")
    result = service.book(data, principal)
    return booking_response(result, background_tasks, dispatcher)


@public_router.post("", response_model=BookingResponse, status_code=201)
async def create_public_appointment(
    data: BookingRequest,
    background_tasks: BackgroundTasks,
    service: BookingService = Depends(get_booking_service),
    dispatcher: NotificationDispatcher = Depends(get_notification_dispatcher),
):
    """Booking form for patients without an account"""
    if data.patientId or not data.unregisteredPatientId:
        raise ValidationError("unregisteredPatientId es requerido")
    if data.createdByRoleUserId:
        raise ValidationError("createdByRoleUserId no está permitido en reservas públicas")
    if data.scheduledAt <= datetime.utcnow():
        raise ValidationError("No se pueden agendar citas en el pasado")

    result = service.book(data)
    return booking_response(result, background_tasks, dispatcher)


@router.get("/{appointment_id}", response_model=AppointmentResponse)
async def get_appointment(
    appointment_id: str,
    principal: Principal = Depends(get_current_principal),
    service: AppointmentService = Depends(get_appointment_service),
):
    return to_response(service.get(appointment_id, principal))


@router.post("/{appointment_id}/reschedule", response_model=AppointmentResponse)
async def reschedule_appointment(
    appointment_id: str,
    data: RescheduleRequest,
    principal: Principal = Depends(get_current_principal),
    service: AppointmentService = Depends(get_appointment_service),
):
    appointment = service.reschedule(
        appointment_id, principal, data.scheduledAt, data.durationMinutes, data.reason
    )
    return to_response(appointment)


@router.post("/{appointment_id}/cancel", response_model=AppointmentResponse)
async def cancel_appointment(
    appointment_id: str,
    data: CancelRequest,
    principal: Principal = Depends(get_current_principal),
    service: AppointmentService = Depends(get_appointment_service),
):
    return to_response(service.cancel(appointment_id, principal, data.reason))


@router.patch("/{appointment_id}/status", response_model=AppointmentResponse)
async def update_appointment_status(
    appointment_id: str,
    data: StatusUpdateRequest,
    principal: Principal = Depends(get_current_principal),
    service: AppointmentService = Depends(get_appointment_service),
):
    return to_response(service.transition(appointment_id, principal, data.status))
