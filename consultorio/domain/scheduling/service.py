"""Scheduling service - Booking transaction and appointment lifecycle"""

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ...auth import Principal
from ...errors import (
    BookingEngineError,
    ConflictError,
    InvalidTransitionError,
    NotFoundError,
    PermissionDeniedError,
    TransientDependencyError,
    ValidationError,
)
from ...models import ACTIVE_APPOINTMENT_STATUSES, DEFAULT_DURATION_MINUTES, Appointment
from ...services.exchange_rates import RateSource
from ...shared.validators import parse_amount
from ..billing.repository import BillingRepository
from ..notifications.service import NotificationService
from .conflicts import ConflictDetector
from .identity import TenantResolver
from .repository import SchedulingRepository
from .schemas import BookingRequest

logger = logging.getLogger(__name__)

SLOT_UNAVAILABLE = "El horario seleccionado no está disponible"

ALLOWED_TRANSITIONS = {
    "SCHEDULED": {"CONFIRMADA", "IN_PROGRESS", "CANCELADA", "REAGENDADA"},
    "CONFIRMADA": {"IN_PROGRESS", "CANCELADA", "REAGENDADA"},
    "IN_PROGRESS": {"COMPLETADA", "CANCELADA"},
    "REAGENDADA": {"SCHEDULED", "CONFIRMADA", "CANCELADA"},
    "COMPLETADA": set(),
    "CANCELADA": set(),
}
RESCHEDULABLE_STATUSES = ("SCHEDULED", "CONFIRMADA", "REAGENDADA")


@dataclass
class BookingResult:
    appointment_id: str
    billing_id: str
    billing_created: bool
    notification_id: Optional[str] = None


def format_slot(value: datetime) -> str:
    return value.strftime("%d/%m/%Y a las %H:%M")


class BookingService:
    """Writes an appointment and its billing record as one unit"""

    def __init__(self, db: Session, rate_source: RateSource):
        self.db = db
        self.rate_source = rate_source
        self.repo = SchedulingRepository()
        self.billing_repo = BillingRepository()
        self.tenants = TenantResolver(db)
        self.conflicts = ConflictDetector(db)
        self.notifications = NotificationService(db)

    def book(self, request: BookingRequest, principal: Optional[Principal] = None) -> BookingResult:
        self._validate(request, principal)

        # Patient existence is checked before the write transaction
        patient = None
        if request.patientId:
            patient = self.repo.get_patient(self.db, request.patientId)
            if not patient:
                raise NotFoundError("Paciente no encontrado")
        elif not self.repo.get_unregistered_patient(self.db, request.unregisteredPatientId):
            raise NotFoundError("Paciente no registrado no encontrado")

        tenant = self.tenants.resolve(
            principal, request.doctorId, request.organizationId, request.createdByRoleUserId
        )

        service = request.selectedService
        price = parse_amount(service.price)
        duration = request.durationMinutes or DEFAULT_DURATION_MINUTES

        try:
            self.repo.lock_doctor(self.db, tenant.doctor_id)
            if self.conflicts.has_conflict(tenant.doctor_id, request.scheduledAt):
                raise ConflictError(SLOT_UNAVAILABLE)

            rate = self.rate_source.get_rate(service.currency)

            appointment = Appointment(
                patient_id=request.patientId,
                unregistered_patient_id=request.unregisteredPatientId,
                doctor_id=tenant.doctor_id,
                organization_id=tenant.organization_id,
                created_by_role_user_id=tenant.role_user_id,
                scheduled_at=request.scheduledAt,
                duration_minutes=duration,
                status="SCHEDULED",
                reason=request.reason,
                location=request.location,
                referral_source=request.referralSource,
                selected_service={
                    "name": service.name,
                    "price": str(price),
                    "currency": service.currency,
                },
            )
            self.db.add(appointment)
            self.db.flush()

            impuestos = Decimal("0.00")
            billing = self.billing_repo.add(
                self.db,
                appointment_id=appointment.id,
                patient_id=request.patientId,
                unregistered_patient_id=request.unregisteredPatientId,
                doctor_id=tenant.doctor_id,
                organization_id=tenant.organization_id,
                subtotal=price,
                impuestos=impuestos,
                total=price + impuestos,
                currency=service.currency,
                tipo_cambio=rate,
                estado_pago="pendiente",
                estado_factura="emitida",
                fecha_emision=datetime.utcnow(),
                notas=f"Facturación generada al crear la cita. Servicio: {service.name}",
            )
            self.db.commit()
        except BookingEngineError:
            self.db.rollback()
            raise
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"❌ Booking transaction failed for doctor {tenant.doctor_id}: {e}")
            raise TransientDependencyError("Error al crear la cita") from e
        except Exception:
            self.db.rollback()
            raise

        logger.info(
            f"✅ Appointment {appointment.id} booked for doctor {tenant.doctor_id} "
            f"with billing {billing.id} ({price} {service.currency} @ {rate})"
        )

        notification_id = None
        if patient is not None:
            notification_id = self._notify_doctor(appointment, patient.full_name, service.name)

        return BookingResult(
            appointment_id=appointment.id,
            billing_id=billing.id,
            billing_created=True,
            notification_id=notification_id,
        )

    def _validate(self, request: BookingRequest, principal: Optional[Principal]) -> None:
        if bool(request.patientId) == bool(request.unregisteredPatientId):
            raise ValidationError("Debe indicar exactamente uno de patientId o unregisteredPatientId")

        service = request.selectedService
        if not service or not (service.name or "").strip() or service.price is None:
            raise ValidationError("El servicio seleccionado (nombre y precio) es requerido")

        if principal and principal.is_patient:
            if not request.patientId or request.patientId != principal.patient_id:
                raise PermissionDeniedError("Solo puede agendar citas para usted mismo")

    def _notify_doctor(self, appointment: Appointment, patient_name: str, service_name: str) -> Optional[str]:
        try:
            return self.notifications.submit_safely(
                user_id=appointment.doctor_id,
                organization_id=appointment.organization_id,
                notification_type="APPOINTMENT_REQUEST",
                title="Nueva Cita Solicitada",
                message=(
                    f"{patient_name} solicitó una cita ({service_name}) para el "
                    f"{format_slot(appointment.scheduled_at)}."
                ),
                payload={
                    "appointmentId": appointment.id,
                    "patientId": appointment.patient_id,
                    "patientName": patient_name,
                    "scheduledAt": appointment.scheduled_at.isoformat(),
                    "service": service_name,
                },
                send_email=True,
            )
        except Exception as e:
            logger.error(f"❌ Could not notify doctor about appointment {appointment.id}: {e}")
            return None


class AppointmentService:
    """Reads and status changes of existing appointments"""

    def __init__(self, db: Session):
        self.db = db
        self.repo = SchedulingRepository()
        self.billing_repo = BillingRepository()
        self.conflicts = ConflictDetector(db)
        self.notifications = NotificationService(db)

    def get(self, appointment_id: str, principal: Principal) -> Appointment:
        appointment = self.repo.get_appointment(self.db, appointment_id)
        if not appointment or not self._can_access(appointment, principal):
            raise NotFoundError("Cita no encontrada")
        return appointment

    def reschedule(
        self,
        appointment_id: str,
        principal: Principal,
        new_scheduled_at: datetime,
        duration_minutes: Optional[int] = None,
        reason: Optional[str] = None,
    ) -> Appointment:
        appointment = self.get(appointment_id, principal)
        if appointment.status not in RESCHEDULABLE_STATUSES:
            raise InvalidTransitionError(
                f"No se puede reagendar una cita en estado {appointment.status}"
            )
        if new_scheduled_at <= datetime.utcnow():
            raise ValidationError("La nueva fecha debe ser en el futuro")

        previous = appointment.scheduled_at
        try:
            self.repo.lock_doctor(self.db, appointment.doctor_id)
            if self.conflicts.has_conflict(
                appointment.doctor_id,
                new_scheduled_at,
                exclude_appointment_id=appointment.id,
            ):
                raise ConflictError(SLOT_UNAVAILABLE)

            appointment.scheduled_at = new_scheduled_at
            if duration_minutes:
                appointment.duration_minutes = duration_minutes
            if appointment.status == "REAGENDADA":
                appointment.status = "SCHEDULED"
            self.db.commit()
        except BookingEngineError:
            self.db.rollback()
            raise
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"❌ Reschedule of appointment {appointment_id} failed: {e}")
            raise TransientDependencyError("Error al reagendar la cita") from e

        logger.info(
            f"🔄 Appointment {appointment.id} moved from {previous.isoformat()} to {new_scheduled_at.isoformat()}"
        )
        self.notifications.submit_safely(
            user_id=appointment.doctor_id,
            organization_id=appointment.organization_id,
            notification_type="APPOINTMENT_RESCHEDULED",
            title="Cita Reagendada",
            message=(
                f"La cita del {format_slot(previous)} fue reagendada para el "
                f"{format_slot(new_scheduled_at)}." + (f" Motivo: {reason}" if reason else "")
            ),
            payload={
                "appointmentId": appointment.id,
                "previousScheduledAt": previous.isoformat(),
                "scheduledAt": new_scheduled_at.isoformat(),
            },
            send_email=True,
        )
        return appointment

    def cancel(self, appointment_id: str, principal: Principal, reason: Optional[str] = None) -> Appointment:
        appointment = self.get(appointment_id, principal)
        self._check_transition(appointment, "CANCELADA")

        try:
            appointment.status = "CANCELADA"
            voided = self.billing_repo.void_open_for_appointment(self.db, appointment.id)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"❌ Cancellation of appointment {appointment_id} failed: {e}")
            raise TransientDependencyError("Error al cancelar la cita") from e

        logger.info(f"🚫 Appointment {appointment.id} cancelled ({voided} billing record(s) voided)")
        self.notifications.submit_safely(
            user_id=appointment.doctor_id,
            organization_id=appointment.organization_id,
            notification_type="APPOINTMENT_CANCELLED",
            title="Cita Cancelada",
            message=f"La cita del {format_slot(appointment.scheduled_at)} fue cancelada."
            + (f" Motivo: {reason}" if reason else ""),
            payload={"appointmentId": appointment.id},
            send_email=True,
        )
        return appointment

    def transition(self, appointment_id: str, principal: Principal, new_status: str) -> Appointment:
        if not principal.is_staff:
            raise PermissionDeniedError("Solo el personal del consultorio puede cambiar el estado")
        if new_status == "CANCELADA":
            return self.cancel(appointment_id, principal)

        appointment = self.get(appointment_id, principal)
        self._check_transition(appointment, new_status)

        previous = appointment.status
        try:
            if new_status in ACTIVE_APPOINTMENT_STATUSES and previous not in ACTIVE_APPOINTMENT_STATUSES:
                self.repo.lock_doctor(self.db, appointment.doctor_id)
                if self.conflicts.has_conflict(
                    appointment.doctor_id,
                    appointment.scheduled_at,
                    exclude_appointment_id=appointment.id,
                ):
                    raise ConflictError(SLOT_UNAVAILABLE)
            appointment.status = new_status
            self.db.commit()
        except BookingEngineError:
            self.db.rollback()
            raise
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"❌ Status change of appointment {appointment_id} failed: {e}")
            raise TransientDependencyError("Error al actualizar la cita") from e

        logger.info(f"✅ Appointment {appointment.id}: {previous} -> {new_status}")
        return appointment

    @staticmethod
    def _check_transition(appointment: Appointment, new_status: str) -> None:
        if new_status not in ALLOWED_TRANSITIONS.get(appointment.status, set()):
            raise InvalidTransitionError(
                f"Transición de estado no permitida: {appointment.status} -> {new_status}"
            )

    @staticmethod
    def _can_access(appointment: Appointment, principal: Principal) -> bool:
        if principal.is_patient:
            return bool(principal.patient_id) and appointment.patient_id == principal.patient_id
        return appointment.organization_id == principal.organization_id
