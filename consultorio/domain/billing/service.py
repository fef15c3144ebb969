"""
Billing service - payment state machine for facturación records

    pendiente -> pendiente_verificacion -> pagada | rechazada

Only the doctor who owns a record verifies it. A rejected record stays as
it is; ``reissue`` creates a new pending record pointing back at it. The
exchange rate captured at booking is never rewritten. Concurrent updates
are last-write-wins.
"""

import logging
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ...auth import Principal
from ...errors import (
    InvalidTransitionError,
    NotFoundError,
    PermissionDeniedError,
    TransientDependencyError,
    ValidationError,
)
from ...models import Appointment, Patient
from ...models_billing import OPEN_PAYMENT_STATES, BillingRecord
from ...shared.validators import parse_amount
from ..notifications.service import NotificationService
from .repository import BillingRepository
from .schemas import METHODS_REQUIRING_REFERENCE

logger = logging.getLogger(__name__)

# Appointment statuses at which a payment may be reported
PAYABLE_APPOINTMENT_STATUSES = ("CONFIRMADA", "IN_PROGRESS", "COMPLETADA")

PAYMENT_ALERT_TYPE = "PAYMENT_VALIDATION_REQUIRED"


def append_note(current: Optional[str], line: str) -> str:
    return f"{current}\n{line}" if current else line


def start_of_next_day(now: datetime) -> datetime:
    return datetime(now.year, now.month, now.day) + timedelta(days=1)


def billed_patient_name(record: BillingRecord) -> str:
    appointment = record.appointment
    if appointment and appointment.patient:
        return appointment.patient.full_name
    if appointment and appointment.unregistered_patient:
        return appointment.unregistered_patient.full_name
    return "Paciente"


class BillingService:
    def __init__(self, db: Session):
        self.db = db
        self.repo = BillingRepository()
        self.notifications = NotificationService(db)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, billing_id: str, principal: Principal) -> BillingRecord:
        record = self.repo.get_by_id(self.db, billing_id)
        if not record or not self._can_read(record, principal):
            raise NotFoundError("Factura no encontrada")
        return record

    def list_records(
        self,
        principal: Principal,
        estado_pago: Optional[str] = None,
        appointment_id: Optional[str] = None,
        page: int = 1,
        page_size: int = 20,
    ) -> tuple[list[BillingRecord], int]:
        if principal.is_patient:
            if not principal.patient_id:
                return [], 0
            return self.repo.list_records(
                self.db,
                patient_id=principal.patient_id,
                estado_pago=estado_pago,
                appointment_id=appointment_id,
                page=page,
                page_size=page_size,
            )
        return self.repo.list_records(
            self.db,
            organization_id=principal.organization_id,
            estado_pago=estado_pago,
            appointment_id=appointment_id,
            page=page,
            page_size=page_size,
        )

    # ------------------------------------------------------------------
    # Pending payment alerts
    # ------------------------------------------------------------------

    def pending_payment_alerts(
        self, principal: Principal, now: Optional[datetime] = None
    ) -> list[BillingRecord]:
        """Unpaid records of the doctor's appointments due today or earlier"""
        if not principal.is_doctor:
            raise PermissionDeniedError("Solo los médicos pueden ver las alertas de pago")
        due_before = start_of_next_day(now or datetime.utcnow())
        return self.repo.open_for_due_appointments(self.db, due_before, doctor_id=principal.user_id)

    def notify_pending_payments(self, now: Optional[datetime] = None) -> dict:
        """
        One alert per doctor with unpaid appointments due today or earlier.

        A doctor who still has an unread alert is skipped, so an hourly run
        does not pile up notifications.
        """
        due_before = start_of_next_day(now or datetime.utcnow())
        by_doctor: dict[str, list[BillingRecord]] = {}
        for record in self.repo.open_for_due_appointments(self.db, due_before):
            by_doctor.setdefault(record.doctor_id, []).append(record)

        notified = 0
        for doctor_id, records in by_doctor.items():
            if self.notifications.has_unread(doctor_id, PAYMENT_ALERT_TYPE):
                logger.info(f"⏭️ Doctor {doctor_id} already has an unread payment alert")
                continue

            count = len(records)
            names = [billed_patient_name(r) for r in records[:3]]
            if count == 1:
                message = f"Tienes 1 cita con pago pendiente que requiere validación: {names[0]}"
            else:
                message = (
                    f"Tienes {count} citas con pagos pendientes que requieren validación: "
                    f"{', '.join(names)}" + (" y más" if count > 3 else "")
                )
            payload = {
                "totalPending": count,
                "billingIds": [r.id for r in records],
                "appointments": [
                    {"id": r.appointment_id, "scheduledAt": r.appointment.scheduled_at.isoformat()}
                    for r in records
                ],
            }

            notification_id = self.notifications.submit_safely(
                user_id=doctor_id,
                organization_id=records[0].organization_id,
                notification_type=PAYMENT_ALERT_TYPE,
                title="Validación de Pagos Pendiente",
                message=message,
                payload=payload,
                send_email=True,
            )
            if notification_id:
                notified += 1

        logger.info(f"💰 Pending payment check: {notified}/{len(by_doctor)} doctors notified")
        return {"success": True, "doctorsNotified": notified, "totalDoctors": len(by_doctor)}

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def report_payment(
        self,
        billing_id: str,
        principal: Principal,
        metodo_pago: str,
        numero_referencia: Optional[str] = None,
        comprobante_url: Optional[str] = None,
    ) -> BillingRecord:
        """pendiente -> pendiente_verificacion"""
        record = self.get(billing_id, principal)

        if record.estado_pago == "pagada":
            raise InvalidTransitionError("Esta factura ya ha sido pagada")
        if record.estado_pago != "pendiente" or record.estado_factura != "emitida":
            raise InvalidTransitionError(
                f"No se puede reportar un pago en estado {record.estado_pago}/{record.estado_factura}"
            )
        if metodo_pago in METHODS_REQUIRING_REFERENCE and not (numero_referencia or "").strip():
            raise ValidationError("El número de referencia es requerido para este método de pago")

        appointment = self.db.query(Appointment).filter(Appointment.id == record.appointment_id).first()
        if not appointment or appointment.status not in PAYABLE_APPOINTMENT_STATUSES:
            raise ValidationError("La cita aún no ha sido confirmada")

        record.estado_pago = "pendiente_verificacion"
        record.metodo_pago = metodo_pago
        record.numero_referencia = numero_referencia
        if numero_referencia:
            record.notas = append_note(record.notas, f"[REFERENCIA] {numero_referencia}")
        if comprobante_url:
            record.notas = append_note(record.notas, f"[CAPTURA] {comprobante_url}")
        self._commit("reportar el pago")

        logger.info(f"💳 Payment reported on billing {record.id} ({metodo_pago})")
        self.notifications.submit_safely(
            user_id=record.doctor_id,
            organization_id=record.organization_id,
            notification_type="PAYMENT_PENDING_VERIFICATION",
            title="Pago Pendiente de Verificación",
            message=f"Se reportó un pago de {record.total} {record.currency} por {metodo_pago}.",
            payload={
                "billingId": record.id,
                "appointmentId": record.appointment_id,
                "numeroReferencia": numero_referencia,
            },
            send_email=True,
        )
        return record

    def verify(
        self, billing_id: str, principal: Principal, approved: bool, note: Optional[str] = None
    ) -> BillingRecord:
        """pendiente_verificacion -> pagada | rechazada (owning doctor only)"""
        record = self._get_owned(billing_id, principal)

        if record.estado_pago != "pendiente_verificacion":
            raise InvalidTransitionError(
                f"Solo se pueden verificar pagos pendientes de verificación (estado actual: {record.estado_pago})"
            )

        now = datetime.utcnow()
        record.verified_by_id = principal.user_id
        record.verified_at = now
        if approved:
            record.estado_pago = "pagada"
            record.fecha_pago = now
        else:
            record.estado_pago = "rechazada"
        if note:
            record.notas = append_note(record.notas, f"[VERIFICACION] {note}")
        self._commit("verificar el pago")

        logger.info(f"✅ Billing {record.id} verified by doctor {principal.user_id}: {record.estado_pago}")
        self._notify_patient(record, approved)
        return record

    def adjust(
        self, billing_id: str, principal: Principal, new_total, reason: Optional[str]
    ) -> BillingRecord:
        """Manual change of the total, kept as an adjustment row with its reason"""
        record = self._get_owned(billing_id, principal)

        if not (reason or "").strip():
            raise ValidationError("El motivo del ajuste es requerido")
        if record.estado_pago not in OPEN_PAYMENT_STATES or record.estado_factura != "emitida":
            raise InvalidTransitionError(
                f"No se puede ajustar una factura en estado {record.estado_pago}/{record.estado_factura}"
            )

        try:
            total = parse_amount(new_total)
        except ValueError as e:
            raise ValidationError(str(e)) from e
        impuestos = Decimal(record.impuestos or 0)
        if total < 0 or total < impuestos:
            raise ValidationError("El total no puede ser negativo ni menor que los impuestos")

        previous = Decimal(record.total)
        self.repo.add_adjustment(
            self.db,
            billing_id=record.id,
            previous_total=previous,
            new_total=total,
            delta=total - previous,
            reason=reason.strip(),
            actor_id=principal.user_id,
        )
        record.total = total
        record.subtotal = total - impuestos
        self._commit("ajustar la factura")

        logger.info(f"✏️ Billing {record.id} adjusted {previous} -> {total} by {principal.user_id}")
        return record

    def reissue(self, billing_id: str, principal: Principal) -> BillingRecord:
        """Create a fresh pending record for a rejected one; the rejected record is kept"""
        record = self._get_owned(billing_id, principal)

        if record.estado_pago != "rechazada":
            raise InvalidTransitionError("Solo se pueden reemitir facturas rechazadas")
        if self.repo.find_reissue_of(self.db, record.id):
            raise InvalidTransitionError("La factura ya fue reemitida")

        new_record = self.repo.add(
            self.db,
            appointment_id=record.appointment_id,
            patient_id=record.patient_id,
            unregistered_patient_id=record.unregistered_patient_id,
            doctor_id=record.doctor_id,
            organization_id=record.organization_id,
            replaces_id=record.id,
            subtotal=record.subtotal,
            impuestos=record.impuestos,
            total=record.total,
            currency=record.currency,
            tipo_cambio=record.tipo_cambio,
            estado_pago="pendiente",
            estado_factura="emitida",
            fecha_emision=datetime.utcnow(),
            notas=f"Reemisión de la factura {record.id}",
        )
        self._commit("reemitir la factura")

        logger.info(f"🔁 Billing {record.id} re-issued as {new_record.id}")
        return new_record

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _get_owned(self, billing_id: str, principal: Principal) -> BillingRecord:
        record = self.get(billing_id, principal)
        if not principal.is_doctor or principal.user_id != record.doctor_id:
            logger.warning(
                f"⚠️ {principal.kind} {principal.user_id} attempted to change billing {billing_id}"
            )
            raise PermissionDeniedError("Solo el médico tratante puede realizar esta acción")
        return record

    @staticmethod
    def _can_read(record: BillingRecord, principal: Principal) -> bool:
        if principal.is_patient:
            return bool(principal.patient_id) and record.patient_id == principal.patient_id
        return record.organization_id == principal.organization_id

    def _commit(self, action: str) -> None:
        try:
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"❌ Failed to {action}: {e}")
            raise TransientDependencyError(f"Error al {action}") from e

    def _notify_patient(self, record: BillingRecord, approved: bool) -> None:
        if not record.patient_id:
            return
        patient = self.db.query(Patient).filter(Patient.id == record.patient_id).first()
        if not patient or not patient.user_id:
            return
        self.notifications.submit_safely(
            user_id=patient.user_id,
            organization_id=record.organization_id,
            notification_type="PAYMENT_VERIFIED" if approved else "PAYMENT_REJECTED",
            title="Pago Verificado" if approved else "Pago Rechazado",
            message=(
                f"Su pago de {record.total} {record.currency} fue "
                + ("confirmado." if approved else "rechazado. Contacte al consultorio.")
            ),
            payload={"billingId": record.id, "appointmentId": record.appointment_id},
            send_email=True,
        )
