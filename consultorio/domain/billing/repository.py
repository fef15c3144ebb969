"""Billing repository - Database operations for facturación records"""

from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session, contains_eager

from ...models import Appointment
from ...models_billing import OPEN_PAYMENT_STATES, BillingAdjustment, BillingRecord

# Appointment statuses whose unpaid billing raises a payment alert
PAYMENT_ALERT_APPOINTMENT_STATUSES = ("SCHEDULED", "CONFIRMADA", "IN_PROGRESS", "COMPLETADA")


class BillingRepository:
    """Repository for billing database operations"""

    @staticmethod
    def get_by_id(db: Session, billing_id: str) -> Optional[BillingRecord]:
        return db.query(BillingRecord).filter(BillingRecord.id == billing_id).first()

    @staticmethod
    def add(db: Session, **data) -> BillingRecord:
        """Stage a new record; the caller owns the transaction"""
        record = BillingRecord(**data)
        db.add(record)
        db.flush()
        return record

    @staticmethod
    def list_records(
        db: Session,
        organization_id: Optional[str] = None,
        patient_id: Optional[str] = None,
        estado_pago: Optional[str] = None,
        appointment_id: Optional[str] = None,
        page: int = 1,
        page_size: int = 20,
    ) -> tuple[list[BillingRecord], int]:
        query = db.query(BillingRecord)
        if organization_id:
            query = query.filter(BillingRecord.organization_id == organization_id)
        if patient_id:
            query = query.filter(BillingRecord.patient_id == patient_id)
        if estado_pago:
            query = query.filter(BillingRecord.estado_pago == estado_pago)
        if appointment_id:
            query = query.filter(BillingRecord.appointment_id == appointment_id)

        total = query.count()
        items = (
            query.order_by(BillingRecord.fecha_emision.desc(), BillingRecord.id)
            .offset((page - 1) * page_size)
            .limit(page_size)
            .all()
        )
        return items, total

    @staticmethod
    def find_reissue_of(db: Session, billing_id: str) -> Optional[BillingRecord]:
        return db.query(BillingRecord).filter(BillingRecord.replaces_id == billing_id).first()

    @staticmethod
    def void_open_for_appointment(db: Session, appointment_id: str) -> int:
        """Mark unpaid records of an appointment 'anulada'. Does not commit."""
        records = (
            db.query(BillingRecord)
            .filter(
                BillingRecord.appointment_id == appointment_id,
                BillingRecord.estado_factura == "emitida",
                BillingRecord.estado_pago.in_(OPEN_PAYMENT_STATES),
            )
            .all()
        )
        for record in records:
            record.estado_factura = "anulada"
        return len(records)

    @staticmethod
    def add_adjustment(db: Session, **data) -> BillingAdjustment:
        adjustment = BillingAdjustment(**data)
        db.add(adjustment)
        db.flush()
        return adjustment

    @staticmethod
    def open_for_due_appointments(
        db: Session, due_before: datetime, doctor_id: Optional[str] = None
    ) -> list[BillingRecord]:
        """Unpaid records whose appointment is due before ``due_before`` and not cancelled"""
        query = (
            db.query(BillingRecord)
            .join(Appointment, BillingRecord.appointment_id == Appointment.id)
            .options(
                contains_eager(BillingRecord.appointment).joinedload(Appointment.patient),
                contains_eager(BillingRecord.appointment).joinedload(Appointment.unregistered_patient),
            )
            .filter(
                Appointment.scheduled_at < due_before,
                Appointment.status.in_(PAYMENT_ALERT_APPOINTMENT_STATUSES),
                BillingRecord.estado_factura == "emitida",
                BillingRecord.estado_pago.in_(OPEN_PAYMENT_STATES),
            )
        )
        if doctor_id:
            query = query.filter(BillingRecord.doctor_id == doctor_id)
        return query.order_by(Appointment.scheduled_at, BillingRecord.id).all()
