"""Scheduling repository - Database operations for appointments and tenants"""

from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from ...models import (
    ACTIVE_APPOINTMENT_STATUSES,
    Appointment,
    Organization,
    Patient,
    RoleUser,
    UnregisteredPatient,
    User,
)


class SchedulingRepository:
    """Repository for appointment and tenant lookups"""

    @staticmethod
    def get_appointment(db: Session, appointment_id: str) -> Optional[Appointment]:
        return db.query(Appointment).filter(Appointment.id == appointment_id).first()

    @staticmethod
    def get_patient(db: Session, patient_id: str) -> Optional[Patient]:
        return db.query(Patient).filter(Patient.id == patient_id).first()

    @staticmethod
    def get_unregistered_patient(db: Session, patient_id: str) -> Optional[UnregisteredPatient]:
        return db.query(UnregisteredPatient).filter(UnregisteredPatient.id == patient_id).first()

    @staticmethod
    def get_role_user(db: Session, role_user_id: str) -> Optional[RoleUser]:
        return db.query(RoleUser).filter(RoleUser.id == role_user_id).first()

    @staticmethod
    def get_organization(db: Session, organization_id: str) -> Optional[Organization]:
        return db.query(Organization).filter(Organization.id == organization_id).first()

    @staticmethod
    def get_user(db: Session, user_id: str) -> Optional[User]:
        return db.query(User).filter(User.id == user_id).first()

    @staticmethod
    def first_doctor_of_organization(db: Session, organization_id: str) -> Optional[User]:
        return (
            db.query(User)
            .filter(User.organization_id == organization_id, User.role == "MEDICO")
            .order_by(User.created_at.asc(), User.id.asc())
            .first()
        )

    @staticmethod
    def lock_doctor(db: Session, doctor_id: str) -> Optional[User]:
        """
        Row-lock the doctor for the rest of the transaction. Serializes
        check-then-insert for one doctor; a no-op on SQLite.
        """
        return db.query(User).filter(User.id == doctor_id).with_for_update().first()

    @staticmethod
    def active_appointments_between(
        db: Session,
        doctor_id: str,
        start: datetime,
        end: datetime,
        exclude_appointment_id: Optional[str] = None,
    ) -> list[Appointment]:
        query = db.query(Appointment).filter(
            Appointment.doctor_id == doctor_id,
            Appointment.status.in_(ACTIVE_APPOINTMENT_STATUSES),
            Appointment.scheduled_at >= start,
            Appointment.scheduled_at < end,
        )
        if exclude_appointment_id:
            query = query.filter(Appointment.id != exclude_appointment_id)
        return query.order_by(Appointment.scheduled_at).all()
