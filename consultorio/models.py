import uuid

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from .database import Base

# Appointment statuses that occupy a doctor's time slot
ACTIVE_APPOINTMENT_STATUSES = ("SCHEDULED", "CONFIRMADA", "IN_PROGRESS")
APPOINTMENT_STATUSES = (
    "SCHEDULED",
    "CONFIRMADA",
    "IN_PROGRESS",
    "COMPLETADA",
    "CANCELADA",
    "REAGENDADA",
)
DEFAULT_DURATION_MINUTES = 30


def generate_id():
    """Generate a UUID primary key"""
    return str(uuid.uuid4())


class Organization(Base):
    __tablename__ = "organizations"

    id = Column(String(36), primary_key=True, default=generate_id)
    name = Column(String(255), nullable=False)
    created_at = Column(DateTime, server_default=func.now())

    users = relationship("User", back_populates="organization")
    role_users = relationship("RoleUser", back_populates="organization")


class User(Base):
    """Platform account: doctors, clinic admins and patients with a login"""

    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=generate_id)
    organization_id = Column(String(36), ForeignKey("organizations.id"), nullable=True, index=True)
    name = Column(String(255), nullable=True)
    email = Column(String(255), nullable=True)
    role = Column(String(20), nullable=False, default="MEDICO")  # MEDICO, ADMIN, PACIENTE
    created_at = Column(DateTime, server_default=func.now())

    organization = relationship("Organization", back_populates="users")


class RoleUser(Base):
    """Front-desk account that books on behalf of its organization"""

    __tablename__ = "role_users"

    id = Column(String(36), primary_key=True, default=generate_id)
    organization_id = Column(String(36), ForeignKey("organizations.id"), nullable=False, index=True)
    first_name = Column(String(100), nullable=False)
    last_name = Column(String(100), nullable=True)
    email = Column(String(255), nullable=True)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, server_default=func.now())

    organization = relationship("Organization", back_populates="role_users")


class Patient(Base):
    __tablename__ = "patients"

    id = Column(String(36), primary_key=True, default=generate_id)
    user_id = Column(String(36), ForeignKey("users.id"), nullable=True)
    first_name = Column(String(100), nullable=False)
    last_name = Column(String(100), nullable=True)
    email = Column(String(255), nullable=True)
    identifier = Column(String(50), nullable=True)
    created_at = Column(DateTime, server_default=func.now())

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name or ''}".strip()


class UnregisteredPatient(Base):
    """Patient captured by a clinic without a platform account"""

    __tablename__ = "unregistered_patients"

    id = Column(String(36), primary_key=True, default=generate_id)
    organization_id = Column(String(36), ForeignKey("organizations.id"), nullable=True)
    first_name = Column(String(100), nullable=False)
    last_name = Column(String(100), nullable=True)
    email = Column(String(255), nullable=True)
    phone = Column(String(50), nullable=True)
    identification = Column(String(50), nullable=True)
    created_at = Column(DateTime, server_default=func.now())

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name or ''}".strip()


class Appointment(Base):
    __tablename__ = "appointments"
    __table_args__ = (
        CheckConstraint(
            "(patient_id IS NULL) <> (unregistered_patient_id IS NULL)",
            name="ck_appointment_single_patient",
        ),
    )

    id = Column(String(36), primary_key=True, default=generate_id)
    patient_id = Column(String(36), ForeignKey("patients.id"), nullable=True, index=True)
    unregistered_patient_id = Column(
        String(36), ForeignKey("unregistered_patients.id"), nullable=True, index=True
    )
    doctor_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    organization_id = Column(String(36), ForeignKey("organizations.id"), nullable=False, index=True)
    created_by_role_user_id = Column(String(36), ForeignKey("role_users.id"), nullable=True)

    scheduled_at = Column(DateTime, nullable=False, index=True)  # UTC
    duration_minutes = Column(Integer, nullable=True, default=DEFAULT_DURATION_MINUTES)
    # SCHEDULED, CONFIRMADA, IN_PROGRESS, COMPLETADA, CANCELADA, REAGENDADA
    status = Column(String(20), nullable=False, default="SCHEDULED")
    reason = Column(Text, nullable=True)
    location = Column(String(255), nullable=True)
    referral_source = Column(String(100), nullable=True)
    # Snapshot {name, price, currency} taken at booking time
    selected_service = Column(JSON, nullable=True)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    patient = relationship("Patient")
    unregistered_patient = relationship("UnregisteredPatient")
    doctor = relationship("User", foreign_keys=[doctor_id])
    organization = relationship("Organization")
    billing_records = relationship("BillingRecord", back_populates="appointment")


class Consultation(Base):
    __tablename__ = "consultations"

    id = Column(String(36), primary_key=True, default=generate_id)
    appointment_id = Column(String(36), ForeignKey("appointments.id"), nullable=True, index=True)
    patient_id = Column(String(36), ForeignKey("patients.id"), nullable=True)
    unregistered_patient_id = Column(String(36), ForeignKey("unregistered_patients.id"), nullable=True)
    doctor_id = Column(String(36), ForeignKey("users.id"), nullable=False)
    organization_id = Column(String(36), ForeignKey("organizations.id"), nullable=True)
    report_url = Column(Text, nullable=True)
    started_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, server_default=func.now())

    appointment = relationship("Appointment")
    patient = relationship("Patient")
    unregistered_patient = relationship("UnregisteredPatient")
    doctor = relationship("User", foreign_keys=[doctor_id])
    organization = relationship("Organization")
