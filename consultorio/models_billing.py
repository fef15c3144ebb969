"""
Billing Models - facturación records and their adjustment trail
"""

from sqlalchemy import Column, DateTime, ForeignKey, Numeric, String, Text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from .database import Base
from .models import generate_id

PAYMENT_STATES = ("pendiente", "pendiente_verificacion", "pagada", "rechazada")
OPEN_PAYMENT_STATES = ("pendiente", "pendiente_verificacion")
INVOICE_STATES = ("emitida", "anulada")


class BillingRecord(Base):
    """One invoice per appointment, created in the booking transaction"""

    __tablename__ = "facturacion"

    id = Column(String(36), primary_key=True, default=generate_id)
    appointment_id = Column(String(36), ForeignKey("appointments.id"), nullable=False, index=True)
    patient_id = Column(String(36), ForeignKey("patients.id"), nullable=True)
    unregistered_patient_id = Column(String(36), ForeignKey("unregistered_patients.id"), nullable=True)
    doctor_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    organization_id = Column(String(36), ForeignKey("organizations.id"), nullable=False, index=True)
    # Set when this record was re-issued after a rejected one
    replaces_id = Column(String(36), ForeignKey("facturacion.id"), nullable=True)

    subtotal = Column(Numeric(12, 2), nullable=False)
    impuestos = Column(Numeric(12, 2), nullable=False, default=0)
    total = Column(Numeric(12, 2), nullable=False)
    currency = Column(String(3), nullable=False, default="USD")
    # Bs per 1 unit of currency, captured when the record is created
    tipo_cambio = Column(Numeric(18, 6), nullable=False)

    estado_pago = Column(String(30), nullable=False, default="pendiente")  # pendiente, pendiente_verificacion, pagada, rechazada
    estado_factura = Column(String(20), nullable=False, default="emitida")  # emitida, anulada

    metodo_pago = Column(String(50), nullable=True)  # EFECTIVO, PAGO_MOVIL, TRANSFERENCIA, TARJETA
    numero_referencia = Column(String(100), nullable=True)
    notas = Column(Text, nullable=True)
    fecha_emision = Column(DateTime, server_default=func.now())
    fecha_pago = Column(DateTime, nullable=True)
    verified_by_id = Column(String(36), ForeignKey("users.id"), nullable=True)
    verified_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    appointment = relationship("Appointment", back_populates="billing_records")
    adjustments = relationship(
        "BillingAdjustment", back_populates="billing", order_by="BillingAdjustment.created_at"
    )


class BillingAdjustment(Base):
    """Append-only record of manual changes to a billing total"""

    __tablename__ = "facturacion_ajustes"

    id = Column(String(36), primary_key=True, default=generate_id)
    billing_id = Column(String(36), ForeignKey("facturacion.id"), nullable=False, index=True)
    previous_total = Column(Numeric(12, 2), nullable=False)
    new_total = Column(Numeric(12, 2), nullable=False)
    delta = Column(Numeric(12, 2), nullable=False)
    reason = Column(Text, nullable=False)
    actor_id = Column(String(36), ForeignKey("users.id"), nullable=False)
    created_at = Column(DateTime, server_default=func.now())

    billing = relationship("BillingRecord", back_populates="adjustments")
