"""
Notification outbox and report delivery queue models
"""

from sqlalchemy import JSON, Boolean, Column, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from .database import Base
from .models import generate_id

NOTIFICATION_TYPES = (
    "APPOINTMENT_REQUEST",
    "APPOINTMENT_RESCHEDULED",
    "APPOINTMENT_CANCELLED",
    "APPOINTMENT_STATUS",
    "PAYMENT_PENDING_VERIFICATION",
    "PAYMENT_VERIFIED",
    "PAYMENT_REJECTED",
    "PAYMENT_VALIDATION_REQUIRED",
    "INVOICE",
)
QUEUE_TERMINAL_STATES = ("sent", "failed")


class Notification(Base):
    """In-app notification; the email columns make it an outbox row"""

    __tablename__ = "notifications"

    id = Column(String(36), primary_key=True, default=generate_id)
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    organization_id = Column(String(36), ForeignKey("organizations.id"), nullable=True)
    type = Column(String(50), nullable=False)
    title = Column(String(255), nullable=False)
    message = Column(Text, nullable=False)
    payload = Column(JSON, nullable=True)
    read = Column(Boolean, default=False, nullable=False)

    send_email_requested = Column(Boolean, default=False, nullable=False)
    email_status = Column(String(20), nullable=False, default="not_requested")  # not_requested, pending, sending, sent, failed
    email_error = Column(Text, nullable=True)
    email_sent_at = Column(DateTime, nullable=True)
    email_claimed_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, server_default=func.now())

    user = relationship("User")


class ConsultationEmailQueueItem(Base):
    """Pending post-consultation report email"""

    __tablename__ = "consultation_email_queue"

    id = Column(String(36), primary_key=True, default=generate_id)
    consultation_id = Column(String(36), ForeignKey("consultations.id"), nullable=False, index=True)
    scheduled_at = Column(DateTime, nullable=False, index=True)
    status = Column(String(20), nullable=False, default="pending", index=True)  # pending, processing, sent, failed
    attempts = Column(Integer, nullable=False, default=0)
    error_message = Column(Text, nullable=True)
    sent_at = Column(DateTime, nullable=True)
    claimed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    consultation = relationship("Consultation")
