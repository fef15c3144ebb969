"""Consultation repository - Database operations for consultations and the email queue"""

from typing import Optional

from sqlalchemy.orm import Session, joinedload

from ...models import Consultation
from ...models_notification import ConsultationEmailQueueItem


class ConsultationRepository:
    @staticmethod
    def get_by_id(db: Session, consultation_id: str) -> Optional[Consultation]:
        return db.query(Consultation).filter(Consultation.id == consultation_id).first()

    @staticmethod
    def get_for_delivery(db: Session, consultation_id: str) -> Optional[Consultation]:
        """Consultation with everything the report email needs"""
        return (
            db.query(Consultation)
            .options(
                joinedload(Consultation.patient),
                joinedload(Consultation.unregistered_patient),
                joinedload(Consultation.doctor),
                joinedload(Consultation.organization),
            )
            .filter(Consultation.id == consultation_id)
            .first()
        )

    @staticmethod
    def find_live_queue_item(db: Session, consultation_id: str) -> Optional[ConsultationEmailQueueItem]:
        return (
            db.query(ConsultationEmailQueueItem)
            .filter(
                ConsultationEmailQueueItem.consultation_id == consultation_id,
                ConsultationEmailQueueItem.status != "failed",
            )
            .first()
        )

    @staticmethod
    def add_queue_item(db: Session, **data) -> ConsultationEmailQueueItem:
        item = ConsultationEmailQueueItem(**data)
        db.add(item)
        db.flush()
        return item
