"""Consultation service - completion and report email scheduling"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ...auth import Principal
from ...config import REPORT_EMAIL_DELAY_MINUTES
from ...errors import NotFoundError, PermissionDeniedError, TransientDependencyError
from ...models import Consultation
from ...models_notification import ConsultationEmailQueueItem
from .repository import ConsultationRepository

logger = logging.getLogger(__name__)


@dataclass
class CompletionResult:
    consultation: Consultation
    queue_item: Optional[ConsultationEmailQueueItem] = None


class ConsultationService:
    def __init__(self, db: Session, delay_minutes: int = REPORT_EMAIL_DELAY_MINUTES):
        self.db = db
        self.delay_minutes = delay_minutes
        self.repo = ConsultationRepository()

    def complete(
        self, consultation_id: str, principal: Principal, report_url: Optional[str] = None
    ) -> CompletionResult:
        """
        Close a consultation and schedule its report email.

        The email is queued only when the consultation has a report URL; at
        most one live queue item exists per consultation.
        """
        if not principal.is_staff:
            raise PermissionDeniedError("Solo el personal del consultorio puede finalizar consultas")

        consultation = self.repo.get_by_id(self.db, consultation_id)
        if not consultation or (
            consultation.organization_id != principal.organization_id
            and consultation.doctor_id != principal.user_id
        ):
            raise NotFoundError("Consulta no encontrada")

        now = datetime.utcnow()
        queue_item = None
        try:
            if report_url:
                consultation.report_url = report_url
            if not consultation.completed_at:
                consultation.completed_at = now

            appointment = consultation.appointment
            if appointment and appointment.status not in ("COMPLETADA", "CANCELADA"):
                appointment.status = "COMPLETADA"

            if consultation.report_url:
                queue_item = self.repo.find_live_queue_item(self.db, consultation.id)
                if not queue_item:
                    queue_item = self.repo.add_queue_item(
                        self.db,
                        consultation_id=consultation.id,
                        scheduled_at=now + timedelta(minutes=self.delay_minutes),
                        status="pending",
                        attempts=0,
                    )
                    logger.info(
                        f"📧 Report email for consultation {consultation.id} queued for {queue_item.scheduled_at.isoformat()}"
                    )
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"❌ Failed to complete consultation {consultation_id}: {e}")
            raise TransientDependencyError("Error al finalizar la consulta") from e

        return CompletionResult(consultation=consultation, queue_item=queue_item)
