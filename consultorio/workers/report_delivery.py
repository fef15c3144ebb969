"""
Consultation Report Delivery Worker
Drains the consultation email queue: one report email per completed consultation
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional
from urllib.parse import quote

from sqlalchemy import and_, or_, update
from sqlalchemy.orm import Session, sessionmaker

from ..config import (
    DELIVERY_BATCH_SIZE,
    DELIVERY_MAX_ATTEMPTS,
    DELIVERY_POLL_SECONDS,
    DELIVERY_STALE_CLAIM_MINUTES,
    FRONTEND_URL,
)
from ..database import SessionLocal
from ..domain.consultations.contacts import PatientContact, resolve_patient_contact
from ..domain.consultations.repository import ConsultationRepository
from ..email_service import EmailSender, get_email_sender
from ..models_notification import ConsultationEmailQueueItem

logger = logging.getLogger(__name__)

CONSULTATION_NOT_FOUND = "Consulta no encontrada"
REPORT_NOT_AVAILABLE = "No hay informe disponible"
PATIENT_WITHOUT_EMAIL = "Paciente no tiene email"


@dataclass
class DeliverySummary:
    processed: int = 0
    success_count: int = 0
    fail_count: int = 0

    def to_dict(self) -> dict:
        return {
            "success": True,
            "processed": self.processed,
            "successCount": self.success_count,
            "failCount": self.fail_count,
        }


class ReportDeliveryWorker:
    """
    Sends due report emails.

    Items are claimed with a guarded ``pending -> processing`` update, so two
    overlapping runs never send the same item. A claim older than the stale
    window (a run that died mid-batch) is picked up again.

    Missing consultation, report or patient email fail the item at once
    without counting an attempt. Send errors count an attempt and the item
    goes back to ``pending`` until ``max_attempts`` is reached.
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        email_sender: EmailSender,
        batch_size: int = DELIVERY_BATCH_SIZE,
        max_attempts: int = DELIVERY_MAX_ATTEMPTS,
        stale_claim_minutes: int = DELIVERY_STALE_CLAIM_MINUTES,
        app_url: str = FRONTEND_URL,
    ):
        self.session_factory = session_factory
        self.email_sender = email_sender
        self.batch_size = batch_size
        self.max_attempts = max_attempts
        self.stale_claim_minutes = stale_claim_minutes
        self.app_url = app_url.rstrip("/")
        self.consultations = ConsultationRepository()

    async def run_once(self, now: Optional[datetime] = None) -> DeliverySummary:
        now = now or datetime.utcnow()
        summary = DeliverySummary()

        db = self.session_factory()
        try:
            claimed_ids = self._claim_batch(db, now)
            if not claimed_ids:
                logger.info("✅ No pending report emails to process")
                return summary

            logger.info(f"📧 Processing {len(claimed_ids)} report emails")
            for item_id in claimed_ids:
                summary.processed += 1
                try:
                    delivered = await self._process_item(db, item_id, now)
                except Exception as e:
                    db.rollback()
                    logger.error(f"❌ Error processing queue item {item_id}: {e}")
                    self._record_unexpected_failure(db, item_id, e)
                    delivered = False

                if delivered:
                    summary.success_count += 1
                else:
                    summary.fail_count += 1
        finally:
            db.close()

        logger.info(
            f"✅ Report queue drained: processed={summary.processed}, "
            f"sent={summary.success_count}, failed={summary.fail_count}"
        )
        return summary

    def _claim_batch(self, db: Session, now: datetime) -> list[str]:
        stale_before = now - timedelta(minutes=self.stale_claim_minutes)
        candidates = (
            db.query(
                ConsultationEmailQueueItem.id,
                ConsultationEmailQueueItem.status,
                ConsultationEmailQueueItem.claimed_at,
            )
            .filter(
                or_(
                    and_(
                        ConsultationEmailQueueItem.status == "pending",
                        ConsultationEmailQueueItem.scheduled_at <= now,
                    ),
                    and_(
                        ConsultationEmailQueueItem.status == "processing",
                        ConsultationEmailQueueItem.claimed_at <= stale_before,
                    ),
                )
            )
            .order_by(ConsultationEmailQueueItem.scheduled_at)
            .limit(self.batch_size)
            .all()
        )

        claimed = []
        for candidate in candidates:
            result = db.execute(
                update(ConsultationEmailQueueItem)
                .where(
                    ConsultationEmailQueueItem.id == candidate.id,
                    ConsultationEmailQueueItem.status == candidate.status,
                    ConsultationEmailQueueItem.claimed_at == candidate.claimed_at,
                )
                .values(status="processing", claimed_at=now)
            )
            if result.rowcount == 1:
                claimed.append(candidate.id)
            else:
                logger.info(f"⏭️ Queue item {candidate.id} claimed by another run")
        db.commit()
        return claimed

    async def _process_item(self, db: Session, item_id: str, now: datetime) -> bool:
        item = db.query(ConsultationEmailQueueItem).filter(ConsultationEmailQueueItem.id == item_id).first()

        consultation = self.consultations.get_for_delivery(db, item.consultation_id)
        if not consultation:
            return self._fail_permanently(db, item, CONSULTATION_NOT_FOUND)
        if not consultation.report_url:
            return self._fail_permanently(db, item, REPORT_NOT_AVAILABLE)

        contact = resolve_patient_contact(consultation)
        if not contact or not contact.email:
            return self._fail_permanently(db, item, PATIENT_WITHOUT_EMAIL)

        doctor_name = (consultation.doctor.name if consultation.doctor else None) or "Dr."
        organization_name = (
            consultation.organization.name if consultation.organization else None
        ) or "Consultorio"

        try:
            await self.email_sender.send_consultation_report(
                to=contact.email,
                patient_name=contact.name,
                doctor_name=doctor_name,
                organization_name=organization_name,
                consultation_date=consultation.started_at or consultation.completed_at or consultation.created_at,
                report_url=consultation.report_url,
                rating_url=f"{self.app_url}/rate-consultation?consultation_id={consultation.id}",
            )
        except Exception as e:
            self._record_send_failure(db, item, str(e))
            return False

        item.status = "sent"
        item.sent_at = datetime.utcnow()
        item.attempts += 1
        item.error_message = None
        db.commit()
        logger.info(f"✅ Report email for consultation {consultation.id} sent to {contact.email}")

        if not contact.is_registered:
            await self._send_invitation(contact, organization_name)
        return True

    def _fail_permanently(self, db: Session, item: ConsultationEmailQueueItem, reason: str) -> bool:
        item.status = "failed"
        item.error_message = reason
        db.commit()
        logger.warning(f"⚠️ Queue item {item.id} failed: {reason}")
        return False

    def _record_send_failure(self, db: Session, item: ConsultationEmailQueueItem, error: str) -> None:
        item.attempts += 1
        item.error_message = error
        item.status = "failed" if item.attempts >= self.max_attempts else "pending"
        db.commit()
        logger.error(
            f"❌ Report email for queue item {item.id} failed "
            f"(attempt {item.attempts}/{self.max_attempts}): {error}"
        )

    def _record_unexpected_failure(self, db: Session, item_id: str, error: Exception) -> None:
        try:
            item = (
                db.query(ConsultationEmailQueueItem)
                .filter(ConsultationEmailQueueItem.id == item_id)
                .first()
            )
            if item and item.status == "processing":
                self._record_send_failure(db, item, str(error))
        except Exception as e:
            db.rollback()
            logger.error(f"❌ Could not record failure for queue item {item_id}: {e}")

    async def _send_invitation(self, contact: PatientContact, organization_name: str) -> None:
        try:
            await self.email_sender.send_registration_invitation(
                to=contact.email,
                patient_name=contact.name,
                organization_name=organization_name,
                register_url=f"{self.app_url}/register?email={quote(contact.email)}",
            )
            logger.info(f"📨 Registration invitation sent to {contact.email}")
        except Exception as e:
            logger.warning(f"⚠️ Registration invitation to {contact.email} failed: {e}")


def get_report_delivery_worker() -> ReportDeliveryWorker:
    return ReportDeliveryWorker(SessionLocal, get_email_sender())


async def drain_report_queue() -> dict:
    """Run one pass over the queue with the default configuration"""
    summary = await get_report_delivery_worker().run_once()
    return summary.to_dict()


async def run_delivery_worker():
    """
    Polling loop for deployments without Redis.
    Drains the report queue and sweeps pending notification emails.
    """
    from ..domain.notifications.service import NotificationDispatcher

    logger.info(f"🚀 Delivery worker started (every {DELIVERY_POLL_SECONDS}s)")
    dispatcher = NotificationDispatcher(SessionLocal, get_email_sender())

    while True:
        try:
            await drain_report_queue()
            await dispatcher.dispatch_pending()
        except Exception as e:
            logger.error(f"❌ Error in delivery worker loop: {e}")

        await asyncio.sleep(DELIVERY_POLL_SECONDS)
