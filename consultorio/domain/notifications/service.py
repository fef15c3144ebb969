"""
Notification service - outbox writes and email dispatch

``NotificationService.submit`` only writes the notification row. The email
is sent later by ``NotificationDispatcher`` (a FastAPI background task right
after the request, plus a periodic sweep), so an email outage can never fail
or slow down the operation that produced the notification.
"""

import logging
from datetime import datetime, timedelta
from typing import Any, Optional

from sqlalchemy.orm import Session, sessionmaker

from ...config import DELIVERY_STALE_CLAIM_MINUTES, FRONTEND_URL
from ...email_service import EmailSender
from ...models import User
from ...models_notification import NOTIFICATION_TYPES, Notification
from .repository import NotificationRepository

logger = logging.getLogger(__name__)


def get_notification_url(notification_type: str, payload: Optional[dict]) -> Optional[str]:
    """Dashboard link for a notification, if it has one"""
    payload = payload or {}
    if notification_type.startswith("APPOINTMENT_") and payload.get("appointmentId"):
        return f"{FRONTEND_URL}/dashboard/medic/consultas/{payload['appointmentId']}"
    if notification_type == "PAYMENT_VALIDATION_REQUIRED":
        return f"{FRONTEND_URL}/dashboard/medic/alerts"
    if notification_type.startswith("PAYMENT_") or notification_type == "INVOICE":
        if payload.get("billingId"):
            return f"{FRONTEND_URL}/dashboard/medic/pagos/{payload['billingId']}"
    return None


class NotificationService:
    """Writes notification rows"""

    def __init__(self, db: Session):
        self.db = db
        self.repo = NotificationRepository()

    def submit(
        self,
        user_id: str,
        organization_id: Optional[str],
        notification_type: str,
        title: str,
        message: str,
        payload: Optional[dict[str, Any]] = None,
        send_email: bool = False,
    ) -> Notification:
        if notification_type not in NOTIFICATION_TYPES:
            raise ValueError(f"Unknown notification type: {notification_type}")

        notification = self.repo.create(
            self.db,
            user_id=user_id,
            organization_id=organization_id,
            type=notification_type,
            title=title,
            message=message,
            payload=payload or {},
            read=False,
            send_email_requested=send_email,
            email_status="pending" if send_email else "not_requested",
        )
        logger.info(f"🔔 Notification {notification.id} ({notification_type}) queued for user {user_id}")
        return notification

    def submit_safely(self, **kwargs) -> Optional[str]:
        """
        Same as ``submit`` but never raises. Returns the notification id, or
        None when the row could not be written.
        """
        try:
            return self.submit(**kwargs).id
        except Exception as e:
            self.db.rollback()
            logger.error(f"❌ Failed to create notification ({kwargs.get('notification_type')}): {e}")
            return None

    def list_for_user(self, user_id: str, unread_only: bool = False) -> list[Notification]:
        return self.repo.list_for_user(self.db, user_id, unread_only=unread_only)

    def has_unread(self, user_id: str, notification_type: str) -> bool:
        return self.repo.has_unread(self.db, user_id, notification_type)

    def mark_read(self, notification_id: str, user_id: str) -> Optional[Notification]:
        notification = self.repo.get_by_id(self.db, notification_id)
        if not notification or notification.user_id != user_id:
            return None
        notification.read = True
        self.db.commit()
        return notification


class NotificationDispatcher:
    """
    Sends the advisory email of pending notification rows.

    An email is claimed by moving it to ``sending``. A claim older than the
    stale window (a dispatcher that died before recording the result) is
    picked up again by the next dispatch or sweep.
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        email_sender: EmailSender,
        stale_claim_minutes: int = DELIVERY_STALE_CLAIM_MINUTES,
    ):
        self.session_factory = session_factory
        self.email_sender = email_sender
        self.stale_claim_minutes = stale_claim_minutes
        self.repo = NotificationRepository()

    def _stale_before(self, now: datetime) -> datetime:
        return now - timedelta(minutes=self.stale_claim_minutes)

    async def dispatch(self, notification_id: str, now: Optional[datetime] = None) -> bool:
        """Send one notification email. Never raises; returns True when sent."""
        now = now or datetime.utcnow()
        db = self.session_factory()
        try:
            if not self.repo.claim_email(db, notification_id, now, self._stale_before(now)):
                return False

            notification = self.repo.get_by_id(db, notification_id)
            user = db.query(User).filter(User.id == notification.user_id).first()
            if not user or not user.email:
                logger.warning(f"⚠️ Notification {notification_id}: recipient has no email")
                self.repo.record_email_result(db, notification, error="Usuario sin email")
                return False

            try:
                await self.email_sender.send_notification_email(
                    to=user.email,
                    recipient_name=user.name or user.email,
                    title=notification.title,
                    message=notification.message,
                    action_url=get_notification_url(notification.type, notification.payload),
                )
            except Exception as e:
                logger.error(f"❌ Notification email {notification_id} failed: {e}")
                self.repo.record_email_result(db, notification, error=str(e))
                return False

            self.repo.record_email_result(db, notification)
            logger.info(f"📧 Notification email {notification_id} sent to {user.email}")
            return True
        except Exception as e:
            db.rollback()
            logger.error(f"❌ Error dispatching notification {notification_id}: {e}")
            return False
        finally:
            db.close()

    async def dispatch_pending(self, limit: int = 100, now: Optional[datetime] = None) -> dict:
        """Sweep notification emails still waiting to be sent"""
        now = now or datetime.utcnow()
        db = self.session_factory()
        try:
            pending_ids = self.repo.pending_email_ids(db, limit, self._stale_before(now))
        finally:
            db.close()

        if not pending_ids:
            logger.info("✅ No pending notification emails")
            return {"processed": 0, "sent": 0}

        sent = 0
        for notification_id in pending_ids:
            if await self.dispatch(notification_id, now):
                sent += 1

        logger.info(f"📧 Notification sweep: {sent}/{len(pending_ids)} emails sent")
        return {"processed": len(pending_ids), "sent": sent}
