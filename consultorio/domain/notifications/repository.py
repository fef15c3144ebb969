"""Notification repository - Database operations for notifications"""

from datetime import datetime
from typing import Optional

from sqlalchemy import and_, or_, update
from sqlalchemy.orm import Session

from ...models_notification import Notification


class NotificationRepository:
    """Repository for notification database operations"""

    @staticmethod
    def create(db: Session, **data) -> Notification:
        notification = Notification(**data)
        db.add(notification)
        db.commit()
        db.refresh(notification)
        return notification

    @staticmethod
    def get_by_id(db: Session, notification_id: str) -> Optional[Notification]:
        return db.query(Notification).filter(Notification.id == notification_id).first()

    @staticmethod
    def list_for_user(
        db: Session, user_id: str, unread_only: bool = False, limit: int = 50
    ) -> list[Notification]:
        query = db.query(Notification).filter(Notification.user_id == user_id)
        if unread_only:
            query = query.filter(Notification.read.is_(False))
        return query.order_by(Notification.created_at.desc()).limit(limit).all()

    @staticmethod
    def has_unread(db: Session, user_id: str, notification_type: str) -> bool:
        return (
            db.query(Notification.id)
            .filter(
                Notification.user_id == user_id,
                Notification.type == notification_type,
                Notification.read.is_(False),
            )
            .first()
            is not None
        )

    @staticmethod
    def _claimable(stale_before: datetime):
        """Pending emails, plus 'sending' ones whose dispatcher never reported back"""
        return or_(
            Notification.email_status == "pending",
            and_(
                Notification.email_status == "sending",
                or_(
                    Notification.email_claimed_at.is_(None),
                    Notification.email_claimed_at <= stale_before,
                ),
            ),
        )

    @staticmethod
    def pending_email_ids(db: Session, limit: int, stale_before: datetime) -> list[str]:
        rows = (
            db.query(Notification.id)
            .filter(NotificationRepository._claimable(stale_before))
            .order_by(Notification.created_at)
            .limit(limit)
            .all()
        )
        return [row.id for row in rows]

    @staticmethod
    def claim_email(db: Session, notification_id: str, now: datetime, stale_before: datetime) -> bool:
        """Move a claimable email to 'sending'. False when someone else got it first."""
        result = db.execute(
            update(Notification)
            .where(Notification.id == notification_id, NotificationRepository._claimable(stale_before))
            .values(email_status="sending", email_claimed_at=now)
        )
        db.commit()
        return result.rowcount == 1

    @staticmethod
    def record_email_result(
        db: Session, notification: Notification, error: Optional[str] = None
    ) -> None:
        if error:
            notification.email_status = "failed"
            notification.email_error = error
        else:
            notification.email_status = "sent"
            notification.email_sent_at = datetime.utcnow()
            notification.email_error = None
        db.commit()
