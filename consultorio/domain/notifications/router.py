"""Notification router - the current user's in-app notifications"""

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from ...auth import Principal, get_current_principal
from ...database import SessionLocal, get_db
from ...email_service import EmailSender, get_email_sender
from ...models_notification import Notification
from .schemas import NotificationResponse
from .service import NotificationDispatcher, NotificationService, get_notification_url

router = APIRouter(prefix="/notifications", tags=["Notifications"])


def get_notification_service(db: Session = Depends(get_db)) -> NotificationService:
    """Dependency injection for NotificationService"""
    return NotificationService(db)


def get_notification_dispatcher(
    email_sender: EmailSender = Depends(get_email_sender),
) -> NotificationDispatcher:
    """Dispatcher opens its own sessions: it runs after the request session is closed"""
    return NotificationDispatcher(SessionLocal, email_sender)


def to_response(notification: Notification) -> NotificationResponse:
    return NotificationResponse(
        id=notification.id,
        type=notification.type,
        title=notification.title,
        message=notification.message,
        payload=notification.payload,
        read=notification.read,
        emailStatus=notification.email_status,
        url=get_notification_url(notification.type, notification.payload),
        createdAt=notification.created_at,
    )


@router.get("", response_model=list[NotificationResponse])
async def list_notifications(
    unread_only: bool = False,
    principal: Principal = Depends(get_current_principal),
    service: NotificationService = Depends(get_notification_service),
):
    """Get the current user's notifications, newest first"""
    return [to_response(n) for n in service.list_for_user(principal.user_id, unread_only)]


@router.post("/{notification_id}/read", response_model=NotificationResponse)
async def mark_notification_read(
    notification_id: str,
    principal: Principal = Depends(get_current_principal),
    service: NotificationService = Depends(get_notification_service),
):
    notification = service.mark_read(notification_id, principal.user_id)
    if not notification:
        raise HTTPException(status_code=404, detail="Notificación no encontrada")
    return to_response(notification)
