"""Notification domain schemas - Pydantic models for validation"""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel


class NotificationResponse(BaseModel):
    id: str
    type: str
    title: str
    message: str
    payload: Optional[dict[str, Any]] = None
    read: bool
    emailStatus: str
    url: Optional[str] = None
    createdAt: Optional[datetime] = None
