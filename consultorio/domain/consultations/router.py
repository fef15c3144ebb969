"""Consultation router - completion endpoint"""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.orm import Session

from ...auth import Principal, get_current_principal
from ...database import get_db
from .service import ConsultationService

router = APIRouter(prefix="/consultations", tags=["Consultations"])


class CompleteConsultationRequest(BaseModel):
    reportUrl: Optional[str] = None


class CompleteConsultationResponse(BaseModel):
    consultationId: str
    completedAt: Optional[datetime] = None
    reportUrl: Optional[str] = None
    queueItemId: Optional[str] = None
    emailScheduledAt: Optional[datetime] = None


def get_consultation_service(db: Session = Depends(get_db)) -> ConsultationService:
    """Dependency injection for ConsultationService"""
    return ConsultationService(db)


@router.post("/{consultation_id}/complete", response_model=CompleteConsultationResponse)
async def complete_consultation(
    consultation_id: str,
    data: CompleteConsultationRequest,
    principal: Principal = Depends(get_current_principal),
    service: ConsultationService = Depends(get_consultation_service),
):
    result = service.complete(consultation_id, principal, data.reportUrl)
    item = result.queue_item
    return CompleteConsultationResponse(
        consultationId=result.consultation.id,
        completedAt=result.consultation.completed_at,
        reportUrl=result.consultation.report_url,
        queueItemId=item.id if item else None,
        emailScheduledAt=item.scheduled_at if item else None,
    )
