"""
Scheduler-facing endpoints
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from .. import config
from ..database import get_db
from ..domain.billing.service import BillingService
from ..workers.report_delivery import ReportDeliveryWorker, get_report_delivery_worker

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/cron", tags=["Cron"])


def cron_authorized(authorization: Optional[str]) -> bool:
    """Open when no CRON_SECRET is configured"""
    if not config.CRON_SECRET:
        return True
    return authorization == f"Bearer {config.CRON_SECRET}"


@router.get("/send-consultation-emails")
async def send_consultation_emails(
    authorization: Optional[str] = Header(None),
    worker: ReportDeliveryWorker = Depends(get_report_delivery_worker),
):
    """Drain due consultation report emails; returns the run summary"""
    if not cron_authorized(authorization):
        logger.warning("⚠️ Unauthorized call to send-consultation-emails")
        return JSONResponse(status_code=401, content={"error": "Unauthorized"})

    summary = await worker.run_once()
    return summary.to_dict()


@router.get("/check-pending-payments")
async def check_pending_payments(
    authorization: Optional[str] = Header(None),
    db: Session = Depends(get_db),
):
    """Alert doctors about unpaid appointments due today or earlier"""
    if not cron_authorized(authorization):
        logger.warning("⚠️ Unauthorized call to check-pending-payments")
        return JSONResponse(status_code=401, content={"error": "Unauthorized"})

    return BillingService(db).notify_pending_payments()
