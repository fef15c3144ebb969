"""
Doctor schedule conflict detection

Two appointments conflict when their start times are closer than the
*existing* appointment's duration (30 minutes when unset). Only same-day
appointments in an active status are compared. The candidate's own
duration does not take part, so a long new appointment may overlap a later
short one.
"""

import logging
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.orm import Session

from ...models import DEFAULT_DURATION_MINUTES, Appointment
from .repository import SchedulingRepository

logger = logging.getLogger(__name__)


def starts_too_close(existing_start: datetime, existing_duration: Optional[int], candidate_start: datetime) -> bool:
    diff_minutes = abs((existing_start - candidate_start).total_seconds()) / 60
    return diff_minutes < (existing_duration or DEFAULT_DURATION_MINUTES)


class ConflictDetector:
    def __init__(self, db: Session):
        self.db = db
        self.repo = SchedulingRepository()

    def find_conflict(
        self,
        doctor_id: str,
        scheduled_at: datetime,
        exclude_appointment_id: Optional[str] = None,
    ) -> Optional[Appointment]:
        """Return the first active appointment that blocks the slot, if any"""
        day_start = datetime(scheduled_at.year, scheduled_at.month, scheduled_at.day)
        same_day = self.repo.active_appointments_between(
            self.db,
            doctor_id,
            day_start,
            day_start + timedelta(days=1),
            exclude_appointment_id=exclude_appointment_id,
        )
        for existing in same_day:
            if starts_too_close(existing.scheduled_at, existing.duration_minutes, scheduled_at):
                logger.info(
                    f"⛔ Slot {scheduled_at.isoformat()} for doctor {doctor_id} "
                    f"blocked by appointment {existing.id}"
                )
                return existing
        return None

    def has_conflict(
        self,
        doctor_id: str,
        scheduled_at: datetime,
        exclude_appointment_id: Optional[str] = None,
    ) -> bool:
        return (
            self.find_conflict(doctor_id, scheduled_at, exclude_appointment_id)
            is not None
        )
