from datetime import datetime

from conftest import booking_payload
from consultorio.domain.scheduling.conflicts import ConflictDetector, starts_too_close
from consultorio.domain.scheduling.schemas import BookingRequest
from consultorio.domain.scheduling.service import BookingService
from consultorio.models import Appointment


def add_appointment(db, tenant, scheduled_at, duration=30, status="SCHEDULED", doctor=None):
    appointment = Appointment(
        patient_id=tenant.patient.id,
        doctor_id=(doctor or tenant.doctor).id,
        organization_id=tenant.org.id,
        scheduled_at=scheduled_at,
        duration_minutes=duration,
        status=status,
    )
    db.add(appointment)
    db.commit()
    return appointment


def test_starts_too_close_uses_existing_duration():
    existing = datetime(2025, 3, 1, 10, 0)
    assert starts_too_close(existing, 30, datetime(2025, 3, 1, 10, 20))
    assert starts_too_close(existing, 30, datetime(2025, 3, 1, 9, 31))
    assert not starts_too_close(existing, 30, datetime(2025, 3, 1, 10, 30))
    assert not starts_too_close(existing, 30, datetime(2025, 3, 1, 9, 30))
    assert starts_too_close(existing, 60, datetime(2025, 3, 1, 10, 45))


def test_starts_too_close_defaults_missing_duration_to_thirty():
    existing = datetime(2025, 3, 1, 10, 0)
    assert starts_too_close(existing, None, datetime(2025, 3, 1, 10, 29))
    assert not starts_too_close(existing, None, datetime(2025, 3, 1, 10, 30))


def test_detects_same_day_active_appointment(db, tenant):
    add_appointment(db, tenant, datetime(2025, 3, 1, 10, 0))
    detector = ConflictDetector(db)

    assert detector.has_conflict(tenant.doctor.id, datetime(2025, 3, 1, 10, 20))
    assert not detector.has_conflict(tenant.doctor.id, datetime(2025, 3, 1, 10, 30))


def test_candidate_duration_is_not_considered(db, tenant, rate_source):
    # A 90 minute booking starting an hour earlier overlaps, but only the
    # existing appointment's duration counts
    add_appointment(db, tenant, datetime(2025, 3, 1, 10, 0), duration=30)
    payload = booking_payload(tenant, scheduled_at="2025-03-01T09:00:00Z", durationMinutes=90)

    result = BookingService(db, rate_source).book(BookingRequest.model_validate(payload))

    assert result.billing_created
    assert db.query(Appointment).count() == 2


def test_inactive_statuses_do_not_block(db, tenant):
    for status in ("CANCELADA", "COMPLETADA", "REAGENDADA"):
        add_appointment(db, tenant, datetime(2025, 3, 1, 10, 0), status=status)
    detector = ConflictDetector(db)

    assert not detector.has_conflict(tenant.doctor.id, datetime(2025, 3, 1, 10, 0))


def test_confirmed_and_in_progress_block(db, tenant):
    add_appointment(db, tenant, datetime(2025, 3, 1, 10, 0), status="CONFIRMADA")
    add_appointment(db, tenant, datetime(2025, 3, 1, 14, 0), status="IN_PROGRESS")
    detector = ConflictDetector(db)

    assert detector.has_conflict(tenant.doctor.id, datetime(2025, 3, 1, 10, 10))
    assert detector.has_conflict(tenant.doctor.id, datetime(2025, 3, 1, 14, 10))


def test_other_days_and_doctors_are_ignored(db, tenant):
    add_appointment(db, tenant, datetime(2025, 3, 1, 23, 50))
    add_appointment(db, tenant, datetime(2025, 3, 2, 10, 0), doctor=tenant.second_doctor)
    detector = ConflictDetector(db)

    # Ten minutes apart, but on the next calendar day
    assert not detector.has_conflict(tenant.doctor.id, datetime(2025, 3, 2, 0, 0))
    assert not detector.has_conflict(tenant.doctor.id, datetime(2025, 3, 2, 10, 0))


def test_excluded_appointment_does_not_conflict_with_itself(db, tenant):
    appointment = add_appointment(db, tenant, datetime(2025, 3, 1, 10, 0))
    detector = ConflictDetector(db)

    assert detector.has_conflict(tenant.doctor.id, datetime(2025, 3, 1, 10, 15))
    assert not detector.has_conflict(
        tenant.doctor.id, datetime(2025, 3, 1, 10, 15), exclude_appointment_id=appointment.id
    )
