from datetime import datetime
from decimal import Decimal

import pytest

from conftest import FailingRateSource, booking_payload
from consultorio.auth import Principal
from consultorio.domain.notifications.service import NotificationService
from consultorio.domain.scheduling.schemas import BookingRequest
from consultorio.domain.scheduling.service import BookingService
from consultorio.errors import (
    ConflictError,
    NotFoundError,
    PermissionDeniedError,
    TransientDependencyError,
    ValidationError,
)
from consultorio.models import Appointment
from consultorio.models_billing import BillingRecord
from consultorio.models_notification import Notification
from consultorio.services.exchange_rates import FixedRateSource


def book(db, rate_source, payload, principal=None):
    return BookingService(db, rate_source).book(BookingRequest.model_validate(payload), principal)


def counts(db):
    return db.query(Appointment).count(), db.query(BillingRecord).count()


def test_booking_writes_appointment_and_billing(db, tenant, rate_source, doctor_principal):
    result = book(db, rate_source, booking_payload(tenant), doctor_principal)

    appointment = db.query(Appointment).filter(Appointment.id == result.appointment_id).one()
    billing = db.query(BillingRecord).filter(BillingRecord.id == result.billing_id).one()

    assert result.billing_created is True
    assert appointment.status == "SCHEDULED"
    assert appointment.scheduled_at == datetime(2025, 3, 1, 10, 0)
    assert appointment.selected_service == {"name": "Consulta general", "price": "40.00", "currency": "USD"}
    assert billing.appointment_id == appointment.id
    assert billing.subtotal == Decimal("40.00")
    assert billing.impuestos == Decimal("0.00")
    assert billing.total == billing.subtotal + billing.impuestos
    assert billing.tipo_cambio == Decimal("36.5")
    assert billing.estado_pago == "pendiente"
    assert billing.estado_factura == "emitida"
    assert billing.doctor_id == tenant.doctor.id
    assert billing.organization_id == tenant.org.id


def test_conflicting_slot_is_rejected_and_nothing_written(db, tenant, rate_source, doctor_principal):
    book(db, rate_source, booking_payload(tenant, scheduled_at="2025-03-01T10:00:00Z"), doctor_principal)

    with pytest.raises(ConflictError) as exc:
        book(db, rate_source, booking_payload(tenant, scheduled_at="2025-03-01T10:20:00Z"), doctor_principal)

    assert exc.value.message == "El horario seleccionado no está disponible"
    assert counts(db) == (1, 1)


def test_slot_exactly_one_duration_later_is_accepted(db, tenant, rate_source, doctor_principal):
    book(db, rate_source, booking_payload(tenant, scheduled_at="2025-03-01T10:00:00Z"), doctor_principal)
    book(db, rate_source, booking_payload(tenant, scheduled_at="2025-03-01T10:30:00Z"), doctor_principal)

    assert counts(db) == (2, 2)


def test_timezone_offsets_are_normalized_to_utc(db, tenant, rate_source, doctor_principal):
    result = book(
        db, rate_source, booking_payload(tenant, scheduled_at="2025-03-01T06:00:00-04:00"), doctor_principal
    )
    appointment = db.query(Appointment).filter(Appointment.id == result.appointment_id).one()

    assert appointment.scheduled_at == datetime(2025, 3, 1, 10, 0)


def test_role_user_booking_resolves_first_doctor_of_organization(
    db, tenant, rate_source, role_user_principal
):
    payload = booking_payload(
        tenant,
        doctorId=tenant.outside_doctor.id,
        organizationId=tenant.other_org.id,
        createdByRoleUserId=tenant.role_user.id,
    )
    result = book(db, rate_source, payload, role_user_principal)

    appointment = db.query(Appointment).filter(Appointment.id == result.appointment_id).one()
    billing = db.query(BillingRecord).filter(BillingRecord.id == result.billing_id).one()

    assert appointment.doctor_id == tenant.doctor.id
    assert appointment.organization_id == tenant.org.id
    assert appointment.created_by_role_user_id == tenant.role_user.id
    assert billing.doctor_id == tenant.doctor.id
    assert billing.organization_id == tenant.org.id


def test_role_user_cannot_book_as_another_role_user(db, tenant, rate_source, role_user_principal):
    payload = booking_payload(tenant, createdByRoleUserId="00000000-0000-0000-0000-000000000001")

    with pytest.raises(PermissionDeniedError):
        book(db, rate_source, payload, role_user_principal)


def test_doctor_cannot_book_through_role_user_of_another_organization(db, tenant, rate_source):
    outsider = Principal(user_id=tenant.outside_doctor.id, kind="doctor", organization_id=tenant.other_org.id)
    payload = booking_payload(
        tenant,
        doctorId=tenant.outside_doctor.id,
        organizationId=tenant.other_org.id,
        createdByRoleUserId=tenant.role_user.id,
    )

    with pytest.raises(PermissionDeniedError):
        book(db, rate_source, payload, outsider)
    assert counts(db) == (0, 0)


def test_doctor_can_book_through_role_user_of_own_organization(db, tenant, rate_source, second_doctor_principal):
    payload = booking_payload(tenant, createdByRoleUserId=tenant.role_user.id)

    result = book(db, rate_source, payload, second_doctor_principal)

    appointment = db.query(Appointment).filter(Appointment.id == result.appointment_id).one()
    assert appointment.organization_id == tenant.org.id
    assert appointment.created_by_role_user_id == tenant.role_user.id


def test_patient_cannot_book_through_role_user(db, tenant, rate_source, patient_principal):
    payload = booking_payload(tenant, createdByRoleUserId=tenant.role_user.id)

    with pytest.raises(PermissionDeniedError):
        book(db, rate_source, payload, patient_principal)
    assert counts(db) == (0, 0)


def test_unknown_role_user_is_not_found(db, tenant, rate_source):
    payload = booking_payload(tenant, createdByRoleUserId="00000000-0000-0000-0000-000000000001")

    with pytest.raises(NotFoundError):
        book(db, rate_source, payload)
    assert counts(db) == (0, 0)


def test_rate_failure_rolls_back_everything(db, tenant, doctor_principal):
    with pytest.raises(TransientDependencyError):
        book(db, FailingRateSource(), booking_payload(tenant), doctor_principal)

    assert counts(db) == (0, 0)


def test_both_patient_references_are_rejected(db, tenant, rate_source, doctor_principal):
    payload = booking_payload(tenant, unregisteredPatientId=tenant.unregistered.id)

    with pytest.raises(ValidationError):
        book(db, rate_source, payload, doctor_principal)
    assert counts(db) == (0, 0)


def test_missing_patient_reference_is_rejected(db, tenant, rate_source, doctor_principal):
    payload = booking_payload(tenant, patientId=None)

    with pytest.raises(ValidationError):
        book(db, rate_source, payload, doctor_principal)


def test_service_name_and_price_are_required(db, tenant, rate_source, doctor_principal):
    with pytest.raises(ValidationError):
        book(db, rate_source, booking_payload(tenant, selectedService={"name": "Consulta"}), doctor_principal)
    with pytest.raises(ValidationError):
        book(db, rate_source, booking_payload(tenant, selectedService={"price": 40}), doctor_principal)
    with pytest.raises(ValidationError):
        book(db, rate_source, booking_payload(tenant, selectedService=None), doctor_principal)


def test_unknown_patient_is_not_found(db, tenant, rate_source, doctor_principal):
    payload = booking_payload(tenant, patientId="00000000-0000-0000-0000-000000000002")

    with pytest.raises(NotFoundError):
        book(db, rate_source, payload, doctor_principal)


def test_doctor_must_belong_to_organization(db, tenant, rate_source):
    payload = booking_payload(tenant, doctorId=tenant.outside_doctor.id)

    with pytest.raises(NotFoundError):
        book(db, rate_source, payload)


def test_patient_can_only_book_for_themselves(db, tenant, rate_source, patient_principal):
    payload = booking_payload(tenant, patientId=None, unregisteredPatientId=tenant.unregistered.id)

    with pytest.raises(PermissionDeniedError):
        book(db, rate_source, payload, patient_principal)

    result = book(db, rate_source, booking_payload(tenant), patient_principal)
    assert result.billing_created


def test_registered_patient_booking_notifies_doctor(db, tenant, rate_source, doctor_principal):
    result = book(db, rate_source, booking_payload(tenant), doctor_principal)

    notification = db.query(Notification).filter(Notification.id == result.notification_id).one()
    assert notification.user_id == tenant.doctor.id
    assert notification.type == "APPOINTMENT_REQUEST"
    assert notification.send_email_requested is True
    assert notification.email_status == "pending"
    assert notification.payload["appointmentId"] == result.appointment_id


def test_unregistered_patient_booking_does_not_notify(db, tenant, rate_source):
    payload = booking_payload(tenant, patientId=None, unregisteredPatientId=tenant.unregistered.id)
    result = book(db, rate_source, payload)

    assert result.notification_id is None
    assert db.query(Notification).count() == 0


def test_notification_failure_does_not_fail_booking(db, tenant, rate_source, doctor_principal, monkeypatch):
    def broken_submit(self, **kwargs):
        raise RuntimeError("notifications table unavailable")

    monkeypatch.setattr(NotificationService, "submit", broken_submit)

    result = book(db, rate_source, booking_payload(tenant), doctor_principal)

    assert result.billing_created is True
    assert result.notification_id is None
    assert counts(db) == (1, 1)


def test_exchange_rate_is_captured_per_currency(db, tenant, rate_source, doctor_principal):
    payload = booking_payload(
        tenant, selectedService={"name": "Ecografía", "price": "75.50", "currency": "eur"}
    )
    result = book(db, rate_source, payload, doctor_principal)
    billing = db.query(BillingRecord).filter(BillingRecord.id == result.billing_id).one()

    assert billing.currency == "EUR"
    assert billing.tipo_cambio == Decimal("39.1")
    assert billing.total == Decimal("75.50")


def test_captured_rate_survives_later_rate_changes(db, tenant, doctor_principal):
    rate_source = FixedRateSource({"USD": Decimal("36.5")})
    first = book(db, rate_source, booking_payload(tenant, scheduled_at="2025-03-01T10:00:00Z"), doctor_principal)

    rate_source.rates["USD"] = Decimal("41.2")
    second = book(db, rate_source, booking_payload(tenant, scheduled_at="2025-03-01T11:00:00Z"), doctor_principal)

    db.expire_all()
    first_billing = db.query(BillingRecord).filter(BillingRecord.id == first.billing_id).one()
    second_billing = db.query(BillingRecord).filter(BillingRecord.id == second.billing_id).one()
    assert first_billing.tipo_cambio == Decimal("36.5")
    assert second_billing.tipo_cambio == Decimal("41.2")
