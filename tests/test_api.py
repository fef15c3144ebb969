from datetime import datetime, timedelta

from conftest import FailingRateSource, auth_headers, booking_payload
from consultorio import config
from consultorio.domain.billing.service import BillingService
from consultorio.domain.scheduling.schemas import BookingRequest
from consultorio.domain.scheduling.service import AppointmentService, BookingService
from consultorio.main import app
from consultorio.models import Appointment
from consultorio.services.exchange_rates import get_rate_source


def test_health(client):
    assert client.get("/health").json() == {"status": "healthy"}


def test_booking_requires_token(client, tenant):
    response = client.post("/appointments", json=booking_payload(tenant))
    assert response.status_code == 401

    response = client.post(
        "/appointments", json=booking_payload(tenant), headers={"Authorization": "Bearer nope"}
    )
    assert response.status_code == 401


def test_booking_creates_appointment_and_emails_doctor(client, tenant, doctor_principal, email_sender):
    response = client.post("/appointments", json=booking_payload(tenant), headers=auth_headers(doctor_principal))

    assert response.status_code == 201
    body = response.json()
    assert body["success"] is True
    assert body["billingCreated"] is True
    assert body["appointmentId"] and body["billingId"] and body["notificationId"]

    # Background dispatch ran after the response
    assert [m["to"] for m in email_sender.sent] == ["ana@losandes.test"]


def test_booking_rejects_two_patient_references(client, tenant, doctor_principal):
    payload = booking_payload(tenant, unregisteredPatientId=tenant.unregistered.id)

    response = client.post("/appointments", json=payload, headers=auth_headers(doctor_principal))

    assert response.status_code == 400
    assert "error" in response.json()


def test_booking_rejects_malformed_identifier(client, tenant, doctor_principal):
    payload = booking_payload(tenant, doctorId="not-a-uuid")

    response = client.post("/appointments", json=payload, headers=auth_headers(doctor_principal))

    assert response.status_code == 400
    assert response.json()["error"] == "Datos inválidos"


def test_conflicting_booking_returns_409(client, db, tenant, doctor_principal):
    headers = auth_headers(doctor_principal)
    client.post("/appointments", json=booking_payload(tenant), headers=headers)

    response = client.post(
        "/appointments",
        json=booking_payload(tenant, scheduled_at="2025-03-01T10:15:00Z"),
        headers=headers,
    )

    assert response.status_code == 409
    assert response.json() == {"error": "El horario seleccionado no está disponible"}
    assert db.query(Appointment).count() == 1


def test_rate_outage_returns_503(client, db, tenant, doctor_principal):
    app.dependency_overrides[get_rate_source] = lambda: FailingRateSource()

    response = client.post("/appointments", json=booking_payload(tenant), headers=auth_headers(doctor_principal))

    assert response.status_code == 503
    assert db.query(Appointment).count() == 0


def test_public_booking_rejects_past_dates(client, tenant):
    payload = booking_payload(tenant, patientId=None, unregisteredPatientId=tenant.unregistered.id)

    response = client.post("/public/appointments", json=payload)

    assert response.status_code == 400
    assert response.json() == {"error": "No se pueden agendar citas en el pasado"}


def test_public_booking_for_unregistered_patient(client, tenant, email_sender):
    when = (datetime.utcnow() + timedelta(days=2)).replace(microsecond=0)
    payload = booking_payload(
        tenant,
        scheduled_at=when.isoformat() + "Z",
        patientId=None,
        unregisteredPatientId=tenant.unregistered.id,
    )

    response = client.post("/public/appointments", json=payload)

    assert response.status_code == 201
    assert response.json()["notificationId"] is None
    assert email_sender.sent == []


def test_public_booking_requires_unregistered_patient(client, tenant):
    response = client.post("/public/appointments", json=booking_payload(tenant))
    assert response.status_code == 400


def test_only_owning_doctor_verifies_over_http(
    client, db, tenant, rate_source, doctor_principal, second_doctor_principal, patient_principal
):
    result = BookingService(db, rate_source).book(BookingRequest.model_validate(booking_payload(tenant)))
    AppointmentService(db).transition(result.appointment_id, doctor_principal, "CONFIRMADA")
    BillingService(db).report_payment(result.billing_id, patient_principal, "EFECTIVO")

    url = f"/facturacion/{result.billing_id}/verify"
    response = client.post(url, json={"approved": True}, headers=auth_headers(second_doctor_principal))
    assert response.status_code == 403

    response = client.post(url, json={"approved": True}, headers=auth_headers(doctor_principal))
    assert response.status_code == 200
    body = response.json()
    assert body["estadoPago"] == "pagada"
    assert body["totalBs"] == 1460.0


def test_billing_list_validates_payment_state(client, tenant, doctor_principal):
    response = client.get("/facturacion?estado_pago=regalada", headers=auth_headers(doctor_principal))
    assert response.status_code == 400


def test_cron_endpoint_requires_secret_when_configured(client, monkeypatch):
    monkeypatch.setattr(config, "CRON_SECRET", "s3cret")

    response = client.get("/cron/send-consultation-emails")
    assert response.status_code == 401
    assert response.json() == {"error": "Unauthorized"}

    response = client.get(
        "/cron/send-consultation-emails", headers={"Authorization": "Bearer s3cret"}
    )
    assert response.status_code == 200
    assert response.json() == {"success": True, "processed": 0, "successCount": 0, "failCount": 0}


def test_pending_payment_cron_notifies_doctor(client, tenant, doctor_principal, monkeypatch):
    monkeypatch.setattr(config, "CRON_SECRET", "s3cret")
    client.post("/appointments", json=booking_payload(tenant), headers=auth_headers(doctor_principal))

    assert client.get("/cron/check-pending-payments").status_code == 401

    response = client.get("/cron/check-pending-payments", headers={"Authorization": "Bearer s3cret"})
    assert response.status_code == 200
    assert response.json() == {"success": True, "doctorsNotified": 1, "totalDoctors": 1}

    # The doctor has not read the first alert yet
    response = client.get("/cron/check-pending-payments", headers={"Authorization": "Bearer s3cret"})
    assert response.json()["doctorsNotified"] == 0


def test_pending_alerts_endpoint(client, tenant, doctor_principal, patient_principal):
    booked = client.post(
        "/appointments", json=booking_payload(tenant), headers=auth_headers(doctor_principal)
    ).json()

    response = client.get("/facturacion/pending-alerts", headers=auth_headers(doctor_principal))
    assert response.status_code == 200
    [alert] = response.json()
    assert alert["billingId"] == booked["billingId"]
    assert alert["appointmentId"] == booked["appointmentId"]
    assert alert["patientName"] == "Carlos Díaz"
    assert alert["estadoPago"] == "pendiente"

    response = client.get("/facturacion/pending-alerts", headers=auth_headers(patient_principal))
    assert response.status_code == 403
