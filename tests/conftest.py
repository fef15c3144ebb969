from datetime import datetime
from decimal import Decimal
from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from consultorio.auth import Principal, create_access_token
from consultorio.database import Base, get_db
from consultorio.domain.notifications.router import get_notification_dispatcher
from consultorio.domain.notifications.service import NotificationDispatcher
from consultorio.email_service import EmailSender, get_email_sender
from consultorio.errors import TransientDependencyError
from consultorio.main import app
from consultorio.models import Organization, Patient, RoleUser, UnregisteredPatient, User
from consultorio.services.exchange_rates import FixedRateSource, RateSource, get_rate_source
from consultorio.workers.report_delivery import ReportDeliveryWorker, get_report_delivery_worker


class FakeEmailSender(EmailSender):
    """Records messages instead of calling Resend"""

    def __init__(self):
        super().__init__(api_key="test-key", from_address="Consultorio <test@consultorio.app>")
        self.sent = []
        self.fail_with = None
        self.fail_subjects_containing = None

    async def send_email(self, to, subject, mjml_content):
        if self.fail_with and (
            not self.fail_subjects_containing or self.fail_subjects_containing in subject
        ):
            raise self.fail_with
        self.sent.append({"to": to, "subject": subject, "body": mjml_content})
        return {"id": f"fake-{len(self.sent)}"}


class FailingRateSource(RateSource):
    def get_rate(self, currency):
        raise TransientDependencyError("No se pudo obtener la tasa de cambio")


@pytest.fixture
def engine():
    test_engine = create_engine(
        "sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool
    )
    Base.metadata.create_all(bind=test_engine)
    yield test_engine
    Base.metadata.drop_all(bind=test_engine)
    test_engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def email_sender():
    return FakeEmailSender()


@pytest.fixture
def rate_source():
    return FixedRateSource({"USD": Decimal("36.5"), "EUR": Decimal("39.1")})


@pytest.fixture
def delivery_worker(session_factory, email_sender):
    return ReportDeliveryWorker(session_factory, email_sender, app_url="https://app.test")


@pytest.fixture
def client(session_factory, email_sender, rate_source, delivery_worker):
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_email_sender] = lambda: email_sender
    app.dependency_overrides[get_rate_source] = lambda: rate_source
    app.dependency_overrides[get_notification_dispatcher] = lambda: NotificationDispatcher(
        session_factory, email_sender
    )
    app.dependency_overrides[get_report_delivery_worker] = lambda: delivery_worker
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def tenant(db):
    """One clinic with two doctors, a front-desk user and both kinds of patient"""
    org = Organization(name="Clínica Los Andes")
    other_org = Organization(name="Centro Médico Caracas")
    db.add_all([org, other_org])
    db.flush()

    doctor = User(
        organization_id=org.id,
        name="Dra. Ana Pérez",
        email="ana@losandes.test",
        role="MEDICO",
        created_at=datetime(2024, 1, 1),
    )
    second_doctor = User(
        organization_id=org.id,
        name="Dr. Luis Gómez",
        email="luis@losandes.test",
        role="MEDICO",
        created_at=datetime(2024, 6, 1),
    )
    outside_doctor = User(
        organization_id=other_org.id,
        name="Dr. Pedro Ruiz",
        email="pedro@caracas.test",
        role="MEDICO",
        created_at=datetime(2024, 1, 1),
    )
    patient_user = User(name="Carlos Díaz", email="carlos@mail.test", role="PACIENTE")
    db.add_all([doctor, second_doctor, outside_doctor, patient_user])
    db.flush()

    role_user = RoleUser(organization_id=org.id, first_name="María", last_name="Recepción")
    patient = Patient(
        user_id=patient_user.id, first_name="Carlos", last_name="Díaz", email="carlos@mail.test"
    )
    unregistered = UnregisteredPatient(
        organization_id=org.id, first_name="Rosa", last_name="Mora", email="rosa@mail.test"
    )
    db.add_all([role_user, patient, unregistered])
    db.commit()

    return SimpleNamespace(
        org=org,
        other_org=other_org,
        doctor=doctor,
        second_doctor=second_doctor,
        outside_doctor=outside_doctor,
        patient_user=patient_user,
        role_user=role_user,
        patient=patient,
        unregistered=unregistered,
    )


@pytest.fixture
def doctor_principal(tenant):
    return Principal(user_id=tenant.doctor.id, kind="doctor", organization_id=tenant.org.id)


@pytest.fixture
def second_doctor_principal(tenant):
    return Principal(user_id=tenant.second_doctor.id, kind="doctor", organization_id=tenant.org.id)


@pytest.fixture
def role_user_principal(tenant):
    return Principal(user_id=tenant.role_user.id, kind="role_user", organization_id=tenant.org.id)


@pytest.fixture
def patient_principal(tenant):
    return Principal(user_id=tenant.patient_user.id, kind="patient", patient_id=tenant.patient.id)


def auth_headers(principal: Principal) -> dict:
    token = create_access_token(
        principal.user_id, principal.kind, principal.organization_id, principal.patient_id
    )
    return {"Authorization": f"Bearer {token}"}


def booking_payload(tenant, scheduled_at="2025-03-01T10:00:00Z", **overrides) -> dict:
    payload = {
        "patientId": tenant.patient.id,
        "doctorId": tenant.doctor.id,
        "organizationId": tenant.org.id,
        "scheduledAt": scheduled_at,
        "durationMinutes": 30,
        "selectedService": {"name": "Consulta general", "price": 40, "currency": "USD"},
    }
    payload.update(overrides)
    return payload


