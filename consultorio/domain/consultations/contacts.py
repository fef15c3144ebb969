"""
Patient contact normalization

A consultation points at either a registered or an unregistered patient.
Delivery code works with one ``PatientContact`` shape for both.
"""

from dataclasses import dataclass
from typing import Optional

from ...models import Consultation

REGISTERED = "registered"
UNREGISTERED = "unregistered"


@dataclass(frozen=True)
class PatientContact:
    kind: str  # registered, unregistered
    patient_id: str
    name: str
    email: Optional[str]

    @property
    def is_registered(self) -> bool:
        return self.kind == REGISTERED


def resolve_patient_contact(consultation: Consultation) -> Optional[PatientContact]:
    if consultation.patient is not None:
        patient = consultation.patient
        return PatientContact(REGISTERED, patient.id, patient.full_name, patient.email or None)
    if consultation.unregistered_patient is not None:
        patient = consultation.unregistered_patient
        return PatientContact(UNREGISTERED, patient.id, patient.full_name, patient.email or None)
    return None
