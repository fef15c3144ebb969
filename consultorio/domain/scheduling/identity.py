"""
Tenant resolution for bookings

A booking made by a front-desk role user belongs to the role user's
organization and is assigned to that organization's first doctor; any
doctor or organization sent by the client is ignored in that case.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.orm import Session

from ...auth import Principal
from ...errors import NotFoundError, PermissionDeniedError, ValidationError
from .repository import SchedulingRepository

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ResolvedTenant:
    doctor_id: str
    organization_id: str
    role_user_id: Optional[str] = None


class TenantResolver:
    def __init__(self, db: Session):
        self.db = db
        self.repo = SchedulingRepository()

    def resolve(
        self,
        principal: Optional[Principal],
        doctor_id: Optional[str],
        organization_id: Optional[str],
        created_by_role_user_id: Optional[str] = None,
    ) -> ResolvedTenant:
        role_user_id = created_by_role_user_id
        if principal and principal.is_role_user:
            if role_user_id and role_user_id != principal.user_id:
                raise PermissionDeniedError("No puede agendar en nombre de otro usuario de rol")
            role_user_id = principal.user_id
        elif principal and principal.is_patient and role_user_id:
            raise PermissionDeniedError("Los pacientes no pueden agendar en nombre de un usuario de rol")

        if role_user_id:
            return self._resolve_delegated(principal, role_user_id)
        return self._resolve_direct(principal, doctor_id, organization_id)

    def _resolve_delegated(self, principal: Optional[Principal], role_user_id: str) -> ResolvedTenant:
        role_user = self.repo.get_role_user(self.db, role_user_id)
        if not role_user or role_user.is_active is False:
            raise NotFoundError("Usuario de rol no encontrado")

        # A doctor may act through a front-desk user of its own organization only
        if principal and principal.is_doctor and role_user.organization_id != principal.organization_id:
            logger.warning(
                f"⚠️ Doctor {principal.user_id} tried to book through role user {role_user_id} "
                f"of organization {role_user.organization_id}"
            )
            raise PermissionDeniedError("No puede agendar citas en otra organización")

        organization = self.repo.get_organization(self.db, role_user.organization_id)
        if not organization:
            raise NotFoundError("Organización no encontrada")

        doctor = self.repo.first_doctor_of_organization(self.db, organization.id)
        if not doctor:
            raise NotFoundError("No hay médico disponible en la organización")

        logger.info(
            f"👤 Role user {role_user_id} booking for organization {organization.id} (doctor {doctor.id})"
        )
        return ResolvedTenant(doctor_id=doctor.id, organization_id=organization.id, role_user_id=role_user_id)

    def _resolve_direct(
        self, principal: Optional[Principal], doctor_id: Optional[str], organization_id: Optional[str]
    ) -> ResolvedTenant:
        if not doctor_id or not organization_id:
            raise ValidationError("doctorId y organizationId son requeridos")

        if principal and principal.is_doctor and principal.organization_id not in (None, organization_id):
            raise PermissionDeniedError("No puede agendar citas en otra organización")

        doctor = self.repo.get_user(self.db, doctor_id)
        if not doctor or doctor.role != "MEDICO" or doctor.organization_id != organization_id:
            raise NotFoundError("Médico no encontrado en la organización")

        return ResolvedTenant(doctor_id=doctor.id, organization_id=organization_id)
