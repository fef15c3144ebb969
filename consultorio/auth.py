"""
Bearer token authentication.

Sessions are issued by the identity platform; this service only verifies
the HS256 token and turns its claims into a ``Principal``.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Optional

from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError
from jose import jwt as jose_jwt

from .config import JWT_ALGORITHM, SECRET_KEY

logger = logging.getLogger(__name__)

security = HTTPBearer(auto_error=False)

PRINCIPAL_KINDS = ("patient", "doctor", "role_user")


@dataclass(frozen=True)
class Principal:
    """The authenticated caller"""

    user_id: str
    kind: str  # patient, doctor, role_user
    organization_id: Optional[str] = None
    patient_id: Optional[str] = None

    @property
    def is_doctor(self) -> bool:
        return self.kind == "doctor"

    @property
    def is_role_user(self) -> bool:
        return self.kind == "role_user"

    @property
    def is_patient(self) -> bool:
        return self.kind == "patient"

    @property
    def is_staff(self) -> bool:
        return self.kind in ("doctor", "role_user")


def create_access_token(
    user_id: str,
    kind: str,
    organization_id: Optional[str] = None,
    patient_id: Optional[str] = None,
    expires_delta: Optional[timedelta] = None,
) -> str:
    """Create a signed token for a principal (default lifetime 60 minutes)"""
    to_encode: dict[str, Any] = {"sub": user_id, "kind": kind}
    if organization_id:
        to_encode["org"] = organization_id
    if patient_id:
        to_encode["patient_id"] = patient_id
    to_encode["exp"] = datetime.utcnow() + (expires_delta or timedelta(minutes=60))
    return jose_jwt.encode(to_encode, SECRET_KEY, algorithm=JWT_ALGORITHM)


def verify_access_token(token: str) -> Optional[dict[str, Any]]:
    """
    Verify and decode a token

    Returns:
        Decoded payload if valid, None if invalid or expired
    """
    try:
        return jose_jwt.decode(token, SECRET_KEY, algorithms=[JWT_ALGORITHM])
    except JWTError as e:
        logger.warning(f"JWT verification failed: {e}")
        return None


async def get_current_principal(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> Principal:
    if credentials is None:
        raise HTTPException(status_code=401, detail="Not authenticated")

    payload = verify_access_token(credentials.credentials)
    if not payload or not payload.get("sub"):
        raise HTTPException(status_code=401, detail="Invalid or expired token")

    kind = payload.get("kind")
    if kind not in PRINCIPAL_KINDS:
        logger.warning(f"⚠️ Token for {payload.get('sub')} carries unknown kind: {kind}")
        raise HTTPException(status_code=401, detail="Invalid or expired token")

    return Principal(
        user_id=payload["sub"],
        kind=kind,
        organization_id=payload.get("org"),
        patient_id=payload.get("patient_id"),
    )
