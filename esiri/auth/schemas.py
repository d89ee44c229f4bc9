# esiri/auth/schemas.py

from datetime import datetime
from typing import Literal, Optional, Union
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

from esiri.models.models import UserRole

PORTAL_ROLES = (UserRole.ADMIN, UserRole.HR, UserRole.FINANCE, UserRole.AUDIT)


# ============================================================================
# IDENTITY
# ============================================================================

class PatientIdentity(BaseModel):
    """Anonymous patient, scoped by session."""
    model_config = ConfigDict(frozen=True)

    role: Literal[UserRole.PATIENT] = UserRole.PATIENT
    session_id: UUID


class DoctorIdentity(BaseModel):
    model_config = ConfigDict(frozen=True)

    role: Literal[UserRole.DOCTOR] = UserRole.DOCTOR
    user_id: UUID


class PortalIdentity(BaseModel):
    """Admin, HR, finance or audit portal user."""
    model_config = ConfigDict(frozen=True)

    role: UserRole
    user_id: UUID

    @field_validator("role")
    def portal_role_only(cls, value):
        if value not in PORTAL_ROLES:
            raise ValueError(f"{value.value} is not a portal role")
        return value


Identity = Union[PatientIdentity, DoctorIdentity, PortalIdentity]


def identity_key(identity: Optional[Identity]) -> str:
    """Tenant key used for rate limiting: session id, else user id, else anon."""
    if isinstance(identity, PatientIdentity):
        return str(identity.session_id)
    if isinstance(identity, (DoctorIdentity, PortalIdentity)):
        return str(identity.user_id)
    return "anon"


# ============================================================================
# PATIENT SESSIONS
# ============================================================================

class CreateSessionRequest(BaseModel):
    push_token: Optional[str] = Field(default=None, max_length=512)


class SessionResponse(BaseModel):
    session_id: UUID
    patient_code: str
    expires_at: datetime
    access_token: str
    token_type: str = "bearer"


class ExtendSessionRequest(BaseModel):
    extend_hours: int = Field(default=24, ge=1, le=72)


class ExtendSessionResponse(BaseModel):
    session_id: UUID
    expires_at: datetime
    access_token: str
    token_type: str = "bearer"
