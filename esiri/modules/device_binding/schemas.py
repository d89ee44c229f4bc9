# esiri/modules/device_binding/schemas.py

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, Field


class BindDeviceRequest(BaseModel):
    doctor_id: UUID
    device_fingerprint: str = Field(min_length=8, max_length=255)


class BindDeviceResponse(BaseModel):
    doctor_id: UUID
    bound_at: datetime
    is_active: bool


class CheckDeviceRequest(BaseModel):
    doctor_id: UUID
    device_fingerprint: str = Field(min_length=1, max_length=255)


class CheckDeviceResponse(BaseModel):
    bound: bool
    matches: bool


class DeauthorizeDeviceRequest(BaseModel):
    doctor_id: UUID


class DeauthorizeDeviceResponse(BaseModel):
    deauthorized: bool
    doctor_id: UUID
