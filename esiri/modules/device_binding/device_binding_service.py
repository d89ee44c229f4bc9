# esiri/modules/device_binding/device_binding_service.py
"""One device per doctor account, one doctor per device."""

import logging
import uuid
from datetime import datetime
from typing import Optional
from uuid import UUID

from sqlalchemy import delete, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from esiri.auth.schemas import DoctorIdentity, Identity
from esiri.common.database.database import dialect_insert
from esiri.common.errors import Conflict, Forbidden, NotFound
from esiri.common.utils.global_functions import mask_fingerprint, utcnow
from esiri.common.utils.global_messages import GlobalMessages
from esiri.common.utils.logger import log_event
from esiri.models.models import DeviceBinding, DoctorProfile

logger = logging.getLogger(__name__)


async def bind_device(
    session: AsyncSession,
    identity: Identity,
    doctor_id: UUID,
    fingerprint: str,
    now: Optional[datetime] = None,
) -> DeviceBinding:
    """
    Bind ``fingerprint`` to the calling doctor.

    Rebinding the same device is a no-op refresh. A device held by another
    doctor, or a doctor already holding a different device, is a Conflict. The
    unique constraint on device_fingerprint is the final guard when two binds race.
    """
    if not isinstance(identity, DoctorIdentity) or identity.user_id != doctor_id:
        raise Forbidden(GlobalMessages.DEVICE_BIND_SELF_ONLY)

    if await session.get(DoctorProfile, doctor_id) is None:
        raise NotFound(GlobalMessages.DOCTOR_NOT_FOUND)

    result = await session.execute(
        select(DeviceBinding).where(
            DeviceBinding.device_fingerprint == fingerprint,
            DeviceBinding.is_active.is_(True),
        )
    )
    holder = result.scalar_one_or_none()
    if holder is not None and holder.doctor_id != doctor_id:
        await log_event(
            "bind_device",
            "fingerprint_conflict",
            level="warn",
            identity=identity,
            metadata={"fingerprint": mask_fingerprint(fingerprint)},
        )
        raise Conflict(GlobalMessages.DEVICE_BOUND_TO_OTHER)

    now = now or utcnow()
    stmt = dialect_insert(session)(DeviceBinding).values(
        id=uuid.uuid4(),
        doctor_id=doctor_id,
        device_fingerprint=fingerprint,
        is_active=True,
        bound_at=now,
        updated_at=now,
    )
    # Only replace the doctor's row if it is inactive or already this device
    stmt = stmt.on_conflict_do_update(
        index_elements=[DeviceBinding.doctor_id],
        set_={
            "device_fingerprint": fingerprint,
            "is_active": True,
            "bound_at": now,
            "updated_at": now,
        },
        where=or_(
            DeviceBinding.is_active.is_(False),
            DeviceBinding.device_fingerprint == fingerprint,
        ),
    ).returning(DeviceBinding.id)

    try:
        result = await session.execute(stmt)
        binding_id = result.scalar_one_or_none()
    except IntegrityError:
        await session.rollback()
        raise Conflict(GlobalMessages.DEVICE_BOUND_TO_OTHER)

    if binding_id is None:
        await session.rollback()
        raise Conflict(GlobalMessages.DOCTOR_HAS_OTHER_DEVICE)

    await session.commit()

    result = await session.execute(
        select(DeviceBinding)
        .where(DeviceBinding.id == binding_id)
        .execution_options(populate_existing=True)
    )
    binding = result.scalar_one()

    await log_event(
        "bind_device",
        "device_bound",
        identity=identity,
        metadata={"doctor_id": str(doctor_id), "fingerprint": mask_fingerprint(fingerprint)},
    )
    return binding


async def check_device(session: AsyncSession, doctor_id: UUID, fingerprint: str) -> dict:
    """Pre-login lookup: is the doctor bound, and is it to this device."""
    result = await session.execute(
        select(DeviceBinding).where(
            DeviceBinding.doctor_id == doctor_id,
            DeviceBinding.is_active.is_(True),
        )
    )
    binding = result.scalar_one_or_none()
    if binding is None:
        return {"bound": False, "matches": False}
    return {"bound": True, "matches": binding.device_fingerprint == fingerprint}


async def deauthorize_device(session: AsyncSession, identity: Identity, doctor_id: UUID) -> dict:
    """Remove the doctor's binding unconditionally (lost device recovery)."""
    await session.execute(
        delete(DeviceBinding)
        .where(DeviceBinding.doctor_id == doctor_id)
        .execution_options(synchronize_session=False)
    )
    await session.commit()

    await log_event(
        "deauthorize_device",
        "device_deauthorized",
        identity=identity,
        metadata={"doctor_id": str(doctor_id)},
    )
    return {"deauthorized": True, "doctor_id": doctor_id}
