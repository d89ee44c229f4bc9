"""Pytest configuration and fixtures shared by the test suite."""

import os

# Settings are read at import time, so the environment must be in place first
os.environ["DATABASE_URL"] = "sqlite+aiosqlite://"
os.environ["JWT_SECRET"] = "test-jwt-secret-key-with-enough-length"
os.environ["CRON_SECRET"] = "test-cron-secret"
os.environ["PAYMENT_ENV"] = "mock"
os.environ["VIDEO_ENV"] = "mock"
os.environ["VIDEOSDK_API_KEY"] = "test-video-key"
os.environ["VIDEOSDK_SECRET"] = "test-video-secret-with-enough-length"
os.environ["PUSH_PROVIDER_URL"] = ""

import uuid
from datetime import timedelta
from typing import AsyncGenerator, Optional

import httpx
import pytest
import pytest_asyncio
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import NullPool

from esiri.auth.auth_service import create_access_token, create_patient_token
from esiri.common.database import database
from esiri.common.utils.global_functions import generate_patient_code, utcnow
from esiri.main import app
from esiri.models.models import (
    Base, DoctorProfile, PatientSession, Payment, PaymentStatus, PaymentType,
    ServiceAccessPayment, ServiceType, UserRole,
)

CRON_HEADERS = {"X-Cron-Secret": "test-cron-secret"}


@pytest_asyncio.fixture
async def session_factory(tmp_path, monkeypatch):
    """Fresh SQLite database per test, wired into the application's session factory."""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'esiri-test.db'}",
        poolclass=NullPool,
        # Concurrent writers wait on the file lock instead of failing fast
        connect_args={"timeout": 30},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    factory = sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    monkeypatch.setattr(database, "async_session", factory)

    yield factory

    await engine.dispose()


@pytest_asyncio.fixture
async def db(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create test database session."""
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def client(session_factory) -> AsyncGenerator[httpx.AsyncClient, None]:
    transport = httpx.ASGITransport(app=app, raise_app_exceptions=False)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


@pytest.fixture
def rows(session_factory):
    """Read committed rows through a separate session."""
    async def _rows(model, *criteria):
        async with session_factory() as session:
            result = await session.execute(select(model).where(*criteria))
            return list(result.scalars().all())
    return _rows


@pytest.fixture
def make_doctor(db):
    async def _make_doctor(
        service_type: ServiceType = ServiceType.NURSE,
        verified: bool = True,
        available: bool = True,
        full_name: str = "Dr. Wanjiru Kamau",
        **values,
    ) -> DoctorProfile:
        doctor = DoctorProfile(
            id=uuid.uuid4(),
            full_name=full_name,
            service_type=service_type,
            is_verified=verified,
            is_available=available,
            **values,
        )
        db.add(doctor)
        await db.commit()
        return doctor
    return _make_doctor


@pytest.fixture
def make_patient(db):
    async def _make_patient(hours: int = 24, active: bool = True, push_token: Optional[str] = None) -> PatientSession:
        patient_session = PatientSession(
            id=uuid.uuid4(),
            patient_code=generate_patient_code(),
            is_active=active,
            expires_at=utcnow() + timedelta(hours=hours),
            push_token=push_token,
        )
        db.add(patient_session)
        await db.commit()
        return patient_session
    return _make_patient


@pytest.fixture
def grant_access(db):
    """Completed service-access payment plus its grant."""
    async def _grant_access(patient_session_id, service_type: ServiceType = ServiceType.NURSE, hours: int = 24):
        payment = Payment(
            id=uuid.uuid4(),
            payment_type=PaymentType.SERVICE_ACCESS,
            patient_session_id=patient_session_id,
            service_type=service_type,
            amount=500,
            phone_number="254712345678",
            idempotency_key=f"grant-{uuid.uuid4()}",
            status=PaymentStatus.COMPLETED,
            completed_at=utcnow(),
        )
        db.add(payment)
        await db.flush()
        access = ServiceAccessPayment(
            payment_id=payment.id,
            patient_session_id=patient_session_id,
            service_type=service_type,
            amount=500,
            access_granted=True,
            expires_at=utcnow() + timedelta(hours=hours),
        )
        db.add(access)
        await db.commit()
        return access
    return _grant_access


def patient_headers(patient_session: PatientSession) -> dict:
    token = create_patient_token(patient_session.id, patient_session.expires_at)
    return {"Authorization": f"Bearer {token}"}


def user_headers(user_id, role: UserRole = UserRole.DOCTOR) -> dict:
    token = create_access_token({"sub": str(user_id), "role": role.value}, timedelta(hours=1))
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def as_patient():
    return patient_headers


@pytest.fixture
def as_user():
    return user_headers


@pytest.fixture
def cron_headers():
    return dict(CRON_HEADERS)
