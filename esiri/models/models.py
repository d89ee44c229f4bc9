# esiri/models/models.py

import uuid
import enum

from sqlalchemy import (
    JSON, Boolean, Column, Float, ForeignKey, Index, Integer, String, Text, DateTime,
    Enum as SAEnum, Uuid, text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import declarative_base

from esiri.common.utils.global_functions import utcnow

Base = declarative_base()

JSONType = JSON().with_variant(JSONB(), "postgresql")


# ============================================================================
# ENUMS
# ============================================================================

class UserRole(enum.Enum):
    PATIENT = "patient"
    DOCTOR = "doctor"
    ADMIN = "admin"
    HR = "hr"
    FINANCE = "finance"
    AUDIT = "audit"


class ServiceType(enum.Enum):
    NURSE = "nurse"
    CLINICAL_OFFICER = "clinical_officer"
    PHARMACIST = "pharmacist"
    GP = "gp"
    SPECIALIST = "specialist"
    PSYCHOLOGIST = "psychologist"


class ConsultationType(enum.Enum):
    CHAT = "chat"
    VIDEO = "video"
    BOTH = "both"


class ConsultationStatus(enum.Enum):
    PENDING = "pending"
    ACTIVE = "active"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class AppointmentStatus(enum.Enum):
    BOOKED = "booked"
    CONFIRMED = "confirmed"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    MISSED = "missed"
    CANCELLED = "cancelled"
    RESCHEDULED = "rescheduled"


class PaymentType(enum.Enum):
    SERVICE_ACCESS = "service_access"
    CALL_RECHARGE = "call_recharge"


class PaymentStatus(enum.Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class RecipientType(enum.Enum):
    PATIENT = "patient"
    DOCTOR = "doctor"
    PORTAL = "portal"


OPEN_CONSULTATION_STATUSES = (
    ConsultationStatus.PENDING,
    ConsultationStatus.ACTIVE,
    ConsultationStatus.IN_PROGRESS,
)

# Enum columns store member names
OPEN_CONSULTATION_FILTER = "status IN ('PENDING', 'ACTIVE', 'IN_PROGRESS')"


# ============================================================================
# IDENTITY MODELS
# ============================================================================

class PatientSession(Base):
    __tablename__ = "patient_sessions"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4, nullable=False)
    patient_code = Column(String(20), unique=True, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    push_token = Column(String(512), nullable=True)
    last_extended_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    def __repr__(self):
        return f"<PatientSession(id={self.id}, active={self.is_active})>"


class DoctorProfile(Base):
    __tablename__ = "doctor_profiles"

    # Same id as the doctor's account in the identity provider
    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4, nullable=False)
    full_name = Column(String(200), nullable=False)
    service_type = Column(SAEnum(ServiceType), nullable=False)
    is_verified = Column(Boolean, default=False, nullable=False)
    is_available = Column(Boolean, default=True, nullable=False)
    suspended_until = Column(DateTime(timezone=True), nullable=True)
    push_token = Column(String(512), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (
        Index("idx_doctor_profiles_service", "service_type", "is_verified", "is_available"),
    )

    def __repr__(self):
        return f"<DoctorProfile(id={self.id}, service_type={self.service_type.value})>"


class DeviceBinding(Base):
    __tablename__ = "device_bindings"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4, nullable=False)
    doctor_id = Column(Uuid(as_uuid=True), ForeignKey("doctor_profiles.id", ondelete="CASCADE"), unique=True, nullable=False)
    device_fingerprint = Column(String(255), unique=True, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    bound_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    def __repr__(self):
        return f"<DeviceBinding(doctor_id={self.doctor_id}, active={self.is_active})>"


# ============================================================================
# CONSULTATION & APPOINTMENT MODELS
# ============================================================================

class Consultation(Base):
    __tablename__ = "consultations"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4, nullable=False)
    patient_session_id = Column(Uuid(as_uuid=True), ForeignKey("patient_sessions.id", ondelete="CASCADE"), nullable=False)
    doctor_id = Column(Uuid(as_uuid=True), ForeignKey("doctor_profiles.id", ondelete="SET NULL"), nullable=True)
    service_type = Column(SAEnum(ServiceType), nullable=False)
    consultation_type = Column(SAEnum(ConsultationType), nullable=False)
    status = Column(SAEnum(ConsultationStatus), default=ConsultationStatus.PENDING, nullable=False)
    chief_complaint = Column(Text, nullable=False)
    preferred_language = Column(String(10), default="en", nullable=False)
    remaining_call_minutes = Column(Integer, default=0, nullable=False)
    video_room_id = Column(String(100), nullable=True)
    accepted_at = Column(DateTime(timezone=True), nullable=True)
    started_at = Column(DateTime(timezone=True), nullable=True)
    ended_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        Index("idx_consultations_session_status", "patient_session_id", "status"),
        Index("idx_consultations_doctor", "doctor_id"),
        # At most one open consultation per patient session
        Index(
            "uq_consultations_open_per_session",
            "patient_session_id",
            unique=True,
            postgresql_where=text(OPEN_CONSULTATION_FILTER),
            sqlite_where=text(OPEN_CONSULTATION_FILTER),
        ),
    )

    def __repr__(self):
        return f"<Consultation(id={self.id}, status={self.status.value})>"


class Appointment(Base):
    __tablename__ = "appointments"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4, nullable=False)
    doctor_id = Column(Uuid(as_uuid=True), ForeignKey("doctor_profiles.id", ondelete="CASCADE"), nullable=False)
    patient_session_id = Column(Uuid(as_uuid=True), ForeignKey("patient_sessions.id", ondelete="CASCADE"), nullable=False)
    scheduled_at = Column(DateTime(timezone=True), nullable=False)
    grace_period_minutes = Column(Integer, default=5, nullable=False)
    duration_minutes = Column(Integer, default=15, nullable=False)
    service_type = Column(SAEnum(ServiceType), nullable=False)
    consultation_type = Column(SAEnum(ConsultationType), nullable=False, default=ConsultationType.VIDEO)
    chief_complaint = Column(Text, nullable=True)
    status = Column(SAEnum(AppointmentStatus), default=AppointmentStatus.BOOKED, nullable=False)
    reminders_sent = Column(JSONType, default=list, nullable=False)
    rescheduled_from = Column(Uuid(as_uuid=True), ForeignKey("appointments.id", ondelete="SET NULL"), nullable=True)
    reschedule_reason = Column(Text, nullable=True)
    cancellation_reason = Column(Text, nullable=True)
    missed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        Index("idx_appointments_status_scheduled", "status", "scheduled_at"),
        Index("idx_appointments_doctor", "doctor_id"),
        Index("idx_appointments_session", "patient_session_id"),
    )

    def __repr__(self):
        return f"<Appointment(id={self.id}, scheduled_at={self.scheduled_at}, status={self.status.value})>"


# ============================================================================
# PAYMENT MODELS
# ============================================================================

class Payment(Base):
    __tablename__ = "payments"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4, nullable=False)
    payment_type = Column(SAEnum(PaymentType), nullable=False)
    patient_session_id = Column(Uuid(as_uuid=True), ForeignKey("patient_sessions.id", ondelete="CASCADE"), nullable=False)
    consultation_id = Column(Uuid(as_uuid=True), ForeignKey("consultations.id", ondelete="SET NULL"), nullable=True)
    service_type = Column(SAEnum(ServiceType), nullable=True)
    call_minutes = Column(Integer, nullable=True)
    amount = Column(Integer, nullable=False)
    phone_number = Column(String(20), nullable=False)
    idempotency_key = Column(String(64), unique=True, nullable=False)
    status = Column(SAEnum(PaymentStatus), default=PaymentStatus.PENDING, nullable=False)
    mpesa_checkout_request_id = Column(String(100), unique=True, nullable=True)
    merchant_request_id = Column(String(100), nullable=True)
    transaction_id = Column(String(100), nullable=True)
    failure_reason = Column(Text, nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    failed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (
        Index("idx_payments_status_created", "status", "created_at"),
    )

    def __repr__(self):
        return f"<Payment(id={self.id}, type={self.payment_type.value}, status={self.status.value})>"


class ServiceAccessPayment(Base):
    __tablename__ = "service_access_payments"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4, nullable=False)
    payment_id = Column(Uuid(as_uuid=True), ForeignKey("payments.id", ondelete="CASCADE"), unique=True, nullable=False)
    patient_session_id = Column(Uuid(as_uuid=True), ForeignKey("patient_sessions.id", ondelete="CASCADE"), nullable=False)
    service_type = Column(SAEnum(ServiceType), nullable=False)
    amount = Column(Integer, nullable=False)
    access_granted = Column(Boolean, default=True, nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (
        Index("idx_service_access_session_type", "patient_session_id", "service_type"),
    )


class CallRechargePayment(Base):
    __tablename__ = "call_recharge_payments"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4, nullable=False)
    payment_id = Column(Uuid(as_uuid=True), ForeignKey("payments.id", ondelete="CASCADE"), unique=True, nullable=False)
    patient_session_id = Column(Uuid(as_uuid=True), ForeignKey("patient_sessions.id", ondelete="CASCADE"), nullable=False)
    consultation_id = Column(Uuid(as_uuid=True), ForeignKey("consultations.id", ondelete="CASCADE"), nullable=False)
    additional_minutes = Column(Integer, nullable=False)
    amount = Column(Integer, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)


# ============================================================================
# INFRASTRUCTURE MODELS
# ============================================================================

class RateLimitBucket(Base):
    __tablename__ = "rate_limit_buckets"

    bucket_key = Column(String(255), primary_key=True)
    # Epoch seconds
    window_start = Column(Float, nullable=False)
    count = Column(Integer, nullable=False, default=1)


class Notification(Base):
    __tablename__ = "notifications"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4, nullable=False)
    recipient_id = Column(Uuid(as_uuid=True), nullable=False)
    recipient_type = Column(SAEnum(RecipientType), nullable=False)
    title = Column(String(200), nullable=False)
    message = Column(Text, nullable=False)
    type = Column(String(50), nullable=False, default="general")
    data = Column(JSONType, nullable=True)
    is_read = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (
        Index("idx_notifications_recipient", "recipient_id", "is_read"),
    )

    def __repr__(self):
        return f"<Notification(id={self.id}, title={self.title})>"


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4, nullable=False)
    function_name = Column(String(100), nullable=False)
    level = Column(String(10), nullable=False)
    action = Column(String(100), nullable=False)
    user_id = Column(Uuid(as_uuid=True), nullable=True)
    session_id = Column(Uuid(as_uuid=True), nullable=True)
    event_metadata = Column("metadata", JSONType, nullable=True)
    error_message = Column(Text, nullable=True)
    ip_address = Column(String(64), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (
        Index("idx_audit_logs_function_level", "function_name", "level"),
    )
