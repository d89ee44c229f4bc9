"""initial schema

Revision ID: 7c1e2a9d4b10
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = '7c1e2a9d4b10'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

JSONType = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")

SERVICE_TYPES = ('NURSE', 'CLINICAL_OFFICER', 'PHARMACIST', 'GP', 'SPECIALIST', 'PSYCHOLOGIST')
OPEN_CONSULTATION_FILTER = "status IN ('PENDING', 'ACTIVE', 'IN_PROGRESS')"


def upgrade() -> None:
    servicetype = sa.Enum(*SERVICE_TYPES, name='servicetype')
    consultationtype = sa.Enum('CHAT', 'VIDEO', 'BOTH', name='consultationtype')

    op.create_table(
        'patient_sessions',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('patient_code', sa.String(length=20), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('push_token', sa.String(length=512), nullable=True),
        sa.Column('last_extended_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('patient_code'),
    )

    op.create_table(
        'doctor_profiles',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('full_name', sa.String(length=200), nullable=False),
        sa.Column('service_type', servicetype, nullable=False),
        sa.Column('is_verified', sa.Boolean(), nullable=False),
        sa.Column('is_available', sa.Boolean(), nullable=False),
        sa.Column('suspended_until', sa.DateTime(timezone=True), nullable=True),
        sa.Column('push_token', sa.String(length=512), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('idx_doctor_profiles_service', 'doctor_profiles', ['service_type', 'is_verified', 'is_available'])

    op.create_table(
        'device_bindings',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('doctor_id', sa.Uuid(), nullable=False),
        sa.Column('device_fingerprint', sa.String(length=255), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('bound_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['doctor_id'], ['doctor_profiles.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('doctor_id'),
        sa.UniqueConstraint('device_fingerprint'),
    )

    op.create_table(
        'consultations',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('patient_session_id', sa.Uuid(), nullable=False),
        sa.Column('doctor_id', sa.Uuid(), nullable=True),
        sa.Column('service_type', servicetype, nullable=False),
        sa.Column('consultation_type', consultationtype, nullable=False),
        sa.Column('status', sa.Enum('PENDING', 'ACTIVE', 'IN_PROGRESS', 'COMPLETED', 'CANCELLED', name='consultationstatus'), nullable=False),
        sa.Column('chief_complaint', sa.Text(), nullable=False),
        sa.Column('preferred_language', sa.String(length=10), nullable=False),
        sa.Column('remaining_call_minutes', sa.Integer(), nullable=False),
        sa.Column('video_room_id', sa.String(length=100), nullable=True),
        sa.Column('accepted_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('started_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('ended_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['patient_session_id'], ['patient_sessions.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['doctor_id'], ['doctor_profiles.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('idx_consultations_session_status', 'consultations', ['patient_session_id', 'status'])
    op.create_index('idx_consultations_doctor', 'consultations', ['doctor_id'])
    op.create_index(
        'uq_consultations_open_per_session', 'consultations', ['patient_session_id'],
        unique=True,
        postgresql_where=sa.text(OPEN_CONSULTATION_FILTER),
    )

    op.create_table(
        'appointments',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('doctor_id', sa.Uuid(), nullable=False),
        sa.Column('patient_session_id', sa.Uuid(), nullable=False),
        sa.Column('scheduled_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('grace_period_minutes', sa.Integer(), nullable=False),
        sa.Column('duration_minutes', sa.Integer(), nullable=False),
        sa.Column('service_type', servicetype, nullable=False),
        sa.Column('consultation_type', consultationtype, nullable=False),
        sa.Column('chief_complaint', sa.Text(), nullable=True),
        sa.Column('status', sa.Enum('BOOKED', 'CONFIRMED', 'IN_PROGRESS', 'COMPLETED', 'MISSED', 'CANCELLED', 'RESCHEDULED', name='appointmentstatus'), nullable=False),
        sa.Column('reminders_sent', JSONType, nullable=False),
        sa.Column('rescheduled_from', sa.Uuid(), nullable=True),
        sa.Column('reschedule_reason', sa.Text(), nullable=True),
        sa.Column('cancellation_reason', sa.Text(), nullable=True),
        sa.Column('missed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['doctor_id'], ['doctor_profiles.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['patient_session_id'], ['patient_sessions.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['rescheduled_from'], ['appointments.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('idx_appointments_status_scheduled', 'appointments', ['status', 'scheduled_at'])
    op.create_index('idx_appointments_doctor', 'appointments', ['doctor_id'])
    op.create_index('idx_appointments_session', 'appointments', ['patient_session_id'])

    op.create_table(
        'payments',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('payment_type', sa.Enum('SERVICE_ACCESS', 'CALL_RECHARGE', name='paymenttype'), nullable=False),
        sa.Column('patient_session_id', sa.Uuid(), nullable=False),
        sa.Column('consultation_id', sa.Uuid(), nullable=True),
        sa.Column('service_type', servicetype, nullable=True),
        sa.Column('call_minutes', sa.Integer(), nullable=True),
        sa.Column('amount', sa.Integer(), nullable=False),
        sa.Column('phone_number', sa.String(length=20), nullable=False),
        sa.Column('idempotency_key', sa.String(length=64), nullable=False),
        sa.Column('status', sa.Enum('PENDING', 'COMPLETED', 'FAILED', name='paymentstatus'), nullable=False),
        sa.Column('mpesa_checkout_request_id', sa.String(length=100), nullable=True),
        sa.Column('merchant_request_id', sa.String(length=100), nullable=True),
        sa.Column('transaction_id', sa.String(length=100), nullable=True),
        sa.Column('failure_reason', sa.Text(), nullable=True),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('failed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['patient_session_id'], ['patient_sessions.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['consultation_id'], ['consultations.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('idempotency_key'),
        sa.UniqueConstraint('mpesa_checkout_request_id'),
    )
    op.create_index('idx_payments_status_created', 'payments', ['status', 'created_at'])

    op.create_table(
        'service_access_payments',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('payment_id', sa.Uuid(), nullable=False),
        sa.Column('patient_session_id', sa.Uuid(), nullable=False),
        sa.Column('service_type', servicetype, nullable=False),
        sa.Column('amount', sa.Integer(), nullable=False),
        sa.Column('access_granted', sa.Boolean(), nullable=False),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['payment_id'], ['payments.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['patient_session_id'], ['patient_sessions.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('payment_id'),
    )
    op.create_index('idx_service_access_session_type', 'service_access_payments', ['patient_session_id', 'service_type'])

    op.create_table(
        'call_recharge_payments',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('payment_id', sa.Uuid(), nullable=False),
        sa.Column('patient_session_id', sa.Uuid(), nullable=False),
        sa.Column('consultation_id', sa.Uuid(), nullable=False),
        sa.Column('additional_minutes', sa.Integer(), nullable=False),
        sa.Column('amount', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['payment_id'], ['payments.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['patient_session_id'], ['patient_sessions.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['consultation_id'], ['consultations.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('payment_id'),
    )

    op.create_table(
        'rate_limit_buckets',
        sa.Column('bucket_key', sa.String(length=255), nullable=False),
        sa.Column('window_start', sa.Float(), nullable=False),
        sa.Column('count', sa.Integer(), nullable=False),
        sa.PrimaryKeyConstraint('bucket_key'),
    )

    op.create_table(
        'notifications',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('recipient_id', sa.Uuid(), nullable=False),
        sa.Column('recipient_type', sa.Enum('PATIENT', 'DOCTOR', 'PORTAL', name='recipienttype'), nullable=False),
        sa.Column('title', sa.String(length=200), nullable=False),
        sa.Column('message', sa.Text(), nullable=False),
        sa.Column('type', sa.String(length=50), nullable=False),
        sa.Column('data', JSONType, nullable=True),
        sa.Column('is_read', sa.Boolean(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('idx_notifications_recipient', 'notifications', ['recipient_id', 'is_read'])

    op.create_table(
        'audit_logs',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('function_name', sa.String(length=100), nullable=False),
        sa.Column('level', sa.String(length=10), nullable=False),
        sa.Column('action', sa.String(length=100), nullable=False),
        sa.Column('user_id', sa.Uuid(), nullable=True),
        sa.Column('session_id', sa.Uuid(), nullable=True),
        sa.Column('metadata', JSONType, nullable=True),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('ip_address', sa.String(length=64), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('idx_audit_logs_function_level', 'audit_logs', ['function_name', 'level'])


def downgrade() -> None:
    op.drop_table('audit_logs')
    op.drop_table('notifications')
    op.drop_table('rate_limit_buckets')
    op.drop_table('call_recharge_payments')
    op.drop_table('service_access_payments')
    op.drop_table('payments')
    op.drop_table('appointments')
    op.drop_table('consultations')
    op.drop_table('device_bindings')
    op.drop_table('doctor_profiles')
    op.drop_table('patient_sessions')

    # Drop the enum types
    for name in (
        'recipienttype', 'paymentstatus', 'paymenttype', 'appointmentstatus',
        'consultationstatus', 'consultationtype', 'servicetype',
    ):
        sa.Enum(name=name).drop(op.get_bind(), checkfirst=True)
