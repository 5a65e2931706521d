"""create_outbox_core

Revision ID: 20261019_0001_outbox_core
Revises: None
Create Date: 2026-10-19 09:00:00

"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '20261019_0001_outbox_core'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    """
    Create appointment, audit, outbox and idempotency tables.
    """
    op.create_table(
        'hms_patients',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('tenant_id', sa.String(length=36), nullable=False),
        sa.Column('first_name', sa.String(length=255), nullable=True),
        sa.Column('last_name', sa.String(length=255), nullable=True),
        sa.Column('phone', sa.String(length=50), nullable=True),
        sa.Column('email', sa.String(length=255), nullable=True),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_hms_patients_tenant_id', 'hms_patients', ['tenant_id'])

    op.create_table(
        'hms_clinicians',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('tenant_id', sa.String(length=36), nullable=False),
        sa.Column('first_name', sa.String(length=255), nullable=True),
        sa.Column('last_name', sa.String(length=255), nullable=True),
        sa.Column('phone', sa.String(length=50), nullable=True),
        sa.Column('email', sa.String(length=255), nullable=True),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_hms_clinicians_tenant_id', 'hms_clinicians', ['tenant_id'])

    op.create_table(
        'hms_appointments',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('tenant_id', sa.String(length=36), nullable=False),
        sa.Column('company_id', sa.String(length=36), nullable=True),
        sa.Column('patient_id', sa.String(length=36), nullable=False),
        sa.Column('clinician_id', sa.String(length=36), nullable=False),
        sa.Column('starts_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('ends_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('status', sa.String(length=20), server_default='scheduled', nullable=False),
        sa.Column('type', sa.String(length=50), server_default='consultation', nullable=False),
        sa.Column('mode', sa.String(length=50), server_default='in_person', nullable=False),
        sa.Column('priority', sa.String(length=20), server_default='normal', nullable=False),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('source', sa.String(length=50), server_default='api', nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('created_by', sa.String(length=36), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_by', sa.String(length=36), nullable=True),
        sa.CheckConstraint('starts_at < ends_at', name='ck_appointments_range'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(
        'ix_appointments_clinician_range', 'hms_appointments',
        ['tenant_id', 'clinician_id', 'starts_at', 'ends_at']
    )
    op.create_index('ix_appointments_patient', 'hms_appointments', ['tenant_id', 'patient_id'])

    op.create_table(
        'hms_audit_logs',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('tenant_id', sa.String(length=36), nullable=False),
        sa.Column('aggregate_id', sa.String(length=36), nullable=False),
        sa.Column('event', sa.String(length=100), nullable=False),
        sa.Column('payload', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('created_by', sa.String(length=36), nullable=True),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_audit_logs_aggregate', 'hms_audit_logs', ['tenant_id', 'aggregate_id'])

    op.create_table(
        'hms_outbox',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('tenant_id', sa.String(length=36), nullable=False),
        sa.Column('aggregate_type', sa.String(length=100), nullable=False),
        sa.Column('aggregate_id', sa.String(length=36), nullable=True),
        sa.Column('event_type', sa.String(length=100), nullable=False),
        sa.Column('payload', sa.JSON(), nullable=False),
        sa.Column('attempts', sa.Integer(), server_default='0', nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('locked_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('processed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('last_error', sa.Text(), nullable=True),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_outbox_unprocessed', 'hms_outbox', ['processed_at', 'locked_at'])
    op.create_index('ix_outbox_created_at', 'hms_outbox', ['created_at'])
    op.create_index('ix_outbox_tenant', 'hms_outbox', ['tenant_id'])

    op.create_table(
        'idempotency_keys',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('key', sa.String(length=255), nullable=False),
        sa.Column('result', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('key')
    )
    op.create_index('ix_idempotency_keys_key', 'idempotency_keys', ['key'])
    op.create_index('ix_idempotency_expires_at', 'idempotency_keys', ['expires_at'])


def downgrade() -> None:
    """
    Drop all tables created in upgrade.
    """
    op.drop_index('ix_idempotency_expires_at', table_name='idempotency_keys')
    op.drop_index('ix_idempotency_keys_key', table_name='idempotency_keys')
    op.drop_table('idempotency_keys')

    op.drop_index('ix_outbox_tenant', table_name='hms_outbox')
    op.drop_index('ix_outbox_created_at', table_name='hms_outbox')
    op.drop_index('ix_outbox_unprocessed', table_name='hms_outbox')
    op.drop_table('hms_outbox')

    op.drop_index('ix_audit_logs_aggregate', table_name='hms_audit_logs')
    op.drop_table('hms_audit_logs')

    op.drop_index('ix_appointments_patient', table_name='hms_appointments')
    op.drop_index('ix_appointments_clinician_range', table_name='hms_appointments')
    op.drop_table('hms_appointments')

    op.drop_index('ix_hms_clinicians_tenant_id', table_name='hms_clinicians')
    op.drop_table('hms_clinicians')

    op.drop_index('ix_hms_patients_tenant_id', table_name='hms_patients')
    op.drop_table('hms_patients')
