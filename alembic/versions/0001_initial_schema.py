"""initial scheduling schema: providers, patients, clinics, appointments, calendar sync settings

Revision ID: 0001_initial_schema
Revises:
Create Date: 2025-09-01 10:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '0001_initial_schema'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _ts(name: str, nullable: bool = False) -> sa.Column:
    return sa.Column(name, sa.DateTime(timezone=True), nullable=nullable,
                     server_default=None if nullable else sa.func.now())


def upgrade() -> None:
    op.create_table(
        'providers',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('full_name', sa.String(120), nullable=False),
        sa.Column('specialty', sa.String(120)),
        sa.Column('email', sa.String(255)),
        sa.Column('phone', sa.String(20)),
        _ts('created_at'),
    )
    op.create_table(
        'patients',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('full_name', sa.String(120), nullable=False),
        sa.Column('email', sa.String(255)),
        sa.Column('phone', sa.String(20)),
        sa.Column('birth_date', sa.Date),
        _ts('created_at'),
    )
    op.create_table(
        'clinics',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('address', sa.Text),
    )
    op.create_table(
        'appointments',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('provider_id', sa.String(36), sa.ForeignKey('providers.id'), nullable=False),
        sa.Column('patient_id', sa.String(36), sa.ForeignKey('patients.id')),
        sa.Column('clinic_id', sa.String(36), sa.ForeignKey('clinics.id')),
        sa.Column('appointment_date', sa.Date, nullable=False),
        sa.Column('appointment_time', sa.Time, nullable=False),
        sa.Column('duration', sa.Integer, nullable=False, server_default='30'),
        sa.Column('type', sa.String(32), nullable=False, server_default='consultation'),
        sa.Column('title', sa.String(255), nullable=False),
        sa.Column('description', sa.Text),
        sa.Column('location', sa.String(255)),
        sa.Column('notes', sa.Text),
        sa.Column('status', sa.String(32), nullable=False, server_default='scheduled'),
        sa.Column('source', sa.String(16), nullable=False, server_default='internal'),
        sa.Column('reminder_sent', sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column('external_event_id', sa.String(255)),
        sa.Column('sync_enabled', sa.Boolean, nullable=False, server_default=sa.true()),
        _ts('last_synced_at', nullable=True),
        _ts('created_at'),
        _ts('updated_at'),
        sa.CheckConstraint('duration > 0', name='ck_appointments_duration_positive'),
    )
    op.create_index('ix_appointments_provider_date', 'appointments', ['provider_id', 'appointment_date'])
    op.create_index('ix_appointments_patient_id', 'appointments', ['patient_id'])
    op.create_index('ix_appointments_external_event_id', 'appointments', ['external_event_id'])

    op.create_table(
        'calendar_sync_settings',
        sa.Column('id', sa.BigInteger, primary_key=True, autoincrement=True),
        sa.Column('provider_id', sa.String(36), sa.ForeignKey('providers.id'), nullable=False, unique=True),
        sa.Column('calendar_id', sa.String(500), nullable=False, server_default='primary'),
        sa.Column('access_token', sa.Text),
        sa.Column('refresh_token', sa.Text),
        _ts('token_expires_at', nullable=True),
        sa.Column('sync_enabled', sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column('sync_direction', sa.String(32), nullable=False, server_default='bidirectional'),
        sa.Column('auto_create_events', sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column('auto_update_events', sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column('sync_past_events', sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column('sync_future_days', sa.Integer, nullable=False, server_default='30'),
        sa.Column('default_reminder_minutes', sa.Integer, nullable=False, server_default='60'),
        _ts('last_sync_at', nullable=True),
        sa.Column('last_sync_status', sa.String(16), nullable=False, server_default='pending'),
        sa.Column('last_sync_error', sa.Text),
        _ts('created_at'),
        _ts('updated_at'),
    )


def downgrade() -> None:
    op.drop_table('calendar_sync_settings')
    op.drop_index('ix_appointments_external_event_id', table_name='appointments')
    op.drop_index('ix_appointments_patient_id', table_name='appointments')
    op.drop_index('ix_appointments_provider_date', table_name='appointments')
    op.drop_table('appointments')
    op.drop_table('clinics')
    op.drop_table('patients')
    op.drop_table('providers')
