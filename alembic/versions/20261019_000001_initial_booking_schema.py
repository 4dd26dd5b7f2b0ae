"""initial booking schema: scheduling settings, disabled slots, patients, appointments

Revision ID: 20261019_000001
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '20261019_000001'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table(
        'scheduling_settings',
        sa.Column('id', sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column('clinic_id', sa.String(64), nullable=False, unique=True),
        sa.Column('day_schedules', sa.JSON(), nullable=False),
        sa.Column('weekly_holidays', sa.JSON(), nullable=False),
        sa.Column('custom_holidays', sa.JSON(), nullable=False),
        sa.Column('appointments_disabled', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('disable_until_date', sa.Date()),
        sa.Column('disable_until_time', sa.Time()),
        sa.Column('minimum_advance_notice_hours', sa.Integer(), nullable=False, server_default='24'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('now()')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('now()')),
    )

    op.create_table(
        'disabled_slots',
        sa.Column('id', sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column('clinic_id', sa.String(64), nullable=False),
        sa.Column('date', sa.Date(), nullable=False),
        sa.Column('start_time', sa.Time(), nullable=False),
        sa.Column('end_time', sa.Time(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('now()')),
        sa.CheckConstraint('start_time < end_time', name='ck_disabled_slots_window'),
    )
    op.create_index('ix_disabled_slots_clinic_id_date', 'disabled_slots', ['clinic_id', 'date'])

    op.create_table(
        'patients',
        sa.Column('id', sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column('clinic_id', sa.String(64), nullable=False),
        sa.Column('first_name', sa.String(80), nullable=False),
        sa.Column('last_name', sa.String(120)),
        sa.Column('phone', sa.String(20)),
        sa.Column('email', sa.String(254)),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='true'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('now()')),
    )
    op.create_index('ix_patients_clinic_id', 'patients', ['clinic_id'])

    op.create_table(
        'patient_phones',
        sa.Column('id', sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column('patient_id', sa.BigInteger(), sa.ForeignKey('patients.id', ondelete='CASCADE'), nullable=False),
        sa.Column('phone', sa.String(20), nullable=False),
        sa.Column('phone_type', sa.String(16), nullable=False, server_default='primary'),
        sa.Column('is_primary', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('is_verified', sa.Boolean(), nullable=False, server_default='true'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('now()')),
    )
    op.create_index('ix_patient_phones_phone', 'patient_phones', ['phone'])
    op.create_index('ix_patient_phones_patient_id', 'patient_phones', ['patient_id'])

    op.create_table(
        'appointments',
        sa.Column('id', sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column('clinic_id', sa.String(64), nullable=False),
        sa.Column('patient_id', sa.BigInteger(), sa.ForeignKey('patients.id', ondelete='SET NULL')),
        sa.Column('name', sa.String(120), nullable=False),
        sa.Column('phone', sa.String(20), nullable=False),
        sa.Column('email', sa.String(254)),
        sa.Column('date', sa.Date(), nullable=False),
        sa.Column('time', sa.String(32), nullable=False),
        sa.Column('status', sa.String(16), nullable=False, server_default='Confirmed'),
        sa.Column('original_date', sa.Date()),
        sa.Column('original_time', sa.String(32)),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('now()')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('now()')),
    )
    op.create_index('ix_appointments_clinic_id_date', 'appointments', ['clinic_id', 'date'])
    op.create_index('ix_appointments_phone', 'appointments', ['phone'])
    # Double-booking guard: one live row per (clinic, date, slot label)
    op.create_index(
        'uq_appointments_active_slot',
        'appointments',
        ['clinic_id', 'date', 'time'],
        unique=True,
        postgresql_where=sa.text("status <> 'Cancelled'"),
        sqlite_where=sa.text("status <> 'Cancelled'"),
    )


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_index('uq_appointments_active_slot', table_name='appointments')
    op.drop_index('ix_appointments_phone', table_name='appointments')
    op.drop_index('ix_appointments_clinic_id_date', table_name='appointments')
    op.drop_table('appointments')
    op.drop_index('ix_patient_phones_patient_id', table_name='patient_phones')
    op.drop_index('ix_patient_phones_phone', table_name='patient_phones')
    op.drop_table('patient_phones')
    op.drop_index('ix_patients_clinic_id', table_name='patients')
    op.drop_table('patients')
    op.drop_index('ix_disabled_slots_clinic_id_date', table_name='disabled_slots')
    op.drop_table('disabled_slots')
    op.drop_table('scheduling_settings')
