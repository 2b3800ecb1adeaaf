"""create_scheduling_tables

Revision ID: 4b2f9c1d7a10
Revises:
Create Date: 2026-10-19 10:12:41.218406

"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '4b2f9c1d7a10'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Accounts
    op.create_table('businesses',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('name', sa.String(length=200), nullable=False),
        sa.Column('owner_email', sa.String(length=255), nullable=True),
        sa.Column('widget_id', sa.String(length=32), nullable=False),
        sa.Column('timezone', sa.String(length=50), nullable=False),
        sa.Column('min_booking_lead_minutes', sa.Integer(), nullable=True),
        sa.Column('calendar_degrade_on_read', sa.Boolean(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('widget_id')
    )

    # Weekly rules and date overrides
    op.create_table('availability_rules',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('business_id', sa.Uuid(), nullable=False),
        sa.Column('day_of_week', sa.Integer(), nullable=False),
        sa.Column('start_time', sa.Time(), nullable=False),
        sa.Column('end_time', sa.Time(), nullable=False),
        sa.Column('is_available', sa.Boolean(), nullable=False),
        sa.ForeignKeyConstraint(['business_id'], ['businesses.id'], ),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_availability_rules_business_id'), 'availability_rules', ['business_id'], unique=False)

    op.create_table('availability_overrides',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('business_id', sa.Uuid(), nullable=False),
        sa.Column('date', sa.Date(), nullable=False),
        sa.Column('is_available', sa.Boolean(), nullable=False),
        sa.Column('start_time', sa.Time(), nullable=True),
        sa.Column('end_time', sa.Time(), nullable=True),
        sa.Column('reason', sa.String(), nullable=True),
        sa.ForeignKeyConstraint(['business_id'], ['businesses.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('business_id', 'date', name='uq_availability_overrides_business_date')
    )
    op.create_index(op.f('ix_availability_overrides_business_id'), 'availability_overrides', ['business_id'], unique=False)

    # Appointment types
    op.create_table('appointment_types',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('business_id', sa.Uuid(), nullable=False),
        sa.Column('name', sa.String(length=200), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('duration_minutes', sa.Integer(), nullable=False),
        sa.Column('buffer_before_minutes', sa.Integer(), nullable=False),
        sa.Column('buffer_after_minutes', sa.Integer(), nullable=False),
        sa.Column('price', sa.Numeric(precision=10, scale=2), nullable=True),
        sa.Column('currency', sa.String(length=3), nullable=True),
        sa.Column('requires_payment', sa.Boolean(), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['business_id'], ['businesses.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_appointment_types_business_id'), 'appointment_types', ['business_id'], unique=False)
    op.create_index(op.f('ix_appointment_types_is_active'), 'appointment_types', ['is_active'], unique=False)

    # Connected calendars (one per team member)
    op.create_table('calendar_integrations',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('business_id', sa.Uuid(), nullable=False),
        sa.Column('member_email', sa.String(length=255), nullable=True),
        sa.Column('provider', sa.String(), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('is_primary', sa.Boolean(), nullable=True),
        sa.Column('access_token_encrypted', sa.LargeBinary(), nullable=True),
        sa.Column('refresh_token_encrypted', sa.LargeBinary(), nullable=True),
        sa.Column('token_expires_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('provider_config', sa.JSON(), nullable=True),
        sa.Column('sync_direction', sa.String(), nullable=True),
        sa.Column('last_sync_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('last_sync_status', sa.String(), nullable=True),
        sa.Column('last_sync_error', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['business_id'], ['businesses.id'], ),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_calendar_integrations_business_id'), 'calendar_integrations', ['business_id'], unique=False)

    # Appointments
    op.create_table('appointments',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('business_id', sa.Uuid(), nullable=False),
        sa.Column('appointment_type_id', sa.Uuid(), nullable=False),
        sa.Column('calendar_integration_id', sa.Uuid(), nullable=True),
        sa.Column('visitor_name', sa.String(), nullable=False),
        sa.Column('visitor_email', sa.String(), nullable=False),
        sa.Column('visitor_phone', sa.String(), nullable=True),
        sa.Column('timezone', sa.String(length=50), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('start_time', sa.DateTime(timezone=True), nullable=False),
        sa.Column('end_time', sa.DateTime(timezone=True), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('cancellation_token', sa.String(length=128), nullable=False),
        sa.Column('calendar_event_id', sa.String(), nullable=True),
        sa.Column('sync_status', sa.String(), nullable=True),
        sa.Column('last_sync_error', sa.Text(), nullable=True),
        sa.Column('confirmation_sent_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('cancelled_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('cancellation_reason', sa.Text(), nullable=True),
        sa.ForeignKeyConstraint(['appointment_type_id'], ['appointment_types.id'], ),
        sa.ForeignKeyConstraint(['business_id'], ['businesses.id'], ),
        sa.ForeignKeyConstraint(['calendar_integration_id'], ['calendar_integrations.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('cancellation_token')
    )
    op.create_index('ix_appointments_business_range', 'appointments', ['business_id', 'start_time', 'end_time'], unique=False)

    # One live appointment per account start instant
    op.create_index(
        'uq_appointments_business_start_active',
        'appointments',
        ['business_id', 'start_time'],
        unique=True,
        postgresql_where=sa.text("status <> 'cancelled'"),
        sqlite_where=sa.text("status <> 'cancelled'"),
    )


def downgrade() -> None:
    op.drop_index('uq_appointments_business_start_active', table_name='appointments')
    op.drop_index('ix_appointments_business_range', table_name='appointments')
    op.drop_table('appointments')
    op.drop_index(op.f('ix_calendar_integrations_business_id'), table_name='calendar_integrations')
    op.drop_table('calendar_integrations')
    op.drop_index(op.f('ix_appointment_types_is_active'), table_name='appointment_types')
    op.drop_index(op.f('ix_appointment_types_business_id'), table_name='appointment_types')
    op.drop_table('appointment_types')
    op.drop_index(op.f('ix_availability_overrides_business_id'), table_name='availability_overrides')
    op.drop_table('availability_overrides')
    op.drop_index(op.f('ix_availability_rules_business_id'), table_name='availability_rules')
    op.drop_table('availability_rules')
    op.drop_table('businesses')
