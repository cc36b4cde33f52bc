"""Create notification schema: reference tables, notification_settings, appointments, email_events

Revision ID: 3a7c1e9b2d40
Revises:
Create Date: 2025-11-20 10:00:00.000000

"""
from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = '3a7c1e9b2d40'
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    # Enums
    appointment_status = postgresql.ENUM(
        'scheduled', 'confirmed', 'completed', 'cancelled', 'no_show',
        name='appointment_status', create_type=False
    )
    sms_confirmation_type = postgresql.ENUM(
        'immediate_lt24h', 'deferred_unopened',
        name='sms_confirmation_type', create_type=False
    )
    email_event_type = postgresql.ENUM(
        'sent', 'delivered', 'opened', 'other',
        name='email_event_type', create_type=False
    )
    appointment_status.create(op.get_bind(), checkfirst=True)
    sms_confirmation_type.create(op.get_bind(), checkfirst=True)
    email_event_type.create(op.get_bind(), checkfirst=True)

    # Reference tables (written by the booking application)
    op.create_table('salons',
        sa.Column('id', sa.UUID(), nullable=False, server_default=sa.text('gen_random_uuid()')),
        sa.Column('name', sa.String(length=200), nullable=False),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('id')
    )

    op.create_table('clients',
        sa.Column('id', sa.UUID(), nullable=False, server_default=sa.text('gen_random_uuid()')),
        sa.Column('first_name', sa.String(length=100), nullable=True),
        sa.Column('last_name', sa.String(length=100), nullable=True),
        sa.Column('email', sa.String(length=255), nullable=True),
        sa.Column('phone', sa.String(length=30), nullable=True),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_clients_email', 'clients', ['email'])

    op.create_table('services',
        sa.Column('id', sa.UUID(), nullable=False, server_default=sa.text('gen_random_uuid()')),
        sa.Column('salon_id', sa.UUID(), nullable=False),
        sa.Column('name', sa.String(length=200), nullable=False),
        sa.Column('duration_minutes', sa.Integer(), nullable=False, server_default='30'),
        sa.ForeignKeyConstraint(['salon_id'], ['salons.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_services_salon_id', 'services', ['salon_id'])

    op.create_table('stylists',
        sa.Column('id', sa.UUID(), nullable=False, server_default=sa.text('gen_random_uuid()')),
        sa.Column('salon_id', sa.UUID(), nullable=False),
        sa.Column('first_name', sa.String(length=100), nullable=True),
        sa.Column('last_name', sa.String(length=100), nullable=True),
        sa.ForeignKeyConstraint(['salon_id'], ['salons.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_stylists_salon_id', 'stylists', ['salon_id'])

    # Per-salon confirmation email templates
    op.create_table('notification_settings',
        sa.Column('id', sa.UUID(), nullable=False, server_default=sa.text('gen_random_uuid()')),
        sa.Column('salon_id', sa.UUID(), nullable=False),
        sa.Column('confirmation_email_subject', sa.Text(), nullable=True),
        sa.Column('confirmation_email_text', sa.Text(), nullable=True),
        sa.Column('confirmation_email_html', sa.Text(), nullable=True),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.TIMESTAMP(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['salon_id'], ['salons.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('salon_id')
    )

    # Appointments with notification state
    op.create_table('appointments',
        sa.Column('id', sa.UUID(), nullable=False, server_default=sa.text('gen_random_uuid()')),
        sa.Column('salon_id', sa.UUID(), nullable=False),
        sa.Column('client_id', sa.UUID(), nullable=False),
        sa.Column('service_id', sa.UUID(), nullable=False),
        sa.Column('stylist_id', sa.UUID(), nullable=True),
        sa.Column('appointment_time', sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column('duration_minutes', sa.Integer(), nullable=True),
        sa.Column('status', appointment_status, nullable=False, server_default='scheduled'),
        sa.Column('email_sent_at', sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column('email_opened_at', sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column('sms_confirmation_sent', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('sms_confirmation_type', sms_confirmation_type, nullable=True),
        sa.Column('sms_reminder_sent', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('skip_reminder_sms', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.TIMESTAMP(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.CheckConstraint(
            "skip_reminder_sms = (sms_confirmation_type IS NOT NULL "
            "AND sms_confirmation_type = 'immediate_lt24h')",
            name='check_skip_reminder_matches_immediate_sms'
        ),
        sa.ForeignKeyConstraint(['salon_id'], ['salons.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['client_id'], ['clients.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['service_id'], ['services.id'], ondelete='RESTRICT'),
        sa.ForeignKeyConstraint(['stylist_id'], ['stylists.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_appointments_salon_id', 'appointments', ['salon_id'])
    op.create_index('ix_appointments_client_id', 'appointments', ['client_id'])
    op.create_index('ix_appointments_appointment_time', 'appointments', ['appointment_time'])
    op.create_index('ix_appointments_status', 'appointments', ['status'])

    # Partial indexes for the two periodic jobs
    op.create_index('idx_appointments_deferred_sms', 'appointments', ['email_sent_at'],
                    postgresql_where=sa.text('email_opened_at IS NULL AND sms_confirmation_sent = false'))
    op.create_index('idx_appointments_reminder_sms', 'appointments', ['appointment_time'],
                    postgresql_where=sa.text('sms_reminder_sent = false AND skip_reminder_sms = false'))

    # Email events audit log
    op.create_table('email_events',
        sa.Column('id', sa.UUID(), nullable=False, server_default=sa.text('gen_random_uuid()')),
        sa.Column('appointment_id', sa.UUID(), nullable=False),
        sa.Column('type', email_event_type, nullable=False),
        sa.Column('provider', sa.String(length=50), nullable=False),
        sa.Column('provider_event_id', sa.String(length=255), nullable=True),
        sa.Column('timestamp', sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column('metadata', postgresql.JSONB(astext_type=sa.Text()), nullable=False,
                  server_default='{}'),
        sa.ForeignKeyConstraint(['appointment_id'], ['appointments.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_email_events_appointment_id', 'email_events', ['appointment_id'])


def downgrade() -> None:
    op.drop_index('ix_email_events_appointment_id', table_name='email_events')
    op.drop_table('email_events')

    op.drop_index('idx_appointments_reminder_sms', table_name='appointments')
    op.drop_index('idx_appointments_deferred_sms', table_name='appointments')
    op.drop_index('ix_appointments_status', table_name='appointments')
    op.drop_index('ix_appointments_appointment_time', table_name='appointments')
    op.drop_index('ix_appointments_client_id', table_name='appointments')
    op.drop_index('ix_appointments_salon_id', table_name='appointments')
    op.drop_table('appointments')

    op.drop_table('notification_settings')
    op.drop_index('ix_stylists_salon_id', table_name='stylists')
    op.drop_table('stylists')
    op.drop_index('ix_services_salon_id', table_name='services')
    op.drop_table('services')
    op.drop_index('ix_clients_email', table_name='clients')
    op.drop_table('clients')
    op.drop_table('salons')

    op.execute('DROP TYPE IF EXISTS email_event_type')
    op.execute('DROP TYPE IF EXISTS sms_confirmation_type')
    op.execute('DROP TYPE IF EXISTS appointment_status')
