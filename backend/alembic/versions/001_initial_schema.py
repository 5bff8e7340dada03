"""Initial reservation schema

Revision ID: 001
Create Date: 2026-10-19
"""
from alembic import op
import sqlalchemy as sa

revision = '001'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        'users',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('email', sa.String(255), nullable=False, unique=True),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('role', sa.String(20), nullable=False, server_default='client'),
        sa.Column('is_active', sa.Boolean(), server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now()),
    )

    op.create_table(
        'tours',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('title', sa.String(255), nullable=False),
        sa.Column('description', sa.Text(), nullable=False, server_default=''),
        sa.Column('location', sa.String(255), nullable=False),
        sa.Column('price', sa.Numeric(10, 2), nullable=False),
        sa.Column('duration', sa.String(64), nullable=False, server_default=''),
        sa.Column('max_passengers', sa.Integer(), nullable=False),
        sa.Column('reserved_seats', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('min_deposit_percentage', sa.Numeric(5, 2)),
        sa.Column('images', sa.JSON()),
        sa.Column('featured', sa.Boolean(), server_default=sa.false()),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.func.now()),
        sa.CheckConstraint('reserved_seats >= 0', name='ck_tour_reserved_seats_non_negative'),
    )

    op.create_table(
        'departures',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('tour_id', sa.Integer(), sa.ForeignKey('tours.id'), nullable=False),
        sa.Column('departure_date', sa.DateTime(), nullable=False),
        sa.Column('return_date', sa.DateTime()),
        sa.Column('total_seats', sa.Integer(), nullable=False),
        sa.Column('reserved_seats', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('price', sa.Numeric(10, 2), nullable=False),
        sa.Column('payment_deadline_days', sa.Integer(), nullable=False, server_default='30'),
        sa.Column('status', sa.String(20), nullable=False, server_default='active'),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.func.now()),
        sa.CheckConstraint('total_seats > 0', name='ck_departure_total_seats_positive'),
        sa.CheckConstraint('reserved_seats >= 0', name='ck_departure_reserved_seats_non_negative'),
        sa.CheckConstraint('reserved_seats <= total_seats', name='ck_departure_reserved_lte_total'),
    )
    op.create_index('ix_departures_tour_id', 'departures', ['tour_id'])
    op.create_index('ix_departures_departure_date', 'departures', ['departure_date'])

    op.create_table(
        'reservations',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('reservation_code', sa.String(32), nullable=False, unique=True),
        sa.Column('tour_id', sa.Integer(), sa.ForeignKey('tours.id'), nullable=False),
        sa.Column('departure_id', sa.Integer(), sa.ForeignKey('departures.id'), nullable=False),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id')),
        sa.Column('buyer_name', sa.String(255)),
        sa.Column('buyer_email', sa.String(255)),
        sa.Column('buyer_phone', sa.String(64)),
        sa.Column('reservation_date', sa.DateTime(), server_default=sa.func.now()),
        sa.Column('departure_date', sa.DateTime(), nullable=False),
        sa.Column('number_of_passengers', sa.Integer(), nullable=False),
        sa.Column('total_price', sa.Numeric(10, 2), nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='pending'),
        sa.Column('payment_status', sa.String(20), nullable=False, server_default='pending'),
        sa.Column('payment_due_date', sa.DateTime()),
        sa.Column('auto_cancel_at', sa.DateTime()),
        sa.Column('last_reminder_sent', sa.Integer()),
        sa.Column('admin_alert_sent', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('trip_reminder_sent', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.func.now()),
        sa.CheckConstraint('number_of_passengers > 0', name='ck_reservation_passengers_positive'),
    )
    op.create_index('ix_reservations_tour_id', 'reservations', ['tour_id'])
    op.create_index('ix_reservations_departure_id', 'reservations', ['departure_id'])
    op.create_index('ix_reservations_user_id', 'reservations', ['user_id'])
    op.create_index('ix_reservations_status', 'reservations', ['status'])
    op.create_index('ix_reservations_payment_status', 'reservations', ['payment_status'])
    op.create_index('ix_reservations_payment_due_date', 'reservations', ['payment_due_date'])

    op.create_table(
        'passengers',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('reservation_id', sa.Integer(), sa.ForeignKey('reservations.id', ondelete='CASCADE'), nullable=False),
        sa.Column('full_name', sa.String(255), nullable=False),
        sa.Column('passport_number', sa.String(64)),
        sa.Column('nationality', sa.String(64)),
        sa.Column('date_of_birth', sa.DateTime()),
        sa.Column('passport_image_url', sa.String(1024)),
        sa.Column('document_status', sa.String(20), nullable=False, server_default='pending'),
        sa.Column('document_notes', sa.Text()),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now()),
    )
    op.create_index('ix_passengers_reservation_id', 'passengers', ['reservation_id'])

    op.create_table(
        'payment_installments',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('reservation_id', sa.Integer(), sa.ForeignKey('reservations.id', ondelete='CASCADE'), nullable=False),
        sa.Column('installment_number', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('amount_due', sa.Numeric(10, 2), nullable=False),
        sa.Column('percentage_due', sa.Numeric(5, 2)),
        sa.Column('due_date', sa.DateTime(), nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='pending'),
        sa.Column('description', sa.String(255)),
        sa.Column('paid_at', sa.DateTime()),
        sa.Column('paid_by', sa.Integer(), sa.ForeignKey('users.id')),
        sa.Column('payment_method', sa.String(64)),
        sa.Column('payment_reference', sa.String(255)),
        sa.Column('exchange_rate', sa.Numeric(12, 6)),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now()),
    )
    op.create_index('ix_payment_installments_reservation_id', 'payment_installments', ['reservation_id'])

    op.create_table(
        'reservation_timeline_events',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('reservation_id', sa.Integer(), sa.ForeignKey('reservations.id', ondelete='CASCADE'), nullable=False),
        sa.Column('event_type', sa.String(64), nullable=False),
        sa.Column('description', sa.Text(), nullable=False),
        sa.Column('performed_by', sa.Integer(), sa.ForeignKey('users.id')),
        sa.Column('metadata', sa.JSON()),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )
    op.create_index('ix_reservation_timeline_events_reservation_id', 'reservation_timeline_events', ['reservation_id'])

    op.create_table(
        'reminder_rules',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('days_before_deadline', sa.Integer(), nullable=False),
        sa.Column('enabled', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('template_type', sa.String(64), nullable=False, server_default='payment_reminder'),
        sa.Column('send_time', sa.String(5), nullable=False, server_default='09:00'),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.func.now()),
        sa.CheckConstraint('days_before_deadline >= 0', name='ck_reminder_rule_days_non_negative'),
    )

    op.create_table(
        'email_templates',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('template_type', sa.String(64), nullable=False, unique=True),
        sa.Column('subject', sa.String(255), nullable=False),
        sa.Column('body', sa.Text(), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.func.now()),
    )

    op.create_table(
        'email_logs',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('reservation_id', sa.Integer(), sa.ForeignKey('reservations.id', ondelete='CASCADE')),
        sa.Column('template_type', sa.String(64)),
        sa.Column('recipient', sa.String(255), nullable=False),
        sa.Column('subject', sa.String(255)),
        sa.Column('status', sa.String(20), nullable=False),
        sa.Column('error_message', sa.Text()),
        sa.Column('sent_at', sa.DateTime(), server_default=sa.func.now()),
    )
    op.create_index('ix_email_logs_reservation_id', 'email_logs', ['reservation_id'])


def downgrade():
    op.drop_table('email_logs')
    op.drop_table('email_templates')
    op.drop_table('reminder_rules')
    op.drop_table('reservation_timeline_events')
    op.drop_table('payment_installments')
    op.drop_table('passengers')
    op.drop_table('reservations')
    op.drop_table('departures')
    op.drop_table('tours')
    op.drop_table('users')
