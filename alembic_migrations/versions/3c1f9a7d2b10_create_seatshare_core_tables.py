"""Create users, trips, booking_requests and saved_routes

Revision ID: 3c1f9a7d2b10
Revises:
Create Date: 2026-10-19 09:12:44.318201

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = '3c1f9a7d2b10'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

BOOKING_REQUEST_STATUSES = (
    'pending',
    'confirmed',
    'rejected',
    'cancelled_by_passenger',
    'cancelled_by_driver',
    'cancelled_trip_modified',
)


def upgrade():
    user_role = sa.Enum('passenger', 'driver', name='user_role')
    booking_request_status = sa.Enum(*BOOKING_REQUEST_STATUSES, name='booking_request_status')

    op.create_table(
        'users',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('full_name', sa.String(), nullable=True),
        sa.Column('email', sa.String(), nullable=True),
        sa.Column('role', user_role, nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', postgresql.TIMESTAMP(timezone=True), nullable=False),
        sa.Column('updated_at', postgresql.TIMESTAMP(timezone=True), nullable=False),
    )
    op.create_index('ix_users_email', 'users', ['email'])

    op.create_table(
        'trips',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('driver_id', postgresql.UUID(as_uuid=True),
                  sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('origin', sa.String(), nullable=False),
        sa.Column('destination', sa.String(), nullable=False),
        sa.Column('departure_at', postgresql.TIMESTAMP(timezone=True), nullable=False),
        sa.Column('seats_available', sa.Integer(), nullable=False),
        sa.Column('created_at', postgresql.TIMESTAMP(timezone=True), nullable=False),
        sa.Column('updated_at', postgresql.TIMESTAMP(timezone=True), nullable=False),
        sa.CheckConstraint('seats_available >= 0', name='ck_trips_seats_available_non_negative'),
    )
    op.create_index('ix_trips_driver_id', 'trips', ['driver_id'])
    op.create_index('ix_trips_departure_at', 'trips', ['departure_at'])

    op.create_table(
        'booking_requests',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('trip_id', postgresql.UUID(as_uuid=True),
                  sa.ForeignKey('trips.id', ondelete='SET NULL'), nullable=True),
        sa.Column('passenger_id', postgresql.UUID(as_uuid=True),
                  sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('status', booking_request_status, nullable=False),
        sa.Column('requested_at', postgresql.TIMESTAMP(timezone=True), nullable=False),
        sa.Column('updated_at', postgresql.TIMESTAMP(timezone=True), nullable=False),
    )
    op.create_index('ix_booking_requests_trip_id', 'booking_requests', ['trip_id'])
    op.create_index('ix_booking_requests_passenger_id', 'booking_requests', ['passenger_id'])
    # At most one pending/confirmed request per passenger and trip
    op.create_index(
        'uq_booking_requests_active_trip_passenger',
        'booking_requests',
        ['trip_id', 'passenger_id'],
        unique=True,
        postgresql_where=sa.text("status IN ('pending', 'confirmed')"),
    )

    op.create_table(
        'saved_routes',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('passenger_id', postgresql.UUID(as_uuid=True),
                  sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('passenger_email', sa.String(), nullable=True),
        sa.Column('origin', sa.String(), nullable=False),
        sa.Column('destination', sa.String(), nullable=False),
        sa.Column('preferred_date', sa.Date(), nullable=True),
        sa.Column('created_at', postgresql.TIMESTAMP(timezone=True), nullable=False),
    )
    op.create_index('ix_saved_routes_passenger_id', 'saved_routes', ['passenger_id'])


def downgrade():
    op.drop_index('ix_saved_routes_passenger_id', table_name='saved_routes')
    op.drop_table('saved_routes')

    op.drop_index('uq_booking_requests_active_trip_passenger', table_name='booking_requests')
    op.drop_index('ix_booking_requests_passenger_id', table_name='booking_requests')
    op.drop_index('ix_booking_requests_trip_id', table_name='booking_requests')
    op.drop_table('booking_requests')

    op.drop_index('ix_trips_departure_at', table_name='trips')
    op.drop_index('ix_trips_driver_id', table_name='trips')
    op.drop_table('trips')

    op.drop_index('ix_users_email', table_name='users')
    op.drop_table('users')

    sa.Enum(name='booking_request_status').drop(op.get_bind(), checkfirst=True)
    sa.Enum(name='user_role').drop(op.get_bind(), checkfirst=True)
