"""Initial schema migration

Revision ID: 001
Revises:
Create Date: 2026-10-17 00:00:00.000000

"""
from alembic import op
import sqlalchemy as sa

# revision identifiers
revision = '001'
down_revision = None
branch_labels = None
depends_on = None

def upgrade():
    # Published route templates
    op.create_table('routes',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('train_id', sa.String(length=20), nullable=False),
        sa.Column('train_number', sa.String(length=10), nullable=False),
        sa.Column('train_name', sa.String(length=100), nullable=True),
        sa.Column('operating_days', sa.String(length=7), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_routes_id'), 'routes', ['id'], unique=False)
    op.create_index(op.f('ix_routes_train_id'), 'routes', ['train_id'], unique=True)

    op.create_table('route_stops',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('route_id', sa.Integer(), nullable=False),
        sa.Column('station_code', sa.String(length=10), nullable=False),
        sa.Column('station_name', sa.String(length=100), nullable=False),
        sa.Column('stop_order', sa.Integer(), nullable=False),
        sa.Column('distance_km', sa.Float(), nullable=True),
        sa.Column('arrival_time', sa.Time(), nullable=True),
        sa.Column('departure_time', sa.Time(), nullable=True),
        sa.Column('day', sa.Integer(), nullable=True),
        sa.Column('is_technical_stop', sa.Boolean(), nullable=True),
        sa.ForeignKeyConstraint(['route_id'], ['routes.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('route_id', 'stop_order', name='uq_route_stop_order')
    )
    op.create_index(op.f('ix_route_stops_id'), 'route_stops', ['id'], unique=False)
    op.create_index(op.f('ix_route_stops_station_code'), 'route_stops', ['station_code'], unique=False)

    op.create_table('route_coach_classes',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('route_id', sa.Integer(), nullable=False),
        sa.Column('coach_class', sa.String(length=10), nullable=False),
        sa.Column('capacity', sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(['route_id'], ['routes.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('route_id', 'coach_class', name='uq_route_coach_class')
    )
    op.create_index(op.f('ix_route_coach_classes_id'), 'route_coach_classes', ['id'], unique=False)

    # Versioned per-class inventories and their child rows
    op.create_table('coach_class_inventories',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('train_id', sa.String(length=20), nullable=False),
        sa.Column('journey_date', sa.Date(), nullable=False),
        sa.Column('coach_class', sa.String(length=10), nullable=False),
        sa.Column('capacity', sa.Integer(), nullable=False),
        sa.Column('next_ticket_seq', sa.Integer(), nullable=False),
        sa.Column('version', sa.Integer(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('train_id', 'journey_date', 'coach_class', name='uq_inventory_key')
    )
    op.create_index(op.f('ix_coach_class_inventories_id'), 'coach_class_inventories', ['id'], unique=False)
    op.create_index(op.f('ix_coach_class_inventories_train_id'), 'coach_class_inventories', ['train_id'], unique=False)
    op.create_index(op.f('ix_coach_class_inventories_journey_date'), 'coach_class_inventories', ['journey_date'], unique=False)

    op.create_table('berth_intervals',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('inventory_id', sa.Integer(), nullable=False),
        sa.Column('seat', sa.Integer(), nullable=False),
        sa.Column('from_order', sa.Integer(), nullable=False),
        sa.Column('to_order', sa.Integer(), nullable=False),
        sa.Column('booking_id', sa.String(length=36), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.ForeignKeyConstraint(['inventory_id'], ['coach_class_inventories.id'], ),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_berth_intervals_id'), 'berth_intervals', ['id'], unique=False)
    op.create_index(op.f('ix_berth_intervals_inventory_id'), 'berth_intervals', ['inventory_id'], unique=False)

    op.create_table('bookings',
        sa.Column('booking_id', sa.String(length=36), nullable=False),
        sa.Column('inventory_id', sa.Integer(), nullable=False),
        sa.Column('from_order', sa.Integer(), nullable=False),
        sa.Column('to_order', sa.Integer(), nullable=False),
        sa.Column('seat_count', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('seats', sa.String(length=200), nullable=True),
        sa.Column('ticket_sequence', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.Column('expires_at', sa.DateTime(), nullable=True),
        sa.Column('cancel_reason', sa.String(length=20), nullable=True),
        sa.ForeignKeyConstraint(['inventory_id'], ['coach_class_inventories.id'], ),
        sa.PrimaryKeyConstraint('booking_id')
    )
    op.create_index(op.f('ix_bookings_inventory_id'), 'bookings', ['inventory_id'], unique=False)

    op.create_table('waitlist_tickets',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('inventory_id', sa.Integer(), nullable=False),
        sa.Column('sequence', sa.Integer(), nullable=False),
        sa.Column('booking_id', sa.String(length=36), nullable=False),
        sa.Column('from_order', sa.Integer(), nullable=False),
        sa.Column('to_order', sa.Integer(), nullable=False),
        sa.Column('seat_count', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['inventory_id'], ['coach_class_inventories.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('inventory_id', 'sequence', name='uq_ticket_sequence')
    )
    op.create_index(op.f('ix_waitlist_tickets_id'), 'waitlist_tickets', ['id'], unique=False)
    op.create_index(op.f('ix_waitlist_tickets_inventory_id'), 'waitlist_tickets', ['inventory_id'], unique=False)

def downgrade():
    op.drop_table('waitlist_tickets')
    op.drop_table('bookings')
    op.drop_table('berth_intervals')
    op.drop_table('coach_class_inventories')
    op.drop_table('route_coach_classes')
    op.drop_table('route_stops')
    op.drop_table('routes')
