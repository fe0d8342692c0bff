"""Bookings table

Revision ID: 001_initial
Revises:
Create Date: 2026-10-19

One row per occupied slot key plus one row per indefinite block. The
primary key is the slot key, which is what makes two concurrent writers
of the same slot collide.
"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '001_initial'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'bookings',
        sa.Column('id', sa.String(120), primary_key=True),
        sa.Column('equipment_id', sa.Integer, nullable=False),
        sa.Column('date', sa.Date, nullable=False),
        sa.Column('time_slot_id', sa.String(20), nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='pending'),
        # Requester
        sa.Column('user_name', sa.String(200), nullable=True),
        sa.Column('user_email', sa.String(255), nullable=True),
        sa.Column('user_group', sa.String(100), nullable=True),
        # Block data
        sa.Column('blocked_reason', sa.Text, nullable=True),
        sa.Column('block_type', sa.String(20), nullable=True),
        sa.Column('block_start_date', sa.Date, nullable=True),
        sa.Column('block_end_date', sa.Date, nullable=True),
        # Creation instant, ms since epoch
        sa.Column('timestamp', sa.BigInteger, nullable=False),
        # Staging marker of an in-flight move
        sa.Column('moved_from', sa.String(120), nullable=True),
        sa.Column('uid', sa.String(32), nullable=False),
        # Timestamps
        sa.Column('created_at', sa.DateTime, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime, server_default=sa.func.now()),
    )
    op.create_index('ix_booking_user_email_status', 'bookings', ['user_email', 'status'])
    op.create_index('ix_booking_block_type', 'bookings', ['block_type'])
    op.create_index('ix_booking_date', 'bookings', ['date'])
    op.create_index('ix_booking_moved_from', 'bookings', ['moved_from'])


def downgrade() -> None:
    op.drop_index('ix_booking_moved_from', table_name='bookings')
    op.drop_index('ix_booking_date', table_name='bookings')
    op.drop_index('ix_booking_block_type', table_name='bookings')
    op.drop_index('ix_booking_user_email_status', table_name='bookings')
    op.drop_table('bookings')
