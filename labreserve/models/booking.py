from datetime import datetime
from sqlalchemy import Column, String, Date, Integer, BigInteger, Text, DateTime, Index
from ..database import Base
import enum


class BookingStatus(str, enum.Enum):
    AVAILABLE = "available"
    PENDING = "pending"
    APPROVED = "approved"
    BLOCKED = "blocked"


class BlockType(str, enum.Enum):
    """How a blocked record was produced"""
    SINGLE = "single"          # One day, materialized per slot
    RANGE = "range"            # Date range, materialized per slot
    INDEFINITE = "indefinite"  # One synthetic record suppressing every later date


class Booking(Base):
    """
    One row per occupied slot key, plus one row per indefinite block.

    The primary key is the slot key "{date}-{equipment_id}-{time_slot_id}",
    so the primary key constraint is what enforces one occupant per slot.
    """
    __tablename__ = "bookings"

    id = Column(String(120), primary_key=True)
    equipment_id = Column(Integer, nullable=False)
    date = Column(Date, nullable=False)
    time_slot_id = Column(String(20), nullable=False)
    status = Column(String(20), nullable=False, default=BookingStatus.PENDING.value)

    # Requester
    user_name = Column(String(200), nullable=True)
    user_email = Column(String(255), nullable=True)
    user_group = Column(String(100), nullable=True)

    # Block data
    blocked_reason = Column(Text, nullable=True)
    block_type = Column(String(20), nullable=True)
    block_start_date = Column(Date, nullable=True)
    block_end_date = Column(Date, nullable=True)

    # Creation instant in ms since epoch (rate-limit window)
    timestamp = Column(BigInteger, nullable=False)

    # Key this row is being moved from; set only while a move is in flight
    moved_from = Column(String(120), nullable=True)

    # Identity of the booking itself, carried unchanged across moves
    uid = Column(String(32), nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        Index("ix_booking_user_email_status", "user_email", "status"),
        Index("ix_booking_block_type", "block_type"),
        Index("ix_booking_date", "date"),
        Index("ix_booking_moved_from", "moved_from"),
    )

    def __repr__(self):
        return f"<Booking {self.id} {self.status}>"
