# Models package
from .booking import Booking, BookingStatus, BlockType

__all__ = ["Booking", "BookingStatus", "BlockType"]
