# Services package
from .errors import (
    ReservationError, BookingNotFound, SlotConflict, OperationForbidden,
    NotAuthorized, QuotaExceeded, RateLimited, InvalidArgument,
    StoreUnavailable, SwapInterrupted
)
from .records import (
    BookingRecord, BookingDraft, BookingFilter, Actor, Requester, SlotRequest,
    Empty, Occupied, SlotState, BlockResult, RepairReport
)
from .booking_store import BookingStore, InMemoryBookingStore, SqlAlchemyBookingStore
from .reservation_engine import ReservationEngine

__all__ = [
    "ReservationError", "BookingNotFound", "SlotConflict", "OperationForbidden",
    "NotAuthorized", "QuotaExceeded", "RateLimited", "InvalidArgument",
    "StoreUnavailable", "SwapInterrupted",
    "BookingRecord", "BookingDraft", "BookingFilter", "Actor", "Requester", "SlotRequest",
    "Empty", "Occupied", "SlotState", "BlockResult", "RepairReport",
    "BookingStore", "InMemoryBookingStore", "SqlAlchemyBookingStore",
    "ReservationEngine",
]
