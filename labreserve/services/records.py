"""
Plain value types passed between the engine components.

The engine never works on ORM instances: stores convert rows to
`BookingRecord` so the in-memory store and the SQL store are
interchangeable.
"""

import uuid
from dataclasses import dataclass, field, fields, replace
from datetime import date
from typing import Dict, Any, Optional, List, Iterable, Union

from ..models.booking import BookingStatus, BlockType

# Equipment id meaning "every instrument" inside a block
ALL_EQUIPMENT = 0

# Time slot id meaning "every slot" inside an indefinite block
ALL_SLOTS = "all"

USER_FIELDS = ("user_name", "user_email", "user_group")
BLOCK_FIELDS = ("blocked_reason", "block_type", "block_start_date", "block_end_date")
ACTIVE_STATUSES = (BookingStatus.PENDING, BookingStatus.APPROVED)


@dataclass
class BookingRecord:
    id: str
    equipment_id: int
    date: date
    time_slot_id: str
    status: BookingStatus
    timestamp: int
    user_name: Optional[str] = None
    user_email: Optional[str] = None
    user_group: Optional[str] = None
    blocked_reason: Optional[str] = None
    block_type: Optional[BlockType] = None
    block_start_date: Optional[date] = None
    block_end_date: Optional[date] = None
    moved_from: Optional[str] = None
    uid: str = field(default_factory=lambda: uuid.uuid4().hex)

    def __post_init__(self):
        self.status = BookingStatus(self.status)
        if self.block_type is not None:
            self.block_type = BlockType(self.block_type)

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES

    @property
    def is_block(self) -> bool:
        return self.status == BookingStatus.BLOCKED

    @property
    def is_indefinite_block(self) -> bool:
        return self.is_block and self.block_type == BlockType.INDEFINITE

    @property
    def coordinates(self):
        return self.date, self.equipment_id, self.time_slot_id

    def has_block_fields(self) -> bool:
        return any(getattr(self, name) is not None for name in BLOCK_FIELDS)

    def same_origin(self, other: "BookingRecord") -> bool:
        """True when both records are copies of one booking (moves keep the uid)."""
        return self.uid == other.uid

    def evolve(self, **changes) -> "BookingRecord":
        return replace(self, **changes)

    def to_dict(self) -> Dict[str, Any]:
        data = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if isinstance(value, (BookingStatus, BlockType)):
                value = value.value
            elif isinstance(value, date):
                value = value.isoformat()
            data[f.name] = value
        return data


@dataclass
class Actor:
    """Caller identity as resolved by the request layer."""
    is_admin: bool = False
    email: Optional[str] = None

    @classmethod
    def admin(cls, email: Optional[str] = None) -> "Actor":
        return cls(is_admin=True, email=email)

    @classmethod
    def user(cls, email: Optional[str] = None) -> "Actor":
        return cls(is_admin=False, email=email)


@dataclass
class Requester:
    name: str
    email: str
    group: Optional[str] = None


@dataclass
class BookingDraft:
    """A single booking as submitted; the engine derives its key and timestamp."""
    date: date
    equipment_id: int
    time_slot_id: str
    status: BookingStatus = BookingStatus.PENDING
    user_name: Optional[str] = None
    user_email: Optional[str] = None
    user_group: Optional[str] = None
    blocked_reason: Optional[str] = None


@dataclass
class SlotRequest:
    date: date
    equipment_id: int
    time_slot_id: str


@dataclass
class BookingFilter:
    """
    Declarative predicate understood by every BookingStore.

    Unset attributes do not constrain the result.
    """
    user_email: Optional[str] = None
    statuses: Optional[Iterable[BookingStatus]] = None
    block_type: Optional[BlockType] = None
    equipment_id: Optional[int] = None
    date_from: Optional[date] = None
    date_to: Optional[date] = None
    timestamp_after: Optional[int] = None
    user_bookings_only: bool = False
    staged_only: bool = False
    key_prefix: Optional[str] = None

    def status_values(self) -> Optional[List[str]]:
        if self.statuses is None:
            return None
        return [BookingStatus(s).value for s in self.statuses]

    def matches(self, booking: BookingRecord) -> bool:
        if self.user_email is not None and booking.user_email != self.user_email:
            return False
        statuses = self.status_values()
        if statuses is not None and booking.status.value not in statuses:
            return False
        if self.block_type is not None and booking.block_type != self.block_type:
            return False
        if self.equipment_id is not None and booking.equipment_id != self.equipment_id:
            return False
        if self.date_from is not None and booking.date < self.date_from:
            return False
        if self.date_to is not None and booking.date > self.date_to:
            return False
        if self.timestamp_after is not None and booking.timestamp <= self.timestamp_after:
            return False
        if self.user_bookings_only and not booking.user_name:
            return False
        if self.staged_only and booking.moved_from is None:
            return False
        if self.key_prefix is not None and not booking.id.startswith(self.key_prefix):
            return False
        return True


@dataclass
class Empty:
    """A slot with no live occupant."""
    key: str
    occupied = False


@dataclass
class Occupied:
    """A slot held by a booking or suppressed by a block."""
    key: str
    booking: BookingRecord
    occupied = True

    @property
    def by_indefinite_block(self) -> bool:
        return self.booking.is_indefinite_block and self.booking.id != self.key


SlotState = Union[Empty, Occupied]


@dataclass
class BlockResult:
    """Outcome of a block request; partial blocking is a valid result."""
    block_type: BlockType
    created: List[str] = field(default_factory=list)
    overwritten: List[BookingRecord] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    failed: List[Dict[str, str]] = field(default_factory=list)

    @property
    def complete(self) -> bool:
        return not self.failed


@dataclass
class RepairReport:
    rolled_forward: List[str] = field(default_factory=list)
    markers_cleared: List[str] = field(default_factory=list)
    restored: List[str] = field(default_factory=list)
    stranded: List[str] = field(default_factory=list)

    @property
    def clean(self) -> bool:
        return not self.stranded
