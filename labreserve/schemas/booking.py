from pydantic import BaseModel, Field, field_validator, model_validator
from typing import Optional, List, Dict
from datetime import date
import re

from ..models.booking import BookingStatus, BlockType

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def _strip_markup(v):
    """Remove script tags and inline event handlers from free text"""
    if v is None or not isinstance(v, str):
        return v
    v = re.sub(r'<script[^>]*>.*?</script>', '', v, flags=re.IGNORECASE | re.DOTALL)
    v = re.sub(r'on\w+\s*=', '', v, flags=re.IGNORECASE)
    return v.strip()


class SlotSelection(BaseModel):
    date: date
    equipment_id: int = Field(..., ge=1)
    time_slot_id: str = Field(..., min_length=1, max_length=20)


class BookingRequestCreate(BaseModel):
    """Slot request submitted by a user: one or more slots in one go"""
    user_name: str = Field(..., min_length=1, max_length=200)
    user_email: str = Field(..., max_length=255)
    user_group: Optional[str] = Field(None, max_length=100)
    slots: List[SlotSelection] = Field(..., min_length=1, max_length=50)

    @field_validator('user_name', 'user_group', mode='before')
    @classmethod
    def sanitize_text_fields(cls, v):
        return _strip_markup(v)

    @field_validator('user_email')
    @classmethod
    def validate_email(cls, v: str) -> str:
        v = v.strip().lower()
        if not _EMAIL_RE.match(v):
            raise ValueError('Invalid e-mail address')
        return v


class BookingCreate(BaseModel):
    """Single record created by an administrator"""
    date: date
    equipment_id: int = Field(..., ge=1)
    time_slot_id: str = Field(..., min_length=1, max_length=20)
    status: BookingStatus = BookingStatus.PENDING
    user_name: Optional[str] = Field(None, max_length=200)
    user_email: Optional[str] = Field(None, max_length=255)
    user_group: Optional[str] = Field(None, max_length=100)
    blocked_reason: Optional[str] = Field(None, max_length=2000)

    @field_validator('user_name', 'user_group', 'blocked_reason', mode='before')
    @classmethod
    def sanitize_text_fields(cls, v):
        return _strip_markup(v)


class BookingStatusUpdate(BaseModel):
    status: BookingStatus


class BookingSlotUpdate(BaseModel):
    """New coordinates for a relocation"""
    date: date
    equipment_id: int = Field(..., ge=1)
    time_slot_id: str = Field(..., min_length=1, max_length=20)


class SwapRequest(BaseModel):
    first_key: str = Field(..., min_length=1, max_length=120)
    second_key: str = Field(..., min_length=1, max_length=120)


class BlockCreate(BaseModel):
    block_type: BlockType
    start_date: date
    end_date: Optional[date] = None
    # 0 blocks every instrument
    equipment_id: int = Field(default=0, ge=0)
    reason: Optional[str] = Field(None, max_length=2000)

    @field_validator('reason', mode='before')
    @classmethod
    def sanitize_reason(cls, v):
        return _strip_markup(v)

    @model_validator(mode='after')
    def validate_dates(self):
        if self.block_type == BlockType.RANGE and self.end_date is None:
            raise ValueError('A range block needs an end date')
        if self.block_type != BlockType.RANGE and self.end_date is not None:
            raise ValueError('Only range blocks take an end date')
        return self


class BookingResponse(BaseModel):
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

    class Config:
        from_attributes = True


class SlotStateResponse(BaseModel):
    key: str
    occupied: bool
    by_indefinite_block: bool = False
    booking: Optional[BookingResponse] = None


class DayOccupancyResponse(BaseModel):
    date: date
    slots: Dict[str, SlotStateResponse]


class RelocateResponse(BaseModel):
    old_key: str
    new_key: str


class SwapResponse(BaseModel):
    first_new_key: str
    second_new_key: str


class BlockResultResponse(BaseModel):
    block_type: BlockType
    created: List[str]
    overwritten: List[BookingResponse]
    skipped: List[str]
    failed: List[Dict[str, str]]
    complete: bool

    class Config:
        from_attributes = True


class RecipientsResponse(BaseModel):
    notification_email: str
    recipients: List[str]


class RepairReportResponse(BaseModel):
    rolled_forward: List[str]
    markers_cleared: List[str]
    restored: List[str]
    stranded: List[str]
    clean: bool

    class Config:
        from_attributes = True
