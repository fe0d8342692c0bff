from fastapi import APIRouter, Depends, status, Query
from typing import List, Optional
from datetime import date
import logging

from ..models.booking import BookingStatus
from ..schemas.booking import (
    BookingRequestCreate, BookingResponse, BookingStatusUpdate,
    BookingSlotUpdate, SwapRequest, SwapResponse, RelocateResponse
)
from ..schemas.pagination import PaginatedResponse, PaginationParams, paginate_list
from ..services.errors import ReservationError
from ..services.records import Actor, BookingFilter, Requester, SlotRequest
from ..services.reservation_engine import ReservationEngine
from ..utils.dependencies import get_actor, get_engine, http_error, require_admin
from ..utils.rate_limiter import limit_submissions

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/bookings", tags=["Bookings"])


@router.post(
    "",
    response_model=List[BookingResponse],
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(limit_submissions)]
)
def submit_booking_request(
    payload: BookingRequestCreate,
    engine: ReservationEngine = Depends(get_engine),
    actor: Actor = Depends(get_actor)
):
    """Request one or more slots. Every slot is created as pending, or none is."""
    requester = Requester(name=payload.user_name, email=payload.user_email, group=payload.user_group)
    slots = [
        SlotRequest(date=s.date, equipment_id=s.equipment_id, time_slot_id=s.time_slot_id)
        for s in payload.slots
    ]
    try:
        return engine.submit_request(requester, slots, actor)
    except ReservationError as e:
        raise http_error(e)


@router.get("", response_model=PaginatedResponse[BookingResponse])
def list_bookings(
    status_filter: Optional[List[BookingStatus]] = Query(None, alias="status"),
    user_email: Optional[str] = None,
    equipment_id: Optional[int] = None,
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=500),
    engine: ReservationEngine = Depends(get_engine),
    actor: Actor = Depends(require_admin)
):
    predicate = BookingFilter(
        statuses=status_filter,
        user_email=user_email.strip().lower() if user_email else None,
        equipment_id=equipment_id,
        date_from=date_from,
        date_to=date_to,
    )
    try:
        bookings = engine.list_bookings(predicate)
    except ReservationError as e:
        raise http_error(e)

    params = PaginationParams(page=page, page_size=page_size)
    items, total = paginate_list(bookings, params)
    return PaginatedResponse.create(
        items=[BookingResponse.model_validate(b) for b in items],
        total=total,
        page=page,
        page_size=page_size
    )


@router.post("/swap", response_model=SwapResponse)
def swap_bookings(
    payload: SwapRequest,
    engine: ReservationEngine = Depends(get_engine),
    actor: Actor = Depends(get_actor)
):
    """Exchange the slots of two bookings"""
    try:
        first_new_key, second_new_key = engine.swap(payload.first_key, payload.second_key, actor)
    except ReservationError as e:
        raise http_error(e)
    return SwapResponse(first_new_key=first_new_key, second_new_key=second_new_key)


@router.get("/{key}", response_model=BookingResponse)
def get_booking(
    key: str,
    engine: ReservationEngine = Depends(get_engine),
    actor: Actor = Depends(require_admin)
):
    try:
        return engine.get_booking(key)
    except ReservationError as e:
        raise http_error(e)


@router.put("/{key}/status", response_model=Optional[BookingResponse])
def update_booking_status(
    key: str,
    payload: BookingStatusUpdate,
    engine: ReservationEngine = Depends(get_engine),
    actor: Actor = Depends(get_actor)
):
    """
    Approve, reject or cancel a booking.

    Setting `available` releases the slot and returns null.
    """
    try:
        return engine.change_status(key, payload.status, actor)
    except ReservationError as e:
        raise http_error(e)


@router.put("/{key}/slot", response_model=RelocateResponse)
def relocate_booking(
    key: str,
    payload: BookingSlotUpdate,
    engine: ReservationEngine = Depends(get_engine),
    actor: Actor = Depends(get_actor)
):
    """Move a booking to another date, instrument or time slot"""
    try:
        new_key = engine.relocate(key, payload.date, payload.equipment_id, payload.time_slot_id, actor)
    except ReservationError as e:
        raise http_error(e)
    return RelocateResponse(old_key=key, new_key=new_key)


@router.delete("/{key}", status_code=status.HTTP_204_NO_CONTENT)
def delete_booking(
    key: str,
    engine: ReservationEngine = Depends(get_engine),
    actor: Actor = Depends(get_actor)
):
    try:
        engine.delete_booking(key, actor)
    except ReservationError as e:
        raise http_error(e)
