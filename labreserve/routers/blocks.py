from fastapi import APIRouter, Depends, Query, status
from typing import List, Optional
from datetime import date

from ..models.booking import BlockType
from ..schemas.booking import BlockCreate, BlockResultResponse, BookingResponse
from ..services.errors import ReservationError
from ..services.records import Actor
from ..services.reservation_engine import ReservationEngine
from ..utils.dependencies import get_actor, get_engine, http_error

router = APIRouter(prefix="/api/blocks", tags=["Blocks"])


@router.post("", response_model=BlockResultResponse, status_code=status.HTTP_201_CREATED)
def create_block(
    payload: BlockCreate,
    engine: ReservationEngine = Depends(get_engine),
    actor: Actor = Depends(get_actor)
):
    """
    Block one day, a date range or everything from a date onwards.

    Pending and approved bookings in the way are reported under
    `overwritten` (or `skipped` with BLOCK_OVERWRITE_POLICY=preserve).
    """
    try:
        if payload.block_type == BlockType.SINGLE:
            result = engine.block_single(payload.start_date, payload.equipment_id, payload.reason, actor)
        elif payload.block_type == BlockType.RANGE:
            result = engine.block_range(
                payload.start_date, payload.end_date, payload.equipment_id, payload.reason, actor
            )
        else:
            result = engine.block_indefinite(payload.start_date, payload.equipment_id, payload.reason, actor)
    except ReservationError as e:
        raise http_error(e)
    return BlockResultResponse.model_validate(result)


@router.get("", response_model=List[BookingResponse])
def list_blocks(
    block_type: Optional[BlockType] = None,
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    engine: ReservationEngine = Depends(get_engine)
):
    try:
        return engine.list_blocks(block_type, date_from, date_to)
    except ReservationError as e:
        raise http_error(e)


@router.delete("/{key}", response_model=BookingResponse)
def unblock(
    key: str,
    engine: ReservationEngine = Depends(get_engine),
    actor: Actor = Depends(get_actor)
):
    """Release a block; returns the removed block record"""
    try:
        return engine.unblock(key, actor)
    except ReservationError as e:
        raise http_error(e)
