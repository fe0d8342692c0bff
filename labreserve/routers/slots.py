from fastapi import APIRouter, Depends, Query
from datetime import date

from ..schemas.booking import BookingResponse, DayOccupancyResponse, SlotStateResponse
from ..services.errors import ReservationError
from ..services.reservation_engine import ReservationEngine
from ..utils.dependencies import get_engine, http_error

router = APIRouter(prefix="/api/slots", tags=["Slots"])


@router.get("", response_model=DayOccupancyResponse)
def day_occupancy(
    on_date: date = Query(..., alias="date"),
    engine: ReservationEngine = Depends(get_engine)
):
    """
    Occupancy of every instrument and time slot on one day.

    Public view: occupied slots show status and block reason, never the
    requester's contact data.
    """
    try:
        grid = engine.day_occupancy(on_date)
    except ReservationError as e:
        raise http_error(e)

    slots = {}
    for key, state in grid.items():
        booking = None
        if state.occupied:
            booking = BookingResponse.model_validate(state.booking).model_copy(
                update={"user_email": None, "user_group": None}
            )
        slots[key] = SlotStateResponse(
            key=key,
            occupied=state.occupied,
            by_indefinite_block=state.occupied and state.by_indefinite_block,
            booking=booking,
        )
    return DayOccupancyResponse(date=on_date, slots=slots)
