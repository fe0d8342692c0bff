from fastapi import APIRouter, Depends, status
import logging

from ..config import Settings
from ..schemas.booking import (
    BookingCreate, BookingResponse, RecipientsResponse, RepairReportResponse
)
from ..services.errors import ReservationError
from ..services.records import Actor, BookingDraft
from ..services.reservation_engine import ReservationEngine
from ..utils.dependencies import get_engine, get_settings_dep, http_error, require_admin

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/admin", tags=["Admin"])


@router.post("/bookings", response_model=BookingResponse, status_code=status.HTTP_201_CREATED)
def create_booking(
    payload: BookingCreate,
    engine: ReservationEngine = Depends(get_engine),
    actor: Actor = Depends(require_admin)
):
    """Create a single booking in any creatable status, bypassing quotas"""
    draft = BookingDraft(**payload.model_dump())
    try:
        return engine.create_booking(draft, actor)
    except ReservationError as e:
        raise http_error(e)


@router.get("/recipients", response_model=RecipientsResponse)
def notification_recipients(
    engine: ReservationEngine = Depends(get_engine),
    settings: Settings = Depends(get_settings_dep),
    actor: Actor = Depends(require_admin)
):
    """Addresses of everyone holding a pending or approved booking"""
    try:
        recipients = engine.notification_recipients()
    except ReservationError as e:
        raise http_error(e)
    return RecipientsResponse(notification_email=settings.notification_email, recipients=recipients)


@router.post("/repair", response_model=RepairReportResponse)
def run_repair(
    engine: ReservationEngine = Depends(get_engine),
    actor: Actor = Depends(require_admin)
):
    """Finish or undo relocations and swaps that were interrupted"""
    try:
        report = engine.repair()
    except ReservationError as e:
        raise http_error(e)
    if report.stranded:
        logger.warning(f"Repair left {len(report.stranded)} stranded records: {report.stranded}")
    return RepairReportResponse.model_validate(report)
