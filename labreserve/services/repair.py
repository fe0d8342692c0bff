"""
Repair pass for interrupted multi-key operations.

Relocations and swaps are not atomic as a whole. Whatever step they stop
at, they leave records carrying a `moved_from` marker:

- a marked record at a slot key: the target write landed. If the source
  still holds the same booking it is deleted (roll forward), then the
  marker is cleared.
- a record at a temp key: a swap parked it. If its origin still holds the
  same booking the park never completed and the temp copy is dropped.
  Otherwise it is moved to the key of its own coordinates or, when that
  is taken, back to its origin key. If both are taken it is reported as
  stranded for an administrator.

Every step is idempotent, so running the pass twice is harmless.
"""

import logging
from typing import Optional

from . import slot_key
from .booking_store import BookingStore
from .errors import ReservationError, SlotConflict
from .records import BookingFilter, BookingRecord, RepairReport
from .staging import StagedMover
from ..utils.logging_config import get_logger

logger = get_logger(__name__)


class RepairService:

    def __init__(self, store: BookingStore, mover: StagedMover):
        self.store = store
        self.mover = mover

    def reconcile(self) -> RepairReport:
        report = RepairReport()
        staged = self.store.find_where(BookingFilter(staged_only=True))

        # Real keys first: they may free the keys temp records need
        for record in staged:
            if not slot_key.is_temp_key(record.id):
                self._finish_move(record, report)

        for record in self.store.find_where(BookingFilter(key_prefix=slot_key.TEMP_PREFIX)):
            self._resolve_temp(record, report)

        if report.rolled_forward or report.restored or report.stranded:
            logger.log_with_context(
                logging.WARNING if report.stranded else logging.INFO,
                f"Repair pass: {len(report.rolled_forward)} rolled forward, "
                f"{len(report.restored)} restored, {len(report.stranded)} stranded",
                entity_type="repair",
                stranded=report.stranded
            )
        return report

    def _same_booking_at(self, key: Optional[str], record: BookingRecord) -> Optional[BookingRecord]:
        if not key:
            return None
        origin = self.store.get_by_key(key)
        if origin is not None and origin.same_origin(record):
            return origin
        return None

    def _release(self, key: str, expected: BookingRecord) -> bool:
        try:
            return self.mover.release_source(key, expected=expected)
        except SlotConflict:
            logger.warning(f"Repair skipped {key}: changed while the pass was running")
            return False

    def _finish_move(self, record: BookingRecord, report: RepairReport) -> None:
        origin = self._same_booking_at(record.moved_from, record)
        if origin is not None and origin.status != record.status:
            # Approved at the source after the copy was written
            self.store.update_fields(record.id, {"status": origin.status}, expected_status=record.status)
        if origin is not None and self._release(record.moved_from, origin):
            report.rolled_forward.append(record.id)
        self.mover.clear_marker(record.id)
        report.markers_cleared.append(record.id)

    def _resolve_temp(self, record: BookingRecord, report: RepairReport) -> None:
        if self._same_booking_at(record.moved_from, record) is not None:
            if self._release(record.id, record):
                report.restored.append(record.moved_from)
            return

        target = slot_key.derive(record.date, record.equipment_id, record.time_slot_id)
        try:
            self.mover.move(record, target, record.date, record.equipment_id, record.time_slot_id)
            report.rolled_forward.append(target)
            return
        except SlotConflict:
            logger.warning(f"Temp record {record.id}: target {target} is taken, trying origin")

        origin = record.moved_from
        if origin and slot_key.is_slot_key(origin):
            origin_date, origin_equipment, origin_slot = slot_key.parse(origin)
            try:
                self.mover.move(record, origin, origin_date, origin_equipment, origin_slot)
                report.restored.append(origin)
                return
            except ReservationError as e:
                logger.warning(f"Temp record {record.id}: origin {origin} unavailable ({e})")

        report.stranded.append(record.id)
