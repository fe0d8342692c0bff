"""
Block Manager

Takes equipment out of service.

- single / range blocks are materialized: one `blocked` record per
  (date, equipment, time slot), stored at the slot key like any booking
- indefinite blocks are one synthetic record that suppresses every date
  from its start onwards

Materialized blocks are written slot by slot. A slot that cannot be
written is reported in the result and the rest of the batch continues.
"""

import logging
from datetime import date, datetime, timedelta
from typing import Callable, List, Optional, Union

from ..config import Settings
from ..models.booking import BookingStatus, BlockType
from . import slot_key
from .booking_store import BookingStore
from .errors import (
    BookingNotFound, InvalidArgument, OperationForbidden, SlotConflict, StoreUnavailable
)
from .quota_guard import to_millis
from .records import ALL_EQUIPMENT, ALL_SLOTS, BlockResult, BookingFilter, BookingRecord
from ..utils.logging_config import get_logger

logger = get_logger(__name__)

PRESERVE = "preserve"


class BlockManager:

    def __init__(
        self,
        store: BookingStore,
        settings: Settings,
        clock: Callable[[], datetime]
    ):
        self.store = store
        self.settings = settings
        self.clock = clock

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _date_range(self, start: date, end: date) -> List[date]:
        """Dates from start to end, both inclusive."""
        days = []
        current = start
        while current <= end:
            days.append(current)
            current += timedelta(days=1)
        return days

    def _equipment_targets(self, equipment_or_all: int) -> List[int]:
        configured = self.settings.equipment_id_list
        if equipment_or_all == ALL_EQUIPMENT:
            return configured
        if equipment_or_all not in configured:
            raise InvalidArgument(
                f"Unknown equipment id {equipment_or_all}",
                equipment_id=equipment_or_all
            )
        return [equipment_or_all]

    def _block_fields(
        self,
        block_type: BlockType,
        reason: Optional[str],
        start: date,
        end: Optional[date],
        timestamp: int
    ) -> dict:
        return {
            "status": BookingStatus.BLOCKED,
            "user_name": None,
            "user_email": None,
            "user_group": None,
            "blocked_reason": reason,
            "block_type": block_type,
            "block_start_date": start,
            "block_end_date": end,
            "timestamp": timestamp,
            "moved_from": None,
        }

    # ------------------------------------------------------------------
    # Materialized blocks
    # ------------------------------------------------------------------

    def block_single(
        self,
        on_date: Union[date, str],
        equipment_or_all: int,
        reason: Optional[str] = None
    ) -> BlockResult:
        on_date = slot_key.coerce_date(on_date)
        return self._materialize(BlockType.SINGLE, on_date, on_date, equipment_or_all, reason)

    def block_range(
        self,
        start: Union[date, str],
        end: Union[date, str],
        equipment_or_all: int,
        reason: Optional[str] = None
    ) -> BlockResult:
        start = slot_key.coerce_date(start)
        end = slot_key.coerce_date(end)
        if end < start:
            raise InvalidArgument(
                "The end date must not be before the start date",
                start=start.isoformat(), end=end.isoformat()
            )
        span = (end - start).days + 1
        if span > self.settings.max_block_range_days:
            raise InvalidArgument(
                f"A block range may cover at most {self.settings.max_block_range_days} days",
                days=span
            )
        return self._materialize(BlockType.RANGE, start, end, equipment_or_all, reason)

    def _materialize(
        self,
        block_type: BlockType,
        start: date,
        end: date,
        equipment_or_all: int,
        reason: Optional[str]
    ) -> BlockResult:
        equipment_ids = self._equipment_targets(equipment_or_all)
        timestamp = to_millis(self.clock())
        block_end = end if block_type == BlockType.RANGE else None
        fields = self._block_fields(block_type, reason, start, block_end, timestamp)
        result = BlockResult(block_type=block_type)

        for day in self._date_range(start, end):
            for time_slot_id in self.settings.time_slot_list:
                for equipment_id in equipment_ids:
                    key = slot_key.derive(day, equipment_id, time_slot_id)
                    record = BookingRecord(
                        id=key,
                        equipment_id=equipment_id,
                        date=day,
                        time_slot_id=time_slot_id,
                        **fields
                    )
                    try:
                        self._block_slot(record, fields, result)
                    except (StoreUnavailable, BookingNotFound, SlotConflict) as e:
                        logger.warning(f"Could not block {key}: {e}")
                        result.failed.append({"key": key, "reason": e.message})

        logger.block_applied(
            block_type.value, len(result.created), len(result.overwritten), len(result.failed)
        )
        return result

    def _block_slot(self, record: BookingRecord, fields: dict, result: BlockResult) -> None:
        try:
            self.store.upsert_if_available_or_absent(record)
            result.created.append(record.id)
            return
        except SlotConflict:
            pass

        current = self.store.get_by_key(record.id)
        if current is None:
            # Released between the two calls
            self.store.upsert_if_available_or_absent(record)
            result.created.append(record.id)
            return

        if current.is_block:
            self.store.update_fields(record.id, fields, expected_status=BookingStatus.BLOCKED)
            result.created.append(record.id)
            return

        if self.settings.block_overwrite_policy == PRESERVE:
            result.skipped.append(record.id)
            return

        self.store.update_fields(
            record.id,
            dict(fields, uid=record.uid),
            expected_status=current.status
        )
        result.overwritten.append(current)
        logger.booking_displaced(current.id, current.status.value, current.user_email)

    # ------------------------------------------------------------------
    # Indefinite blocks
    # ------------------------------------------------------------------

    def block_indefinite(
        self,
        start: Union[date, str],
        equipment_or_all: int,
        reason: Optional[str] = None
    ) -> BlockResult:
        """Create the single synthetic record of an indefinite block."""
        start = slot_key.coerce_date(start)
        self._equipment_targets(equipment_or_all)

        record = BookingRecord(
            id=slot_key.indefinite_key(start, equipment_or_all),
            equipment_id=equipment_or_all,
            date=start,
            time_slot_id=ALL_SLOTS,
            status=BookingStatus.BLOCKED,
            timestamp=to_millis(self.clock()),
            blocked_reason=reason,
            block_type=BlockType.INDEFINITE,
            block_start_date=start,
        )
        self.store.insert(record)

        result = BlockResult(block_type=BlockType.INDEFINITE, created=[record.id])
        logger.block_applied(BlockType.INDEFINITE.value, 1, 0, 0)
        return result

    # ------------------------------------------------------------------
    # Release and listing
    # ------------------------------------------------------------------

    def unblock(self, key: str) -> BookingRecord:
        current = self.store.get_by_key(key)
        if current is None:
            raise BookingNotFound(f"Block {key} not found", key=key)
        if not current.is_block:
            raise OperationForbidden(f"{key} is not a block", key=key, status=current.status.value)

        if not self.store.delete(key, expected_uid=current.uid, expected_status=BookingStatus.BLOCKED):
            raise BookingNotFound(f"Block {key} not found", key=key)
        logger.log_with_context(
            logging.INFO,
            f"Block released: {key}",
            entity_type="block",
            entity_id=key,
            block_type=current.block_type.value if current.block_type else None
        )
        return current

    def list_blocks(
        self,
        block_type: Optional[BlockType] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None
    ) -> List[BookingRecord]:
        blocks = self.store.find_where(BookingFilter(
            statuses=[BookingStatus.BLOCKED],
            block_type=block_type,
        ))
        selected = []
        for block in blocks:
            if block.is_indefinite_block:
                # An indefinite block is listed for any window reaching its start
                if date_to is not None and block.block_start_date > date_to:
                    continue
            else:
                if date_from is not None and block.date < date_from:
                    continue
                if date_to is not None and block.date > date_to:
                    continue
            selected.append(block)
        return selected

