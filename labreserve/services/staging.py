"""
Staged moves of a record from one key to another.

A move is three store calls:
1. conditional write of the target, marked with moved_from = source key
2. delete of the source, conditional on it still holding the same booking
   in the same status
3. clearing of the marker

Only step 1 can change who owns a slot and it is never retried. Steps 2
and 3 are idempotent and retried on transient failures. A crash between
steps leaves a marked record the repair pass knows how to finish.

If step 2 finds the source changed or gone after it was read (approved,
blocked, rejected), the copy written in step 1 is stale: it is deleted again and
SlotConflict is raised, leaving the source untouched.
"""

import logging
import time
from datetime import date
from typing import Callable, Optional

from ..config import Settings
from ..utils.retry import retry_idempotent
from .booking_store import BookingStore
from .errors import BookingNotFound, SlotConflict
from .records import BookingRecord

logger = logging.getLogger(__name__)


class StagedMover:

    def __init__(self, store: BookingStore, settings: Settings, sleep: Callable[[float], None] = time.sleep):
        self.store = store
        self.settings = settings
        self.sleep = sleep

    def retry(self, operation, description: str):
        return retry_idempotent(
            operation,
            description,
            attempts=self.settings.store_retry_attempts,
            base_delay=self.settings.store_retry_base_delay,
            sleep=self.sleep,
        )

    def write_target(
        self,
        record: BookingRecord,
        target_key: str,
        target_date: date,
        equipment_id: int,
        time_slot_id: str
    ) -> BookingRecord:
        target = record.evolve(
            id=target_key,
            date=target_date,
            equipment_id=equipment_id,
            time_slot_id=time_slot_id,
            moved_from=record.id,
        )
        return self.store.upsert_if_available_or_absent(target)

    def release_source(self, source_key: str, expected: Optional[BookingRecord] = None) -> bool:
        """
        Delete the record at source_key.

        With `expected`, only that booking in that status is deleted;
        anything else raises SlotConflict.
        """
        expected_uid = expected.uid if expected is not None else None
        expected_status = expected.status if expected is not None else None
        return self.retry(
            lambda: self.store.delete(source_key, expected_uid=expected_uid, expected_status=expected_status),
            f"delete {source_key}"
        )

    def clear_marker(self, key: str) -> None:
        try:
            self.retry(lambda: self.store.update_fields(key, {"moved_from": None}), f"clear marker on {key}")
        except BookingNotFound:
            # Deleted by someone else after the move landed
            logger.info(f"Moved record {key} disappeared before its marker was cleared")

    def _release_moved_source(self, record: BookingRecord) -> None:
        attempts = []

        def delete_source():
            attempts.append(record.id)
            deleted = self.store.delete(record.id, expected_uid=record.uid, expected_status=record.status)
            # Gone on the first try: released concurrently, the copy must not resurrect it.
            # Gone on a retry: an earlier attempt committed before failing.
            if not deleted and len(attempts) == 1:
                raise SlotConflict(f"Booking {record.id} was released during the move", key=record.id)
            return deleted

        self.retry(delete_source, f"delete {record.id}")

    def move(
        self,
        record: BookingRecord,
        target_key: str,
        target_date: date,
        equipment_id: int,
        time_slot_id: str,
        keep_marker: bool = False
    ) -> BookingRecord:
        moved = self.write_target(record, target_key, target_date, equipment_id, time_slot_id)
        try:
            self._release_moved_source(record)
        except SlotConflict:
            logger.warning(f"Source {record.id} changed during the move to {target_key}, undoing the copy")
            self.release_source(target_key, expected=moved)
            raise
        if keep_marker:
            return moved
        self.clear_marker(target_key)
        return moved.evolve(moved_from=None)
