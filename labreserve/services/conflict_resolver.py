"""
Conflict Resolver

Decides whether a slot is occupied. Occupancy is a projection over two
kinds of records:
1. indefinite blocks (one synthetic record per block, highest precedence)
2. the record stored at the slot key, when its status is not `available`

Materialized single/range blocks are ordinary records at slot keys, so an
indefinite block and a materialized block on the same slot are independent
restrictions: either one occupies it.

Nothing is cached: every call reads the store again.
"""

import logging
from datetime import date
from typing import Dict, List, Optional

from ..models.booking import BookingStatus, BlockType
from . import slot_key
from .booking_store import BookingStore
from .records import (
    ALL_EQUIPMENT, BookingFilter, BookingRecord, Empty, Occupied, SlotState
)

logger = logging.getLogger(__name__)


class ConflictResolver:

    def __init__(self, store: BookingStore):
        self.store = store

    def indefinite_blocks(self) -> List[BookingRecord]:
        return self.store.find_where(BookingFilter(
            statuses=[BookingStatus.BLOCKED],
            block_type=BlockType.INDEFINITE,
        ))

    @staticmethod
    def block_covers(block: BookingRecord, equipment_id: int, on_date: date) -> bool:
        start = block.block_start_date or block.date
        covers_equipment = block.equipment_id in (ALL_EQUIPMENT, equipment_id)
        return covers_equipment and on_date >= start

    def indefinite_block_for(self, equipment_id: int, on_date: date) -> Optional[BookingRecord]:
        """Earliest-starting indefinite block covering the equipment on that date."""
        on_date = slot_key.coerce_date(on_date)
        for block in self.indefinite_blocks():
            if self.block_covers(block, equipment_id, on_date):
                return block
        return None

    def occupying_booking(
        self,
        equipment_id: int,
        on_date: date,
        time_slot_id: str
    ) -> Optional[BookingRecord]:
        on_date = slot_key.coerce_date(on_date)

        block = self.indefinite_block_for(equipment_id, on_date)
        if block is not None:
            return block

        current = self.store.get_by_key(slot_key.derive(on_date, equipment_id, time_slot_id))
        if current is not None and current.status != BookingStatus.AVAILABLE:
            return current
        return None

    def is_occupied(self, equipment_id: int, on_date: date, time_slot_id: str) -> bool:
        return self.occupying_booking(equipment_id, on_date, time_slot_id) is not None

    def slot_state(self, equipment_id: int, on_date: date, time_slot_id: str) -> SlotState:
        key = slot_key.derive(on_date, equipment_id, time_slot_id)
        occupant = self.occupying_booking(equipment_id, on_date, time_slot_id)
        if occupant is None:
            return Empty(key=key)
        return Occupied(key=key, booking=occupant)

    def day_occupancy(
        self,
        on_date: date,
        equipment_ids: List[int],
        time_slot_ids: List[str]
    ) -> Dict[str, SlotState]:
        """
        Slot states for every equipment x slot of a day.

        Reads the day's records and the indefinite blocks once, then projects
        them, instead of issuing one lookup per slot.
        """
        on_date = slot_key.coerce_date(on_date)
        blocks = self.indefinite_blocks()
        records = {
            r.id: r for r in self.store.find_where(BookingFilter(date_from=on_date, date_to=on_date))
        }

        grid: Dict[str, SlotState] = {}
        for equipment_id in equipment_ids:
            block = next((b for b in blocks if self.block_covers(b, equipment_id, on_date)), None)
            for time_slot_id in time_slot_ids:
                key = slot_key.derive(on_date, equipment_id, time_slot_id)
                occupant = block
                if occupant is None:
                    current = records.get(key)
                    if current is not None and current.status != BookingStatus.AVAILABLE:
                        occupant = current
                grid[key] = Occupied(key=key, booking=occupant) if occupant else Empty(key=key)
        return grid
