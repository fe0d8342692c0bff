"""
Relocation Coordinator

Moves a booking to new (date, equipment, slot) coordinates. The record's
identity is re-derived from the new coordinates, so a relocation is a
rename: write the new key, delete the old one.
"""

from datetime import date
from typing import Union

from ..models.booking import BlockType
from . import slot_key
from .booking_store import BookingStore
from .conflict_resolver import ConflictResolver
from .errors import BookingNotFound, OperationForbidden, SlotConflict
from .staging import StagedMover
from ..utils.logging_config import get_logger

logger = get_logger(__name__)


class RelocationCoordinator:

    def __init__(self, store: BookingStore, resolver: ConflictResolver, mover: StagedMover):
        self.store = store
        self.resolver = resolver
        self.mover = mover

    def relocate(
        self,
        old_key: str,
        new_date: Union[date, str],
        new_equipment_id: int,
        new_time_slot_id: str
    ) -> str:
        """
        Move the booking at old_key and return its new key.

        Raises:
            BookingNotFound: nothing stored at old_key
            OperationForbidden: indefinite blocks and in-flight temp records
            SlotConflict: the new coordinates are occupied
        """
        booking = self.store.get_by_key(old_key)
        if booking is None:
            raise BookingNotFound(f"Booking {old_key} not found", key=old_key)
        if booking.is_indefinite_block or slot_key.is_temp_key(old_key):
            raise OperationForbidden(f"Booking {old_key} cannot be relocated", key=old_key)

        new_date = slot_key.coerce_date(new_date)
        new_key = slot_key.derive(new_date, new_equipment_id, new_time_slot_id)

        if new_key == old_key:
            self.store.update_fields(old_key, {
                "date": new_date,
                "equipment_id": new_equipment_id,
                "time_slot_id": new_time_slot_id,
            })
            return old_key

        occupant = self.resolver.occupying_booking(new_equipment_id, new_date, new_time_slot_id)
        if occupant is not None:
            raise SlotConflict(
                "The selected slot and equipment are already taken.",
                key=new_key, occupied_by=occupant.id
            )

        if booking.is_block and booking.block_type == BlockType.SINGLE:
            # A single block starts on the day it covers
            booking = booking.evolve(block_start_date=new_date)

        # The conditional write re-checks direct occupancy atomically
        self.mover.move(booking, new_key, new_date, new_equipment_id, new_time_slot_id)
        logger.booking_moved(old_key, new_key)
        return new_key
