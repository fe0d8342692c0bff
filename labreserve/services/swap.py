"""
Swap Coordinator

Exchanges the coordinates of two bookings. Each booking adopts the other's
(date, equipment, slot) and therefore the other's key. Both target keys are
held by the two bookings being swapped, so the exchange goes through a
temporary key:

    1. first  -> tmp              (tmp already carries second's coordinates)
    2. second -> second_new_key   (first's old key, now free)
    3. tmp    -> first_new_key    (second's old key, now free)

Step 1 only touches a key nobody else can target. Steps 2 and 3 write real
slot keys; if one fails it is not retried; SwapInterrupted is raised and
the repair pass reconciles the temp record.
"""

from typing import Tuple

from ..models.booking import BookingStatus
from . import slot_key
from .booking_store import BookingStore
from .errors import (
    BookingNotFound, InvalidArgument, OperationForbidden, ReservationError,
    SlotConflict, SwapInterrupted
)
from .records import BookingRecord
from .staging import StagedMover
from ..utils.logging_config import get_logger

logger = get_logger(__name__)


class SwapCoordinator:

    def __init__(self, store: BookingStore, mover: StagedMover):
        self.store = store
        self.mover = mover

    def _load(self, key: str) -> BookingRecord:
        booking = self.store.get_by_key(key)
        if booking is None:
            raise BookingNotFound(f"Booking {key} not found", key=key)
        return booking

    def _check_collisions(self, first: BookingRecord, second: BookingRecord, *targets: str) -> None:
        swapped = (first.id, second.id)
        for target in targets:
            if target in swapped:
                continue
            other = self.store.get_by_key(target)
            if other is not None and other.status != BookingStatus.AVAILABLE:
                raise SlotConflict(
                    "The swap would collide with another booking.",
                    key=target, occupied_by=other.id
                )

    def swap(self, first_key: str, second_key: str) -> Tuple[str, str]:
        """
        Swap two bookings and return (first_new_key, second_new_key).

        Raises:
            InvalidArgument: both keys are the same
            BookingNotFound: either booking is missing
            OperationForbidden: either booking is a block
            SlotConflict: a third record occupies a target key
            SwapInterrupted: a step after the first one failed
        """
        if first_key == second_key:
            raise InvalidArgument("Select two different bookings", key=first_key)

        first = self._load(first_key)
        second = self._load(second_key)

        if first.is_block or second.is_block:
            raise OperationForbidden(
                "Blocked slots cannot be swapped",
                first_status=first.status.value, second_status=second.status.value
            )
        if slot_key.is_temp_key(first_key) or slot_key.is_temp_key(second_key):
            raise OperationForbidden("A swap is already in progress for this booking")

        first_new_key = slot_key.derive(second.date, second.equipment_id, second.time_slot_id)
        second_new_key = slot_key.derive(first.date, first.equipment_id, first.time_slot_id)

        self._check_collisions(first, second, first_new_key, second_new_key)

        tmp_key = slot_key.temp_key(first_key)

        # Step 1: park the first booking under the temp key
        staged = self.mover.move(
            first, tmp_key, second.date, second.equipment_id, second.time_slot_id,
            keep_marker=True
        )

        # Step 2: second booking into the first booking's coordinates
        try:
            self.mover.move(second, second_new_key, first.date, first.equipment_id, first.time_slot_id)
        except ReservationError as e:
            logger.error(f"Swap {first_key} <-> {second_key} interrupted at step 2: {e}")
            raise SwapInterrupted(
                "Swap interrupted; run the repair pass to finish it",
                temp_key=tmp_key, step=2
            ) from e

        # Step 3: parked booking into the second booking's coordinates
        try:
            self.mover.move(staged, first_new_key, second.date, second.equipment_id, second.time_slot_id)
        except ReservationError as e:
            logger.error(f"Swap {first_key} <-> {second_key} interrupted at step 3: {e}")
            raise SwapInterrupted(
                "Swap interrupted; run the repair pass to finish it",
                temp_key=tmp_key, step=3
            ) from e

        logger.swap_completed(first_new_key, second_new_key)
        return first_new_key, second_new_key
