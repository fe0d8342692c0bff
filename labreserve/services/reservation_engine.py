"""
Reservation Engine

Facade over the slot allocation components. Routers talk to this class
only; it owns the wiring of store, resolver, guards and coordinators for
one configuration.

All mutations are conditional writes against the store. Nothing read here
is cached between calls.
"""

import logging
import time
from datetime import date, datetime
from typing import Callable, Dict, List, Optional, Tuple, Union

from ..config import Settings
from ..models.booking import BookingStatus, BlockType
from . import slot_key
from .block_manager import BlockManager
from .booking_store import BookingStore
from .conflict_resolver import ConflictResolver
from .errors import (
    BookingNotFound, InvalidArgument, NotAuthorized, OperationForbidden,
    SlotConflict, StoreUnavailable
)
from .quota_guard import QuotaGuard, to_millis
from .records import (
    Actor, BlockResult, BookingDraft, BookingFilter, BookingRecord,
    RepairReport, Requester, SlotRequest, SlotState
)
from .relocation import RelocationCoordinator
from .repair import RepairService
from .staging import StagedMover
from .status_machine import StatusMachine
from .swap import SwapCoordinator
from ..utils.logging_config import get_logger

logger = get_logger(__name__)


class ReservationEngine:

    def __init__(
        self,
        store: BookingStore,
        settings: Settings,
        clock: Callable[[], datetime] = datetime.now,
        sleep: Callable[[float], None] = time.sleep
    ):
        self.store = store
        self.settings = settings
        self.clock = clock

        self.resolver = ConflictResolver(store)
        self.quota = QuotaGuard(store, settings, clock)
        self.status_machine = StatusMachine()
        self.mover = StagedMover(store, settings, sleep=sleep)
        self.relocation = RelocationCoordinator(store, self.resolver, self.mover)
        self.swapper = SwapCoordinator(store, self.mover)
        self.blocks = BlockManager(store, settings, clock)
        self.repairer = RepairService(store, self.mover)

    # ------------------------------------------------------------------
    # Validation helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _require_admin(actor: Actor, action: str) -> None:
        if not actor.is_admin:
            raise NotAuthorized(f"Only an administrator can {action}")

    def _check_coordinates(self, equipment_id: int, time_slot_id: str) -> None:
        slot_key.validate_equipment_id(equipment_id)
        slot_key.validate_time_slot_id(time_slot_id)
        if equipment_id not in self.settings.equipment_id_list:
            raise InvalidArgument(f"Unknown equipment id {equipment_id}", equipment_id=equipment_id)
        if time_slot_id not in self.settings.time_slot_list:
            raise InvalidArgument(f"Unknown time slot {time_slot_id}", time_slot_id=time_slot_id)

    def _check_free(self, equipment_id: int, on_date: date, time_slot_id: str) -> None:
        occupant = self.resolver.occupying_booking(equipment_id, on_date, time_slot_id)
        if occupant is None:
            return
        key = slot_key.derive(on_date, equipment_id, time_slot_id)
        if occupant.is_indefinite_block:
            raise SlotConflict(
                "This equipment is blocked indefinitely.",
                key=key, occupied_by=occupant.id
            )
        raise SlotConflict(
            "The selected slot and equipment are already taken.",
            key=key, occupied_by=occupant.id, status=occupant.status.value
        )

    def _compensate(self, written: List[BookingRecord]) -> None:
        for record in reversed(written):
            try:
                self.mover.release_source(record.id, expected=record)
            except SlotConflict:
                # Changed by an administrator since this call wrote it; theirs now
                logger.warning(f"Compensation skipped {record.id}: changed concurrently")

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def submit_request(
        self,
        requester: Requester,
        slots: List[SlotRequest],
        actor: Actor
    ) -> List[BookingRecord]:
        """
        Create one pending booking per requested slot, all or nothing.

        Quota and rate checks count the whole batch. If a slot is taken by
        a concurrent writer after the pre-check, the slots already written
        by this call are deleted again and SlotConflict is raised.
        """
        if not requester.name or not requester.name.strip():
            raise InvalidArgument("Name is required")
        if not requester.email or "@" not in requester.email:
            raise InvalidArgument("A valid e-mail address is required", email=requester.email)
        if not slots:
            raise InvalidArgument("Select at least one slot")

        seen = set()
        for slot in slots:
            self._check_coordinates(slot.equipment_id, slot.time_slot_id)
            key = slot_key.derive(slot.date, slot.equipment_id, slot.time_slot_id)
            if key in seen:
                raise InvalidArgument(f"Slot {key} was selected twice", key=key)
            seen.add(key)

        email = requester.email.strip().lower()
        self.quota.admit(email, len(slots), actor)

        for slot in slots:
            self._check_free(slot.equipment_id, slot_key.coerce_date(slot.date), slot.time_slot_id)

        timestamp = to_millis(self.clock())
        records = []
        for slot in slots:
            on_date = slot_key.coerce_date(slot.date)
            record = BookingRecord(
                id=slot_key.derive(on_date, slot.equipment_id, slot.time_slot_id),
                equipment_id=slot.equipment_id,
                date=on_date,
                time_slot_id=slot.time_slot_id,
                status=BookingStatus.PENDING,
                timestamp=timestamp,
                user_name=requester.name.strip(),
                user_email=email,
                user_group=requester.group,
            )
            self.status_machine.validate_creation(record, actor)
            records.append(record)

        written: List[BookingRecord] = []
        for record in records:
            try:
                self.store.upsert_if_available_or_absent(record)
            except (SlotConflict, StoreUnavailable):
                logger.warning(f"Batch submission for {email} failed at {record.id}, rolling back")
                self._compensate(written)
                raise
            written.append(record)

        for record in records:
            logger.booking_created(record.id, record.status.value, record.user_email)
        return records

    def create_booking(self, draft: BookingDraft, actor: Actor) -> BookingRecord:
        """Create a single record; administrators may create approved and blocked ones."""
        on_date = slot_key.coerce_date(draft.date)
        self._check_coordinates(draft.equipment_id, draft.time_slot_id)

        status = BookingStatus(draft.status)
        is_block = status == BookingStatus.BLOCKED
        email = draft.user_email.strip().lower() if draft.user_email else None

        record = BookingRecord(
            id=slot_key.derive(on_date, draft.equipment_id, draft.time_slot_id),
            equipment_id=draft.equipment_id,
            date=on_date,
            time_slot_id=draft.time_slot_id,
            status=status,
            timestamp=to_millis(self.clock()),
            user_name=None if is_block else draft.user_name,
            user_email=None if is_block else email,
            user_group=None if is_block else draft.user_group,
            blocked_reason=draft.blocked_reason,
            block_type=BlockType.SINGLE if is_block else None,
            block_start_date=on_date if is_block else None,
        )
        self.status_machine.validate_creation(record, actor)

        if not is_block:
            if not record.user_name or not record.user_email:
                raise InvalidArgument("Name and e-mail are required for a booking")
            self.quota.admit(record.user_email, 1, actor)

        self._check_free(record.equipment_id, on_date, record.time_slot_id)
        self.store.upsert_if_available_or_absent(record)
        logger.booking_created(record.id, record.status.value, record.user_email)
        return record

    # ------------------------------------------------------------------
    # Status and deletion
    # ------------------------------------------------------------------

    def change_status(
        self,
        key: str,
        status: Union[BookingStatus, str],
        actor: Actor
    ) -> Optional[BookingRecord]:
        """
        Apply a status transition. Returns the updated record, or None when
        the transition released the slot.
        """
        current = self.get_booking(key)
        transition = self.status_machine.apply(current, BookingStatus(status), actor)

        if transition.is_noop:
            return current

        if transition.delete:
            # Conditional on the record read above, so a concurrent block is never released
            if not self.mover.release_source(key, expected=current):
                raise BookingNotFound(f"Booking {key} not found", key=key)
            logger.booking_status_changed(key, current.status.value, BookingStatus.AVAILABLE.value)
            return None

        updated = self.store.update_fields(
            key, {"status": transition.status}, expected_status=current.status
        )
        logger.booking_status_changed(key, current.status.value, updated.status.value)
        return updated

    def delete_booking(self, key: str, actor: Actor) -> BookingRecord:
        self._require_admin(actor, "delete a booking")
        current = self.get_booking(key)
        if current.is_block:
            raise OperationForbidden("Blocked slots are released by unblocking them", key=key)
        if not self.mover.release_source(key, expected=current):
            raise BookingNotFound(f"Booking {key} not found", key=key)
        logger.log_with_context(
            logging.INFO, f"Booking deleted: {key}", entity_type="booking", entity_id=key,
            status=current.status.value
        )
        return current

    # ------------------------------------------------------------------
    # Multi-key operations
    # ------------------------------------------------------------------

    def relocate(
        self,
        key: str,
        new_date: Union[date, str],
        new_equipment_id: int,
        new_time_slot_id: str,
        actor: Actor
    ) -> str:
        self._require_admin(actor, "move a booking")
        self._check_coordinates(new_equipment_id, new_time_slot_id)
        return self.relocation.relocate(key, new_date, new_equipment_id, new_time_slot_id)

    def swap(self, first_key: str, second_key: str, actor: Actor) -> Tuple[str, str]:
        self._require_admin(actor, "swap bookings")
        return self.swapper.swap(first_key, second_key)

    # ------------------------------------------------------------------
    # Blocks
    # ------------------------------------------------------------------

    def block_single(
        self,
        on_date: Union[date, str],
        equipment_or_all: int,
        reason: Optional[str],
        actor: Actor
    ) -> BlockResult:
        self._require_admin(actor, "block slots")
        return self.blocks.block_single(on_date, equipment_or_all, reason)

    def block_range(
        self,
        start: Union[date, str],
        end: Union[date, str],
        equipment_or_all: int,
        reason: Optional[str],
        actor: Actor
    ) -> BlockResult:
        self._require_admin(actor, "block slots")
        return self.blocks.block_range(start, end, equipment_or_all, reason)

    def block_indefinite(
        self,
        start: Union[date, str],
        equipment_or_all: int,
        reason: Optional[str],
        actor: Actor
    ) -> BlockResult:
        self._require_admin(actor, "block slots")
        return self.blocks.block_indefinite(start, equipment_or_all, reason)

    def unblock(self, key: str, actor: Actor) -> BookingRecord:
        self._require_admin(actor, "unblock slots")
        return self.blocks.unblock(key)

    def list_blocks(
        self,
        block_type: Optional[BlockType] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None
    ) -> List[BookingRecord]:
        return self.blocks.list_blocks(block_type, date_from, date_to)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_booking(self, key: str) -> BookingRecord:
        booking = self.store.get_by_key(key)
        if booking is None:
            raise BookingNotFound(f"Booking {key} not found", key=key)
        return booking

    def list_bookings(self, predicate: Optional[BookingFilter] = None) -> List[BookingRecord]:
        return self.store.find_where(predicate or BookingFilter())

    def day_occupancy(self, on_date: Union[date, str]) -> Dict[str, SlotState]:
        return self.resolver.day_occupancy(
            slot_key.coerce_date(on_date),
            self.settings.equipment_id_list,
            self.settings.time_slot_list,
        )

    def notification_recipients(self) -> List[str]:
        """Sorted unique e-mails of everyone holding a pending or approved booking."""
        bookings = self.store.find_where(BookingFilter(
            statuses=[BookingStatus.PENDING, BookingStatus.APPROVED],
            user_bookings_only=True,
        ))
        return sorted({b.user_email for b in bookings if b.user_email})

    def repair(self) -> RepairReport:
        return self.repairer.reconcile()
