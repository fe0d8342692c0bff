"""
Tests for relocating bookings
"""

import pytest
from datetime import timedelta
from unittest.mock import patch

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from conftest import ADMIN, DAY, USER, make_booking
from labreserve.models.booking import BlockType, BookingStatus
from labreserve.services import slot_key
from labreserve.services.errors import (
    BookingNotFound, NotAuthorized, OperationForbidden, SlotConflict, StoreUnavailable
)
from labreserve.services.records import BookingFilter


class TestRelocate:

    def test_moves_to_free_slot(self, engine, store):
        """The record is renamed: new key present, old key gone"""
        booking = make_booking(status=BookingStatus.APPROVED)
        store.insert(booking)

        new_key = engine.relocate(booking.id, DAY, 2, "12:00", ADMIN)

        assert new_key == "2025-03-12-2-12:00"
        assert store.get_by_key(booking.id) is None
        moved = store.get_by_key(new_key)
        assert moved.equipment_id == 2
        assert moved.time_slot_id == "12:00"
        assert moved.user_email == booking.user_email
        assert moved.status == BookingStatus.APPROVED
        assert moved.uid == booking.uid
        assert moved.moved_from is None

    def test_same_coordinates_is_in_place(self, engine, store):
        booking = make_booking()
        store.insert(booking)
        assert engine.relocate(booking.id, DAY, 1, "08:00", ADMIN) == booking.id
        assert store.get_by_key(booking.id) is not None

    def test_occupied_target_conflicts(self, engine, store):
        """Neither record changes when the target is taken"""
        booking = make_booking()
        other = make_booking(equipment_id=2, email="bo@lab.edu")
        store.insert(booking)
        store.insert(other)

        with pytest.raises(SlotConflict):
            engine.relocate(booking.id, DAY, 2, "08:00", ADMIN)

        assert store.get_by_key(booking.id).user_email == "ana@lab.edu"
        assert store.get_by_key(other.id).user_email == "bo@lab.edu"

    def test_indefinitely_blocked_target_conflicts(self, engine, store):
        booking = make_booking()
        store.insert(booking)
        engine.block_indefinite(DAY, 4, "broken lamp", ADMIN)

        with pytest.raises(SlotConflict):
            engine.relocate(booking.id, DAY + timedelta(days=7), 4, "08:00", ADMIN)

    def test_missing_booking(self, engine):
        with pytest.raises(BookingNotFound):
            engine.relocate("2025-03-12-1-08:00", DAY, 2, "08:00", ADMIN)

    def test_indefinite_block_cannot_move(self, engine):
        key = engine.block_indefinite(DAY, 4, None, ADMIN).created[0]
        with pytest.raises(OperationForbidden):
            engine.relocate(key, DAY, 5, "08:00", ADMIN)

    def test_users_cannot_relocate(self, engine, store):
        booking = make_booking()
        store.insert(booking)
        with pytest.raises(NotAuthorized):
            engine.relocate(booking.id, DAY, 2, "08:00", USER)

    def test_cleanup_failure_leaves_marked_record(self, engine, store):
        """
        If deleting the old key keeps failing, the new record stays marked
        with moved_from so the repair pass can finish the move.
        """
        booking = make_booking()
        store.insert(booking)

        with patch.object(store, "delete", side_effect=StoreUnavailable("down")):
            with pytest.raises(StoreUnavailable):
                engine.relocate(booking.id, DAY, 2, "08:00", ADMIN)

        moved = store.get_by_key("2025-03-12-2-08:00")
        assert moved.moved_from == booking.id
        assert store.get_by_key(booking.id) is not None

        report = engine.repair()
        assert report.rolled_forward == ["2025-03-12-2-08:00"]
        assert store.get_by_key(booking.id) is None
        assert store.get_by_key("2025-03-12-2-08:00").moved_from is None

    def test_single_block_moves_with_its_start_date(self, engine, store):
        key = slot_key.derive(DAY, 3, "08:00")
        assert key in engine.block_single(DAY, 3, "service", ADMIN).created
        next_day = DAY + timedelta(days=1)

        new_key = engine.relocate(key, next_day, 3, "08:00", ADMIN)

        moved = store.get_by_key(new_key)
        assert moved.status == BookingStatus.BLOCKED
        assert moved.block_type == BlockType.SINGLE
        assert moved.date == next_day
        assert moved.block_start_date == next_day


class TestRelocateRaces:
    """Writers landing on the old key while the booking is being moved"""

    def test_approval_during_move_is_kept(self, engine, store):
        """The old record is not deleted once it stopped matching what was copied"""
        booking = make_booking()
        store.insert(booking)
        real_upsert = store.upsert_if_available_or_absent

        def approved_meanwhile(record):
            store.update_fields(booking.id, {"status": BookingStatus.APPROVED})
            return real_upsert(record)

        with patch.object(store, "upsert_if_available_or_absent", side_effect=approved_meanwhile):
            with pytest.raises(SlotConflict):
                engine.relocate(booking.id, DAY, 2, "08:00", ADMIN)

        assert store.get_by_key(booking.id).status == BookingStatus.APPROVED
        assert store.get_by_key("2025-03-12-2-08:00") is None

    def test_block_during_move_is_kept(self, engine, store):
        booking = make_booking()
        store.insert(booking)
        real_upsert = store.upsert_if_available_or_absent

        def blocked_meanwhile(record):
            moved = real_upsert(record)
            if record.id == "2025-03-12-2-08:00":
                store.update_fields(booking.id, {"uid": "b" * 32, "status": BookingStatus.BLOCKED})
            return moved

        with patch.object(store, "upsert_if_available_or_absent", side_effect=blocked_meanwhile):
            with pytest.raises(SlotConflict):
                engine.relocate(booking.id, DAY, 2, "08:00", ADMIN)

        assert store.get_by_key(booking.id).status == BookingStatus.BLOCKED
        assert store.get_by_key("2025-03-12-2-08:00") is None

    def test_rejection_during_move_is_not_undone(self, engine, store):
        """A booking released mid-move does not reappear at the new key"""
        booking = make_booking()
        store.insert(booking)
        real_upsert = store.upsert_if_available_or_absent

        def rejected_meanwhile(record):
            store.delete(booking.id)
            return real_upsert(record)

        with patch.object(store, "upsert_if_available_or_absent", side_effect=rejected_meanwhile):
            with pytest.raises(SlotConflict):
                engine.relocate(booking.id, DAY, 2, "08:00", ADMIN)

        assert store.count(BookingFilter()) == 0
