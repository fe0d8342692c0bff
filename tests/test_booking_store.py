"""
Tests for the booking store contract

Each test runs against InMemoryBookingStore and SqlAlchemyBookingStore.
"""

import pytest
from datetime import date
from unittest.mock import MagicMock
from sqlalchemy.exc import OperationalError

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from conftest import DAY, make_booking
from labreserve.models.booking import BookingStatus, BlockType
from labreserve.services.booking_store import SqlAlchemyBookingStore
from labreserve.services.errors import (
    BookingNotFound, InvalidArgument, SlotConflict, StoreUnavailable
)
from labreserve.services.records import BookingFilter


class TestReadWrite:

    def test_insert_then_get(self, store):
        """A stored record comes back with the same fields"""
        booking = make_booking(user_group="Geology")
        store.insert(booking)

        loaded = store.get_by_key(booking.id)
        assert loaded is not None
        assert loaded.status == BookingStatus.PENDING
        assert loaded.user_group == "Geology"
        assert loaded.date == DAY
        assert loaded.uid == booking.uid

    def test_get_missing_returns_none(self, store):
        assert store.get_by_key("2025-01-01-1-08:00") is None

    def test_insert_existing_key_conflicts(self, store):
        store.insert(make_booking())
        with pytest.raises(SlotConflict):
            store.insert(make_booking(email="other@lab.edu"))

    def test_delete_is_idempotent(self, store):
        """Deleting an absent key is a no-op"""
        booking = make_booking()
        store.insert(booking)
        assert store.delete(booking.id) is True
        assert store.delete(booking.id) is False
        assert store.get_by_key(booking.id) is None

    def test_conditional_delete_matches_booking(self, store):
        booking = make_booking()
        store.insert(booking)
        assert store.delete(booking.id, expected_uid=booking.uid, expected_status=BookingStatus.PENDING)
        assert store.get_by_key(booking.id) is None

    def test_conditional_delete_refuses_replaced_booking(self, store):
        """A record written over the key since it was read is left in place"""
        booking = make_booking()
        store.insert(booking)
        store.update_fields(booking.id, {"uid": "f" * 32, "status": BookingStatus.BLOCKED})

        with pytest.raises(SlotConflict):
            store.delete(booking.id, expected_uid=booking.uid)
        assert store.get_by_key(booking.id).status == BookingStatus.BLOCKED

    def test_conditional_delete_refuses_changed_status(self, store):
        booking = make_booking()
        store.insert(booking)
        store.update_fields(booking.id, {"status": BookingStatus.APPROVED})

        with pytest.raises(SlotConflict):
            store.delete(booking.id, expected_uid=booking.uid, expected_status=BookingStatus.PENDING)
        assert store.get_by_key(booking.id).status == BookingStatus.APPROVED

    def test_conditional_delete_of_absent_key(self, store):
        assert store.delete("2025-03-12-1-08:00", expected_uid="a" * 32) is False


class TestConditionalWrite:

    def test_upsert_into_empty_slot(self, store):
        booking = make_booking()
        store.upsert_if_available_or_absent(booking)
        assert store.get_by_key(booking.id).user_email == "ana@lab.edu"

    def test_upsert_replaces_available_record(self, store):
        """An 'available' record does not hold the slot"""
        store.insert(make_booking(status=BookingStatus.AVAILABLE, email=None, name=None))
        store.upsert_if_available_or_absent(make_booking(email="bo@lab.edu"))
        assert store.get_by_key(make_booking().id).user_email == "bo@lab.edu"

    @pytest.mark.parametrize("status", [BookingStatus.PENDING, BookingStatus.APPROVED, BookingStatus.BLOCKED])
    def test_upsert_refused_when_held(self, store, status):
        """Pending, approved and blocked occupants are never overwritten"""
        store.insert(make_booking(status=status))
        with pytest.raises(SlotConflict):
            store.upsert_if_available_or_absent(make_booking(email="bo@lab.edu"))
        assert store.get_by_key(make_booking().id).user_email == "ana@lab.edu"


class TestUpdateFields:

    def test_update_fields(self, store):
        booking = make_booking()
        store.insert(booking)
        updated = store.update_fields(booking.id, {"status": BookingStatus.APPROVED})
        assert updated.status == BookingStatus.APPROVED
        assert store.get_by_key(booking.id).status == BookingStatus.APPROVED

    def test_update_missing_raises_not_found(self, store):
        with pytest.raises(BookingNotFound):
            store.update_fields("2025-01-01-1-08:00", {"status": BookingStatus.APPROVED})

    def test_compare_and_swap_mismatch_conflicts(self, store):
        """expected_status guards against a concurrent transition"""
        booking = make_booking(status=BookingStatus.APPROVED)
        store.insert(booking)
        with pytest.raises(SlotConflict):
            store.update_fields(
                booking.id, {"status": BookingStatus.APPROVED},
                expected_status=BookingStatus.PENDING
            )

    def test_unknown_field_rejected(self, store):
        booking = make_booking()
        store.insert(booking)
        with pytest.raises(InvalidArgument):
            store.update_fields(booking.id, {"id": "elsewhere"})


class TestQueries:

    def test_find_where_filters_and_orders(self, store):
        store.insert(make_booking(equipment_id=2))
        store.insert(make_booking(equipment_id=1, time_slot_id="12:00"))
        store.insert(make_booking(equipment_id=1, email="bo@lab.edu", status=BookingStatus.APPROVED))

        found = store.find_where(BookingFilter(user_email="ana@lab.edu"))
        assert [b.equipment_id for b in found] == [1, 2]

        approved = store.find_where(BookingFilter(statuses=[BookingStatus.APPROVED]))
        assert [b.user_email for b in approved] == ["bo@lab.edu"]

    def test_date_bounds(self, store):
        store.insert(make_booking(on_date=date(2025, 3, 1)))
        store.insert(make_booking(on_date=date(2025, 3, 2)))
        store.insert(make_booking(on_date=date(2025, 3, 3)))

        found = store.find_where(BookingFilter(date_from=date(2025, 3, 2), date_to=date(2025, 3, 2)))
        assert [b.date for b in found] == [date(2025, 3, 2)]

    def test_count_with_timestamp_bound(self, store):
        store.insert(make_booking(timestamp=1000))
        store.insert(make_booking(equipment_id=2, timestamp=5000))
        assert store.count(BookingFilter(user_email="ana@lab.edu", timestamp_after=2000)) == 1

    def test_block_type_and_prefix_filters(self, store):
        store.insert(make_booking(
            status=BookingStatus.BLOCKED, email=None, name=None,
            block_type=BlockType.SINGLE, block_start_date=DAY
        ))
        store.insert(make_booking(equipment_id=2))

        blocks = store.find_where(BookingFilter(block_type=BlockType.SINGLE))
        assert len(blocks) == 1
        assert store.count(BookingFilter(key_prefix="2025-03-12-2")) == 1
        assert store.count(BookingFilter(user_bookings_only=True)) == 1


class TestTransientFailures:

    def test_operational_error_becomes_store_unavailable(self):
        """Connectivity failures surface as the transient error kind"""
        session = MagicMock()
        session.get.side_effect = OperationalError("SELECT", {}, Exception("connection lost"))
        store = SqlAlchemyBookingStore(lambda: session)

        with pytest.raises(StoreUnavailable):
            store.get_by_key("2025-01-01-1-08:00")

        session.rollback.assert_called_once()
        session.close.assert_called_once()
