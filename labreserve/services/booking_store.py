"""
Booking Store

Persistence contract consumed by the reservation engine, plus two
implementations:
- SqlAlchemyBookingStore: one session and one commit per call
- InMemoryBookingStore: lock-guarded dict for tests and isolated instances

Every operation is atomic on its own. Multi-step sequencing is the
caller's job (see relocation, swap and repair services).
"""

import abc
import logging
import threading
from contextlib import contextmanager
from dataclasses import replace
from datetime import datetime
from typing import Any, Dict, Iterator, List, Optional

from sqlalchemy import func, update, delete as sql_delete
from sqlalchemy.exc import (
    IntegrityError, OperationalError, InterfaceError, DisconnectionError,
    TimeoutError as PoolTimeoutError
)
from sqlalchemy.orm import Session, sessionmaker

from ..models.booking import Booking, BookingStatus, BlockType
from ..utils.db_helpers import dialect_insert, supports_on_conflict, acquire_row_lock
from .errors import BookingNotFound, SlotConflict, StoreUnavailable, InvalidArgument
from .records import BookingRecord, BookingFilter

logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = {
    "equipment_id", "date", "time_slot_id", "status",
    "user_name", "user_email", "user_group",
    "blocked_reason", "block_type", "block_start_date", "block_end_date",
    "timestamp", "moved_from", "uid",
}


def _check_fields(fields: Dict[str, Any]) -> None:
    unknown = set(fields) - UPDATABLE_FIELDS
    if unknown:
        raise InvalidArgument(f"Fields cannot be updated: {sorted(unknown)}", fields=sorted(unknown))


def _check_expected(
    current: BookingRecord,
    expected_uid: Optional[str],
    expected_status: Optional[BookingStatus]
) -> None:
    if expected_uid is not None and current.uid != expected_uid:
        raise SlotConflict(
            f"Booking {current.id} was replaced concurrently",
            key=current.id, status=current.status.value
        )
    if expected_status is not None and current.status != BookingStatus(expected_status):
        raise SlotConflict(
            f"Booking {current.id} changed concurrently",
            key=current.id, status=current.status.value
        )


def _sort_key(booking: BookingRecord):
    return booking.date, booking.equipment_id, booking.time_slot_id, booking.id


class BookingStore(abc.ABC):
    """Read/write contract the engine requires from the record store."""

    @abc.abstractmethod
    def get_by_key(self, key: str) -> Optional[BookingRecord]:
        """Return the record stored at key, or None."""

    @abc.abstractmethod
    def find_where(self, predicate: BookingFilter) -> List[BookingRecord]:
        """Return every record matching the predicate, ordered by coordinates."""

    @abc.abstractmethod
    def insert(self, booking: BookingRecord) -> BookingRecord:
        """Insert a record. SlotConflict if the key exists."""

    @abc.abstractmethod
    def upsert_if_available_or_absent(self, booking: BookingRecord) -> BookingRecord:
        """
        Write the record if the key is free or holds an `available` record.
        SlotConflict if the current occupant has any other status.
        """

    @abc.abstractmethod
    def update_fields(
        self,
        key: str,
        fields: Dict[str, Any],
        expected_status: Optional[BookingStatus] = None
    ) -> BookingRecord:
        """
        Update fields of the record at key.
        BookingNotFound if absent; SlotConflict if expected_status no longer holds.
        """

    @abc.abstractmethod
    def delete(
        self,
        key: str,
        expected_uid: Optional[str] = None,
        expected_status: Optional[BookingStatus] = None
    ) -> bool:
        """
        Delete the record at key. No-op (False) if absent.
        SlotConflict if the record no longer has expected_uid / expected_status.
        """

    @abc.abstractmethod
    def count(self, predicate: BookingFilter) -> int:
        """Number of records matching the predicate."""


class InMemoryBookingStore(BookingStore):
    """Dict-backed store. Safe for concurrent threads within one process."""

    def __init__(self, records: Optional[List[BookingRecord]] = None):
        self._records: Dict[str, BookingRecord] = {}
        self._lock = threading.RLock()
        for record in records or []:
            self._records[record.id] = replace(record)

    def get_by_key(self, key: str) -> Optional[BookingRecord]:
        with self._lock:
            record = self._records.get(key)
            return replace(record) if record else None

    def find_where(self, predicate: BookingFilter) -> List[BookingRecord]:
        with self._lock:
            matches = [replace(r) for r in self._records.values() if predicate.matches(r)]
        return sorted(matches, key=_sort_key)

    def insert(self, booking: BookingRecord) -> BookingRecord:
        with self._lock:
            if booking.id in self._records:
                raise SlotConflict(f"Slot {booking.id} is already taken", key=booking.id)
            self._records[booking.id] = replace(booking)
            return replace(booking)

    def upsert_if_available_or_absent(self, booking: BookingRecord) -> BookingRecord:
        with self._lock:
            current = self._records.get(booking.id)
            if current is not None and current.status != BookingStatus.AVAILABLE:
                raise SlotConflict(
                    f"Slot {booking.id} is already taken",
                    key=booking.id, status=current.status.value
                )
            self._records[booking.id] = replace(booking)
            return replace(booking)

    def update_fields(
        self,
        key: str,
        fields: Dict[str, Any],
        expected_status: Optional[BookingStatus] = None
    ) -> BookingRecord:
        _check_fields(fields)
        with self._lock:
            current = self._records.get(key)
            if current is None:
                raise BookingNotFound(f"Booking {key} not found", key=key)
            if expected_status is not None and current.status != BookingStatus(expected_status):
                raise SlotConflict(
                    f"Booking {key} changed concurrently",
                    key=key, status=current.status.value
                )
            updated = replace(current, **fields)
            self._records[key] = updated
            return replace(updated)

    def delete(
        self,
        key: str,
        expected_uid: Optional[str] = None,
        expected_status: Optional[BookingStatus] = None
    ) -> bool:
        with self._lock:
            current = self._records.get(key)
            if current is None:
                return False
            _check_expected(current, expected_uid, expected_status)
            del self._records[key]
            return True

    def count(self, predicate: BookingFilter) -> int:
        with self._lock:
            return sum(1 for r in self._records.values() if predicate.matches(r))


class SqlAlchemyBookingStore(BookingStore):
    """
    Store backed by the `bookings` table.

    The conditional write is a single INSERT ... ON CONFLICT DO UPDATE
    WHERE status = 'available' on PostgreSQL and SQLite; other dialects
    fall back to a row lock inside one transaction.
    """

    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    # ------------------------------------------------------------------
    # Plumbing
    # ------------------------------------------------------------------

    @contextmanager
    def _session(self) -> Iterator[Session]:
        db = self.session_factory()
        try:
            yield db
            db.commit()
        except (OperationalError, InterfaceError, DisconnectionError, PoolTimeoutError) as e:
            db.rollback()
            logger.warning(f"Store unavailable: {e}")
            raise StoreUnavailable("Booking store unavailable, try again", reason=str(e)[:200])
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    @staticmethod
    def _to_record(row: Booking) -> BookingRecord:
        return BookingRecord(
            id=row.id,
            equipment_id=row.equipment_id,
            date=row.date,
            time_slot_id=row.time_slot_id,
            status=BookingStatus(row.status),
            timestamp=row.timestamp,
            user_name=row.user_name,
            user_email=row.user_email,
            user_group=row.user_group,
            blocked_reason=row.blocked_reason,
            block_type=BlockType(row.block_type) if row.block_type else None,
            block_start_date=row.block_start_date,
            block_end_date=row.block_end_date,
            moved_from=row.moved_from,
            uid=row.uid,
        )

    @staticmethod
    def _column_values(fields: Dict[str, Any]) -> Dict[str, Any]:
        values = {}
        for name, value in fields.items():
            if isinstance(value, (BookingStatus, BlockType)):
                value = value.value
            values[name] = value
        return values

    def _row_values(self, booking: BookingRecord) -> Dict[str, Any]:
        values = self._column_values(booking.to_dict())
        values["date"] = booking.date
        values["block_start_date"] = booking.block_start_date
        values["block_end_date"] = booking.block_end_date
        return values

    def _apply_filter(self, query, predicate: BookingFilter):
        if predicate.user_email is not None:
            query = query.filter(Booking.user_email == predicate.user_email)
        statuses = predicate.status_values()
        if statuses is not None:
            query = query.filter(Booking.status.in_(statuses))
        if predicate.block_type is not None:
            query = query.filter(Booking.block_type == BlockType(predicate.block_type).value)
        if predicate.equipment_id is not None:
            query = query.filter(Booking.equipment_id == predicate.equipment_id)
        if predicate.date_from is not None:
            query = query.filter(Booking.date >= predicate.date_from)
        if predicate.date_to is not None:
            query = query.filter(Booking.date <= predicate.date_to)
        if predicate.timestamp_after is not None:
            query = query.filter(Booking.timestamp > predicate.timestamp_after)
        if predicate.user_bookings_only:
            query = query.filter(Booking.user_name.isnot(None), Booking.user_name != "")
        if predicate.staged_only:
            query = query.filter(Booking.moved_from.isnot(None))
        if predicate.key_prefix is not None:
            query = query.filter(Booking.id.startswith(predicate.key_prefix, autoescape=True))
        return query

    # ------------------------------------------------------------------
    # Contract
    # ------------------------------------------------------------------

    def get_by_key(self, key: str) -> Optional[BookingRecord]:
        with self._session() as db:
            row = db.get(Booking, key)
            return self._to_record(row) if row else None

    def find_where(self, predicate: BookingFilter) -> List[BookingRecord]:
        with self._session() as db:
            query = self._apply_filter(db.query(Booking), predicate)
            rows = query.order_by(
                Booking.date, Booking.equipment_id, Booking.time_slot_id, Booking.id
            ).all()
            return [self._to_record(row) for row in rows]

    def insert(self, booking: BookingRecord) -> BookingRecord:
        try:
            with self._session() as db:
                db.add(Booking(**self._row_values(booking)))
                db.flush()
        except IntegrityError:
            raise SlotConflict(f"Slot {booking.id} is already taken", key=booking.id)
        return booking

    def upsert_if_available_or_absent(self, booking: BookingRecord) -> BookingRecord:
        values = self._row_values(booking)
        with self._session() as db:
            if supports_on_conflict(db):
                stmt = dialect_insert(db)(Booking.__table__).values(**values)
                replacement = {name: stmt.excluded[name] for name in values if name != "id"}
                replacement["updated_at"] = datetime.utcnow()
                stmt = stmt.on_conflict_do_update(
                    index_elements=["id"],
                    set_=replacement,
                    where=Booking.__table__.c.status == BookingStatus.AVAILABLE.value,
                )
                written = db.execute(stmt).rowcount
            else:
                written = self._locked_upsert(db, values)

            if not written:
                raise SlotConflict(f"Slot {booking.id} is already taken", key=booking.id)
        return booking

    def _locked_upsert(self, db: Session, values: Dict[str, Any]) -> int:
        current = acquire_row_lock(db, Booking, Booking.id == values["id"])
        if current is None:
            db.add(Booking(**values))
            db.flush()
            return 1
        if current.status != BookingStatus.AVAILABLE.value:
            return 0
        for name, value in values.items():
            setattr(current, name, value)
        db.flush()
        return 1

    def update_fields(
        self,
        key: str,
        fields: Dict[str, Any],
        expected_status: Optional[BookingStatus] = None
    ) -> BookingRecord:
        _check_fields(fields)
        with self._session() as db:
            stmt = update(Booking).where(Booking.id == key)
            if expected_status is not None:
                stmt = stmt.where(Booking.status == BookingStatus(expected_status).value)
            values = self._column_values(fields)
            values["updated_at"] = datetime.utcnow()
            result = db.execute(stmt.values(**values).execution_options(synchronize_session=False))

            if result.rowcount == 0:
                row = db.get(Booking, key)
                if row is None:
                    raise BookingNotFound(f"Booking {key} not found", key=key)
                raise SlotConflict(f"Booking {key} changed concurrently", key=key, status=row.status)

            db.expire_all()
            return self._to_record(db.get(Booking, key))

    def delete(
        self,
        key: str,
        expected_uid: Optional[str] = None,
        expected_status: Optional[BookingStatus] = None
    ) -> bool:
        with self._session() as db:
            stmt = sql_delete(Booking).where(Booking.id == key)
            if expected_uid is not None:
                stmt = stmt.where(Booking.uid == expected_uid)
            if expected_status is not None:
                stmt = stmt.where(Booking.status == BookingStatus(expected_status).value)
            if db.execute(stmt.execution_options(synchronize_session=False)).rowcount > 0:
                return True

            row = db.get(Booking, key)
            if row is None:
                return False
            _check_expected(self._to_record(row), expected_uid, expected_status)
            return False

    def count(self, predicate: BookingFilter) -> int:
        with self._session() as db:
            query = self._apply_filter(db.query(func.count(Booking.id)), predicate)
            return query.scalar() or 0
