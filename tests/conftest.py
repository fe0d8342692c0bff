"""
Shared fixtures.

Every store-level test runs twice: against the in-memory store and
against the SQLAlchemy store on in-memory SQLite.
"""

import pytest
from datetime import datetime, date

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from labreserve.config import Settings
from labreserve.database import build_engine, build_session_factory, create_tables
from labreserve.models.booking import BookingStatus
from labreserve.services import slot_key
from labreserve.services.booking_store import InMemoryBookingStore, SqlAlchemyBookingStore
from labreserve.services.quota_guard import to_millis
from labreserve.services.records import Actor, BookingRecord
from labreserve.services.reservation_engine import ReservationEngine

# Monday morning, inside the weekday booking window
FIXED_NOW = datetime(2025, 3, 10, 9, 0, 0)
DAY = date(2025, 3, 12)

ADMIN = Actor.admin()
USER = Actor.user()


class FakeClock:
    """Injectable clock that only moves when told to."""

    def __init__(self, now: datetime = FIXED_NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, delta):
        self.now = self.now + delta


def make_booking(
    on_date=DAY,
    equipment_id=1,
    time_slot_id="08:00",
    status=BookingStatus.PENDING,
    email="ana@lab.edu",
    name="Ana",
    timestamp=None,
    **extra
) -> BookingRecord:
    """A user booking stored at its canonical key."""
    return BookingRecord(
        id=slot_key.derive(on_date, equipment_id, time_slot_id),
        equipment_id=equipment_id,
        date=on_date,
        time_slot_id=time_slot_id,
        status=status,
        timestamp=timestamp if timestamp is not None else to_millis(FIXED_NOW),
        user_name=name,
        user_email=email,
        **extra
    )


def make_settings(**overrides) -> Settings:
    values = dict(
        database_url="sqlite://",
        log_json=False,
        store_retry_base_delay=0.0,
        api_rate_limit_enabled=False,
    )
    values.update(overrides)
    return Settings(_env_file=None, **values)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def settings():
    return make_settings()


@pytest.fixture(params=["memory", "sqlite"])
def store(request):
    if request.param == "memory":
        yield InMemoryBookingStore()
        return

    engine = build_engine("sqlite://")
    create_tables(engine)
    yield SqlAlchemyBookingStore(build_session_factory(engine))
    engine.dispose()


@pytest.fixture
def engine(store, settings, clock):
    return ReservationEngine(store, settings, clock=clock, sleep=lambda seconds: None)
