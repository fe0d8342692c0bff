"""
Quota Guard

Checks applied to user-originated `pending` submissions only:
- active-slot quota (pending + approved bookings per requester)
- submission rate (bookings created by the requester in a trailing window)
- weekday booking window (Monday 07:00 to Friday 12:00, optional)

Administrator-originated creations are exempt from all three.
"""

import logging
from datetime import datetime
from typing import Callable

from ..config import Settings
from .booking_store import BookingStore
from .errors import QuotaExceeded, RateLimited, OperationForbidden
from .records import ACTIVE_STATUSES, Actor, BookingFilter

logger = logging.getLogger(__name__)


def to_millis(moment: datetime) -> int:
    return int(moment.timestamp() * 1000)


def booking_window_open(moment: datetime) -> bool:
    """Requests are accepted from Monday 07:00 until Friday 12:00."""
    weekday = moment.weekday()  # Monday = 0
    if weekday >= 5:
        return False
    if weekday == 4 and moment.hour >= 12:
        return False
    if weekday == 0 and moment.hour < 7:
        return False
    return True


class QuotaGuard:

    def __init__(self, store: BookingStore, settings: Settings, clock: Callable[[], datetime]):
        self.store = store
        self.settings = settings
        self.clock = clock

    def active_count(self, email: str) -> int:
        return self.store.count(BookingFilter(
            user_email=email,
            statuses=ACTIVE_STATUSES,
            user_bookings_only=True,
        ))

    def recent_count(self, email: str) -> int:
        window_start = to_millis(self.clock()) - self.settings.rate_limit_window_seconds * 1000
        return self.store.count(BookingFilter(
            user_email=email,
            timestamp_after=window_start,
            user_bookings_only=True,
        ))

    def check_active_quota(self, email: str, batch_size: int = 1) -> int:
        limit = self.settings.max_slots_per_person
        active = self.active_count(email)
        if active + batch_size > limit:
            logger.info(f"Quota refused for {email}: {active} active + {batch_size} requested > {limit}")
            raise QuotaExceeded(
                f"Limit exceeded: you already have {active} active slots and "
                f"requested {batch_size} more. The maximum is {limit}.",
                count=active, limit=limit, requested=batch_size
            )
        return active

    def check_rate_limit(self, email: str, batch_size: int = 1) -> int:
        limit = self.settings.rate_limit_max_inserts
        recent = self.recent_count(email)
        if recent + batch_size > limit:
            logger.info(f"Rate limit hit for {email}: {recent} submissions in window")
            raise RateLimited(
                "Too many requests in the last hour. Try again later.",
                count=recent, limit=limit
            )
        return recent

    def check_booking_window(self) -> None:
        if self.settings.booking_window_enabled and not booking_window_open(self.clock()):
            raise OperationForbidden(
                "Slot requests are only accepted from Monday 07:00 to Friday 12:00."
            )

    def admit(self, email: str, batch_size: int, actor: Actor) -> None:
        """Run every check for a submission of batch_size pending slots."""
        if actor.is_admin:
            return
        self.check_booking_window()
        self.check_active_quota(email, batch_size)
        self.check_rate_limit(email, batch_size)
