"""
Status Machine

    available -> pending -> approved
                 pending -> available   (reject, realised as delete)
                 approved -> available  (cancel, realised as delete)
    pending / approved -> blocked       (BlockManager only)
    blocked -> available                (unblock only)

`available` is never stored by these paths: a deleted record is an
available slot.
"""

from dataclasses import dataclass
from typing import Optional

from ..models.booking import BookingStatus
from .errors import NotAuthorized, OperationForbidden, InvalidArgument
from .records import Actor, BookingRecord


@dataclass(frozen=True)
class Transition:
    """What the engine must do to realise a requested status."""
    delete: bool = False
    status: Optional[BookingStatus] = None

    @property
    def is_noop(self) -> bool:
        return not self.delete and self.status is None


NOOP = Transition()


class StatusMachine:

    ADMIN_CREATABLE = (BookingStatus.PENDING, BookingStatus.APPROVED, BookingStatus.BLOCKED)

    def validate_creation(self, booking: BookingRecord, actor: Actor) -> None:
        """
        Check a new record against the caller's privileges.

        Non-administrators may only create `pending` records without
        block fields.
        """
        if booking.status == BookingStatus.AVAILABLE:
            raise InvalidArgument("A booking cannot be created as available", key=booking.id)

        if actor.is_admin:
            if booking.status not in self.ADMIN_CREATABLE:
                raise InvalidArgument(f"Unsupported status {booking.status.value}", key=booking.id)
            if booking.has_block_fields() and booking.status != BookingStatus.BLOCKED:
                raise InvalidArgument("Block fields require status blocked", key=booking.id)
            return

        if booking.status != BookingStatus.PENDING:
            raise NotAuthorized(
                f"Only an administrator can create a {booking.status.value} booking",
                status=booking.status.value
            )
        if booking.has_block_fields():
            raise NotAuthorized("Only an administrator can set block fields")

    def apply(self, current: BookingRecord, requested: BookingStatus, actor: Actor) -> Transition:
        requested = BookingStatus(requested)

        if not actor.is_admin:
            raise NotAuthorized("Only an administrator can change a booking status", key=current.id)

        if requested == current.status:
            return NOOP

        if current.status == BookingStatus.BLOCKED:
            raise OperationForbidden(
                "Blocked slots can only be released by unblocking them",
                key=current.id
            )

        if requested == BookingStatus.BLOCKED:
            raise OperationForbidden(
                "Slots are blocked through a block request, not a status change",
                key=current.id
            )

        if requested == BookingStatus.AVAILABLE:
            return Transition(delete=True)

        if current.status == BookingStatus.PENDING and requested == BookingStatus.APPROVED:
            return Transition(status=BookingStatus.APPROVED)

        raise OperationForbidden(
            f"Cannot move a booking from {current.status.value} to {requested.value}",
            key=current.id, status=current.status.value, requested=requested.value
        )
