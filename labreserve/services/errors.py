"""
Exceptions raised by the reservation engine.

Raised in the services and translated to HTTP status codes in the routers.
Every error carries a `kind` the request layer can map without inspecting
the class, and a `detail` dict with enough data for a user-facing message.
"""

from typing import Any, Dict, Optional


class ReservationError(Exception):
    """Base exception for all reservation engine errors."""
    kind = "error"

    def __init__(self, message: str, **detail: Any):
        super().__init__(message)
        self.message = message
        self.detail: Dict[str, Any] = detail

    def to_dict(self) -> Dict[str, Any]:
        data = {"error": self.kind, "message": self.message}
        if self.detail:
            data["detail"] = self.detail
        return data


class BookingNotFound(ReservationError):
    """Raised when the referenced booking / key does not exist."""
    kind = "not_found"


class SlotConflict(ReservationError):
    """Raised when the target slot is already occupied."""
    kind = "conflict"


class OperationForbidden(ReservationError):
    """Raised when the operation is not permitted for the record's status."""
    kind = "forbidden"


class NotAuthorized(ReservationError):
    """Raised when a non-administrator asks for a privileged status or field."""
    kind = "unauthorized"


class QuotaExceeded(ReservationError):
    """Raised when the requester would exceed the active-slot quota."""
    kind = "quota_exceeded"

    def __init__(self, message: str, count: int, limit: int, requested: int = 1):
        super().__init__(message, count=count, limit=limit, requested=requested)
        self.count = count
        self.limit = limit


class RateLimited(ReservationError):
    """Raised when the requester submitted too many requests in the window."""
    kind = "rate_limited"

    def __init__(self, message: str, count: int, limit: int):
        super().__init__(message, count=count, limit=limit)
        self.count = count
        self.limit = limit


class InvalidArgument(ReservationError):
    """Raised for malformed identifiers, identical swap targets, inverted ranges."""
    kind = "invalid_argument"


class StoreUnavailable(ReservationError):
    """Transient store failure (timeout, lost connection). Retryable for idempotent steps."""
    kind = "store_unavailable"


class SwapInterrupted(SlotConflict):
    """
    A swap failed after its first step committed.

    The state is left in the documented intermediate form; the repair pass
    reconciles the temporary record named by `temp_key`.
    """

    def __init__(self, message: str, temp_key: str, step: int):
        super().__init__(message)
        self.detail.update(temp_key=temp_key, step=step)
        self.temp_key = temp_key
        self.step = step
