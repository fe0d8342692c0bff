"""
Rate Limiter Configuration

Per-client-IP limit on the HTTP surface (slowapi). This complements the
per-requester submission limit enforced by QuotaGuard: the engine limit
counts stored bookings, this one counts requests.

Each application gets its own Limiter built from its Settings. Storage
comes from RATE_LIMIT_STORAGE_URI ("memory://" by default, "redis://..."
when several instances share the limit), the limit itself from
API_RATE_LIMIT.
"""

import logging

from fastapi import Request
from limits import parse
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address
from slowapi.wrappers import Limit

from ..config import Settings

logger = logging.getLogger(__name__)

SUBMISSION_SCOPE = "booking_submission"


def get_real_client_ip(request: Request) -> str:
    """Get real client IP behind reverse proxy"""
    # Check X-Forwarded-For header (set by proxies)
    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        # Take the first IP (original client)
        return forwarded_for.split(",")[0].strip()

    real_ip = request.headers.get("X-Real-IP")
    if real_ip:
        return real_ip.strip()

    return get_remote_address(request)


def create_limiter(settings: Settings) -> Limiter:
    logger.info(f"Rate limiter storage: {settings.rate_limit_storage_uri.split('://')[0]}")
    return Limiter(
        key_func=get_real_client_ip,
        storage_uri=settings.rate_limit_storage_uri,
        enabled=settings.api_rate_limit_enabled,
    )


def limit_submissions(request: Request) -> None:
    """
    Dependency for the booking submission route.

    Counts the request against API_RATE_LIMIT of the application serving
    it and raises RateLimitExceeded once the client is over the limit.
    """
    limiter: Limiter = request.app.state.limiter
    if not limiter.enabled:
        return

    settings: Settings = request.app.state.settings
    limit = Limit(
        parse(settings.api_rate_limit), get_real_client_ip, SUBMISSION_SCOPE,
        False, None, None, None, 1, False
    )
    client = get_real_client_ip(request)
    if not limiter.limiter.hit(limit.limit, client, SUBMISSION_SCOPE):
        logger.warning(f"Rate limit {settings.api_rate_limit} exceeded by {client}")
        raise RateLimitExceeded(limit)
