from typing import Optional

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPBasic, HTTPBasicCredentials

from ..config import Settings
from ..services.errors import ReservationError
from ..services.records import Actor
from ..services.reservation_engine import ReservationEngine
from .logging_config import actor_var
from .security import verify_admin_credentials

security = HTTPBasic(auto_error=False)

# Error kind -> HTTP status
STATUS_BY_KIND = {
    "not_found": status.HTTP_404_NOT_FOUND,
    "conflict": status.HTTP_409_CONFLICT,
    "forbidden": status.HTTP_403_FORBIDDEN,
    "unauthorized": status.HTTP_401_UNAUTHORIZED,
    "quota_exceeded": status.HTTP_429_TOO_MANY_REQUESTS,
    "rate_limited": status.HTTP_429_TOO_MANY_REQUESTS,
    "invalid_argument": status.HTTP_400_BAD_REQUEST,
    "store_unavailable": status.HTTP_503_SERVICE_UNAVAILABLE,
}


def http_error(error: ReservationError) -> HTTPException:
    """Translate an engine error into the HTTPException the router raises"""
    return HTTPException(
        status_code=STATUS_BY_KIND.get(error.kind, status.HTTP_500_INTERNAL_SERVER_ERROR),
        detail=error.to_dict()
    )


def get_settings_dep(request: Request) -> Settings:
    return request.app.state.settings


def get_engine(request: Request) -> ReservationEngine:
    return request.app.state.engine


def get_actor(
    credentials: Optional[HTTPBasicCredentials] = Depends(security),
    settings: Settings = Depends(get_settings_dep)
) -> Actor:
    """
    Anonymous callers act as users. Callers presenting Basic credentials
    must present the administrator's, otherwise 401.
    """
    if credentials is None:
        return Actor.user()

    if not verify_admin_credentials(credentials.username, credentials.password, settings):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid administrator credentials",
            headers={"WWW-Authenticate": "Basic"},
        )

    actor_var.set(credentials.username)
    return Actor.admin(email=settings.notification_email or None)


def require_admin(actor: Actor = Depends(get_actor)) -> Actor:
    if not actor.is_admin:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Administrator credentials required",
            headers={"WWW-Authenticate": "Basic"},
        )
    return actor
