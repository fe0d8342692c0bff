from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from contextlib import asynccontextmanager
from slowapi.errors import RateLimitExceeded
from typing import Optional
import logging
import uuid

from .config import Settings, get_settings
from .database import build_engine, build_session_factory, create_tables
from .services.booking_store import SqlAlchemyBookingStore
from .services.reservation_engine import ReservationEngine
from .utils.logging_config import setup_logging, set_request_context, clear_request_context
from .utils.rate_limiter import create_limiter
from .routers import admin, blocks, bookings, health, slots

logger = logging.getLogger(__name__)


# Request ID Middleware
class RequestIdMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get("X-Request-ID", str(uuid.uuid4())[:8])
        request.state.request_id = request_id
        set_request_context(request_id)
        try:
            response = await call_next(request)
        finally:
            clear_request_context()
        response.headers["X-Request-ID"] = request_id
        return response


# Security Headers Middleware
class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    def __init__(self, app, is_production: bool = False):
        super().__init__(app)
        self.is_production = is_production

    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        if self.is_production:
            response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
        return response


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """
    Build the application for one configuration.

    The database engine, the booking store and the reservation engine are
    created here and kept on app.state; nothing is created at import time.
    """
    settings = settings or get_settings()
    setup_logging(level=settings.log_level, json_format=settings.log_json)

    db_engine = build_engine(settings.database_url)
    create_tables(db_engine)
    store = SqlAlchemyBookingStore(build_session_factory(db_engine))

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(f"Starting labreserve ({settings.environment})")
        logger.info(f"CORS origins: {settings.cors_origins}")

        report = app.state.engine.repair()
        if not report.clean:
            logger.warning(f"Startup repair left stranded records: {report.stranded}")

        yield

        logger.info("Shutting down labreserve")
        db_engine.dispose()

    app = FastAPI(
        title="Lab Reserve API",
        description="Slot reservations for laboratory instruments",
        version=health.VERSION,
        lifespan=lifespan
    )

    app.state.settings = settings
    app.state.db_engine = db_engine
    app.state.engine = ReservationEngine(store, settings)
    app.state.limiter = create_limiter(settings)

    # ================================
    # CORS MIDDLEWARE - MUST BE FIRST!
    # ================================
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID"],
    )
    app.add_middleware(RequestIdMiddleware)
    app.add_middleware(SecurityHeadersMiddleware, is_production=settings.is_production)

    @app.exception_handler(RateLimitExceeded)
    async def rate_limit_handler(request: Request, exc: RateLimitExceeded):
        return JSONResponse(
            status_code=429,
            content={"detail": "Too many requests, try again later"}
        )

    app.include_router(health.router)
    app.include_router(bookings.router)
    app.include_router(slots.router)
    app.include_router(blocks.router)
    app.include_router(admin.router)

    @app.get("/")
    def root():
        return {
            "message": "Lab Reserve API",
            "version": health.VERSION,
            "docs": "/docs",
            "equipment": settings.equipment_id_list,
            "time_slots": settings.time_slot_list,
        }

    return app
