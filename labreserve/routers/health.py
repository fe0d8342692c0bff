"""
Health Check Endpoints

- /health        - simple status, no checks
- /health/live   - liveness (is the process running)
- /health/ready  - readiness (is the booking table reachable)
"""

from fastapi import APIRouter, HTTPException, Request, status
from sqlalchemy import text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from datetime import datetime, timezone
import logging
import time

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/health", tags=["Health"])

VERSION = "1.0.0"


def get_db_health(db_engine: Engine) -> dict:
    """Check database connectivity and latency"""
    try:
        start = time.time()
        with db_engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        latency_ms = (time.time() - start) * 1000
        return {
            "status": "up",
            "latency_ms": round(latency_ms, 2),
            "type": db_engine.dialect.name
        }
    except SQLAlchemyError as e:
        logger.warning(f"Database health check failed: {e}")
        return {
            "status": "down",
            "error": str(e)[:100]
        }


@router.get("")
def simple_health_check():
    return {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "version": VERSION
    }


@router.get("/live")
def liveness_check():
    return {
        "status": "alive",
        "timestamp": datetime.now(timezone.utc).isoformat()
    }


@router.get("/ready")
def readiness_check(request: Request):
    """Readiness probe: 503 while the database is unreachable"""
    db_health = get_db_health(request.app.state.db_engine)

    if db_health["status"] == "up":
        return {
            "status": "ready",
            "database": db_health,
            "timestamp": datetime.now(timezone.utc).isoformat()
        }

    raise HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail={
            "status": "not_ready",
            "reason": "database_unavailable",
            "timestamp": datetime.now(timezone.utc).isoformat()
        }
    )
