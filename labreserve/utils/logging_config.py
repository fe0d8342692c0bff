"""
Structured Logging Configuration

Provides JSON-formatted logging with:
- Request ID tracking
- Actor context
- Entity (booking key) context
- Structured output for log aggregation
"""

import logging
import json
import sys
from datetime import datetime, timezone
from typing import Optional, Any, Dict
from contextvars import ContextVar

# Context variables for request tracking
request_id_var: ContextVar[str] = ContextVar('request_id', default='')
actor_var: ContextVar[str] = ContextVar('actor', default='')


class JSONFormatter(logging.Formatter):
    """
    Custom JSON formatter for structured logging.
    Outputs logs in JSON format for easy parsing by log aggregators.
    """

    def format(self, record: logging.LogRecord) -> str:
        log_data: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        request_id = request_id_var.get()
        if request_id:
            log_data["request_id"] = request_id

        actor = actor_var.get()
        if actor:
            log_data["actor"] = actor

        log_data["module"] = record.module
        log_data["function"] = record.funcName
        log_data["line"] = record.lineno

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        if hasattr(record, 'extra_data'):
            log_data["data"] = record.extra_data

        if hasattr(record, 'entity_type'):
            log_data["entity_type"] = record.entity_type
        if hasattr(record, 'entity_id'):
            log_data["entity_id"] = record.entity_id

        return json.dumps(log_data, ensure_ascii=False, default=str)


class StructuredLogger(logging.LoggerAdapter):
    """
    Logger adapter that adds structured context to log messages.
    """

    def process(self, msg: str, kwargs: Dict[str, Any]) -> tuple:
        extra = kwargs.get('extra', {})
        extra.update(self.extra)
        kwargs['extra'] = extra
        return msg, kwargs

    def log_with_context(
        self,
        level: int,
        msg: str,
        entity_type: Optional[str] = None,
        entity_id: Optional[str] = None,
        **extra_data
    ):
        """Log with additional structured context."""
        extra = {}
        if entity_type:
            extra['entity_type'] = entity_type
        if entity_id:
            extra['entity_id'] = entity_id
        if extra_data:
            extra['extra_data'] = extra_data

        self.log(level, msg, extra=extra)

    def booking_created(self, key: str, status: str, user_email: Optional[str] = None):
        self.log_with_context(
            logging.INFO,
            f"Booking created: {key} ({status})",
            entity_type="booking",
            entity_id=key,
            status=status,
            user_email=user_email
        )

    def booking_status_changed(self, key: str, old_status: str, new_status: str):
        self.log_with_context(
            logging.INFO,
            f"Booking status changed: {old_status} -> {new_status}",
            entity_type="booking",
            entity_id=key,
            old_status=old_status,
            new_status=new_status
        )

    def booking_moved(self, old_key: str, new_key: str):
        self.log_with_context(
            logging.INFO,
            f"Booking moved: {old_key} -> {new_key}",
            entity_type="booking",
            entity_id=new_key,
            old_key=old_key
        )

    def swap_completed(self, first_key: str, second_key: str):
        self.log_with_context(
            logging.INFO,
            f"Bookings swapped: {first_key} <-> {second_key}",
            entity_type="booking",
            entity_id=first_key,
            partner_key=second_key
        )

    def block_applied(self, block_type: str, created: int, overwritten: int, failed: int):
        self.log_with_context(
            logging.INFO,
            f"Block applied ({block_type}): {created} created, {overwritten} overwritten, {failed} failed",
            entity_type="block",
            block_type=block_type,
            created=created,
            overwritten=overwritten,
            failed=failed
        )

    def booking_displaced(self, key: str, status: str, user_email: Optional[str]):
        self.log_with_context(
            logging.WARNING,
            f"Block overwrote {status} booking {key}",
            entity_type="booking",
            entity_id=key,
            status=status,
            user_email=user_email
        )


def setup_logging(
    level: str = "INFO",
    json_format: bool = True,
    include_uvicorn: bool = True
) -> None:
    """
    Configure application logging.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR)
        json_format: Use JSON format (True for production)
        include_uvicorn: Also configure uvicorn loggers
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(log_level)

    if json_format:
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
        ))

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers = [handler]

    logging.getLogger("labreserve").setLevel(log_level)

    if include_uvicorn:
        for logger_name in ["uvicorn", "uvicorn.access", "uvicorn.error"]:
            uvicorn_logger = logging.getLogger(logger_name)
            uvicorn_logger.handlers = [handler]

    # Reduce noise from third-party loggers
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)


def get_logger(name: str) -> StructuredLogger:
    """Get a structured logger for the given module."""
    base_logger = logging.getLogger(name)
    return StructuredLogger(base_logger, {})


def set_request_context(request_id: str, actor: Optional[str] = None):
    """Set context for the current request."""
    request_id_var.set(request_id)
    if actor:
        actor_var.set(actor)


def clear_request_context():
    request_id_var.set('')
    actor_var.set('')
