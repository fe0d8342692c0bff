"""
Database Helper Utilities for Concurrency Control

Provides:
- Database dialect detection (PostgreSQL vs SQLite)
- Dialect-specific INSERT ... ON CONFLICT constructs
- Row locking for dialects without ON CONFLICT
"""

import logging
from typing import Optional, TypeVar, Type
from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)

T = TypeVar('T')


def dialect_name(db: Session) -> str:
    return db.get_bind().dialect.name


def is_postgres(db: Session) -> bool:
    """Check if the database is PostgreSQL"""
    return dialect_name(db) == 'postgresql'


def is_sqlite(db: Session) -> bool:
    """Check if the database is SQLite"""
    return dialect_name(db) == 'sqlite'


def supports_on_conflict(db: Session) -> bool:
    return is_postgres(db) or is_sqlite(db)


def dialect_insert(db: Session):
    """
    Return the insert() construct that supports on_conflict_do_update
    for the session's dialect.
    """
    if is_postgres(db):
        from sqlalchemy.dialects.postgresql import insert as pg_insert
        return pg_insert
    if is_sqlite(db):
        from sqlalchemy.dialects.sqlite import insert as sqlite_insert
        return sqlite_insert
    raise NotImplementedError(f"ON CONFLICT not supported for dialect {dialect_name(db)!r}")


def acquire_row_lock(
    db: Session,
    model: Type[T],
    filter_condition,
    nowait: bool = False,
    skip_locked: bool = False
) -> Optional[T]:
    """
    Acquire a row-level lock on a database record.

    Args:
        db: Database session
        model: SQLAlchemy model class
        filter_condition: Filter to find the row
        nowait: If True, raise error immediately if lock unavailable (PostgreSQL only)
        skip_locked: If True, skip locked rows (PostgreSQL only)

    Returns:
        The locked model instance, or None if not found

    Raises:
        OperationalError: If nowait=True and row is locked by another transaction
    """
    query = db.query(model).filter(filter_condition)

    # SQLite has no row locks; SELECT ... FOR UPDATE is rendered elsewhere
    if not is_sqlite(db):
        if skip_locked:
            query = query.with_for_update(skip_locked=True)
        elif nowait:
            query = query.with_for_update(nowait=True)
        else:
            query = query.with_for_update()

    return query.first()
