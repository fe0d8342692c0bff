import logging

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

logger = logging.getLogger(__name__)

Base = declarative_base()


def normalize_database_url(database_url: str) -> str:
    """Hosted Postgres often hands out postgres://, SQLAlchemy needs postgresql://"""
    if database_url.startswith("postgres://"):
        database_url = database_url.replace("postgres://", "postgresql://", 1)
    return database_url


def build_engine(database_url: str, echo: bool = False) -> Engine:
    """
    Create the engine for a database URL.

    In-memory SQLite gets a StaticPool so every session sees the same
    database (used by the test-suite and throwaway instances).
    """
    database_url = normalize_database_url(database_url)

    kwargs = {"echo": echo, "pool_pre_ping": True}
    if database_url.startswith("sqlite"):
        kwargs["connect_args"] = {"check_same_thread": False}
        if database_url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool

    logger.info(f"Using database: {database_url.split('://')[0]}")
    return create_engine(database_url, **kwargs)


def build_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)


def create_tables(engine: Engine) -> None:
    """Create all tables in the database"""
    from . import models  # noqa: F401  (registers the mappers)

    Base.metadata.create_all(bind=engine)
