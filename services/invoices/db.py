"""SQLAlchemy engine and session factory for the invoice record store."""

import logging

from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import DeclarativeBase, sessionmaker
from sqlalchemy.pool import StaticPool

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    pass


def create_db_engine(database_url: str) -> Engine:
    """Create an engine with dialect-aware configuration.

    SQLite needs ``check_same_thread=False`` because the API and the worker
    hand sessions across threads; in-memory SQLite also needs a single shared
    connection or every session would see an empty database.
    """
    if database_url.startswith("sqlite"):
        kwargs: dict = {"connect_args": {"check_same_thread": False}}
        if ":memory:" in database_url or database_url in ("sqlite://", "sqlite:///"):
            kwargs["poolclass"] = StaticPool
        engine = create_engine(database_url, **kwargs)
    else:
        engine = create_engine(database_url, pool_pre_ping=True)

    location = database_url.split("@")[-1] if "@" in database_url else "local"
    logger.info(f"Database engine created: dialect={engine.dialect.name}, url={location}")
    return engine


def create_session_factory(engine: Engine) -> sessionmaker:
    # Records are returned to callers after the session closes.
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


def init_db(engine: Engine) -> None:
    """Create tables if they do not exist."""
    from services.invoices import models  # noqa: F401

    Base.metadata.create_all(bind=engine)
