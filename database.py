"""
Relational store for the storefront.

One engine per process; one session per request. Every write in the core
runs inside ``atomic()``, which is the only place a commit happens.
"""
import logging
import os
from contextlib import contextmanager

from sqlalchemy import create_engine, event
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import DeclarativeBase, sessionmaker

from errors import TransientStoreError

logger = logging.getLogger(__name__)

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./storefront.db")


class Base(DeclarativeBase):
    pass


def make_engine(url: str = DATABASE_URL, **kwargs):
    """Create an engine; SQLite transactions start with BEGIN IMMEDIATE so writers queue."""
    if url.startswith("sqlite"):
        connect_args = kwargs.pop("connect_args", {})
        connect_args.setdefault("check_same_thread", False)
        connect_args.setdefault("timeout", 30)
        engine = create_engine(url, connect_args=connect_args, **kwargs)

        @event.listens_for(engine, "connect")
        def _disable_driver_transactions(dbapi_connection, connection_record):
            dbapi_connection.isolation_level = None

        @event.listens_for(engine, "begin")
        def _begin_immediate(conn):
            conn.exec_driver_sql("BEGIN IMMEDIATE")

        return engine
    return create_engine(url, pool_pre_ping=True, **kwargs)


def make_sessionmaker(engine):
    return sessionmaker(bind=engine, expire_on_commit=False, autoflush=False)


engine = make_engine()
SessionLocal = make_sessionmaker(engine)


def init_db(bind=None):
    # models must be imported so their tables are registered on Base.metadata
    import models  # noqa: F401

    bind = bind or engine
    Base.metadata.create_all(bind)
    logger.info("Database schema ready at %s", bind.url.render_as_string(hide_password=True))


@contextmanager
def atomic(session, operation: str):
    """Commit everything done in the block, or roll all of it back.

    Store failures surface as TransientStoreError; domain errors pass through
    unchanged after the rollback.
    """
    try:
        yield session
        session.commit()
    except SQLAlchemyError as exc:
        session.rollback()
        logger.exception("Store failure while trying to %s", operation)
        raise TransientStoreError(operation) from exc
    except Exception:
        session.rollback()
        raise


def get_db():
    """FastAPI dependency yielding a request-scoped session."""
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
