"""
database.py — Datastore Connection Handling

Builds the SQLAlchemy engine and session factory. The session factory is
created once by the application and passed explicitly to the service functions.
"""

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, sessionmaker

from .logging_config import get_logger

log = get_logger(__name__)


# Largest key a BIGINT or SQLite INTEGER column holds. Larger ids cannot exist.
MAX_ID = 2 ** 63 - 1


class Base(DeclarativeBase):
    pass


def id_in_range(value: int) -> bool:
    return -MAX_ID - 1 <= value <= MAX_ID


def create_engine_from_url(url: str, **kwargs) -> Engine:
    """
    Creates an engine for `url`.

    SQLite connections are shared across FastAPI's worker threads and wait on
    locks instead of failing immediately; foreign keys are enforced.
    """
    if url.startswith("sqlite"):
        connect_args = kwargs.pop("connect_args", {})
        connect_args.setdefault("check_same_thread", False)
        connect_args.setdefault("timeout", 30)
        engine = create_engine(url, connect_args=connect_args, **kwargs)

        @event.listens_for(engine, "connect")
        def _enable_foreign_keys(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

        return engine

    return create_engine(url, pool_pre_ping=True, **kwargs)


def create_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(bind=engine, expire_on_commit=False)


def init_db(engine: Engine):
    """Creates all tables that do not exist yet."""
    # Registers the mapped classes on Base.metadata
    from . import db_models  # noqa: F401

    Base.metadata.create_all(bind=engine)
    log.info("Database schema ensured.")
