from __future__ import annotations

import os
from contextlib import contextmanager
from typing import Callable, Generator, Optional

from sqlalchemy import event
from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel, Session, create_engine

from .config import settings

SessionFactory = Callable[[], Session]


def _is_sqlite(database_url: str) -> bool:
    return database_url.startswith("sqlite")


def _is_postgres(database_url: str) -> bool:
    return database_url.startswith("postgresql")


def _is_sqlite_memory(database_url: str) -> bool:
    return database_url in ("sqlite://", "sqlite:///:memory:")


def _ensure_sqlite_dir(database_url: str) -> None:
    """
    Ensure the parent folder exists for SQLite file-based DB URLs like:
      sqlite:///./data/voter_portal.sqlite
      sqlite:////absolute/path/to/db.sqlite
    """
    if not database_url.startswith("sqlite:///") or _is_sqlite_memory(database_url):
        return

    path = database_url.replace("sqlite:///", "", 1)
    folder = os.path.dirname(path)
    if folder:
        os.makedirs(folder, exist_ok=True)


def _sqlite_pragmas(engine: Engine) -> None:
    """
    Pragmas that make SQLite usable for multi-request local dev.
    """

    @event.listens_for(engine, "connect")
    def _set_sqlite_pragmas(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA journal_mode=WAL;")  # better concurrency
        cursor.execute("PRAGMA synchronous=NORMAL;")
        cursor.execute("PRAGMA foreign_keys=ON;")
        cursor.execute("PRAGMA busy_timeout=5000;")  # reduce 'database is locked'
        cursor.close()


def _postgres_session_settings(engine: Engine) -> None:
    """
    Per-connection settings for Postgres.
    statement_timeout keeps a stuck reference transaction from holding locks forever.
    """

    @event.listens_for(engine, "connect")
    def _set_postgres_settings(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("SET statement_timeout = 30000;")
        cursor.close()


def build_engine(database_url: str, *, echo: bool = False) -> Engine:
    """
    Create a SQLAlchemy engine for the given URL.

    - SQLite gets pragmas + check_same_thread=False for FastAPI
    - In-memory SQLite ("sqlite://") shares one connection via StaticPool
    - Postgres works by just changing DATABASE_URL
    """
    if _is_sqlite(database_url):
        _ensure_sqlite_dir(database_url)

    kwargs = {}
    if _is_sqlite(database_url):
        kwargs["connect_args"] = {"check_same_thread": False}
    if _is_sqlite_memory(database_url):
        kwargs["poolclass"] = StaticPool
    else:
        kwargs["pool_pre_ping"] = True

    engine = create_engine(database_url, echo=echo, **kwargs)

    if _is_sqlite(database_url) and not _is_sqlite_memory(database_url):
        _sqlite_pragmas(engine)

    if _is_postgres(database_url):
        _postgres_session_settings(engine)

    return engine


_engine: Optional[Engine] = None


def get_engine() -> Engine:
    """
    Shared engine for the app process, built lazily from settings.resolved_database_url
    (DATABASE_URL preferred, DB_PATH fallback).
    """
    global _engine
    if _engine is None:
        _engine = build_engine(settings.resolved_database_url)
    return _engine


def register_models() -> None:
    """
    Central place to import ALL models so SQLModel registers them.
    Keep this list current as you add features.
    """
    from .models.voter import Voter  # noqa: F401
    from .models.reference import Reference  # noqa: F401
    from .models.audit_log import AuditLog  # noqa: F401


def init_db(engine: Optional[Engine] = None, create_tables: bool = True) -> None:
    """
    Register models, then create missing tables (SQLite/local dev).
    Non-destructive: create_all will not drop or alter existing tables.

    In production with managed migrations, call init_db(create_tables=False).
    """
    register_models()
    if create_tables:
        SQLModel.metadata.create_all(engine or get_engine())


def session_factory_for(engine: Engine) -> SessionFactory:
    """
    Build a zero-arg session factory bound to a specific engine.
    Services take one of these instead of importing the global engine.
    """

    def _factory() -> Session:
        return Session(engine, expire_on_commit=False)

    return _factory


def get_session() -> Session:
    """Session on the shared app engine (fallback for session_scope without a factory)."""
    return Session(get_engine(), expire_on_commit=False)


@contextmanager
def session_scope(factory: Optional[SessionFactory] = None) -> Generator[Session, None, None]:
    """
    Context manager for units of work that need commit/rollback safety.

    Usage:
        with session_scope(factory) as db:
            db.add(...)
    """
    session = (factory or get_session)()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
