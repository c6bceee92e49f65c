# backend/tutorbook/database/__init__.py
"""
Database engine, session factory, and metadata shared across the package.
"""

from __future__ import annotations

from typing import Any

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeMeta, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from tutorbook.core.config import settings

_DEFAULT_POOL_KWARGS: dict[str, Any] = {
    "pool_size": 5,
    "max_overflow": 10,
    "pool_timeout": 5,
    "pool_recycle": 300,
    "pool_pre_ping": True,
}


def is_sqlite_url(url: str) -> bool:
    return url.startswith("sqlite")


def build_engine(db_url: str, *, echo: bool = False) -> Engine:
    """Create an engine with pool settings suited to the backend behind ``db_url``."""
    if is_sqlite_url(db_url):
        kwargs: dict[str, Any] = {"connect_args": {"check_same_thread": False}}
        if db_url in ("sqlite://", "sqlite:///:memory:"):
            # One shared connection, otherwise each checkout sees an empty database
            kwargs["poolclass"] = StaticPool
        new_engine = create_engine(db_url, echo=echo, **kwargs)

        @event.listens_for(new_engine, "connect")
        def _sqlite_pragmas(dbapi_connection: Any, connection_record: Any) -> None:
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.execute("PRAGMA busy_timeout=5000")
            cursor.close()

        return new_engine

    return create_engine(db_url, echo=echo, **_DEFAULT_POOL_KWARGS)


engine: Engine = build_engine(settings.database_url, echo=settings.database_echo)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine, expire_on_commit=False)

Base: DeclarativeMeta = declarative_base()


__all__ = [
    "Base",
    "SessionLocal",
    "build_engine",
    "engine",
    "is_sqlite_url",
]
