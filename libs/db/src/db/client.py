"""Centralized SQLAlchemy engine/session helpers for the ledger database.

Usage
-----
from db.client import session_scope

with session_scope(database_url=url) as s:
    s.execute(...)
"""

from __future__ import annotations

import os
import threading
from collections.abc import Iterator
from contextlib import contextmanager

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

# One engine (and session factory) per URL; tests point different runs at
# different SQLite files within one process.
_ENGINES: dict[str, tuple[Engine, sessionmaker[Session]]] = {}
_LOCK = threading.Lock()


def _database_url(override: str | None = None) -> str:
    url = override or os.getenv("STORAGE_URL") or os.getenv("DATABASE_URL")
    if not url:
        raise RuntimeError("STORAGE_URL/DATABASE_URL is not set; cannot initialize database client")
    return url


def get_engine(*, database_url: str | None = None) -> Engine:
    """Return the shared engine for ``database_url``, creating it on first use."""

    url = _database_url(database_url)
    with _LOCK:
        cached = _ENGINES.get(url)
        if cached is None:
            engine = create_engine(url, pool_pre_ping=True)
            cached = (engine, sessionmaker(bind=engine, expire_on_commit=False, class_=Session))
            _ENGINES[url] = cached
    return cached[0]


def get_session(*, database_url: str | None = None) -> Session:
    """Return a new SQLAlchemy session bound to the shared engine."""

    get_engine(database_url=database_url)
    return _ENGINES[_database_url(database_url)][1]()


@contextmanager
def session_scope(*, database_url: str | None = None) -> Iterator[Session]:
    """Provide a transactional scope around a series of operations."""

    session = get_session(database_url=database_url)
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def dispose_engines() -> None:
    """Dispose and forget every cached engine."""

    with _LOCK:
        for engine, _ in _ENGINES.values():
            engine.dispose()
        _ENGINES.clear()


__all__ = [
    "dispose_engines",
    "get_engine",
    "get_session",
    "session_scope",
]
