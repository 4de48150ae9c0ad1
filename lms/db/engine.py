"""Database engine & session management.

SQLite file (``LMS_DB_PATH``) by default; any SQLAlchemy URL can be supplied
through ``LMS_DATABASE_URL`` (MySQL deployments use ``mysql+pymysql://``).
"""
from __future__ import annotations

import os, threading
try:  # POSIX file locking for multi-worker schema creation
    import fcntl  # type: ignore
except ImportError:  # pragma: no cover - non-POSIX platforms
    fcntl = None  # type: ignore
from contextlib import contextmanager
from typing import Optional, Iterator, Callable

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import sessionmaker, scoped_session, Session as SASession
from sqlalchemy.pool import StaticPool

from lms.utils.logging import get_logger
from lms.db.models import Base
from lms import config as app_config

_engine: Optional[Engine] = None
_SessionFactory: Optional[Callable[[], SASession]] = None
_scoped: Optional[scoped_session] = None
_LOCK = threading.Lock()

LOG = get_logger("lms.db")


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record) -> None:  # pragma: no cover - driver hook
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def _build_sqlite_engine(db_path: str) -> Engine:
    if db_path == ":memory:":
        # one shared connection so every thread sees the same in-memory schema
        return create_engine(
            "sqlite:///:memory:",
            future=True,
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
        )
    parent_dir = os.path.dirname(os.path.abspath(db_path)) or "."
    os.makedirs(parent_dir, exist_ok=True)
    if not os.access(parent_dir, os.W_OK):
        raise RuntimeError(f"library DB directory not writable: {parent_dir}")
    return create_engine(f"sqlite:///{db_path}", future=True)


def init_engine_once() -> None:
    global _engine, _SessionFactory, _scoped
    if _engine is not None:
        return
    with _LOCK:
        if _engine is not None:
            return
        url = app_config.database_url()
        db_path = app_config.get_db_path()
        if url:
            LOG.info("Initializing library database engine from LMS_DATABASE_URL (%s)", url.split("://", 1)[0])
            _engine = create_engine(url, future=True, pool_pre_ping=True)
        else:
            LOG.info("Initializing library database engine at %s", db_path)
            _engine = _build_sqlite_engine(db_path)
        if _engine.dialect.name == "sqlite":
            event.listen(_engine, "connect", _enable_sqlite_foreign_keys)
        _SessionFactory = sessionmaker(bind=_engine, expire_on_commit=False, class_=SASession)
        _scoped = scoped_session(_SessionFactory)
        if url or db_path == ":memory:" or fcntl is None:
            _safe_create_schema()
        else:
            # Cross-process lock so parallel workers do not race on DDL.
            lock_path = os.path.join(os.path.dirname(os.path.abspath(db_path)) or ".", ".lms_schema.lock")
            with open(lock_path, "w") as lf:
                try:
                    fcntl.flock(lf, fcntl.LOCK_EX)
                    _safe_create_schema()
                finally:
                    fcntl.flock(lf, fcntl.LOCK_UN)
        LOG.debug("library schema ready")


def _safe_create_schema() -> None:
    """Run metadata.create_all, tolerating the 'already exists' race."""
    if _engine is None:
        return
    try:
        Base.metadata.create_all(_engine)
    except OperationalError as e:  # pragma: no cover - concurrency edge
        if "already exists" in str(e).lower():
            LOG.warning("Schema create encountered existing tables (benign race)")
        else:
            raise


def get_engine() -> Engine:
    if _engine is None:
        init_engine_once()
    return _engine  # type: ignore[return-value]


def get_session_factory() -> Callable[[], SASession]:
    if _SessionFactory is None:
        init_engine_once()
    return _SessionFactory  # type: ignore[return-value]


def get_scoped_session() -> scoped_session:
    if _scoped is None:
        init_engine_once()
    if _scoped is None:
        raise RuntimeError("Scoped session could not be initialized.")
    return _scoped  # type: ignore[return-value]


@contextmanager
def app_session() -> Iterator[SASession]:
    scoped = get_scoped_session()
    sess = scoped()
    try:
        yield sess
        sess.commit()
    except Exception:
        sess.rollback()
        raise
    finally:
        sess.close()


@contextmanager
def session_scope(session: Optional[SASession] = None) -> Iterator[SASession]:
    """Join the caller's transaction when given one, else open a new one.

    Repository helpers accept an optional ``session`` so services can run
    several of them inside a single ``app_session()`` transaction. Never call
    a helper without ``session=`` from inside an open ``app_session()``: the
    scoped registry hands back the same Session and the inner block would
    commit and close it.
    """
    if session is not None:
        yield session
        return
    with app_session() as sess:
        yield sess


def reset_for_tests(drop: bool = False) -> None:
    global _engine, _SessionFactory, _scoped
    with _LOCK:
        if _scoped is not None:
            _scoped.remove()
        if _engine is not None and drop:
            try:
                Base.metadata.drop_all(_engine)
            except Exception:
                LOG.warning("Failed dropping tables during reset", exc_info=True)
        if _engine is not None:
            _engine.dispose()
        _engine = None
        _SessionFactory = None
        _scoped = None


__all__ = [
    "init_engine_once",
    "get_engine",
    "get_session_factory",
    "get_scoped_session",
    "app_session",
    "session_scope",
    "reset_for_tests",
]
