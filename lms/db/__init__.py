"""Database layer root: engine/session management re-exports."""

from .engine import (
    init_engine_once,
    get_engine,
    get_session_factory,
    get_scoped_session,
    app_session,
    session_scope,
)

__all__ = [
    "init_engine_once",
    "get_engine",
    "get_session_factory",
    "get_scoped_session",
    "app_session",
    "session_scope",
]
