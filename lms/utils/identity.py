"""Identity & permission helpers backed by the Flask session cookie.

The login route stores ``user_id`` and ``role`` in the signed session; route
guards read them back here. Account status and librarian permission flags
are checked against the database by the services, not here.
"""
from __future__ import annotations
from typing import Optional, Any, Iterable

from flask import session

SESSION_USER_ID = "user_id"
SESSION_ROLE = "role"
SESSION_USERNAME = "username"


def normalize_email(raw: Any) -> Optional[str]:
    if not isinstance(raw, str):
        return None
    cleaned = raw.strip().lower()
    return cleaned or None


def get_current_user_id() -> Optional[int]:
    uid = session.get(SESSION_USER_ID)
    if uid is None:
        return None
    try:
        return int(uid)
    except (TypeError, ValueError):
        return None


def get_current_role() -> Optional[str]:
    role = session.get(SESSION_ROLE)
    if not isinstance(role, str):
        return None
    return role.upper() or None


def login_session(user_id: int, role: str, username: str | None = None) -> None:
    session.clear()
    session[SESSION_USER_ID] = int(user_id)
    session[SESSION_ROLE] = role
    if username:
        session[SESSION_USERNAME] = username


def logout_session() -> None:
    session.clear()


class PermissionError(Exception):
    pass


class AuthenticationRequiredError(PermissionError):
    pass


def ensure_role(roles: Iterable[str]) -> int:
    """Return the current user id when the session role is one of ``roles``."""
    user_id = get_current_user_id()
    if user_id is None:
        raise AuthenticationRequiredError("Login required")
    allowed = {r.upper() for r in roles}
    if get_current_role() not in allowed:
        raise PermissionError("Insufficient privileges")
    return user_id


__all__ = [
    "SESSION_USER_ID",
    "SESSION_ROLE",
    "normalize_email",
    "get_current_user_id",
    "get_current_role",
    "login_session",
    "logout_session",
    "ensure_role",
    "PermissionError",
    "AuthenticationRequiredError",
]
