"""Repository helpers for user accounts (members, librarians, admins)."""
from __future__ import annotations

from typing import Any, Dict, List, Optional

from sqlalchemy import func, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from lms.db import session_scope
from lms.db.models import User
from lms.utils.logging import get_logger

LOG = get_logger("users_repo")

_UPDATABLE_FIELDS = {
    "full_name",
    "email",
    "phone",
    "address",
    "status",
    "employee_id",
    "member_code",
    "can_approve_requests",
    "can_issue_returns",
    "can_revoke_membership",
}


class UserExistsError(RuntimeError):
    """Raised when a unique username/email/employee id constraint fails."""


def get_user(user_id: int, *, session: Optional[Session] = None) -> Optional[User]:
    with session_scope(session) as s:
        return s.get(User, user_id)


def get_by_username(username: str, *, session: Optional[Session] = None) -> Optional[User]:
    with session_scope(session) as s:
        return s.query(User).filter(User.username == username).one_or_none()


def get_by_email(email: str, *, session: Optional[Session] = None) -> Optional[User]:
    with session_scope(session) as s:
        return s.query(User).filter(func.lower(User.email) == email.strip().lower()).one_or_none()


def get_by_member_code(member_code: str, *, session: Optional[Session] = None) -> Optional[User]:
    with session_scope(session) as s:
        return s.query(User).filter(User.member_code == member_code).one_or_none()


def username_exists(username: str) -> bool:
    with session_scope() as s:
        return s.query(User.id).filter(User.username == username).first() is not None


def email_exists(email: str, *, exclude_user_id: Optional[int] = None) -> bool:
    with session_scope() as s:
        query = s.query(User.id).filter(func.lower(User.email) == email.strip().lower())
        if exclude_user_id is not None:
            query = query.filter(User.id != exclude_user_id)
        return query.first() is not None


def employee_id_exists(employee_id: str, *, exclude_user_id: Optional[int] = None) -> bool:
    with session_scope() as s:
        query = s.query(User.id).filter(User.employee_id == employee_id)
        if exclude_user_id is not None:
            query = query.filter(User.id != exclude_user_id)
        return query.first() is not None


def create_user(*, session: Optional[Session] = None, **fields: Any) -> User:
    """Insert a user row; raises UserExistsError on unique conflicts."""
    try:
        with session_scope(session) as s:
            record = User(**fields)
            s.add(record)
            s.flush()
            LOG.info("Created user id=%s username=%s role=%s", record.id, record.username, record.role)
            return record
    except IntegrityError as exc:
        raise UserExistsError("user_exists") from exc


def update_fields(user_id: int, values: Dict[str, Any], *, session: Optional[Session] = None) -> Optional[User]:
    unknown = set(values) - _UPDATABLE_FIELDS
    if unknown:
        raise ValueError(f"unsupported_fields:{','.join(sorted(unknown))}")
    try:
        with session_scope(session) as s:
            record = s.get(User, user_id)
            if not record:
                return None
            for key, value in values.items():
                setattr(record, key, value)
            s.flush()
            return record
    except IntegrityError as exc:
        raise UserExistsError("user_exists") from exc


def update_password(user_id: int, password_hash: str, *, session: Optional[Session] = None) -> bool:
    with session_scope(session) as s:
        record = s.get(User, user_id)
        if not record:
            return False
        record.password_hash = password_hash
        return True


def update_status(user_id: int, status: str, *, session: Optional[Session] = None) -> bool:
    with session_scope(session) as s:
        record = s.get(User, user_id)
        if not record:
            return False
        record.status = status
        return True


def list_by_role(role: str, *, status: Optional[str] = None) -> List[User]:
    with session_scope() as s:
        query = s.query(User).filter(User.role == role)
        if status:
            query = query.filter(User.status == status)
        return query.order_by(User.created_at.desc(), User.id.desc()).all()


def search(term: str, role: Optional[str] = None) -> List[User]:
    pattern = f"%{(term or '').strip()}%"
    with session_scope() as s:
        query = s.query(User).filter(
            or_(
                User.full_name.ilike(pattern),
                User.email.ilike(pattern),
                User.username.ilike(pattern),
                User.member_code.ilike(pattern),
                User.employee_id.ilike(pattern),
            )
        )
        if role:
            query = query.filter(User.role == role)
        return query.order_by(User.full_name.asc()).all()


def count_by_role(role: str, *, status: Optional[str] = None) -> int:
    with session_scope() as s:
        query = s.query(func.count(User.id)).filter(User.role == role)
        if status:
            query = query.filter(User.status == status)
        return int(query.scalar() or 0)


__all__ = [
    "UserExistsError",
    "get_user",
    "get_by_username",
    "get_by_email",
    "get_by_member_code",
    "username_exists",
    "email_exists",
    "employee_id_exists",
    "create_user",
    "update_fields",
    "update_password",
    "update_status",
    "list_by_role",
    "search",
    "count_by_role",
]
