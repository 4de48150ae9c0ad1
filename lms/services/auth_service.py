"""Login and password helpers.

Passwords are stored as werkzeug salted hashes. Login requires the
username, the password and the role the user picked on the login form;
only ACTIVE accounts can sign in.
"""
from __future__ import annotations

from typing import Optional

from werkzeug.security import check_password_hash, generate_password_hash

from lms.db.models import User
from lms.db.repositories import users_repo
from lms.services.errors import AccessDeniedError, LibraryError, NotFoundError, ValidationError
from lms.utils import constants, validation
from lms.utils.logging import get_logger

LOG = get_logger("auth_service")


class InvalidCredentialsError(LibraryError):
    """Raised for any username/password/role/status mismatch on login."""


class PasswordChangeError(ValidationError):
    """Raised when a password change request fails validation."""


def normalize_role(role: Optional[str]) -> str:
    candidate = (role or "").strip().upper()
    if candidate not in constants.ROLES:
        raise InvalidCredentialsError("invalid_role")
    return candidate


def hash_password(plaintext: str) -> str:
    if not plaintext or not plaintext.strip():
        raise ValueError("password_required")
    return generate_password_hash(plaintext)


def verify_password(plaintext: Optional[str], password_hash: Optional[str]) -> bool:
    if not plaintext or not password_hash:
        return False
    try:
        return check_password_hash(password_hash, plaintext)
    except ValueError:
        LOG.warning("Stored password hash has an unknown format")
        return False


def authenticate(username: Optional[str], password: Optional[str], role: Optional[str]) -> User:
    """Return the matching ACTIVE user or raise InvalidCredentialsError."""
    cleaned = (username or "").strip()
    if not cleaned or not password:
        raise InvalidCredentialsError("credentials_required")
    normalized_role = normalize_role(role)
    user = users_repo.get_by_username(cleaned)
    if (
        user is None
        or user.role != normalized_role
        or user.status != constants.USER_ACTIVE
        or not verify_password(password, user.password_hash)
    ):
        LOG.info("Rejected login username=%s role=%s", cleaned, normalized_role)
        raise InvalidCredentialsError("invalid_credentials")
    LOG.info("User logged in id=%s username=%s role=%s", user.id, user.username, user.role)
    return user


def require_staff(user_id: Optional[int], permission: Optional[str] = None) -> User:
    """Load an ACTIVE librarian/admin, optionally checking a permission flag."""
    user = users_repo.get_user(user_id) if user_id is not None else None
    if user is None or not user.is_active_account:
        raise AccessDeniedError("account_inactive")
    if not (user.is_librarian or user.is_admin):
        raise AccessDeniedError("staff_only")
    if permission and not user.has_permission(permission):
        LOG.info("Permission %s denied user_id=%s", permission, user_id)
        raise AccessDeniedError("permission_denied")
    return user


def require_active_member(user_id: Optional[int]) -> User:
    user = users_repo.get_user(user_id) if user_id is not None else None
    if user is None or not user.is_member:
        raise AccessDeniedError("not_a_member")
    if not user.is_active_account:
        raise AccessDeniedError("member_inactive")
    return user


def change_password(user_id: int, current_password: str, new_password: str, confirm_password: str) -> None:
    user = users_repo.get_user(user_id)
    if user is None:
        raise NotFoundError("user_not_found")
    errors = {}
    if not verify_password(current_password, user.password_hash):
        errors["current_password"] = "Current password is incorrect"
    if not validation.is_valid_password(new_password):
        errors["new_password"] = validation.PASSWORD_ERROR
    elif not validation.passwords_match(new_password, confirm_password):
        errors["confirm_password"] = validation.PASSWORD_MISMATCH_ERROR
    if errors:
        raise PasswordChangeError("password_change_invalid", errors)
    users_repo.update_password(user_id, hash_password(new_password))
    LOG.info("Password changed user_id=%s", user_id)


__all__ = [
    "InvalidCredentialsError",
    "PasswordChangeError",
    "normalize_role",
    "hash_password",
    "verify_password",
    "authenticate",
    "require_staff",
    "require_active_member",
    "change_password",
]
