"""Forgotten-password flow: emailed single-use links backed by hashed nonces."""
from __future__ import annotations

import secrets
from typing import Any, Dict, Optional
from urllib.parse import urlencode

from sqlalchemy.orm import Session
from werkzeug.security import check_password_hash, generate_password_hash

from lms.db import app_session
from lms.db.repositories import reset_passwords_repo, users_repo
from lms.services import auth_service, email_delivery
from lms.services.auth_link_service import (
    PayloadValidationError,
    TokenDecodeError,
    TokenExpiredError,
    decode_payload,
    encode_payload,
)
from lms.services.errors import LibraryError, ValidationError
from lms.utils import validation
from lms.utils.logging import get_logger

LOG = get_logger("password_reset_service")
RESET_PATH = "/auth/password/reset"


class PasswordResetError(LibraryError):
    """Base error for password reset workflows."""


class PendingResetNotFoundError(PasswordResetError):
    """Raised when the token does not match the latest issued nonce."""


class PasswordResetValidationError(ValidationError):
    """Raised when the new password fails validation."""


def _find_user(identifier: str):
    cleaned = (identifier or "").strip()
    if not cleaned:
        raise PasswordResetError("identifier_required")
    if "@" in cleaned:
        return users_repo.get_by_email(cleaned)
    return users_repo.get_by_username(cleaned)


def issue_reset_token(user_id: int) -> str:
    """Store a fresh nonce hash for the user and return the link token."""
    nonce = secrets.token_urlsafe(24)
    reset_passwords_repo.upsert_token(user_id=user_id, nonce_hash=generate_password_hash(nonce))
    try:
        token = encode_payload({"user_id": user_id, "nonce": nonce})
    except PayloadValidationError as exc:  # pragma: no cover - inputs are generated above
        raise PasswordResetError(str(exc)) from exc
    LOG.info("Issued password reset token user_id=%s", user_id)
    return token


def reset_url_for(token: str) -> str:
    return email_delivery.absolute_site_url(f"{RESET_PATH}?{urlencode({'token': token})}")


def request_password_reset(identifier: str) -> Dict[str, Any]:
    """Email a reset link; unknown or inactive accounts are a silent no-op."""
    user = _find_user(identifier)
    if user is None or not user.is_active_account:
        LOG.info("Password reset requested for unknown/inactive account")
        return {"issued": False, "email_sent": False}
    token = issue_reset_token(user.id)
    sent = email_delivery.notify(
        "password_reset",
        recipient=user.email,
        context={"user_name": user.full_name or user.username, "reset_url": reset_url_for(token)},
    )
    return {"issued": True, "email_sent": sent}


def resolve_pending_reset(token: str, *, session: Optional[Session] = None) -> int:
    """Validate ``token`` against the stored nonce; returns the user id."""
    if not token:
        raise PasswordResetError("token_required")
    try:
        payload = decode_payload(token)
    except (TokenDecodeError, TokenExpiredError) as exc:
        raise PasswordResetError(str(exc)) from exc
    record = reset_passwords_repo.get_token(user_id=payload["user_id"], session=session)
    if record is None:
        raise PendingResetNotFoundError("pending_reset_missing")
    if not check_password_hash(record.nonce_hash, payload["nonce"]):
        raise PendingResetNotFoundError("reset_token_superseded")
    return payload["user_id"]


def complete_password_reset(token: str, new_password: str, confirm_password: str) -> int:
    """Set the new password; nonce, account status and update share one transaction."""
    errors = validation.password_errors(new_password, confirm_password)
    with app_session() as session:
        user_id = resolve_pending_reset(token, session=session)
        if errors:
            raise PasswordResetValidationError("validation_failed", errors)
        user = users_repo.get_user(user_id, session=session)
        if user is None:
            raise PendingResetNotFoundError("user_not_found")
        if not user.is_active_account:
            raise PasswordResetError("account_inactive")
        users_repo.update_password(user_id, auth_service.hash_password(new_password), session=session)
        if not reset_passwords_repo.delete_token(user_id=user_id, session=session):
            raise PendingResetNotFoundError("pending_reset_missing")
    LOG.info("Password reset completed user_id=%s", user_id)
    return user_id


def has_pending_token(user_id: int) -> bool:
    return reset_passwords_repo.get_token(user_id=user_id) is not None


def purge_expired_records(older_than_days: Optional[int] = None) -> int:
    if older_than_days is None:
        return reset_passwords_repo.purge_expired_tokens()
    return reset_passwords_repo.purge_expired_tokens(older_than_days=older_than_days)


__all__ = [
    "PasswordResetError",
    "PendingResetNotFoundError",
    "PasswordResetValidationError",
    "issue_reset_token",
    "reset_url_for",
    "request_password_reset",
    "resolve_pending_reset",
    "complete_password_reset",
    "has_pending_token",
    "purge_expired_records",
]
