"""Encrypted password reset link tokens.

A token is a Fernet ciphertext of ``{"user_id", "nonce", "issued_at"}``
keyed from the application's SECRET_KEY (the Flask config value when an app
context is active, otherwise ``LMS_SECRET_KEY``). Tokens older than
``LMS_RESET_TOKEN_HOURS`` are rejected on decode.
"""
from __future__ import annotations

import base64
import hashlib
import json
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional, Type

from cryptography.fernet import Fernet, InvalidToken
from flask import current_app, has_app_context

from lms import config as app_config
from lms.utils.logging import get_logger

LOG = get_logger("auth_link_service")


class AuthLinkError(RuntimeError):
    """Base error for auth link failures."""


class SecretKeyUnavailableError(AuthLinkError):
    pass


class TokenDecodeError(AuthLinkError):
    pass


class TokenExpiredError(AuthLinkError):
    pass


class PayloadValidationError(AuthLinkError):
    """Raised when callers attempt to encode malformed payloads."""


def token_ttl() -> timedelta:
    return timedelta(hours=app_config.reset_token_hours())


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _parse_timestamp(raw: str, error: Type[AuthLinkError]) -> datetime:
    if raw.endswith("Z"):
        raw = raw[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(raw)
    except ValueError as exc:
        raise error("invalid_timestamp") from exc
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def _cipher() -> Fernet:
    secret: Any = current_app.config.get("SECRET_KEY") if has_app_context() else None
    secret = secret or app_config.secret_key()
    if not secret:
        raise SecretKeyUnavailableError("secret_key_missing")
    if not isinstance(secret, bytes):
        secret = str(secret).encode("utf-8")
    return Fernet(base64.urlsafe_b64encode(hashlib.sha256(secret).digest()))


def _checked_fields(document: Dict[str, Any], error: Type[AuthLinkError]) -> Dict[str, Any]:
    """Normalise ``user_id``/``nonce``/``issued_at``; ``error`` names the failure class."""
    try:
        user_id = int(document.get("user_id"))  # type: ignore[arg-type]
    except (TypeError, ValueError) as exc:
        raise error("user_id_required") from exc
    nonce = document.get("nonce")
    if not isinstance(nonce, str) or not nonce:
        raise error("nonce_required")
    issued_at = document.get("issued_at")
    if not isinstance(issued_at, str):
        raise error("issued_at_invalid")
    _parse_timestamp(issued_at, error)
    return {"user_id": user_id, "nonce": nonce, "issued_at": issued_at}


def encode_payload(payload: Dict[str, Any]) -> str:
    document = dict(payload)
    if document.get("issued_at") is None:
        document["issued_at"] = _utcnow().replace(microsecond=0).isoformat()
    fields = _checked_fields(document, PayloadValidationError)
    raw = json.dumps(fields, sort_keys=True, separators=(",", ":")).encode("utf-8")
    return _cipher().encrypt(raw).decode("utf-8")


def decode_payload(token: str, *, now: Optional[datetime] = None) -> Dict[str, Any]:
    """Decrypt ``token`` and enforce its lifetime.

    Raises ``TokenDecodeError`` for anything that is not a well formed token
    from this installation and ``TokenExpiredError`` once the link is older
    than :func:`token_ttl`.
    """
    if not token or not isinstance(token, str):
        raise TokenDecodeError("token_required")
    try:
        plain = _cipher().decrypt(token.encode("utf-8"))
    except InvalidToken as exc:
        LOG.warning("Rejected invalid reset link token")
        raise TokenDecodeError("invalid_token") from exc
    try:
        document = json.loads(plain.decode("utf-8"))
    except ValueError as exc:
        raise TokenDecodeError("invalid_payload") from exc
    if not isinstance(document, dict):
        raise TokenDecodeError("invalid_payload")
    fields = _checked_fields(document, TokenDecodeError)
    age = (now or _utcnow()) - _parse_timestamp(fields["issued_at"], TokenDecodeError)
    if age > token_ttl():
        raise TokenExpiredError("reset_token_expired")
    return fields


__all__ = [
    "token_ttl",
    "encode_payload",
    "decode_payload",
    "AuthLinkError",
    "SecretKeyUnavailableError",
    "TokenDecodeError",
    "TokenExpiredError",
    "PayloadValidationError",
]
