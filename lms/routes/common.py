"""Shared JSON helpers for the API blueprints.

Role guards return ``True`` or a ready ``(response, status)`` tuple so
handlers can do ``auth = require_role_json(...); if auth is not True:
return auth``. Service errors raised inside a handler are translated by the
blueprint error handler installed with :func:`register_error_handlers`.
"""
from __future__ import annotations

from datetime import date
from typing import Any, Dict, Iterable, Optional

from flask import jsonify, request
from flask_babel import gettext as _

from lms.services.errors import (
    AccessDeniedError,
    ConflictError,
    LibraryError,
    NotFoundError,
    ValidationError,
)
from lms.utils import AuthenticationRequiredError, PermissionError, ensure_role, validation
from lms.utils.logging import get_logger

LOG = get_logger("routes")

# Plain strings; translated per request in _error_message_for.
_ERROR_MESSAGES = {
    "login_required": "Please log in to continue.",
    "forbidden": "You do not have access to this page.",
    "invalid_role": "Select a valid role.",
    "credentials_required": "Please enter username and password.",
    "invalid_credentials": "Invalid username, password or role.",
    "account_inactive": "Your account is not active.",
    "staff_only": "Only library staff can perform this action.",
    "permission_denied": "You do not have permission to perform this action.",
    "not_a_member": "User is not a member.",
    "member_inactive": "Member account is not active.",
    "member_not_found": "Member not found.",
    "member_already_active": "Member is already active.",
    "member_already_inactive": "Member is already inactive.",
    "member_has_active_borrows": "Member still has borrowed books.",
    "librarian_not_found": "Librarian not found.",
    "librarian_already_active": "Librarian is already active.",
    "librarian_already_inactive": "Librarian is already inactive.",
    "user_not_found": "User not found.",
    "validation_failed": "Please correct the highlighted fields.",
    "username_exists": "Username already exists. Please choose another.",
    "email_exists": "Email already registered. Please use another email.",
    "employee_id_exists": "Employee ID already exists.",
    "user_exists": "User already exists.",
    "isbn_exists": "A book with this ISBN already exists.",
    "book_not_found": "Book not found.",
    "book_unavailable": "Book is not available.",
    "book_has_active_borrows": "Book has copies on loan and cannot be deleted.",
    "book_has_history": "Book has borrowing history and cannot be deleted.",
    "request_not_found": "Request not found.",
    "request_not_pending": "Request has already been processed.",
    "duplicate_request": "You already have a pending request for this book.",
    "borrow_not_found": "Borrow record not found.",
    "already_returned": "This book has already been returned.",
    "renewal_not_allowed": "Renewal is not allowed for this loan.",
    "borrow_overdue": "Overdue loans cannot be renewed.",
    "invalid_duration": "Duration must be between 1 and 90 days.",
    "invalid_condition": "Condition must be Good, Damaged or Lost.",
    "invalid_fee": "Fees must be non-negative amounts.",
    "invalid_date": "Enter valid dates in YYYY-MM-DD format.",
    "invalid_date_range": "End date must be on or after the start date.",
    "unknown_report": "Report type not implemented.",
    "unsupported_template": "Template key is not supported.",
    "subject_multiline": "Subject must be a single line.",
    "subject_too_long": "Subject is too long.",
    "body_required": "Template body is required.",
    "template_syntax_error": "Template contains a syntax error.",
    "password_change_invalid": "Password could not be changed.",
    "identifier_required": "Enter your username or email.",
    "token_required": "Reset link is missing.",
    "invalid_token": "Reset link is invalid.",
    "reset_token_expired": "Reset link has expired.",
    "pending_reset_missing": "Reset link is no longer valid.",
    "reset_token_superseded": "A newer reset link has been sent.",
    "invalid_request_status": "Unknown request status.",
    "member_required": "Member ID or username is required.",
}


def _error_message_for(code: str) -> Optional[str]:
    message = _ERROR_MESSAGES.get(code)
    return _(message) if message else None


def _json_error(
    code: str,
    status: int = 400,
    *,
    message: Optional[str] = None,
    details: Optional[Dict[str, Any]] = None,
):
    payload: Dict[str, Any] = {"error": code}
    final_message = message or _error_message_for(code)
    if final_message:
        payload["message"] = final_message
    if details is not None:
        payload["details"] = details
    return jsonify(payload), status


def require_role_json(roles: Iterable[str]):
    """``True`` when the session role is in ``roles``; otherwise 401/403."""
    try:
        ensure_role(roles)
    except AuthenticationRequiredError:
        return _json_error("login_required", 401)
    except PermissionError:
        return _json_error("forbidden", 403)
    return True


def _status_for(exc: Exception) -> int:
    if isinstance(exc, NotFoundError):
        return 404
    if isinstance(exc, ConflictError):
        return 409
    if isinstance(exc, AccessDeniedError):
        return 403
    return 400


def domain_error_response(exc: Exception):
    code = str(exc.args[0]) if exc.args else "error"
    status = _status_for(exc)
    details = exc.fields if isinstance(exc, ValidationError) and exc.fields else None
    LOG.info("Request %s %s failed: %s (%s)", request.method, request.path, code, status)
    return _json_error(code, status, details=details)


def register_error_handlers(bp) -> None:
    bp.register_error_handler(LibraryError, domain_error_response)
    bp.register_error_handler(ValueError, domain_error_response)


def payload() -> Dict[str, Any]:
    data = request.get_json(silent=True)
    if isinstance(data, dict):
        return data
    return request.form.to_dict() if request.form else {}


def parse_date_arg(name: str) -> Optional[date]:
    raw = (request.args.get(name) or "").strip()
    if not raw:
        return None
    try:
        return date.fromisoformat(raw)
    except ValueError as exc:
        raise ValidationError("invalid_date", {name: "Enter valid dates in YYYY-MM-DD format."}) from exc


def int_field(data: Dict[str, Any], name: str) -> int:
    try:
        return int(str(data.get(name)).strip())
    except (TypeError, ValueError) as exc:
        raise ValidationError("validation_failed", {name: "A numeric id is required."}) from exc


def bool_field(data: Dict[str, Any], name: str, default: bool = True) -> bool:
    value = data.get(name)
    if value is None or value == "":
        return default
    return validation.is_truthy(value)


def flag_arg(name: str) -> bool:
    return validation.is_truthy(request.args.get(name))


__all__ = [
    "_json_error",
    "_error_message_for",
    "require_role_json",
    "domain_error_response",
    "register_error_handlers",
    "payload",
    "parse_date_arg",
    "int_field",
    "bool_field",
    "flag_arg",
]
