"""Input validation predicates and the canonical field error messages.

All predicates accept ``None`` / non-string input and return ``False`` instead
of raising, so callers can chain them on raw JSON payload values.
"""
from __future__ import annotations

import re
from decimal import Decimal, InvalidOperation
from typing import Any

EMAIL_PATTERN = re.compile(r"^[A-Za-z0-9+_.-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}$")
PHONE_PATTERN = re.compile(
    r"^[+]?[(]?[0-9]{1,4}[)]?[-\s.]?[(]?[0-9]{1,4}[)]?[-\s.]?[0-9]{1,4}[-\s.]?[0-9]{1,9}$"
)
ISBN_PATTERN = re.compile(r"^(?:[0-9]{9}[0-9X]|97[89][0-9]{10})$")
USERNAME_PATTERN = re.compile(r"^[a-zA-Z0-9_]{3,20}$")
ALPHABETIC_PATTERN = re.compile(r"^[a-zA-Z\s]+$")
_SANITIZE_PATTERN = re.compile(r"[<>\"';]")
_ISBN_SEPARATORS = re.compile(r"[- ]")

EMAIL_ERROR = "Please enter a valid email address (e.g., user@example.com)"
PHONE_ERROR = "Please enter a valid phone number"
PASSWORD_ERROR = "Password must be at least 8 characters long"
STRONG_PASSWORD_ERROR = "Password must be at least 8 characters with uppercase, lowercase, and digit"
USERNAME_ERROR = "Username must be 3-20 characters (letters, numbers, underscore only)"
PASSWORD_MISMATCH_ERROR = "Passwords do not match"
ISBN_ERROR = "Invalid ISBN format"


def _text(value: Any) -> str:
    if value is None:
        return ""
    return value if isinstance(value, str) else str(value)


def is_empty(value: Any) -> bool:
    return not _text(value).strip()


def is_truthy(value: Any) -> bool:
    """Read a checkbox-style flag: real bools as-is, strings only when 1/true/yes/on."""
    if isinstance(value, bool):
        return value
    return _text(value).strip().lower() in ("1", "true", "yes", "on")


def is_valid_email(email: Any) -> bool:
    if is_empty(email):
        return False
    return bool(EMAIL_PATTERN.match(_text(email).strip()))


def is_valid_phone(phone: Any) -> bool:
    if is_empty(phone):
        return False
    return bool(PHONE_PATTERN.match(_text(phone).strip()))


def normalize_isbn(isbn: Any) -> str:
    """Strip dashes and spaces; upper-case a trailing check character."""
    return _ISBN_SEPARATORS.sub("", _text(isbn).strip()).upper()


def is_valid_isbn(isbn: Any) -> bool:
    if is_empty(isbn):
        return False
    return bool(ISBN_PATTERN.match(normalize_isbn(isbn)))


def is_valid_password(password: Any) -> bool:
    if is_empty(password):
        return False
    return len(_text(password)) >= 8


def is_strong_password(password: Any) -> bool:
    text = _text(password)
    if is_empty(text) or len(text) < 8:
        return False
    has_upper = any(c.isupper() for c in text)
    has_lower = any(c.islower() for c in text)
    has_digit = any(c.isdigit() for c in text)
    return has_upper and has_lower and has_digit


def passwords_match(password: Any, confirm: Any) -> bool:
    if is_empty(password) or is_empty(confirm):
        return False
    return _text(password) == _text(confirm)


def is_valid_length(value: Any, min_length: int, max_length: int) -> bool:
    if is_empty(value):
        return False
    length = len(_text(value).strip())
    return min_length <= length <= max_length


def is_numeric(value: Any) -> bool:
    if is_empty(value):
        return False
    try:
        float(_text(value).strip())
    except ValueError:
        return False
    return True


def _parse_int(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if is_empty(value):
        return None
    try:
        return int(_text(value).strip())
    except ValueError:
        return None


def is_positive_integer(value: Any) -> bool:
    parsed = _parse_int(value)
    return parsed is not None and parsed > 0


def is_integer_in_range(value: Any, minimum: int, maximum: int) -> bool:
    parsed = _parse_int(value)
    return parsed is not None and minimum <= parsed <= maximum


def is_double_in_range(value: Any, minimum: float, maximum: float) -> bool:
    if not is_numeric(value):
        return False
    parsed = float(_text(value).strip())
    return minimum <= parsed <= maximum


def parse_decimal(value: Any) -> Decimal | None:
    """Return a 2-place Decimal or ``None`` for unparsable input."""
    if value is None or isinstance(value, bool):
        return None
    try:
        parsed = Decimal(_text(value).strip())
    except InvalidOperation:
        return None
    if not parsed.is_finite():
        return None
    return parsed.quantize(Decimal("0.01"))


def sanitize(value: Any) -> str:
    if is_empty(value):
        return ""
    return _SANITIZE_PATTERN.sub("", _text(value).strip())


def is_valid_username(username: Any) -> bool:
    if is_empty(username):
        return False
    return bool(USERNAME_PATTERN.match(_text(username).strip()))


def is_alphabetic(value: Any) -> bool:
    if is_empty(value):
        return False
    return bool(ALPHABETIC_PATTERN.match(_text(value).strip()))


def required_message(field_label: str) -> str:
    return f"{field_label} is required"


# Field checks shared by the membership and staff forms; each returns the
# error message for the field or ``None`` when the value is acceptable.

def full_name_error(value: Any) -> str | None:
    if is_empty(value):
        return required_message("Full name")
    if not is_alphabetic(value):
        return "Full name should only contain letters and spaces"
    if not is_valid_length(value, 3, 100):
        return "Full name must be between 3 and 100 characters"
    return None


def email_error(value: Any) -> str | None:
    if is_empty(value):
        return required_message("Email")
    if not is_valid_email(value):
        return EMAIL_ERROR
    return None


def phone_error(value: Any) -> str | None:
    if is_empty(value):
        return required_message("Phone number")
    if not is_valid_phone(value):
        return PHONE_ERROR
    return None


def address_error(value: Any) -> str | None:
    if is_empty(value):
        return required_message("Address")
    if not is_valid_length(value, 10, 500):
        return "Address must be between 10 and 500 characters"
    return None


def username_error(value: Any, label: str = "Username") -> str | None:
    if is_empty(value):
        return required_message(label)
    if not is_valid_username(value):
        if label == "Username":
            return USERNAME_ERROR
        return f"{label} must be 3-20 alphanumeric characters"
    return None


def password_errors(password: Any, confirm: Any) -> dict:
    errors = {}
    if is_empty(password):
        errors["password"] = required_message("Password")
    elif not is_valid_password(password):
        errors["password"] = PASSWORD_ERROR
    if is_empty(confirm):
        errors["confirm_password"] = "Please confirm the password"
    elif "password" not in errors and not passwords_match(password, confirm):
        errors["confirm_password"] = PASSWORD_MISMATCH_ERROR
    return errors


__all__ = [
    "EMAIL_ERROR",
    "PHONE_ERROR",
    "PASSWORD_ERROR",
    "STRONG_PASSWORD_ERROR",
    "USERNAME_ERROR",
    "PASSWORD_MISMATCH_ERROR",
    "ISBN_ERROR",
    "is_empty",
    "is_truthy",
    "is_valid_email",
    "is_valid_phone",
    "normalize_isbn",
    "is_valid_isbn",
    "is_valid_password",
    "is_strong_password",
    "passwords_match",
    "is_valid_length",
    "is_numeric",
    "is_positive_integer",
    "is_integer_in_range",
    "is_double_in_range",
    "parse_decimal",
    "sanitize",
    "is_valid_username",
    "is_alphabetic",
    "required_message",
    "full_name_error",
    "email_error",
    "phone_error",
    "address_error",
    "username_error",
    "password_errors",
]
