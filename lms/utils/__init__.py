"""Utility helpers.

Re-exports the identity helpers most callers need so routes can import
from ``lms.utils`` directly.
"""
from .identity import (
    normalize_email,
    get_current_user_id,
    get_current_role,
    ensure_role,
    PermissionError,
    AuthenticationRequiredError,
)
from . import constants  # re-export module for role/status access

__all__ = [
    "normalize_email",
    "get_current_user_id",
    "get_current_role",
    "ensure_role",
    "PermissionError",
    "AuthenticationRequiredError",
    "constants",
]
