"""Shared exception bases for the service layer.

Service modules subclass these with domain names (``BookNotFoundError``,
``RequestStateError`` ...). Each error's ``str()`` is a short machine code
that routes translate into a user-facing message; validation errors also
carry a field -> message mapping.
"""
from __future__ import annotations

from typing import Dict, Optional


class LibraryError(RuntimeError):
    """Base error for business rule violations (HTTP 400)."""

    @property
    def code(self) -> str:
        return str(self.args[0]) if self.args else "error"


class NotFoundError(LibraryError):
    """Referenced record does not exist (HTTP 404)."""


class ConflictError(LibraryError):
    """Operation conflicts with current state (HTTP 409)."""


class AccessDeniedError(LibraryError):
    """Actor lacks the role or permission flag (HTTP 403)."""


class ValidationError(ValueError):
    """Input failed validation; ``fields`` maps field names to messages."""

    def __init__(self, code: str = "validation_failed", fields: Optional[Dict[str, str]] = None) -> None:
        super().__init__(code)
        self.fields: Dict[str, str] = dict(fields or {})

    @property
    def code(self) -> str:
        return str(self.args[0])


def raise_if_errors(errors: Dict[str, str], code: str = "validation_failed") -> None:
    if errors:
        raise ValidationError(code, errors)


__all__ = [
    "LibraryError",
    "NotFoundError",
    "ConflictError",
    "AccessDeniedError",
    "ValidationError",
    "raise_if_errors",
]
