"""Service exports."""

from .errors import (
    LibraryError,
    NotFoundError,
    ConflictError,
    AccessDeniedError,
    ValidationError,
)
from . import (
    auth_service,
    email_templates_service,
    email_delivery,
    auth_link_service,
    password_reset_service,
    members_service,
    librarians_service,
    catalog_service,
    circulation_service,
    requests_service,
    reports_service,
)

__all__ = [
    "LibraryError",
    "NotFoundError",
    "ConflictError",
    "AccessDeniedError",
    "ValidationError",
    "auth_service",
    "email_templates_service",
    "email_delivery",
    "auth_link_service",
    "password_reset_service",
    "members_service",
    "librarians_service",
    "catalog_service",
    "circulation_service",
    "requests_service",
    "reports_service",
]
