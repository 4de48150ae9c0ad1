"""Administration of librarian (staff) accounts.

The employee id doubles as the login username. Permission flags gate the
approve, issue/return and revoke-membership operations.
"""
from __future__ import annotations

from typing import Any, Dict, List, Mapping, Optional

from lms.db import app_session
from lms.db.models import User
from lms.db.repositories import users_repo
from lms.services import auth_service
from lms.services.errors import ConflictError, NotFoundError, ValidationError
from lms.utils import constants, validation
from lms.utils.identity import normalize_email
from lms.utils.logging import get_logger

LOG = get_logger("librarians_service")


class LibrarianNotFoundError(NotFoundError):
    """Raised when the id does not resolve to a librarian account."""


class LibrarianValidationError(ValidationError):
    """Raised when the staff form fails validation."""


class LibrarianStateError(ConflictError):
    """Raised for redundant status transitions."""


def _field(data: Mapping[str, Any], name: str) -> str:
    value = data.get(name)
    return value.strip() if isinstance(value, str) else ""


def _permissions(data: Mapping[str, Any], defaults: Optional[Mapping[str, bool]] = None) -> Dict[str, bool]:
    source = data.get("permissions") if isinstance(data.get("permissions"), Mapping) else data
    result: Dict[str, bool] = {}
    for name in constants.PERMISSIONS:
        if name in source:  # type: ignore[operator]
            result[name] = validation.is_truthy(source[name])  # type: ignore[index]
        elif defaults is not None:
            result[name] = bool(defaults.get(name, False))
        else:
            result[name] = False
    return result


def _get_librarian(librarian_id: int) -> User:
    user = users_repo.get_user(librarian_id)
    if user is None or not user.is_librarian:
        raise LibrarianNotFoundError("librarian_not_found")
    return user


def register_librarian(data: Mapping[str, Any]) -> User:
    employee_id = _field(data, "employee_id")
    full_name = _field(data, "full_name")
    email = _field(data, "email")
    phone = _field(data, "phone")
    password = data.get("password") or ""
    confirm = data.get("confirm_password") or ""

    errors: Dict[str, str] = {}
    for name, message in (
        ("employee_id", validation.username_error(employee_id, label="Employee ID")),
        ("full_name", validation.full_name_error(full_name)),
        ("email", validation.email_error(email)),
        ("phone", validation.phone_error(phone)),
    ):
        if message:
            errors[name] = message
    errors.update(validation.password_errors(password, confirm))
    if errors:
        raise LibrarianValidationError("validation_failed", errors)

    if users_repo.username_exists(employee_id) or users_repo.employee_id_exists(employee_id):
        raise LibrarianValidationError(
            "employee_id_exists", {"employee_id": "Employee ID already exists. Please use a different one."}
        )
    if users_repo.email_exists(email):
        raise LibrarianValidationError(
            "email_exists", {"email": "Email already registered. Please use a different email."}
        )

    permissions = _permissions(data)
    try:
        user = users_repo.create_user(
            username=employee_id,
            employee_id=employee_id,
            password_hash=auth_service.hash_password(password),
            role=constants.ROLE_LIBRARIAN,
            full_name=validation.sanitize(full_name),
            email=normalize_email(email),
            phone=phone,
            status=constants.USER_ACTIVE,
            **permissions,
        )
    except users_repo.UserExistsError as exc:
        raise LibrarianValidationError(
            "employee_id_exists", {"employee_id": "Employee ID already exists. Please use a different one."}
        ) from exc
    LOG.info("Registered librarian id=%s employee_id=%s permissions=%s", user.id, employee_id, permissions)
    return user


def update_librarian(librarian_id: int, data: Mapping[str, Any]) -> User:
    """Edit name, contact details, permission flags and optionally the password."""
    current = _get_librarian(librarian_id)
    values: Dict[str, Any] = {}
    errors: Dict[str, str] = {}
    if "full_name" in data:
        full_name = _field(data, "full_name")
        message = validation.full_name_error(full_name)
        if message:
            errors["full_name"] = message
        else:
            values["full_name"] = validation.sanitize(full_name)
    if "email" in data:
        email = _field(data, "email")
        message = validation.email_error(email)
        if message:
            errors["email"] = message
        elif users_repo.email_exists(email, exclude_user_id=librarian_id):
            errors["email"] = "Email already registered. Please use a different email."
        else:
            values["email"] = normalize_email(email)
    if "phone" in data:
        phone = _field(data, "phone")
        message = validation.phone_error(phone)
        if message:
            errors["phone"] = message
        else:
            values["phone"] = phone
    new_password = data.get("password")
    if new_password:
        errors.update(validation.password_errors(new_password, data.get("confirm_password")))
    if errors:
        raise LibrarianValidationError("validation_failed", errors)

    values.update(_permissions(data, defaults=current.permissions()))
    with app_session() as session:
        record = users_repo.update_fields(librarian_id, values, session=session)
        if new_password:
            users_repo.update_password(librarian_id, auth_service.hash_password(new_password), session=session)
    LOG.info("Updated librarian id=%s fields=%s", librarian_id, sorted(values))
    return record  # type: ignore[return-value]


def set_librarian_status(librarian_id: int, active: bool) -> User:
    librarian = _get_librarian(librarian_id)
    target = constants.USER_ACTIVE if active else constants.USER_INACTIVE
    if librarian.status == target:
        raise LibrarianStateError("librarian_already_active" if active else "librarian_already_inactive")
    users_repo.update_status(librarian_id, target)
    LOG.info("Librarian id=%s status -> %s", librarian_id, target)
    return _get_librarian(librarian_id)


def deactivate_librarian(librarian_id: int) -> User:
    return set_librarian_status(librarian_id, False)


def get_librarian(librarian_id: int) -> User:
    return _get_librarian(librarian_id)


def list_librarians(search: Optional[str] = None) -> List[User]:
    if search and search.strip():
        return users_repo.search(search, constants.ROLE_LIBRARIAN)
    return users_repo.list_by_role(constants.ROLE_LIBRARIAN)


__all__ = [
    "LibrarianNotFoundError",
    "LibrarianValidationError",
    "LibrarianStateError",
    "register_librarian",
    "update_librarian",
    "set_librarian_status",
    "deactivate_librarian",
    "get_librarian",
    "list_librarians",
]
