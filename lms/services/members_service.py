"""Membership lifecycle: application, approval, revocation and lookups."""
from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional

from lms.db import app_session
from lms.db.models import User
from lms.db.repositories import borrowed_books_repo, users_repo
from lms.services import auth_service, email_delivery
from lms.services.errors import ConflictError, NotFoundError, ValidationError
from lms.utils import constants, validation
from lms.utils.identity import normalize_email
from lms.utils.logging import get_logger

LOG = get_logger("members_service")


class MemberNotFoundError(NotFoundError):
    """Raised when the member id/code/username does not resolve to a member."""


class MembershipStateError(ConflictError):
    """Raised when a status transition is not allowed."""


class MembershipValidationError(ValidationError):
    """Raised when the application form fails validation."""


def _field(data: Mapping[str, Any], name: str) -> str:
    value = data.get(name)
    return value.strip() if isinstance(value, str) else ""


def _get_member(member_id: int) -> User:
    user = users_repo.get_user(member_id)
    if user is None or not user.is_member:
        raise MemberNotFoundError("member_not_found")
    return user


def apply_for_membership(data: Mapping[str, Any]) -> User:
    """Validate the application form and create a PENDING member account."""
    full_name = _field(data, "full_name")
    email = _field(data, "email")
    phone = _field(data, "phone")
    address = _field(data, "address")
    username = _field(data, "username")
    password = data.get("password") or ""
    confirm = data.get("confirm_password") or ""

    errors: Dict[str, str] = {}
    for name, message in (
        ("full_name", validation.full_name_error(full_name)),
        ("email", validation.email_error(email)),
        ("phone", validation.phone_error(phone)),
        ("address", validation.address_error(address)),
        ("username", validation.username_error(username)),
    ):
        if message:
            errors[name] = message
    errors.update(validation.password_errors(password, confirm))
    if errors:
        raise MembershipValidationError("validation_failed", errors)

    if users_repo.username_exists(username):
        raise MembershipValidationError(
            "username_exists", {"username": "Username already exists. Please choose another."}
        )
    if users_repo.email_exists(email):
        raise MembershipValidationError(
            "email_exists", {"email": "Email already registered. Please use another email."}
        )

    try:
        user = users_repo.create_user(
            username=username,
            password_hash=auth_service.hash_password(password),
            role=constants.ROLE_MEMBER,
            full_name=validation.sanitize(full_name),
            email=normalize_email(email),
            phone=phone,
            address=validation.sanitize(address),
            status=constants.USER_PENDING,
        )
    except users_repo.UserExistsError as exc:
        raise MembershipValidationError("user_exists", {"username": "Username already exists. Please choose another."}) from exc
    LOG.info("Membership application received user_id=%s username=%s", user.id, username)
    return user


def approve_membership(member_id: int) -> User:
    """Activate a PENDING (or reactivate an INACTIVE) member and email them."""
    with app_session() as session:
        member = users_repo.get_user(member_id, session=session)
        if member is None or not member.is_member:
            raise MemberNotFoundError("member_not_found")
        if member.status == constants.USER_ACTIVE:
            raise MembershipStateError("member_already_active")
        was_pending = member.status == constants.USER_PENDING
        member.status = constants.USER_ACTIVE
        if not member.member_code:
            member.member_code = constants.MEMBER_CODE_FORMAT.format(member.id)
        session.flush()
        context = {
            "full_name": member.full_name,
            "username": member.username,
            "member_code": member.member_code,
            "approval_date": datetime.now().strftime("%Y-%m-%d %H:%M"),
            "login_url": email_delivery.absolute_site_url("/auth/login"),
        }
        recipient = member.email
    LOG.info("Membership approved member_id=%s code=%s", member.id, member.member_code)
    if was_pending:
        email_delivery.notify("membership_approved", recipient=recipient, context=context)
    return member


def revoke_membership(member_id: int, actor_id: int) -> User:
    """Set a member INACTIVE; refused while the member still holds books."""
    auth_service.require_staff(actor_id, constants.PERM_REVOKE_MEMBERSHIP)
    with app_session() as session:
        member = users_repo.get_user(member_id, session=session)
        if member is None or not member.is_member:
            raise MemberNotFoundError("member_not_found")
        if member.status == constants.USER_INACTIVE:
            raise MembershipStateError("member_already_inactive")
        active = borrowed_books_repo.active_count_for_member(member_id, session=session)
        if active:
            raise MembershipStateError("member_has_active_borrows")
        member.status = constants.USER_INACTIVE
    LOG.info("Membership revoked member_id=%s by=%s", member_id, actor_id)
    return member


def find_member(term: str) -> Optional[User]:
    """Resolve a member by member code first, then by username."""
    cleaned = (term or "").strip()
    if not cleaned:
        return None
    user = users_repo.get_by_member_code(cleaned) or users_repo.get_by_member_code(cleaned.upper())
    if user is None:
        user = users_repo.get_by_username(cleaned)
    if user is not None and not user.is_member:
        return None
    return user


def get_member(member_id: int) -> User:
    return _get_member(member_id)


def list_members(search: Optional[str] = None, status: Optional[str] = None) -> List[Dict[str, Any]]:
    """Members (newest first, or by name when searching) with active borrow counts."""
    if search and search.strip():
        members = users_repo.search(search, constants.ROLE_MEMBER)
        if status:
            members = [m for m in members if m.status == status.upper()]
    else:
        members = users_repo.list_by_role(constants.ROLE_MEMBER, status=status.upper() if status else None)
    counts = borrowed_books_repo.active_counts_by_member()
    rows = []
    for member in members:
        payload = member.as_dict()
        payload["active_borrows"] = counts.get(member.id, 0)
        rows.append(payload)
    return rows


def members_summary() -> Dict[str, int]:
    return {
        "total": users_repo.count_by_role(constants.ROLE_MEMBER),
        "active": users_repo.count_by_role(constants.ROLE_MEMBER, status=constants.USER_ACTIVE),
        "pending": users_repo.count_by_role(constants.ROLE_MEMBER, status=constants.USER_PENDING),
        "inactive": users_repo.count_by_role(constants.ROLE_MEMBER, status=constants.USER_INACTIVE),
    }


def update_profile(member_id: int, data: Mapping[str, Any]) -> User:
    """Members edit their own contact details (email, phone, address)."""
    _get_member(member_id)
    values: Dict[str, Any] = {}
    errors: Dict[str, str] = {}
    if "email" in data:
        email = _field(data, "email")
        message = validation.email_error(email)
        if message:
            errors["email"] = message
        elif users_repo.email_exists(email, exclude_user_id=member_id):
            errors["email"] = "Email already registered. Please use another email."
        else:
            values["email"] = normalize_email(email)
    if "phone" in data:
        phone = _field(data, "phone")
        message = validation.phone_error(phone)
        if message:
            errors["phone"] = message
        else:
            values["phone"] = phone
    if "address" in data:
        address = _field(data, "address")
        message = validation.address_error(address)
        if message:
            errors["address"] = message
        else:
            values["address"] = validation.sanitize(address)
    if errors:
        raise MembershipValidationError("validation_failed", errors)
    if not values:
        return _get_member(member_id)
    return users_repo.update_fields(member_id, values)  # type: ignore[return-value]


__all__ = [
    "MemberNotFoundError",
    "MembershipStateError",
    "MembershipValidationError",
    "apply_for_membership",
    "approve_membership",
    "revoke_membership",
    "find_member",
    "get_member",
    "list_members",
    "members_summary",
    "update_profile",
]
