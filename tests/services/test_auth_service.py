"""Tests for login and password helpers."""
from __future__ import annotations

import pytest

from lms.db.engine import init_engine_once, reset_for_tests
from lms.db.repositories import users_repo
from lms.services import auth_service
from lms.services.errors import AccessDeniedError
from lms.utils import constants


@pytest.fixture(autouse=True)
def in_memory_db(monkeypatch):
    reset_for_tests(drop=True)
    monkeypatch.setenv("LMS_DB_PATH", ":memory:")
    monkeypatch.delenv("LMS_DATABASE_URL", raising=False)
    init_engine_once()
    yield
    reset_for_tests(drop=True)


def _user(username="reader", role=constants.ROLE_MEMBER, status=constants.USER_ACTIVE, **extra):
    return users_repo.create_user(
        username=username,
        password_hash=auth_service.hash_password("secret123"),
        role=role,
        full_name="Test User",
        email=f"{username}@example.com",
        status=status,
        **extra,
    )


def test_hash_password_rejects_blank():
    with pytest.raises(ValueError):
        auth_service.hash_password("   ")
    hashed = auth_service.hash_password("secret123")
    assert hashed != "secret123"
    assert auth_service.verify_password("secret123", hashed)
    assert not auth_service.verify_password("wrong", hashed)
    assert not auth_service.verify_password("secret123", "not-a-hash")


def test_authenticate_requires_matching_role_and_active_status():
    user = _user()
    assert auth_service.authenticate("reader", "secret123", "member").id == user.id

    with pytest.raises(auth_service.InvalidCredentialsError) as excinfo:
        auth_service.authenticate("reader", "secret123", "LIBRARIAN")
    assert str(excinfo.value) == "invalid_credentials"

    with pytest.raises(auth_service.InvalidCredentialsError) as excinfo:
        auth_service.authenticate("reader", "wrong-pass", "MEMBER")
    assert str(excinfo.value) == "invalid_credentials"

    with pytest.raises(auth_service.InvalidCredentialsError) as excinfo:
        auth_service.authenticate("reader", "secret123", "SUPERUSER")
    assert str(excinfo.value) == "invalid_role"

    with pytest.raises(auth_service.InvalidCredentialsError) as excinfo:
        auth_service.authenticate("", "", "MEMBER")
    assert str(excinfo.value) == "credentials_required"


def test_pending_member_cannot_log_in():
    _user(status=constants.USER_PENDING)
    with pytest.raises(auth_service.InvalidCredentialsError):
        auth_service.authenticate("reader", "secret123", "MEMBER")


def test_require_staff_checks_permission_flags():
    librarian = _user("desk", role=constants.ROLE_LIBRARIAN, can_issue_returns=True)
    admin = _user("boss", role=constants.ROLE_ADMIN)
    member = _user()

    assert auth_service.require_staff(librarian.id, constants.PERM_ISSUE_RETURNS).id == librarian.id
    assert auth_service.require_staff(admin.id, constants.PERM_REVOKE_MEMBERSHIP).id == admin.id
    with pytest.raises(AccessDeniedError) as excinfo:
        auth_service.require_staff(librarian.id, constants.PERM_APPROVE_REQUESTS)
    assert str(excinfo.value) == "permission_denied"
    with pytest.raises(AccessDeniedError) as excinfo:
        auth_service.require_staff(member.id)
    assert str(excinfo.value) == "staff_only"


def test_change_password_validates_current_and_confirmation():
    user = _user()
    with pytest.raises(auth_service.PasswordChangeError) as excinfo:
        auth_service.change_password(user.id, "wrong", "newsecret1", "newsecret2")
    assert set(excinfo.value.fields) == {"current_password", "confirm_password"}

    auth_service.change_password(user.id, "secret123", "newsecret1", "newsecret1")
    assert auth_service.authenticate("reader", "newsecret1", "MEMBER").id == user.id
