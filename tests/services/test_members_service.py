"""Tests for membership applications, approval and revocation."""
from __future__ import annotations

from datetime import date, timedelta
from typing import Dict, List

import pytest

from lms.db import app_session
from lms.db.engine import init_engine_once, reset_for_tests
from lms.db.repositories import books_repo, borrowed_books_repo, users_repo
from lms.services import auth_service, email_delivery, members_service
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


@pytest.fixture
def sent(monkeypatch) -> List[Dict]:
    outbox: List[Dict] = []

    def fake_notify(template_key, *, recipient, context):
        outbox.append({"key": template_key, "to": recipient, "context": dict(context)})
        return True

    monkeypatch.setattr(email_delivery, "notify", fake_notify)
    return outbox


def _application(**overrides):
    data = {
        "full_name": "Ada Lovelace",
        "email": "Ada@Example.com",
        "phone": "+1 555 123 4567",
        "address": "12 Analytical Engine Street",
        "username": "ada",
        "password": "engine123",
        "confirm_password": "engine123",
    }
    data.update(overrides)
    return data


def _staff(username, role=constants.ROLE_LIBRARIAN, **perms):
    return users_repo.create_user(
        username=username,
        password_hash=auth_service.hash_password("secret123"),
        role=role,
        full_name="Staff Person",
        email=f"{username}@example.com",
        status=constants.USER_ACTIVE,
        employee_id=username.upper(),
        **perms,
    )


def test_apply_creates_pending_member_with_normalized_email():
    user = members_service.apply_for_membership(_application())
    assert user.status == constants.USER_PENDING
    assert user.role == constants.ROLE_MEMBER
    assert user.email == "ada@example.com"
    assert user.member_code is None
    with pytest.raises(auth_service.InvalidCredentialsError):
        auth_service.authenticate("ada", "engine123", "MEMBER")


def test_apply_reports_field_errors_and_duplicates():
    with pytest.raises(members_service.MembershipValidationError) as excinfo:
        members_service.apply_for_membership(
            _application(full_name="A1", email="bad", address="short", confirm_password="nope")
        )
    assert set(excinfo.value.fields) == {"full_name", "email", "address", "confirm_password"}

    members_service.apply_for_membership(_application())
    with pytest.raises(members_service.MembershipValidationError) as excinfo:
        members_service.apply_for_membership(_application(email="other@example.com"))
    assert excinfo.value.code == "username_exists"
    with pytest.raises(members_service.MembershipValidationError) as excinfo:
        members_service.apply_for_membership(_application(username="ada2", email="ADA@example.com"))
    assert excinfo.value.code == "email_exists"


def test_approve_assigns_member_code_and_emails(sent):
    applicant = members_service.apply_for_membership(_application())
    approved = members_service.approve_membership(applicant.id)
    assert approved.status == constants.USER_ACTIVE
    assert approved.member_code == constants.MEMBER_CODE_FORMAT.format(applicant.id)
    assert sent[0]["key"] == "membership_approved"
    assert sent[0]["context"]["member_code"] == approved.member_code
    assert auth_service.authenticate("ada", "engine123", "MEMBER").id == applicant.id

    with pytest.raises(members_service.MembershipStateError):
        members_service.approve_membership(applicant.id)


def test_revoke_requires_permission_and_no_active_borrows(sent):
    member = members_service.approve_membership(members_service.apply_for_membership(_application()).id)
    plain = _staff("plain")
    revoker = _staff("revoker", can_revoke_membership=True)
    book = books_repo.create_book(isbn="9780132350884", title="Clean Code", author="Robert Martin",
                                  category="Technology", total_copies=1, available_copies=1)
    with app_session() as session:
        borrow = borrowed_books_repo.create_borrow(
            member_id=member.id, book_id=book.id, issued_by=revoker.id,
            issue_date=date.today(), due_date=date.today() + timedelta(days=14), session=session,
        )

    with pytest.raises(AccessDeniedError):
        members_service.revoke_membership(member.id, plain.id)
    with pytest.raises(members_service.MembershipStateError) as excinfo:
        members_service.revoke_membership(member.id, revoker.id)
    assert excinfo.value.code == "member_has_active_borrows"

    with app_session() as session:
        borrowed_books_repo.mark_returned(
            borrow.id, returned_to=revoker.id, fine_amount=0, condition=constants.CONDITION_GOOD,
            return_date=date.today(), session=session,
        )
    revoked = members_service.revoke_membership(member.id, revoker.id)
    assert revoked.status == constants.USER_INACTIVE

    # Reactivation does not resend the welcome email.
    reactivated = members_service.approve_membership(member.id)
    assert reactivated.status == constants.USER_ACTIVE
    assert [m["key"] for m in sent] == ["membership_approved"]


def test_find_member_and_listing(sent):
    member = members_service.approve_membership(members_service.apply_for_membership(_application()).id)
    members_service.apply_for_membership(_application(username="grace", email="grace@example.com",
                                                      full_name="Grace Hopper"))
    assert members_service.find_member(member.member_code.lower()).id == member.id
    assert members_service.find_member("ada").id == member.id
    assert members_service.find_member("nobody") is None
    _staff("desk")
    assert members_service.find_member("desk") is None

    rows = members_service.list_members()
    assert {r["username"] for r in rows} == {"ada", "grace"}
    assert all(r["active_borrows"] == 0 for r in rows)
    assert [r["username"] for r in members_service.list_members(status="pending")] == ["grace"]
    assert [r["username"] for r in members_service.list_members("hopper")] == ["grace"]
    assert members_service.members_summary() == {"total": 2, "active": 1, "pending": 1, "inactive": 0}


def test_update_profile_validates_fields(sent):
    member = members_service.approve_membership(members_service.apply_for_membership(_application()).id)
    updated = members_service.update_profile(member.id, {"phone": "+44 20 7946 0958"})
    assert updated.phone == "+44 20 7946 0958"
    with pytest.raises(members_service.MembershipValidationError) as excinfo:
        members_service.update_profile(member.id, {"email": "broken", "address": "tiny"})
    assert set(excinfo.value.fields) == {"email", "address"}
