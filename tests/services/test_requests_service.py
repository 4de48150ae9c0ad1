"""Borrow request workflow: submit, cancel, approve (atomic) and reject."""
from __future__ import annotations

from datetime import date, timedelta
from typing import Dict, List

import pytest

from lms.db.engine import init_engine_once, reset_for_tests
from lms.db.repositories import books_repo, borrowed_books_repo, users_repo
from lms.services import auth_service, circulation_service, email_delivery, requests_service
from lms.services.errors import AccessDeniedError
from lms.utils import constants


@pytest.fixture(autouse=True)
def in_memory_db(monkeypatch):
    reset_for_tests(drop=True)
    monkeypatch.setenv("LMS_DB_PATH", ":memory:")
    monkeypatch.delenv("LMS_DATABASE_URL", raising=False)
    monkeypatch.delenv("LMS_DEFAULT_BORROW_DAYS", raising=False)
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


def _member(username="reader", status=constants.USER_ACTIVE):
    return users_repo.create_user(
        username=username,
        password_hash=auth_service.hash_password("member123"),
        role=constants.ROLE_MEMBER,
        full_name="Reader Person",
        email=f"{username}@example.com",
        status=status,
    )


def _librarian(username="desk", **perms):
    perms.setdefault("can_approve_requests", True)
    return users_repo.create_user(
        username=username,
        password_hash=auth_service.hash_password("librarian123"),
        role=constants.ROLE_LIBRARIAN,
        full_name="Desk Person",
        email=f"{username}@library.test",
        status=constants.USER_ACTIVE,
        employee_id=username.upper(),
        **perms,
    )


def _book(copies=2, isbn="9780451524935"):
    return books_repo.create_book(
        isbn=isbn, title="1984", author="George Orwell", category="Fiction",
        total_copies=copies, available_copies=copies,
    )


def test_submit_and_duplicate_detection():
    member = _member()
    book = _book()
    record = requests_service.submit_request(member.id, book.id, notes="<b>please</b>")
    assert record.status == constants.REQUEST_PENDING
    assert record.notes == "bplease/b"
    with pytest.raises(requests_service.DuplicateRequestError):
        requests_service.submit_request(member.id, book.id)
    assert [r.id for r in requests_service.member_requests(member.id)] == [record.id]


def test_submit_rejected_for_inactive_member_or_empty_shelf():
    pending = _member("newbie", status=constants.USER_PENDING)
    member = _member()
    empty = _book(copies=1, isbn="9780553380163")
    books_repo.update_fields(empty.id, {"available_copies": 0})
    with pytest.raises(AccessDeniedError):
        requests_service.submit_request(pending.id, empty.id)
    with pytest.raises(circulation_service.BookUnavailableError):
        requests_service.submit_request(member.id, empty.id)


def test_cancel_only_own_pending_request():
    member = _member()
    other = _member("other")
    record = requests_service.submit_request(member.id, _book().id)
    with pytest.raises(requests_service.RequestNotFoundError):
        requests_service.cancel_request(other.id, record.id)
    cancelled = requests_service.cancel_request(member.id, record.id)
    assert cancelled.status == constants.REQUEST_CANCELLED
    with pytest.raises(requests_service.RequestStateError):
        requests_service.cancel_request(member.id, record.id)


def test_approve_creates_loan_and_takes_copy(sent):
    member = _member()
    librarian = _librarian()
    book = _book()
    record = requests_service.submit_request(member.id, book.id)

    result = requests_service.approve_request(record.id, librarian.id, duration_days="21", notes="Handle with care")
    assert result["request"]["status"] == constants.REQUEST_APPROVED
    assert result["borrow"]["due_date"] == (date.today() + timedelta(days=21)).isoformat()
    assert result["email_sent"] is True
    assert sent[0]["key"] == "book_issued"
    assert sent[0]["to"] == "reader@example.com"
    assert books_repo.get_book(book.id).available_copies == 1
    assert borrowed_books_repo.active_count_for_member(member.id) == 1

    with pytest.raises(requests_service.RequestStateError):
        requests_service.approve_request(record.id, librarian.id)


def test_approve_rolls_back_when_shelf_is_empty(sent):
    member = _member()
    librarian = _librarian()
    book = _book(copies=1)
    record = requests_service.submit_request(member.id, book.id)
    books_repo.update_fields(book.id, {"available_copies": 0})

    with pytest.raises(circulation_service.BookUnavailableError):
        requests_service.approve_request(record.id, librarian.id)
    assert requests_service.get_request(record.id).status == constants.REQUEST_PENDING
    assert borrowed_books_repo.active_count_for_member(member.id) == 0
    assert sent == []


def test_approve_requires_permission_and_valid_duration(sent):
    member = _member()
    record = requests_service.submit_request(member.id, _book().id)
    no_perm = _librarian("helper", can_approve_requests=False)
    librarian = _librarian()
    with pytest.raises(AccessDeniedError):
        requests_service.approve_request(record.id, no_perm.id)
    with pytest.raises(circulation_service.CirculationValidationError):
        requests_service.approve_request(record.id, librarian.id, duration_days=120)
    assert requests_service.get_request(record.id).is_pending


def test_reject_records_reason_and_notifies(sent):
    member = _member()
    librarian = _librarian()
    record = requests_service.submit_request(member.id, _book().id)
    rejected = requests_service.reject_request(record.id, librarian.id, "Reserved for class")
    assert rejected.status == constants.REQUEST_REJECTED
    assert sent[0]["key"] == "request_rejected"
    assert sent[0]["context"]["reason"] == "Reserved for class"
    with pytest.raises(requests_service.RequestStateError):
        requests_service.reject_request(record.id, librarian.id)
    assert requests_service.list_requests("pending") == []
    assert len(requests_service.list_requests("rejected")) == 1
    assert len(requests_service.list_requests()) == 1
