"""Tests for the /librarian desk API."""
from __future__ import annotations

from datetime import date, timedelta
from decimal import Decimal

import pytest  # type: ignore[import-not-found]

from lms.db.engine import reset_for_tests
from lms.db.repositories import books_repo, users_repo
from lms.services import auth_service, circulation_service, email_delivery, requests_service
from lms.startup.wiring import create_app
from lms.utils import constants


@pytest.fixture
def app(monkeypatch):
    reset_for_tests(drop=True)
    monkeypatch.setenv("LMS_DB_PATH", ":memory:")
    monkeypatch.delenv("LMS_DATABASE_URL", raising=False)
    monkeypatch.delenv("LMS_BOOTSTRAP_ADMIN", raising=False)
    monkeypatch.delenv("LMS_LATE_FEE_PER_DAY", raising=False)
    monkeypatch.setattr(email_delivery, "notify", lambda *a, **k: False)
    application = create_app({"TESTING": True, "SECRET_KEY": "librarian-routes-secret"})
    yield application
    reset_for_tests(drop=True)


@pytest.fixture
def library(app):
    def staff(username, **perms):
        return users_repo.create_user(
            username=username, password_hash=auth_service.hash_password("librarian123"),
            role=constants.ROLE_LIBRARIAN, full_name="Desk Person", email=f"{username}@library.test",
            status=constants.USER_ACTIVE, employee_id=username.upper(), **perms,
        )

    return {
        "member": users_repo.create_user(
            username="reader", password_hash=auth_service.hash_password("member123"),
            role=constants.ROLE_MEMBER, full_name="Reader Person", email="reader@example.com",
            status=constants.USER_ACTIVE, member_code="MEM-000001",
        ),
        "desk": staff("desk", can_approve_requests=True, can_issue_returns=True, can_revoke_membership=True),
        "intern": staff("intern"),
        "book": books_repo.create_book(isbn="9780451524935", title="1984", author="George Orwell",
                                       category="Fiction", total_copies=3, available_copies=3,
                                       price=Decimal("9.99")),
    }


def _client(app, username):
    client = app.test_client()
    resp = client.post("/auth/login", json={"username": username, "password": "librarian123", "role": "LIBRARIAN"})
    assert resp.status_code == 200
    return client


def test_requires_staff_session(app, library):
    with app.test_client() as client:
        assert client.get("/librarian/requests").status_code == 401
        client.post("/auth/login", json={"username": "reader", "password": "member123", "role": "MEMBER"})
        assert client.get("/librarian/requests").status_code == 403


def test_approve_and_reject_requests(app, library):
    first = requests_service.submit_request(library["member"].id, library["book"].id)
    client = _client(app, "desk")

    pending = client.get("/librarian/requests?status=pending").get_json()["rows"]
    assert [r["id"] for r in pending] == [first.id]
    assert client.get("/librarian/dashboard").get_json()["counts"]["pending_requests"] == 1

    denied = _client(app, "intern").post(f"/librarian/requests/{first.id}/approve", json={})
    assert denied.status_code == 403
    assert denied.get_json()["error"] == "permission_denied"

    bad_duration = client.post(f"/librarian/requests/{first.id}/approve", json={"duration_days": 365})
    assert bad_duration.status_code == 400
    assert bad_duration.get_json()["error"] == "invalid_duration"

    approved = client.post(f"/librarian/requests/{first.id}/approve", json={"duration_days": 10})
    assert approved.status_code == 200
    body = approved.get_json()
    assert body["borrow"]["due_date"] == (date.today() + timedelta(days=10)).isoformat()
    assert body["email_sent"] is False
    again = client.post(f"/librarian/requests/{first.id}/approve", json={})
    assert again.status_code == 409

    second = requests_service.submit_request(library["member"].id, library["book"].id)
    rejected = client.post(f"/librarian/requests/{second.id}/reject", data={"reason": "Reserved"})
    assert rejected.get_json()["request"]["status"] == constants.REQUEST_REJECTED
    assert client.post("/librarian/requests/999/reject").status_code == 404


def test_issue_quote_and_return(app, library):
    client = _client(app, "desk")
    issued = client.post("/librarian/issue", json={"book_id": library["book"].id, "member": "mem-000001",
                                                   "duration_days": 14, "allow_renewal": "no"})
    assert issued.status_code == 201
    borrow = issued.get_json()["borrow"]
    assert borrow["allow_renewal"] is False
    assert issued.get_json()["overdue_warnings"] == []

    missing = client.post("/librarian/issue", json={"book_id": library["book"].id, "member": "ghost"})
    assert missing.status_code == 404
    assert missing.get_json()["error"] == "member_not_found"

    found = client.get("/librarian/borrows?q=orwell").get_json()["rows"]
    assert [r["id"] for r in found] == [borrow["id"]]
    lookup = client.get("/librarian/members/lookup?term=reader").get_json()
    assert [b["id"] for b in lookup["active_borrows"]] == [borrow["id"]]
    assert client.get("/librarian/members/lookup?term=nobody").status_code == 404

    quote = client.get(f"/librarian/borrows/{borrow['id']}/quote?condition=damaged").get_json()
    assert quote["damage_fee"] == "9.99"
    assert quote["late_fee"] == "0.00"

    odd_condition = client.post(f"/librarian/borrows/{borrow['id']}/return", json={"condition": 5})
    assert odd_condition.status_code == 400
    assert odd_condition.get_json()["error"] == "invalid_condition"

    renew = client.post(f"/librarian/borrows/{borrow['id']}/renew")
    assert renew.status_code == 409

    returned = client.post(f"/librarian/borrows/{borrow['id']}/return", json={"condition": "Damaged",
                                                                             "damage_fee": "5"})
    assert returned.get_json()["total_fees"] == "5.00"
    assert books_repo.get_book(library["book"].id).available_copies == 3
    assert client.post(f"/librarian/borrows/{borrow['id']}/return", json={}).status_code == 409


def test_overdue_listing_and_refresh(app, library):
    borrow = circulation_service.issue_book(
        library["desk"].id, book_id=library["book"].id, member="reader", duration_days=3,
        today=date.today() - timedelta(days=5),
    ).borrow
    client = _client(app, "desk")
    rows = client.get("/librarian/overdue").get_json()["rows"]
    assert rows[0]["id"] == borrow.id
    assert rows[0]["fine_due"] == "2.00"
    assert client.post("/librarian/overdue/refresh").get_json() == {"status": "ok", "updated": 1}


def test_books_members_and_revoke(app, library):
    client = _client(app, "desk")
    books = client.get("/librarian/books").get_json()
    assert books["summary"]["titles"] == 1
    assert client.get("/librarian/books/low-stock").get_json()["rows"] == []

    members = client.get("/librarian/members?status=active").get_json()
    assert [m["username"] for m in members["rows"]] == ["reader"]

    member_id = library["member"].id
    assert _client(app, "intern").post(f"/librarian/members/{member_id}/revoke").status_code == 403
    revoked = client.post(f"/librarian/members/{member_id}/revoke")
    assert revoked.get_json()["member"]["status"] == constants.USER_INACTIVE
