"""Tests for /auth endpoints: login, application and password flows."""
from __future__ import annotations

from typing import Dict, List
from urllib.parse import parse_qs, urlsplit

import pytest  # type: ignore[import-not-found]

from lms.db.engine import reset_for_tests
from lms.db.repositories import users_repo
from lms.services import auth_service, email_delivery
from lms.startup.wiring import create_app
from lms.utils import constants


@pytest.fixture
def app(monkeypatch):
    reset_for_tests(drop=True)
    monkeypatch.setenv("LMS_DB_PATH", ":memory:")
    monkeypatch.delenv("LMS_DATABASE_URL", raising=False)
    monkeypatch.delenv("LMS_BOOTSTRAP_ADMIN", raising=False)
    monkeypatch.delenv("LMS_PUBLIC_URL", raising=False)
    application = create_app({"TESTING": True, "SECRET_KEY": "auth-routes-secret"})
    yield application
    reset_for_tests(drop=True)


@pytest.fixture
def client(app):
    with app.test_client() as test_client:
        yield test_client


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
        member_code="MEM-000042",
    )


def test_login_sets_session_and_me_returns_user(client):
    member = _member()
    assert client.get("/auth/me").status_code == 401

    resp = client.post("/auth/login", json={"username": "reader", "password": "member123", "role": "member"})
    assert resp.status_code == 200
    assert resp.get_json()["user"]["member_code"] == "MEM-000042"

    me = client.get("/auth/me").get_json()
    assert me["user"]["id"] == member.id
    assert "password_hash" not in me["user"]

    client.post("/auth/logout")
    assert client.get("/auth/me").status_code == 401


@pytest.mark.parametrize(
    "body, code",
    [
        ({"username": "reader", "password": "wrong", "role": "MEMBER"}, "invalid_credentials"),
        ({"username": "reader", "password": "member123", "role": "LIBRARIAN"}, "invalid_credentials"),
        ({"username": "reader", "password": "member123", "role": "JANITOR"}, "invalid_role"),
        ({"username": "", "password": "", "role": "MEMBER"}, "credentials_required"),
    ],
)
def test_login_failures_are_400_with_code(client, body, code):
    _member()
    resp = client.post("/auth/login", json=body)
    assert resp.status_code == 400
    assert resp.get_json()["error"] == code
    assert resp.get_json()["message"]


def test_apply_creates_pending_account_that_cannot_log_in(client):
    form = {
        "full_name": "Grace Hopper",
        "email": "grace@example.com",
        "phone": "555-0142",
        "address": "42 Compiler Avenue, Arlington",
        "username": "grace",
        "password": "cobol1959",
        "confirm_password": "cobol1959",
    }
    resp = client.post("/auth/apply", data=form)
    assert resp.status_code == 201
    assert resp.get_json()["user"]["status"] == constants.USER_PENDING

    again = client.post("/auth/apply", data=form)
    assert again.status_code == 400
    assert again.get_json()["error"] == "username_exists"
    assert "username" in again.get_json()["details"]

    login = client.post("/auth/login", json={"username": "grace", "password": "cobol1959", "role": "MEMBER"})
    assert login.status_code == 400


def test_change_password_requires_login_and_current_password(client):
    _member()
    body = {"current_password": "member123", "new_password": "newpass123", "confirm_password": "newpass123"}
    assert client.post("/auth/password/change", json=body).status_code == 401

    client.post("/auth/login", json={"username": "reader", "password": "member123", "role": "MEMBER"})
    bad = client.post("/auth/password/change", json=dict(body, current_password="nope"))
    assert bad.status_code == 400
    assert client.post("/auth/password/change", json=body).status_code == 200
    assert auth_service.authenticate("reader", "newpass123", "MEMBER")


def test_forgot_and_reset_password_flow(client, sent):
    _member()
    unknown = client.post("/auth/password/forgot", json={"identifier": "nobody@example.com"})
    assert unknown.status_code == 200
    assert sent == []

    resp = client.post("/auth/password/forgot", json={"email": "reader@example.com"})
    assert resp.get_json() == {"status": "ok"}
    reset_url = sent[0]["context"]["reset_url"]
    assert reset_url.startswith("http://localhost/auth/password/reset?token=")
    token = parse_qs(urlsplit(reset_url).query)["token"][0]

    assert client.get("/auth/password/reset", query_string={"token": token}).get_json()["valid"] is True
    mismatch = client.post("/auth/password/reset", json={"token": token, "password": "freshpass1",
                                                          "confirm_password": "other"})
    assert mismatch.status_code == 400
    done = client.post("/auth/password/reset", json={"token": token, "password": "freshpass1",
                                                      "confirm_password": "freshpass1"})
    assert done.status_code == 200
    reused = client.get("/auth/password/reset", query_string={"token": token})
    assert reused.status_code == 400
    assert reused.get_json()["error"] == "pending_reset_missing"
    assert auth_service.authenticate("reader", "freshpass1", "MEMBER")


def test_reset_with_garbage_token(client):
    resp = client.get("/auth/password/reset", query_string={"token": "not-a-token"})
    assert resp.status_code == 400
    assert resp.get_json()["error"] == "invalid_token"
