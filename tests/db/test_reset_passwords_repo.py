"""Tests for reset_passwords_repo helpers using in-memory SQLite."""
from __future__ import annotations

from datetime import datetime, timedelta

import pytest

from lms.db import app_session
from lms.db.engine import init_engine_once, reset_for_tests
from lms.db.models import ResetPasswordToken
from lms.db.repositories import reset_passwords_repo, users_repo
from lms.utils import constants


@pytest.fixture(autouse=True)
def in_memory_db(monkeypatch):
    reset_for_tests(drop=True)
    monkeypatch.setenv("LMS_DB_PATH", ":memory:")
    monkeypatch.delenv("LMS_DATABASE_URL", raising=False)
    init_engine_once()
    yield
    reset_for_tests(drop=True)


def _user(username: str) -> int:
    user = users_repo.create_user(
        username=username,
        password_hash="hash",
        role=constants.ROLE_MEMBER,
        full_name="Token Holder",
        email=f"{username}@example.com",
        status=constants.USER_ACTIVE,
    )
    return user.id


def _count_tokens() -> int:
    with app_session() as session:
        return session.query(ResetPasswordToken).count()


def test_upsert_and_fetch_token_updates_existing_record():
    user_id = _user("reader")
    first = reset_passwords_repo.upsert_token(user_id=user_id, nonce_hash="hash-1")
    assert first.nonce_hash == "hash-1"

    second = reset_passwords_repo.upsert_token(user_id=user_id, nonce_hash="hash-2")
    assert second.id == first.id
    assert second.nonce_hash == "hash-2"

    fetched = reset_passwords_repo.get_token(user_id=user_id)
    assert fetched is not None
    assert fetched.id == first.id
    assert _count_tokens() == 1


def test_delete_token_returns_boolean_result():
    user_id = _user("reader")
    reset_passwords_repo.upsert_token(user_id=user_id, nonce_hash="hash")
    assert _count_tokens() == 1

    assert reset_passwords_repo.delete_token(user_id=user_id) is True
    assert _count_tokens() == 0
    assert reset_passwords_repo.delete_token(user_id=user_id) is False


def test_purge_expired_tokens_removes_old_rows():
    old_id = _user("old_reader")
    fresh_id = _user("fresh_reader")
    reset_passwords_repo.upsert_token(user_id=old_id, nonce_hash="old")
    reset_passwords_repo.upsert_token(user_id=fresh_id, nonce_hash="fresh")
    with app_session() as session:
        old_token = session.query(ResetPasswordToken).filter(ResetPasswordToken.user_id == old_id).one()
        old_token.created_at = datetime.utcnow() - timedelta(days=31)

    assert reset_passwords_repo.purge_expired_tokens() == 1
    assert reset_passwords_repo.get_token(user_id=fresh_id) is not None
    assert reset_passwords_repo.get_token(user_id=old_id) is None


def test_purge_rejects_non_positive_window():
    with pytest.raises(ValueError):
        reset_passwords_repo.purge_expired_tokens(older_than_days=0)
