"""Tests for auth_link_service encode/decode utilities."""
from __future__ import annotations

from datetime import datetime, timezone

import pytest
from flask import Flask

from lms.services import auth_link_service


@pytest.fixture(autouse=True)
def app_context():
    app = Flask(__name__)
    app.config["SECRET_KEY"] = "test-secret"
    with app.app_context():
        yield


def test_round_trip_reset_token_preserves_payload():
    token = auth_link_service.encode_payload({"user_id": "7", "nonce": "abc123"})

    decoded = auth_link_service.decode_payload(token)

    assert decoded["user_id"] == 7
    assert decoded["nonce"] == "abc123"
    assert "issued_at" in decoded


def test_decode_rejects_tampered_token():
    token = auth_link_service.encode_payload({"user_id": 1, "nonce": "n"})
    tampered = token[:-1] + ("A" if token[-1] != "A" else "B")

    with pytest.raises(auth_link_service.TokenDecodeError):
        auth_link_service.decode_payload(tampered)


def test_token_from_other_secret_is_rejected():
    token = auth_link_service.encode_payload({"user_id": 1, "nonce": "n"})
    other = Flask("other")
    other.config["SECRET_KEY"] = "different-secret"
    with other.app_context():
        with pytest.raises(auth_link_service.TokenDecodeError):
            auth_link_service.decode_payload(token)


def test_reset_token_expiration_enforced():
    expired_token = auth_link_service.encode_payload(
        {"user_id": 1, "nonce": "n", "issued_at": "2000-01-01T00:00:00+00:00"}
    )

    with pytest.raises(auth_link_service.TokenExpiredError):
        auth_link_service.decode_payload(expired_token)


@pytest.mark.parametrize(
    "payload",
    [{"nonce": "n"}, {"user_id": 1}, {"user_id": 1, "nonce": ""}, {"user_id": 1, "nonce": "n", "issued_at": 5}],
)
def test_encode_validates_payload(payload):
    with pytest.raises(auth_link_service.PayloadValidationError):
        auth_link_service.encode_payload(payload)


def test_missing_secret_key_raises(monkeypatch):
    monkeypatch.delenv("LMS_SECRET_KEY", raising=False)
    bare = Flask("bare")
    with bare.app_context():
        with pytest.raises(auth_link_service.SecretKeyUnavailableError):
            auth_link_service.encode_payload({"user_id": 1, "nonce": "n"})


def test_lifetime_follows_configured_hours(monkeypatch):
    monkeypatch.setenv("LMS_RESET_TOKEN_HOURS", "2")
    token = auth_link_service.encode_payload(
        {"user_id": 3, "nonce": "n", "issued_at": "2030-01-01T00:00:00Z"}
    )
    within = datetime(2030, 1, 1, 1, 59, tzinfo=timezone.utc)
    after = datetime(2030, 1, 1, 2, 1, tzinfo=timezone.utc)

    assert auth_link_service.decode_payload(token, now=within)["user_id"] == 3
    with pytest.raises(auth_link_service.TokenExpiredError):
        auth_link_service.decode_payload(token, now=after)
