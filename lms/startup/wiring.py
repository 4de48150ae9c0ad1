"""Application factory / wiring.

Orchestrates: Flask app + Babel, DB init, blueprint registration, Jinja
filters and the optional administrator bootstrap.
"""
from __future__ import annotations

import secrets
from typing import Any, Mapping, Optional

from flask import Flask
from flask_babel import Babel

from lms.config import (
    admin_bootstrap_email,
    admin_bootstrap_enabled,
    admin_bootstrap_password,
    admin_bootstrap_username,
    library_name,
    secret_key,
    summarize_runtime_config,
)
from lms.db import init_engine_once
from lms.db.repositories import users_repo
from lms.routes.inject import register_all as register_routes
from lms.services import auth_service
from lms.utils import constants
from lms.utils.currency import register_currency_filters
from lms.utils.logging import get_logger

LOG = get_logger("lms.startup")


def ensure_admin_account(username: str, password: str, email: Optional[str] = None) -> int:
    """Create the ADMIN account, or reset its password when it exists."""
    existing = users_repo.get_by_username(username)
    password_hash = auth_service.hash_password(password)
    if existing is not None:
        if not existing.is_admin:
            raise ValueError("bootstrap_user_not_admin")
        users_repo.update_password(existing.id, password_hash)
        if existing.status != constants.USER_ACTIVE:
            users_repo.update_status(existing.id, constants.USER_ACTIVE)
        return existing.id
    user = users_repo.create_user(
        username=username,
        password_hash=password_hash,
        role=constants.ROLE_ADMIN,
        full_name="System Administrator",
        email=email or f"{username}@library.local",
        status=constants.USER_ACTIVE,
        employee_id=username.upper(),
    )
    return user.id


def _maybe_bootstrap_admin() -> None:
    if not admin_bootstrap_enabled():
        return
    username = admin_bootstrap_username()
    password = admin_bootstrap_password()
    if not password:
        LOG.warning("Admin bootstrap skipped (missing password)")
        return
    try:
        user_id = ensure_admin_account(username, password, admin_bootstrap_email())
        LOG.info("Admin bootstrap applied username=%s id=%s", username, user_id)
    except (ValueError, users_repo.UserExistsError):
        LOG.exception("Admin bootstrap failed username=%s", username)


def init_app(app: Any) -> None:
    LOG.debug("init_app starting")
    init_engine_once()
    LOG.debug("DB engine initialized")
    register_routes(app)
    register_currency_filters(app.jinja_env)
    _maybe_bootstrap_admin()
    LOG.info("App startup wiring complete (%s)", summarize_runtime_config())


def create_app(config_overrides: Optional[Mapping[str, Any]] = None) -> Flask:
    app = Flask("lms")
    key = secret_key()
    if not key:
        key = secrets.token_hex(32)
        LOG.warning("LMS_SECRET_KEY not set; using a random key (sessions and reset links reset on restart)")
    app.config.update(
        SECRET_KEY=key,
        JSON_SORT_KEYS=False,
        LIBRARY_NAME=library_name(),
        SESSION_COOKIE_HTTPONLY=True,
    )
    if config_overrides:
        app.config.update(dict(config_overrides))
    Babel(app)
    init_app(app)
    return app


__all__ = ["create_app", "init_app", "ensure_admin_account"]
