"""Login, logout, membership application and password flows.

Routes:
    POST /auth/login             -> username + password + role
    POST /auth/logout
    GET  /auth/me                -> current session user
    POST /auth/apply             -> membership application (PENDING)
    POST /auth/password/change   -> logged-in password change
    POST /auth/password/forgot   -> email a reset link
    GET  /auth/password/reset    -> check a reset token
    POST /auth/password/reset    -> set a new password from a reset token
"""
from __future__ import annotations

from flask import Blueprint, jsonify, request

from lms.db.repositories import users_repo
from lms.routes.common import _json_error, payload, register_error_handlers
from lms.services import auth_service, members_service, password_reset_service
from lms.utils import get_current_user_id
from lms.utils.identity import login_session, logout_session
from lms.utils.logging import get_logger

bp = Blueprint("lms_auth", __name__, url_prefix="/auth")
LOG = get_logger("routes.auth")
register_error_handlers(bp)


@bp.route("/login", methods=["POST"])
def login():
    data = payload()
    user = auth_service.authenticate(data.get("username"), data.get("password"), data.get("role"))
    login_session(user.id, user.role, user.username)
    return jsonify({"status": "ok", "user": user.as_dict()})


@bp.route("/logout", methods=["POST"])
def logout():
    logout_session()
    return jsonify({"status": "ok"})


@bp.route("/me", methods=["GET"])
def me():
    user_id = get_current_user_id()
    user = users_repo.get_user(user_id) if user_id is not None else None
    if user is None:
        return _json_error("login_required", 401)
    return jsonify({"user": user.as_dict()})


@bp.route("/apply", methods=["POST"])
def apply():
    user = members_service.apply_for_membership(payload())
    return jsonify({
        "status": "pending",
        "user": user.as_dict(),
        "message": "Application submitted. You can log in once an administrator approves it.",
    }), 201


@bp.route("/password/change", methods=["POST"])
def change_password():
    user_id = get_current_user_id()
    if user_id is None:
        return _json_error("login_required", 401)
    data = payload()
    auth_service.change_password(
        user_id,
        data.get("current_password") or "",
        data.get("new_password") or "",
        data.get("confirm_password") or "",
    )
    return jsonify({"status": "ok"})


@bp.route("/password/forgot", methods=["POST"])
def forgot_password():
    data = payload()
    identifier = data.get("identifier") or data.get("email") or data.get("username") or ""
    password_reset_service.request_password_reset(identifier)
    # Same answer whether or not the account exists.
    return jsonify({"status": "ok"})


@bp.route("/password/reset", methods=["GET"])
def check_reset_token():
    password_reset_service.resolve_pending_reset(request.args.get("token") or "")
    return jsonify({"status": "ok", "valid": True})


@bp.route("/password/reset", methods=["POST"])
def reset_password():
    data = payload()
    token = data.get("token") or request.args.get("token") or ""
    user_id = password_reset_service.complete_password_reset(
        token,
        data.get("password") or data.get("new_password") or "",
        data.get("confirm_password") or "",
    )
    LOG.info("Password reset via link user_id=%s", user_id)
    return jsonify({"status": "ok"})


__all__ = ["bp"]
