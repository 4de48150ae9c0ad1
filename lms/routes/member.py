"""Member self-service API.

Every route requires a MEMBER session; the services additionally require
the account to be ACTIVE where books change hands.
"""
from __future__ import annotations

from flask import Blueprint, jsonify, request

from lms.routes.common import flag_arg, int_field, payload, register_error_handlers, require_role_json
from lms.services import (
    catalog_service,
    circulation_service,
    members_service,
    reports_service,
    requests_service,
)
from lms.utils import constants, get_current_user_id

bp = Blueprint("lms_member", __name__, url_prefix="/member")
register_error_handlers(bp)


def _require_member_json():
    return require_role_json([constants.ROLE_MEMBER])


@bp.route("/dashboard", methods=["GET"])
def dashboard():
    auth = _require_member_json()
    if auth is not True:
        return auth
    member_id = get_current_user_id()
    member = members_service.get_member(member_id)
    return jsonify({"member": member.as_dict(), "counts": reports_service.member_dashboard(member_id)})


@bp.route("/books", methods=["GET"])
def books():
    auth = _require_member_json()
    if auth is not True:
        return auth
    rows = catalog_service.search_books(
        request.args.get("q"),
        request.args.get("category"),
        available_only=flag_arg("available"),
    )
    return jsonify({"rows": [b.as_dict() for b in rows]})


@bp.route("/categories", methods=["GET"])
def categories():
    auth = _require_member_json()
    if auth is not True:
        return auth
    return jsonify({"categories": catalog_service.categories()})


@bp.route("/requests", methods=["GET"])
def list_requests():
    auth = _require_member_json()
    if auth is not True:
        return auth
    rows = requests_service.member_requests(get_current_user_id())
    return jsonify({"rows": [r.as_dict() for r in rows]})


@bp.route("/requests", methods=["POST"])
def submit_request():
    auth = _require_member_json()
    if auth is not True:
        return auth
    data = payload()
    record = requests_service.submit_request(get_current_user_id(), int_field(data, "book_id"), data.get("notes"))
    return jsonify({"status": "pending", "request": record.as_dict()}), 201


@bp.route("/requests/<int:request_id>/cancel", methods=["POST"])
def cancel_request(request_id: int):
    auth = _require_member_json()
    if auth is not True:
        return auth
    record = requests_service.cancel_request(get_current_user_id(), request_id)
    return jsonify({"status": "cancelled", "request_id": record.id})


@bp.route("/borrows", methods=["GET"])
def borrows():
    auth = _require_member_json()
    if auth is not True:
        return auth
    rows = circulation_service.member_borrows(get_current_user_id(), active_only=flag_arg("active"))
    return jsonify({"rows": [b.as_dict() for b in rows]})


@bp.route("/borrows/<int:borrow_id>/renew", methods=["POST"])
def renew(borrow_id: int):
    auth = _require_member_json()
    if auth is not True:
        return auth
    record = circulation_service.renew_borrow(
        borrow_id, get_current_user_id(), additional_days=payload().get("additional_days")
    )
    return jsonify({"status": "renewed", "borrow": record.as_dict()})


@bp.route("/profile", methods=["GET"])
def profile():
    auth = _require_member_json()
    if auth is not True:
        return auth
    return jsonify({"member": members_service.get_member(get_current_user_id()).as_dict()})


@bp.route("/profile", methods=["POST"])
def update_profile():
    auth = _require_member_json()
    if auth is not True:
        return auth
    member = members_service.update_profile(get_current_user_id(), payload())
    return jsonify({"status": "ok", "member": member.as_dict()})


__all__ = ["bp"]
