"""Librarian desk API: requests, issue/return, renewals and lookups.

Admins may use these routes too. Permission flags (approve requests,
issue/return, revoke membership) are enforced by the services.
"""
from __future__ import annotations

from flask import Blueprint, jsonify, request

from lms.routes.common import (
    bool_field,
    flag_arg,
    int_field,
    payload,
    register_error_handlers,
    require_role_json,
)
from lms.services import (
    catalog_service,
    circulation_service,
    members_service,
    reports_service,
    requests_service,
)
from lms.services.members_service import MemberNotFoundError
from lms.utils import constants, get_current_user_id
from lms.utils.logging import get_logger

bp = Blueprint("lms_librarian", __name__, url_prefix="/librarian")
LOG = get_logger("routes.librarian")
register_error_handlers(bp)


def _require_staff_json():
    return require_role_json([constants.ROLE_LIBRARIAN, constants.ROLE_ADMIN])


@bp.route("/dashboard", methods=["GET"])
def dashboard():
    auth = _require_staff_json()
    if auth is not True:
        return auth
    return jsonify({"counts": reports_service.librarian_dashboard()})


@bp.route("/requests", methods=["GET"])
def list_requests():
    auth = _require_staff_json()
    if auth is not True:
        return auth
    rows = requests_service.list_requests(request.args.get("status"))
    return jsonify({"rows": [r.as_dict() for r in rows]})


@bp.route("/requests/<int:request_id>/approve", methods=["POST"])
def approve_request(request_id: int):
    auth = _require_staff_json()
    if auth is not True:
        return auth
    data = payload()
    result = requests_service.approve_request(
        request_id,
        get_current_user_id(),
        duration_days=data.get("duration_days"),
        allow_renewal=bool_field(data, "allow_renewal"),
        notes=data.get("notes"),
    )
    return jsonify(result)


@bp.route("/requests/<int:request_id>/reject", methods=["POST"])
def reject_request(request_id: int):
    auth = _require_staff_json()
    if auth is not True:
        return auth
    record = requests_service.reject_request(request_id, get_current_user_id(), payload().get("reason"))
    return jsonify({"status": "rejected", "request": record.as_dict()})


@bp.route("/issue", methods=["POST"])
def issue():
    auth = _require_staff_json()
    if auth is not True:
        return auth
    data = payload()
    result = circulation_service.issue_book(
        get_current_user_id(),
        book_id=int_field(data, "book_id"),
        member=data.get("member"),
        duration_days=data.get("duration_days"),
        notes=data.get("notes"),
        allow_renewal=bool_field(data, "allow_renewal"),
    )
    return jsonify(result.as_dict()), 201


@bp.route("/borrows", methods=["GET"])
def borrows():
    auth = _require_staff_json()
    if auth is not True:
        return auth
    rows = circulation_service.search_active_borrows(request.args.get("q") or "")
    return jsonify({"rows": [b.as_dict() for b in rows]})


@bp.route("/borrows/<int:borrow_id>/quote", methods=["GET"])
def return_quote(borrow_id: int):
    auth = _require_staff_json()
    if auth is not True:
        return auth
    quote = circulation_service.return_quote(borrow_id, request.args.get("condition"))
    return jsonify(quote.as_dict())


@bp.route("/borrows/<int:borrow_id>/return", methods=["POST"])
def return_book(borrow_id: int):
    auth = _require_staff_json()
    if auth is not True:
        return auth
    data = payload()
    result = circulation_service.return_book(
        borrow_id,
        get_current_user_id(),
        condition=data.get("condition"),
        late_fee=data.get("late_fee"),
        damage_fee=data.get("damage_fee"),
        notes=data.get("notes"),
    )
    return jsonify(result)


@bp.route("/borrows/<int:borrow_id>/renew", methods=["POST"])
def renew(borrow_id: int):
    auth = _require_staff_json()
    if auth is not True:
        return auth
    record = circulation_service.renew_borrow(
        borrow_id, get_current_user_id(), additional_days=payload().get("additional_days")
    )
    return jsonify({"status": "renewed", "borrow": record.as_dict()})


@bp.route("/overdue", methods=["GET"])
def overdue():
    auth = _require_staff_json()
    if auth is not True:
        return auth
    return jsonify({"rows": circulation_service.overdue_borrows()})


@bp.route("/overdue/refresh", methods=["POST"])
def refresh_overdue():
    auth = _require_staff_json()
    if auth is not True:
        return auth
    updated = circulation_service.refresh_overdue()
    return jsonify({"status": "ok", "updated": updated})


@bp.route("/books", methods=["GET"])
def books():
    auth = _require_staff_json()
    if auth is not True:
        return auth
    rows = catalog_service.search_books(
        request.args.get("q"),
        request.args.get("category"),
        available_only=flag_arg("available"),
    )
    return jsonify({"rows": [b.as_dict() for b in rows], "summary": catalog_service.stock_summary()})


@bp.route("/books/low-stock", methods=["GET"])
def low_stock():
    auth = _require_staff_json()
    if auth is not True:
        return auth
    return jsonify({"rows": [b.as_dict() for b in catalog_service.low_stock_books()]})


@bp.route("/members", methods=["GET"])
def members():
    auth = _require_staff_json()
    if auth is not True:
        return auth
    rows = members_service.list_members(request.args.get("q"), request.args.get("status"))
    return jsonify({"rows": rows, "summary": members_service.members_summary()})


@bp.route("/members/lookup", methods=["GET"])
def member_lookup():
    auth = _require_staff_json()
    if auth is not True:
        return auth
    member = members_service.find_member(request.args.get("term") or "")
    if member is None:
        raise MemberNotFoundError("member_not_found")
    borrows = circulation_service.member_borrows(member.id, active_only=True)
    return jsonify({"member": member.as_dict(), "active_borrows": [b.as_dict() for b in borrows]})


@bp.route("/members/<int:member_id>/revoke", methods=["POST"])
def revoke_member(member_id: int):
    auth = _require_staff_json()
    if auth is not True:
        return auth
    member = members_service.revoke_membership(member_id, get_current_user_id())
    LOG.info("Membership revoked from desk member_id=%s", member_id)
    return jsonify({"status": "revoked", "member": member.as_dict()})


__all__ = ["bp"]
