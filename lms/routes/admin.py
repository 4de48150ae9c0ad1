"""Administrator API blueprint.

Routes (all under /admin, ADMIN session required):
    /dashboard                       -> stock, member and circulation counters
    /books[/<id>]                    -> catalog CRUD
    /librarians[/<id>]               -> librarian accounts and permissions
    /members[/<id>/approve|revoke]   -> membership decisions
    /email-templates[/<key>]         -> customise notification emails
    /reports[/<type>]                -> tabular reports (JSON or ?format=csv)
"""
from __future__ import annotations

from dataclasses import asdict

from flask import Blueprint, Response, jsonify, request

from lms.routes.common import (
    flag_arg,
    parse_date_arg,
    payload,
    register_error_handlers,
    require_role_json,
)
from lms.services import (
    catalog_service,
    email_templates_service,
    librarians_service,
    members_service,
    reports_service,
)
from lms.utils import constants, get_current_user_id
from lms.utils.logging import get_logger

bp = Blueprint("lms_admin", __name__, url_prefix="/admin")
LOG = get_logger("routes.admin")
register_error_handlers(bp)


def _require_admin_json():
    return require_role_json([constants.ROLE_ADMIN])


@bp.route("/dashboard", methods=["GET"])
def dashboard():
    auth = _require_admin_json()
    if auth is not True:
        return auth
    return jsonify(reports_service.admin_dashboard())


# ---------------- Books ---------------

@bp.route("/books", methods=["GET"])
def list_books():
    auth = _require_admin_json()
    if auth is not True:
        return auth
    rows = catalog_service.search_books(
        request.args.get("q"),
        request.args.get("category"),
        available_only=flag_arg("available"),
    )
    return jsonify({
        "rows": [b.as_dict() for b in rows],
        "summary": catalog_service.stock_summary(),
        "categories": catalog_service.categories(),
    })


@bp.route("/books", methods=["POST"])
def add_book():
    auth = _require_admin_json()
    if auth is not True:
        return auth
    book = catalog_service.add_book(payload())
    return jsonify({"status": "created", "book": book.as_dict()}), 201


@bp.route("/books/<int:book_id>", methods=["GET"])
def get_book(book_id: int):
    auth = _require_admin_json()
    if auth is not True:
        return auth
    return jsonify({"book": catalog_service.get_book(book_id).as_dict()})


@bp.route("/books/<int:book_id>", methods=["POST", "PUT"])
def update_book(book_id: int):
    auth = _require_admin_json()
    if auth is not True:
        return auth
    book = catalog_service.update_book(book_id, payload())
    return jsonify({"status": "updated", "book": book.as_dict()})


@bp.route("/books/<int:book_id>", methods=["DELETE"])
def delete_book(book_id: int):
    auth = _require_admin_json()
    if auth is not True:
        return auth
    catalog_service.delete_book(book_id)
    return jsonify({"status": "deleted", "book_id": book_id})


@bp.route("/books/low-stock", methods=["GET"])
def low_stock():
    auth = _require_admin_json()
    if auth is not True:
        return auth
    return jsonify({"rows": [b.as_dict() for b in catalog_service.low_stock_books()]})


# ---------------- Librarians ---------------

@bp.route("/librarians", methods=["GET"])
def list_librarians():
    auth = _require_admin_json()
    if auth is not True:
        return auth
    rows = librarians_service.list_librarians(request.args.get("q"))
    return jsonify({"rows": [u.as_dict() for u in rows]})


@bp.route("/librarians", methods=["POST"])
def register_librarian():
    auth = _require_admin_json()
    if auth is not True:
        return auth
    user = librarians_service.register_librarian(payload())
    return jsonify({"status": "created", "librarian": user.as_dict()}), 201


@bp.route("/librarians/<int:librarian_id>", methods=["GET"])
def get_librarian(librarian_id: int):
    auth = _require_admin_json()
    if auth is not True:
        return auth
    return jsonify({"librarian": librarians_service.get_librarian(librarian_id).as_dict()})


@bp.route("/librarians/<int:librarian_id>", methods=["POST", "PUT"])
def update_librarian(librarian_id: int):
    auth = _require_admin_json()
    if auth is not True:
        return auth
    user = librarians_service.update_librarian(librarian_id, payload())
    return jsonify({"status": "updated", "librarian": user.as_dict()})


@bp.route("/librarians/<int:librarian_id>/deactivate", methods=["POST"])
def deactivate_librarian(librarian_id: int):
    auth = _require_admin_json()
    if auth is not True:
        return auth
    user = librarians_service.deactivate_librarian(librarian_id)
    return jsonify({"status": "deactivated", "librarian": user.as_dict()})


@bp.route("/librarians/<int:librarian_id>/activate", methods=["POST"])
def activate_librarian(librarian_id: int):
    auth = _require_admin_json()
    if auth is not True:
        return auth
    user = librarians_service.set_librarian_status(librarian_id, True)
    return jsonify({"status": "activated", "librarian": user.as_dict()})


# ---------------- Members ---------------

@bp.route("/members", methods=["GET"])
def list_members():
    auth = _require_admin_json()
    if auth is not True:
        return auth
    rows = members_service.list_members(request.args.get("q"), request.args.get("status"))
    return jsonify({"rows": rows, "summary": members_service.members_summary()})


@bp.route("/members/<int:member_id>/approve", methods=["POST"])
def approve_member(member_id: int):
    auth = _require_admin_json()
    if auth is not True:
        return auth
    member = members_service.approve_membership(member_id)
    return jsonify({"status": "approved", "member": member.as_dict()})


@bp.route("/members/<int:member_id>/revoke", methods=["POST"])
def revoke_member(member_id: int):
    auth = _require_admin_json()
    if auth is not True:
        return auth
    member = members_service.revoke_membership(member_id, get_current_user_id())
    return jsonify({"status": "revoked", "member": member.as_dict()})


# ---------------- Email templates ---------------

@bp.route("/email-templates", methods=["GET"])
def email_templates():
    auth = _require_admin_json()
    if auth is not True:
        return auth
    return jsonify(email_templates_service.fetch_templates_context())


@bp.route("/email-templates/<template_key>", methods=["POST"])
def save_email_template(template_key: str):
    auth = _require_admin_json()
    if auth is not True:
        return auth
    data = payload()
    resolved = email_templates_service.save_template(template_key, data.get("html") or "", data.get("subject"))
    return jsonify({"status": "saved", "template": asdict(resolved)})


@bp.route("/email-templates/<template_key>/reset", methods=["POST"])
def reset_email_template(template_key: str):
    auth = _require_admin_json()
    if auth is not True:
        return auth
    resolved = email_templates_service.reset_template(template_key)
    return jsonify({"status": "reset", "template": asdict(resolved)})


# ---------------- Reports ---------------

@bp.route("/reports", methods=["GET"])
def report_types():
    auth = _require_admin_json()
    if auth is not True:
        return auth
    return jsonify({"reports": reports_service.report_types()})


@bp.route("/reports/<report_type>", methods=["GET"])
def report(report_type: str):
    auth = _require_admin_json()
    if auth is not True:
        return auth
    document = reports_service.generate_report(
        report_type,
        start=parse_date_arg("start"),
        end=parse_date_arg("end"),
    )
    if (request.args.get("format") or "").lower() == "csv":
        filename = f"{document['type']}_{document['generated_at']}.csv"
        LOG.info("CSV export %s", filename)
        return Response(
            reports_service.report_to_csv(document),
            mimetype="text/csv",
            headers={"Content-Disposition": f"attachment; filename={filename}"},
        )
    return jsonify(document)


__all__ = ["bp"]
