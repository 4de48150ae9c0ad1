"""Dashboard counters and the administrator's tabular reports.

Reports are plain ``{"type", "title", "columns", "rows"}`` documents so the
same data feeds the JSON API and the CSV export.
"""
from __future__ import annotations

import csv
import io
from datetime import date
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional

from lms import config as app_config
from lms.db.repositories import (
    books_repo,
    borrow_requests_repo,
    borrowed_books_repo,
    users_repo,
)
from lms.services.errors import ValidationError
from lms.utils import constants
from lms.utils.currency import format_usd
from lms.utils.logging import get_logger

LOG = get_logger("reports_service")
_DATE_FORMAT = "%b %d, %Y"


class ReportValidationError(ValidationError):
    """Raised for unknown report types or bad date ranges."""


def _fmt(value: Optional[date]) -> str:
    return value.strftime(_DATE_FORMAT) if value else "N/A"


def _in_range(value: Optional[date], start: Optional[date], end: Optional[date]) -> bool:
    if value is None:
        return start is None and end is None
    if start and value < start:
        return False
    if end and value > end:
        return False
    return True


# ---------------- Dashboards ---------------

def member_dashboard(member_id: int, today: Optional[date] = None) -> Dict[str, int]:
    return {
        "active_borrows": borrowed_books_repo.active_count_for_member(member_id),
        "pending_requests": borrow_requests_repo.pending_count_for_member(member_id),
        "overdue": borrowed_books_repo.overdue_count_for_member(member_id, today),
    }


def librarian_dashboard(today: Optional[date] = None) -> Dict[str, int]:
    return {
        "pending_requests": borrow_requests_repo.total_pending_count(),
        "issued_today": borrowed_books_repo.issued_on_count(today),
        "overdue": borrowed_books_repo.total_overdue_count(today),
    }


def admin_dashboard(today: Optional[date] = None) -> Dict[str, Any]:
    stock = books_repo.totals()
    return {
        "stock": stock,
        "members": {
            "total": users_repo.count_by_role(constants.ROLE_MEMBER),
            "active": users_repo.count_by_role(constants.ROLE_MEMBER, status=constants.USER_ACTIVE),
            "pending": users_repo.count_by_role(constants.ROLE_MEMBER, status=constants.USER_PENDING),
        },
        "librarians": users_repo.count_by_role(constants.ROLE_LIBRARIAN),
        "fines_collected": format_usd(borrowed_books_repo.fines_total()),
        "circulation": librarian_dashboard(today),
    }


# ---------------- Reports ---------------

def _books_issued(start: Optional[date], end: Optional[date], today: date) -> Dict[str, Any]:
    rows = [
        [
            b.book.title if b.book else "N/A",
            b.book.author if b.book else "N/A",
            b.member.full_name if b.member else "N/A",
            _fmt(b.issue_date),
            _fmt(b.due_date),
        ]
        for b in borrowed_books_repo.list_all(status=constants.BORROW_ISSUED)
        if _in_range(b.issue_date, start, end)
    ]
    return {
        "title": "Books Issued Report",
        "columns": ["Book Title", "Author", "Member", "Issue Date", "Due Date"],
        "rows": rows,
        "empty_message": "No books currently issued",
    }


def _overdue_books(start: Optional[date], end: Optional[date], today: date) -> Dict[str, Any]:
    per_day = app_config.late_fee_per_day()
    rows = [
        [
            b.book.title if b.book else "N/A",
            b.member.full_name if b.member else "N/A",
            _fmt(b.due_date),
            str(b.days_overdue(today)),
            format_usd(max(Decimal(b.fine_amount or 0), b.calculate_fine(per_day, today))),
        ]
        for b in borrowed_books_repo.list_overdue(today)
    ]
    return {
        "title": "Overdue Books Report",
        "columns": ["Book Title", "Member", "Due Date", "Days Overdue", "Fine Amount"],
        "rows": rows,
        "empty_message": "No overdue books",
    }


def _member_activity(start: Optional[date], end: Optional[date], today: date) -> Dict[str, Any]:
    active = borrowed_books_repo.active_counts_by_member()
    lifetime = borrowed_books_repo.borrow_counts_by_member()
    rows = [
        [
            m.member_code or "N/A",
            m.full_name,
            m.email,
            str(active.get(m.id, 0)),
            str(lifetime.get(m.id, 0)),
            m.status,
        ]
        for m in users_repo.list_by_role(constants.ROLE_MEMBER)
    ]
    return {
        "title": "Member Activity Report",
        "columns": ["Member ID", "Name", "Email", "Books Borrowed", "Total Loans", "Status"],
        "rows": rows,
        "empty_message": "No members found",
    }


def _popular_books(start: Optional[date], end: Optional[date], today: date) -> Dict[str, Any]:
    times = borrowed_books_repo.borrow_counts_by_book()
    books = books_repo.list_all()
    ranked = sorted(books, key=lambda b: (-times.get(b.id, 0), -b.borrowed_copies, b.title))
    rows = [
        [b.title, b.author, b.category, str(times.get(b.id, 0)), str(b.borrowed_copies)]
        for b in ranked
    ]
    return {
        "title": "Popular Books Report",
        "columns": ["Book Title", "Author", "Category", "Times Borrowed", "Currently Out"],
        "rows": rows,
        "empty_message": "No books in catalog",
    }


def _inventory_status(start: Optional[date], end: Optional[date], today: date) -> Dict[str, Any]:
    rows = [
        [b.isbn, b.title, str(b.total_copies), str(b.available_copies), b.stock_status]
        for b in books_repo.list_all()
    ]
    return {
        "title": "Inventory Status Report",
        "columns": ["ISBN", "Title", "Total Copies", "Available", "Status"],
        "rows": rows,
        "empty_message": "No books in catalog",
    }


def _revenue(start: Optional[date], end: Optional[date], today: date) -> Dict[str, Any]:
    rows: List[List[str]] = []
    total = Decimal("0.00")
    for b in borrowed_books_repo.list_returned_with_fines():
        if not _in_range(b.return_date, start, end):
            continue
        amount = Decimal(b.fine_amount or 0)
        total += amount
        rows.append([
            _fmt(b.return_date),
            b.book.title if b.book else "N/A",
            b.member.full_name if b.member else "N/A",
            b.return_condition or "N/A",
            format_usd(amount),
        ])
    return {
        "title": "Revenue Report",
        "columns": ["Return Date", "Book Title", "Member", "Condition", "Fees Charged"],
        "rows": rows,
        "empty_message": "No fees collected",
        "summary": {"total_fees": format_usd(total), "transactions": len(rows)},
    }


REPORTS: Dict[str, Callable[[Optional[date], Optional[date], date], Dict[str, Any]]] = {
    "books_issued": _books_issued,
    "overdue_books": _overdue_books,
    "member_activity": _member_activity,
    "popular_books": _popular_books,
    "inventory_status": _inventory_status,
    "revenue": _revenue,
}


def report_types() -> List[Dict[str, str]]:
    titles = {
        "books_issued": "Books Issued Report",
        "overdue_books": "Overdue Books Report",
        "member_activity": "Member Activity Report",
        "popular_books": "Popular Books Report",
        "inventory_status": "Inventory Status Report",
        "revenue": "Revenue Report",
    }
    return [{"type": key, "title": titles[key]} for key in REPORTS]


def generate_report(
    report_type: str,
    *,
    start: Optional[date] = None,
    end: Optional[date] = None,
    today: Optional[date] = None,
) -> Dict[str, Any]:
    key = (report_type or "").strip().lower().replace("-", "_")
    builder = REPORTS.get(key)
    if builder is None:
        raise ReportValidationError("unknown_report", {"type": "Report type not implemented."})
    if start and end and end < start:
        raise ReportValidationError("invalid_date_range", {"end": "End date must be on or after the start date."})
    document = builder(start, end, today or date.today())
    document["type"] = key
    document["generated_at"] = (today or date.today()).isoformat()
    LOG.info("Generated report %s rows=%s", key, len(document["rows"]))
    return document


def report_to_csv(document: Dict[str, Any]) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer)
    writer.writerow(document["columns"])
    writer.writerows(document["rows"])
    return buffer.getvalue()


__all__ = [
    "ReportValidationError",
    "member_dashboard",
    "librarian_dashboard",
    "admin_dashboard",
    "REPORTS",
    "report_types",
    "generate_report",
    "report_to_csv",
]
