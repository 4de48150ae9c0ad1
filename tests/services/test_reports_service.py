from __future__ import annotations

import csv
import io
from datetime import date, timedelta
from decimal import Decimal

import pytest

from lms.db.engine import init_engine_once, reset_for_tests
from lms.db.repositories import books_repo, borrowed_books_repo, users_repo
from lms.services import (
    auth_service,
    circulation_service,
    email_delivery,
    reports_service,
    requests_service,
)
from lms.utils import constants

TODAY = date.today()


@pytest.fixture(autouse=True)
def in_memory_db(monkeypatch):
    reset_for_tests(drop=True)
    monkeypatch.setenv("LMS_DB_PATH", ":memory:")
    monkeypatch.delenv("LMS_DATABASE_URL", raising=False)
    monkeypatch.delenv("LMS_LATE_FEE_PER_DAY", raising=False)
    monkeypatch.setattr(email_delivery, "notify", lambda *a, **k: False)
    init_engine_once()
    yield
    reset_for_tests(drop=True)


@pytest.fixture
def library():
    """Two members, one librarian, two books; one loan returned late, one overdue, one current."""
    librarian = users_repo.create_user(
        username="desk", password_hash=auth_service.hash_password("librarian123"),
        role=constants.ROLE_LIBRARIAN, full_name="Desk Person", email="desk@library.test",
        status=constants.USER_ACTIVE, employee_id="DESK", can_issue_returns=True,
    )
    ada = users_repo.create_user(
        username="ada", password_hash="x", role=constants.ROLE_MEMBER, full_name="Ada Lovelace",
        email="ada@example.com", status=constants.USER_ACTIVE, member_code="MEM-000001",
    )
    grace = users_repo.create_user(
        username="grace", password_hash="x", role=constants.ROLE_MEMBER, full_name="Grace Hopper",
        email="grace@example.com", status=constants.USER_ACTIVE, member_code="MEM-000002",
    )
    orwell = books_repo.create_book(isbn="9780451524935", title="1984", author="George Orwell",
                                    category="Fiction", total_copies=4, available_copies=4)
    hawking = books_repo.create_book(isbn="9780553380163", title="A Brief History of Time",
                                     author="Stephen Hawking", category="Science", total_copies=1,
                                     available_copies=1, price=Decimal("20.00"))

    late = circulation_service.issue_book(librarian.id, book_id=orwell.id, member="ada", duration_days=7,
                                          today=TODAY - timedelta(days=20)).borrow
    circulation_service.return_book(late.id, librarian.id, today=TODAY - timedelta(days=10))
    circulation_service.issue_book(librarian.id, book_id=hawking.id, member="grace", duration_days=7,
                                   today=TODAY - timedelta(days=9))
    circulation_service.issue_book(librarian.id, book_id=orwell.id, member="ada", duration_days=14)
    return {"librarian": librarian, "ada": ada, "grace": grace, "orwell": orwell, "hawking": hawking}


def test_dashboards(library):
    requests_service.submit_request(library["grace"].id, library["orwell"].id)
    assert reports_service.member_dashboard(library["ada"].id) == {
        "active_borrows": 1, "pending_requests": 0, "overdue": 0,
    }
    assert reports_service.member_dashboard(library["grace"].id) == {
        "active_borrows": 1, "pending_requests": 1, "overdue": 1,
    }
    assert reports_service.librarian_dashboard() == {"pending_requests": 1, "issued_today": 1, "overdue": 1}
    admin = reports_service.admin_dashboard()
    assert admin["members"] == {"total": 2, "active": 2, "pending": 0}
    assert admin["librarians"] == 1
    assert admin["stock"]["borrowed_copies"] == 2
    assert admin["fines_collected"] == "$3.00"
    assert borrowed_books_repo.fines_total() == Decimal("3.00")


def test_books_issued_and_overdue_reports(library):
    issued = reports_service.generate_report("books_issued")
    assert issued["type"] == "books_issued"
    assert issued["generated_at"] == TODAY.isoformat()
    # The overdue Hawking loan is still ISSUED until a sweep runs.
    assert sorted(row[0] for row in issued["rows"]) == ["1984", "A Brief History of Time"]

    window = reports_service.generate_report("books-issued", start=TODAY - timedelta(days=1))
    assert [row[0] for row in window["rows"]] == ["1984"]

    overdue = reports_service.generate_report("overdue_books")
    assert overdue["rows"] == [[
        "A Brief History of Time", "Grace Hopper", (TODAY - timedelta(days=2)).strftime("%b %d, %Y"), "2", "$2.00",
    ]]


def test_member_popular_inventory_and_revenue(library):
    activity = {row[0]: row for row in reports_service.generate_report("member_activity")["rows"]}
    assert activity["MEM-000001"][3:5] == ["1", "2"]
    assert activity["MEM-000002"][3:5] == ["1", "1"]

    popular = reports_service.generate_report("popular_books")["rows"]
    assert popular[0][:4] == ["1984", "George Orwell", "Fiction", "2"]

    inventory = {row[0]: row for row in reports_service.generate_report("inventory_status")["rows"]}
    assert inventory["9780553380163"][2:] == ["1", "0", constants.STOCK_OUT]

    revenue = reports_service.generate_report("revenue")
    assert revenue["rows"][0][1:] == ["1984", "Ada Lovelace", constants.CONDITION_GOOD, "$3.00"]
    assert revenue["summary"] == {"total_fees": "$3.00", "transactions": 1}
    assert reports_service.generate_report("revenue", end=TODAY - timedelta(days=11))["rows"] == []


def test_csv_export_and_validation(library):
    document = reports_service.generate_report("inventory_status")
    rows = list(csv.reader(io.StringIO(reports_service.report_to_csv(document))))
    assert rows[0] == ["ISBN", "Title", "Total Copies", "Available", "Status"]
    assert len(rows) == 3

    with pytest.raises(reports_service.ReportValidationError) as excinfo:
        reports_service.generate_report("weekly_digest")
    assert excinfo.value.code == "unknown_report"
    with pytest.raises(reports_service.ReportValidationError) as excinfo:
        reports_service.generate_report("revenue", start=TODAY, end=TODAY - timedelta(days=1))
    assert excinfo.value.code == "invalid_date_range"
    assert [t["type"] for t in reports_service.report_types()] == list(reports_service.REPORTS)
