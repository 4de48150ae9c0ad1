from __future__ import annotations

from datetime import date, timedelta
from decimal import Decimal

import pytest

from lms.db import app_session
from lms.db.engine import init_engine_once, reset_for_tests
from lms.db.repositories import books_repo, borrowed_books_repo, users_repo
from lms.services import catalog_service
from lms.utils import constants


@pytest.fixture(autouse=True)
def in_memory_db(monkeypatch):
    reset_for_tests(drop=True)
    monkeypatch.setenv("LMS_DB_PATH", ":memory:")
    monkeypatch.delenv("LMS_DATABASE_URL", raising=False)
    init_engine_once()
    yield
    reset_for_tests(drop=True)


def _form(**overrides):
    data = {
        "isbn": "978-0-13-235088-4",
        "title": "Clean Code",
        "author": "Robert C. Martin",
        "category": "Technology",
        "total_copies": "4",
        "publication_year": "2008",
        "price": "45.99",
    }
    data.update(overrides)
    return data


def _lend(book_id):
    member = users_repo.create_user(
        username="reader", password_hash="x", role=constants.ROLE_MEMBER, full_name="Reader",
        email="reader@example.com", status=constants.USER_ACTIVE, member_code="MEM-000001",
    )
    with app_session() as session:
        books_repo.adjust_available(book_id, -1, session=session)
        return borrowed_books_repo.create_borrow(
            member_id=member.id, book_id=book_id, due_date=date.today() + timedelta(days=7), session=session,
        )


def test_add_book_normalizes_and_fills_available():
    book = catalog_service.add_book(_form())
    assert book.isbn == "9780132350884"
    assert book.total_copies == book.available_copies == 4
    assert book.price == Decimal("45.99")
    assert book.publication_year == 2008


def test_add_book_validation_errors():
    with pytest.raises(catalog_service.BookValidationError) as excinfo:
        catalog_service.add_book(_form(isbn="123", title="", total_copies="0", publication_year="1700",
                                       price="-1"))
    assert set(excinfo.value.fields) == {"isbn", "title", "total_copies", "publication_year", "price"}

    catalog_service.add_book(_form())
    with pytest.raises(catalog_service.BookValidationError) as excinfo:
        catalog_service.add_book(_form(isbn="9780132350884"))
    assert excinfo.value.code == "isbn_exists"


def test_update_keeps_borrowed_copies_consistent():
    book = catalog_service.add_book(_form())
    _lend(book.id)

    updated = catalog_service.update_book(book.id, {"total_copies": 6, "shelf_location": "T-09"})
    assert updated.total_copies == 6
    assert updated.available_copies == 5
    assert updated.shelf_location == "T-09"
    assert updated.title == "Clean Code"

    with pytest.raises(catalog_service.BookValidationError) as excinfo:
        catalog_service.update_book(book.id, {"total_copies": 0})
    assert "total_copies" in excinfo.value.fields

    other = catalog_service.add_book(_form(isbn="9780201633610", title="Design Patterns"))
    with pytest.raises(catalog_service.BookValidationError) as excinfo:
        catalog_service.update_book(other.id, {"isbn": "9780132350884"})
    assert excinfo.value.code == "isbn_exists"

    with pytest.raises(catalog_service.BookNotFoundError):
        catalog_service.update_book(9999, {"title": "Ghost"})


def test_delete_blocked_by_loans_and_history():
    free = catalog_service.add_book(_form(isbn="9780201633610", title="Design Patterns"))
    catalog_service.delete_book(free.id)
    with pytest.raises(catalog_service.BookNotFoundError):
        catalog_service.get_book(free.id)

    book = catalog_service.add_book(_form())
    borrow = _lend(book.id)
    with pytest.raises(catalog_service.BookInUseError) as excinfo:
        catalog_service.delete_book(book.id)
    assert excinfo.value.code == "book_has_active_borrows"

    with app_session() as session:
        borrowed_books_repo.mark_returned(
            borrow.id, returned_to=None, fine_amount=Decimal("0.00"),
            condition=constants.CONDITION_GOOD, session=session,
        )
    with pytest.raises(catalog_service.BookInUseError) as excinfo:
        catalog_service.delete_book(book.id)
    assert excinfo.value.code == "book_has_history"


def test_search_and_summary():
    catalog_service.add_book(_form())
    catalog_service.add_book(_form(isbn="9780061120084", title="To Kill a Mockingbird", author="Harper Lee",
                                   category="Fiction", total_copies="1"))
    assert [b.title for b in catalog_service.search_books("harper")] == ["To Kill a Mockingbird"]
    assert [b.title for b in catalog_service.search_books(None, "Technology")] == ["Clean Code"]
    assert len(catalog_service.search_books("", "All Categories")) == 2
    assert catalog_service.search_books("clean", "Fiction") == []
    assert catalog_service.categories() == ["Fiction", "Technology"]
    assert [b.title for b in catalog_service.low_stock_books()] == ["To Kill a Mockingbird"]
    summary = catalog_service.stock_summary()
    assert summary["titles"] == 2
    assert summary["total_copies"] == 5
