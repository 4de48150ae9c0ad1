"""Book catalog management and inventory queries."""
from __future__ import annotations

from datetime import date
from typing import Any, Dict, List, Mapping, Optional

from lms.db import app_session
from lms.db.models import Book
from lms.db.repositories import books_repo, borrow_requests_repo, borrowed_books_repo
from lms.services.errors import ConflictError, NotFoundError, ValidationError
from lms.utils import validation
from lms.utils.logging import get_logger

LOG = get_logger("catalog_service")

MIN_PUBLICATION_YEAR = 1800
MAX_COPIES = 1000
_TEXT_LIMITS = {
    "publisher": 100,
    "edition": 50,
    "shelf_location": 50,
    "category": 50,
}


class BookNotFoundError(NotFoundError):
    """Raised when a book id does not exist."""


class BookValidationError(ValidationError):
    """Raised when the book form fails validation."""


class BookInUseError(ConflictError):
    """Raised when a delete/update conflicts with copies on loan."""


def _text(data: Mapping[str, Any], name: str) -> Optional[str]:
    value = data.get(name)
    if value is None:
        return None
    cleaned = str(value).strip()
    return cleaned or None


def _clean_book_payload(data: Mapping[str, Any]) -> tuple[Dict[str, Any], Dict[str, str]]:
    """Validate a full book form; returns (values, errors)."""
    errors: Dict[str, str] = {}
    values: Dict[str, Any] = {}

    isbn_raw = _text(data, "isbn")
    if not isbn_raw:
        errors["isbn"] = validation.required_message("ISBN")
    elif not validation.is_valid_isbn(isbn_raw):
        errors["isbn"] = validation.ISBN_ERROR
    else:
        values["isbn"] = validation.normalize_isbn(isbn_raw)

    title = _text(data, "title")
    if not title:
        errors["title"] = validation.required_message("Title")
    elif not validation.is_valid_length(title, 1, 255):
        errors["title"] = "Title must be between 1 and 255 characters"
    else:
        values["title"] = validation.sanitize(title)

    author = _text(data, "author")
    if not author:
        errors["author"] = validation.required_message("Author")
    elif not validation.is_valid_length(author, 1, 100):
        errors["author"] = "Author must be between 1 and 100 characters"
    else:
        values["author"] = validation.sanitize(author)

    category = _text(data, "category")
    if not category:
        errors["category"] = "Please select a category"
    else:
        values["category"] = category

    total = data.get("total_copies", 1)
    if not validation.is_integer_in_range(total, 1, MAX_COPIES):
        errors["total_copies"] = f"Total copies must be between 1 and {MAX_COPIES}"
    else:
        values["total_copies"] = int(str(total).strip())

    year = data.get("publication_year")
    if year in (None, ""):
        values["publication_year"] = None
    elif not validation.is_integer_in_range(year, MIN_PUBLICATION_YEAR, date.today().year):
        errors["publication_year"] = f"Publication year must be between {MIN_PUBLICATION_YEAR} and {date.today().year}"
    else:
        values["publication_year"] = int(str(year).strip())

    price = data.get("price")
    if price in (None, ""):
        values["price"] = None
    else:
        parsed = validation.parse_decimal(price)
        if parsed is None:
            errors["price"] = "Invalid price format"
        elif parsed < 0:
            errors["price"] = "Price cannot be negative"
        else:
            values["price"] = parsed

    for name, limit in _TEXT_LIMITS.items():
        if name == "category":
            continue
        value = _text(data, name)
        if value and len(value) > limit:
            errors[name] = f"{name.replace('_', ' ').capitalize()} must be at most {limit} characters"
        else:
            values[name] = value
    if "category" in values and len(values["category"]) > _TEXT_LIMITS["category"]:
        errors["category"] = f"Category must be at most {_TEXT_LIMITS['category']} characters"
    values["description"] = _text(data, "description")
    return values, errors


def get_book(book_id: int) -> Book:
    book = books_repo.get_book(book_id)
    if book is None:
        raise BookNotFoundError("book_not_found")
    return book


def add_book(data: Mapping[str, Any]) -> Book:
    values, errors = _clean_book_payload(data)
    if errors:
        raise BookValidationError("validation_failed", errors)
    if books_repo.isbn_exists(values["isbn"]):
        raise BookValidationError("isbn_exists", {"isbn": "ISBN already exists in the system"})
    values["available_copies"] = values["total_copies"]
    try:
        return books_repo.create_book(**values)
    except books_repo.BookExistsError as exc:
        raise BookValidationError("isbn_exists", {"isbn": "ISBN already exists in the system"}) from exc


def update_book(book_id: int, data: Mapping[str, Any]) -> Book:
    """Apply an edit form; fields omitted from ``data`` keep their current value."""
    with app_session() as session:
        current = books_repo.get_book(book_id, session=session)
        if current is None:
            raise BookNotFoundError("book_not_found")
        merged: Dict[str, Any] = {
            "isbn": current.isbn,
            "title": current.title,
            "author": current.author,
            "category": current.category,
            "total_copies": current.total_copies,
            "publication_year": current.publication_year,
            "price": current.price,
            "publisher": current.publisher,
            "edition": current.edition,
            "shelf_location": current.shelf_location,
            "description": current.description,
        }
        merged.update({key: value for key, value in data.items() if key in merged})
        values, errors = _clean_book_payload(merged)
        borrowed = current.borrowed_copies
        if "total_copies" in values and values["total_copies"] < borrowed:
            errors["total_copies"] = f"Total copies cannot be less than currently borrowed ({borrowed})"
        if errors:
            raise BookValidationError("validation_failed", errors)
        if values["isbn"] != current.isbn:
            clash = books_repo.get_by_isbn(values["isbn"], session=session)
            if clash is not None and clash.id != book_id:
                raise BookValidationError("isbn_exists", {"isbn": "ISBN already exists in the system"})
        values["available_copies"] = values["total_copies"] - borrowed
        try:
            record = books_repo.update_fields(book_id, values, session=session)
        except books_repo.BookExistsError as exc:
            raise BookValidationError("isbn_exists", {"isbn": "ISBN already exists in the system"}) from exc
    LOG.info("Updated book id=%s", book_id)
    return record  # type: ignore[return-value]


def delete_book(book_id: int) -> None:
    with app_session() as session:
        book = books_repo.get_book(book_id, session=session)
        if book is None:
            raise BookNotFoundError("book_not_found")
        if borrowed_books_repo.active_count_for_book(book_id, session=session):
            raise BookInUseError("book_has_active_borrows")
        if borrowed_books_repo.count_for_book(book_id, session=session) or borrow_requests_repo.count_for_book(
            book_id, session=session
        ):
            raise BookInUseError("book_has_history")
        books_repo.delete_book(book_id, session=session)


def search_books(
    term: Optional[str] = None,
    category: Optional[str] = None,
    *,
    available_only: bool = False,
) -> List[Book]:
    """Title/author/ISBN search, optionally restricted to a category."""
    term = (term or "").strip()
    category = (category or "").strip()
    if category.lower() in ("", "all", "all categories"):
        category = ""
    if term and category:
        return books_repo.search_in_category(term, category, available_only=available_only)
    if term:
        return books_repo.search(term, available_only=available_only)
    if category:
        return books_repo.list_by_category(category, available_only=available_only)
    return books_repo.list_available() if available_only else books_repo.list_all()


def categories() -> List[str]:
    return books_repo.list_categories()


def low_stock_books() -> List[Book]:
    return books_repo.list_low_stock()


def stock_summary() -> Dict[str, int]:
    return books_repo.totals()


__all__ = [
    "BookNotFoundError",
    "BookValidationError",
    "BookInUseError",
    "get_book",
    "add_book",
    "update_book",
    "delete_book",
    "search_books",
    "categories",
    "low_stock_books",
    "stock_summary",
]
