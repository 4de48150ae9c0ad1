"""Repository helpers for the book catalog."""
from __future__ import annotations

from typing import Any, Dict, List, Optional

from sqlalchemy import func, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from lms.db import session_scope
from lms.db.models import Book
from lms.utils import constants
from lms.utils.logging import get_logger

LOG = get_logger("books_repo")

_UPDATABLE_FIELDS = {
    "isbn",
    "title",
    "author",
    "publisher",
    "publication_year",
    "edition",
    "category",
    "description",
    "total_copies",
    "available_copies",
    "price",
    "shelf_location",
}


class BookExistsError(RuntimeError):
    """Raised when the ISBN unique constraint fails."""


class StockError(RuntimeError):
    """Raised when a copy counter adjustment would leave the valid range."""


def _search_filter(term: str):
    pattern = f"%{(term or '').strip()}%"
    return or_(Book.title.ilike(pattern), Book.author.ilike(pattern), Book.isbn.ilike(pattern))


def list_all() -> List[Book]:
    with session_scope() as s:
        return s.query(Book).order_by(Book.title.asc()).all()


def list_available() -> List[Book]:
    with session_scope() as s:
        return s.query(Book).filter(Book.available_copies > 0).order_by(Book.title.asc()).all()


def get_book(book_id: int, *, session: Optional[Session] = None) -> Optional[Book]:
    with session_scope(session) as s:
        return s.get(Book, book_id)


def get_by_isbn(isbn: str, *, session: Optional[Session] = None) -> Optional[Book]:
    with session_scope(session) as s:
        return s.query(Book).filter(Book.isbn == isbn).one_or_none()


def isbn_exists(isbn: str, *, exclude_book_id: Optional[int] = None) -> bool:
    with session_scope() as s:
        query = s.query(Book.id).filter(Book.isbn == isbn)
        if exclude_book_id is not None:
            query = query.filter(Book.id != exclude_book_id)
        return query.first() is not None


def search(term: str, *, available_only: bool = False) -> List[Book]:
    with session_scope() as s:
        query = s.query(Book).filter(_search_filter(term))
        if available_only:
            query = query.filter(Book.available_copies > 0)
        return query.order_by(Book.title.asc()).all()


def list_by_category(category: str, *, available_only: bool = False) -> List[Book]:
    with session_scope() as s:
        query = s.query(Book).filter(Book.category == category)
        if available_only:
            query = query.filter(Book.available_copies > 0)
        return query.order_by(Book.title.asc()).all()


def search_in_category(term: str, category: str, *, available_only: bool = False) -> List[Book]:
    with session_scope() as s:
        query = s.query(Book).filter(Book.category == category, _search_filter(term))
        if available_only:
            query = query.filter(Book.available_copies > 0)
        return query.order_by(Book.title.asc()).all()


def list_categories() -> List[str]:
    with session_scope() as s:
        rows = s.query(Book.category).distinct().order_by(Book.category.asc()).all()
        return [row[0] for row in rows if row[0]]


def create_book(*, session: Optional[Session] = None, **fields: Any) -> Book:
    try:
        with session_scope(session) as s:
            record = Book(**fields)
            s.add(record)
            s.flush()
            LOG.info("Added book id=%s isbn=%s copies=%s", record.id, record.isbn, record.total_copies)
            return record
    except IntegrityError as exc:
        raise BookExistsError("isbn_exists") from exc


def update_fields(book_id: int, values: Dict[str, Any], *, session: Optional[Session] = None) -> Optional[Book]:
    unknown = set(values) - _UPDATABLE_FIELDS
    if unknown:
        raise ValueError(f"unsupported_fields:{','.join(sorted(unknown))}")
    try:
        with session_scope(session) as s:
            record = s.get(Book, book_id)
            if not record:
                return None
            for key, value in values.items():
                setattr(record, key, value)
            s.flush()
            return record
    except IntegrityError as exc:
        raise BookExistsError("isbn_exists") from exc


def delete_book(book_id: int, *, session: Optional[Session] = None) -> bool:
    with session_scope(session) as s:
        record = s.get(Book, book_id)
        if not record:
            return False
        s.delete(record)
        LOG.info("Deleted book id=%s isbn=%s", book_id, record.isbn)
        return True


def adjust_available(book_id: int, delta: int, *, session: Session, adjust_total: bool = False) -> Book:
    """Shift ``available_copies`` (and optionally ``total_copies``) by ``delta``.

    Must run inside the caller's transaction; the row is locked where the
    backend supports ``SELECT ... FOR UPDATE``.
    """
    record = session.query(Book).filter(Book.id == book_id).with_for_update().one_or_none()
    if record is None:
        raise StockError("book_not_found")
    new_available = (record.available_copies or 0) + delta
    new_total = (record.total_copies or 0) + (delta if adjust_total else 0)
    if new_available < 0:
        raise StockError("book_unavailable")
    if new_available > new_total:
        raise StockError("stock_overflow")
    record.available_copies = new_available
    record.total_copies = new_total
    session.flush()
    return record


def list_low_stock() -> List[Book]:
    with session_scope() as s:
        books = s.query(Book).order_by(Book.available_copies.asc(), Book.title.asc()).all()
        return [book for book in books if book.is_low_stock]


def totals() -> Dict[str, int]:
    with session_scope() as s:
        row = s.query(
            func.count(Book.id),
            func.coalesce(func.sum(Book.total_copies), 0),
            func.coalesce(func.sum(Book.available_copies), 0),
        ).one()
        titles, total, available = (int(value or 0) for value in row)
        low_stock = (
            s.query(func.count(Book.id))
            .filter(
                or_(
                    Book.available_copies < constants.LOW_STOCK_THRESHOLD,
                    Book.available_copies * 100 < Book.total_copies * constants.LOW_STOCK_PERCENT,
                )
            )
            .scalar()
        )
        return {
            "titles": titles,
            "total_copies": total,
            "available_copies": available,
            "borrowed_copies": total - available,
            "low_stock": int(low_stock or 0),
        }


__all__ = [
    "BookExistsError",
    "StockError",
    "list_all",
    "list_available",
    "get_book",
    "get_by_isbn",
    "isbn_exists",
    "search",
    "list_by_category",
    "search_in_category",
    "list_categories",
    "create_book",
    "update_fields",
    "delete_book",
    "adjust_available",
    "list_low_stock",
    "totals",
]
