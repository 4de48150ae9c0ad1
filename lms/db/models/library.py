"""ORM models for the library database (accounts, catalog, circulation)."""
from __future__ import annotations

import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
)
from sqlalchemy.orm import declarative_base, relationship

from lms.utils import constants

Base = declarative_base()


def _iso(value) -> Optional[str]:
    return value.isoformat() if value else None


def _money(value) -> str:
    return str(Decimal(value or 0).quantize(Decimal("0.01")))


class User(Base):
    """Account row for members, librarians and administrators.

    Librarian-only columns (``employee_id`` and the three permission flags)
    and the member-only ``member_code`` share the table; the ``role`` column
    decides which apply.
    """

    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    username = Column(String(50), nullable=False, unique=True, index=True)
    password_hash = Column(String(255), nullable=False)
    role = Column(String(16), nullable=False, index=True)
    full_name = Column(String(100), nullable=False)
    email = Column(String(100), nullable=False, unique=True, index=True)
    phone = Column(String(20), nullable=True)
    address = Column(Text, nullable=True)
    status = Column(String(16), nullable=False, default=constants.USER_PENDING, index=True)
    employee_id = Column(String(50), nullable=True, unique=True)
    member_code = Column(String(50), nullable=True, unique=True)
    can_approve_requests = Column(Boolean, nullable=False, default=False)
    can_issue_returns = Column(Boolean, nullable=False, default=False)
    can_revoke_membership = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, default=datetime.datetime.utcnow, nullable=False)
    updated_at = Column(
        DateTime,
        default=datetime.datetime.utcnow,
        onupdate=datetime.datetime.utcnow,
        nullable=False,
    )

    @property
    def is_member(self) -> bool:
        return self.role == constants.ROLE_MEMBER

    @property
    def is_librarian(self) -> bool:
        return self.role == constants.ROLE_LIBRARIAN

    @property
    def is_admin(self) -> bool:
        return self.role == constants.ROLE_ADMIN

    @property
    def is_active_account(self) -> bool:
        return self.status == constants.USER_ACTIVE

    def has_permission(self, name: str) -> bool:
        if self.is_admin:
            return True
        if name not in constants.PERMISSIONS:
            return False
        return bool(getattr(self, name, False))

    def permissions(self) -> dict:
        return {name: self.has_permission(name) for name in constants.PERMISSIONS}

    def as_dict(self) -> dict:
        payload = {
            "id": self.id,
            "username": self.username,
            "role": self.role,
            "full_name": self.full_name,
            "email": self.email,
            "phone": self.phone,
            "address": self.address,
            "status": self.status,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }
        if self.is_member:
            payload["member_code"] = self.member_code
        if self.is_librarian or self.is_admin:
            payload["employee_id"] = self.employee_id
            payload["permissions"] = self.permissions()
        return payload

    def __repr__(self) -> str:  # pragma: no cover
        return f"<User id={self.id} username={self.username} role={self.role} status={self.status}>"


class Book(Base):
    """Catalog entry with copy counters.

    ``available_copies`` is maintained by the circulation services; the
    difference to ``total_copies`` is the number of copies currently out.
    """

    __tablename__ = "books"

    id = Column(Integer, primary_key=True, autoincrement=True)
    isbn = Column(String(20), nullable=False, unique=True, index=True)
    title = Column(String(255), nullable=False, index=True)
    author = Column(String(100), nullable=False, index=True)
    publisher = Column(String(100), nullable=True)
    publication_year = Column(Integer, nullable=True)
    edition = Column(String(50), nullable=True)
    category = Column(String(50), nullable=False, index=True)
    description = Column(Text, nullable=True)
    total_copies = Column(Integer, nullable=False, default=1)
    available_copies = Column(Integer, nullable=False, default=1)
    price = Column(Numeric(10, 2), nullable=True)
    shelf_location = Column(String(50), nullable=True)
    created_at = Column(DateTime, default=datetime.datetime.utcnow, nullable=False)
    updated_at = Column(
        DateTime,
        default=datetime.datetime.utcnow,
        onupdate=datetime.datetime.utcnow,
        nullable=False,
    )

    __table_args__ = (
        CheckConstraint("available_copies >= 0", name="ck_books_available_non_negative"),
        CheckConstraint("available_copies <= total_copies", name="ck_books_available_le_total"),
    )

    @property
    def is_available(self) -> bool:
        return (self.available_copies or 0) > 0

    @property
    def borrowed_copies(self) -> int:
        return (self.total_copies or 0) - (self.available_copies or 0)

    @property
    def availability_percentage(self) -> float:
        if not self.total_copies:
            return 0.0
        return (self.available_copies or 0) * 100.0 / self.total_copies

    @property
    def is_low_stock(self) -> bool:
        return (
            (self.available_copies or 0) < constants.LOW_STOCK_THRESHOLD
            or self.availability_percentage < constants.LOW_STOCK_PERCENT
        )

    @property
    def stock_status(self) -> str:
        if (self.available_copies or 0) == 0:
            return constants.STOCK_OUT
        if self.is_low_stock:
            return constants.STOCK_LOW
        return constants.STOCK_IN

    def as_dict(self) -> dict:
        return {
            "id": self.id,
            "isbn": self.isbn,
            "title": self.title,
            "author": self.author,
            "publisher": self.publisher,
            "publication_year": self.publication_year,
            "edition": self.edition,
            "category": self.category,
            "description": self.description,
            "total_copies": self.total_copies,
            "available_copies": self.available_copies,
            "borrowed_copies": self.borrowed_copies,
            "availability_percentage": round(self.availability_percentage, 1),
            "stock_status": self.stock_status,
            "price": _money(self.price) if self.price is not None else None,
            "shelf_location": self.shelf_location,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }

    def __repr__(self) -> str:  # pragma: no cover
        return f"<Book id={self.id} isbn={self.isbn} title={self.title!r}>"


class BorrowRequest(Base):
    """A member's request to borrow a book, decided by a librarian."""

    __tablename__ = "borrow_requests"

    id = Column(Integer, primary_key=True, autoincrement=True)
    member_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    book_id = Column(Integer, ForeignKey("books.id"), nullable=False, index=True)
    request_date = Column(DateTime, default=datetime.datetime.utcnow, nullable=False)
    status = Column(String(16), nullable=False, default=constants.REQUEST_PENDING, index=True)
    approved_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    approved_date = Column(DateTime, nullable=True)
    borrow_duration_days = Column(Integer, nullable=True)
    notes = Column(Text, nullable=True)

    member = relationship("User", foreign_keys=[member_id], lazy="joined")
    book = relationship("Book", lazy="joined")
    approver = relationship("User", foreign_keys=[approved_by], lazy="joined")

    __table_args__ = (
        Index("ix_borrow_requests_member_book_status", "member_id", "book_id", "status"),
    )

    @property
    def is_pending(self) -> bool:
        return self.status == constants.REQUEST_PENDING

    def as_dict(self) -> dict:
        return {
            "id": self.id,
            "member_id": self.member_id,
            "member_name": self.member.full_name if self.member else None,
            "member_code": self.member.member_code if self.member else None,
            "book_id": self.book_id,
            "book_title": self.book.title if self.book else None,
            "book_author": self.book.author if self.book else None,
            "book_isbn": self.book.isbn if self.book else None,
            "request_date": _iso(self.request_date),
            "status": self.status,
            "approved_by": self.approved_by,
            "approved_by_name": self.approver.full_name if self.approver else None,
            "approved_date": _iso(self.approved_date),
            "borrow_duration_days": self.borrow_duration_days,
            "notes": self.notes,
        }

    def __repr__(self) -> str:  # pragma: no cover
        return f"<BorrowRequest id={self.id} member={self.member_id} book={self.book_id} status={self.status}>"


class BorrowedBook(Base):
    """One physical copy out on loan (or returned)."""

    __tablename__ = "borrowed_books"

    id = Column(Integer, primary_key=True, autoincrement=True)
    request_id = Column(Integer, ForeignKey("borrow_requests.id"), nullable=True, index=True)
    member_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    book_id = Column(Integer, ForeignKey("books.id"), nullable=False, index=True)
    issued_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    issue_date = Column(Date, nullable=False, default=datetime.date.today)
    due_date = Column(Date, nullable=False, index=True)
    return_date = Column(Date, nullable=True)
    returned_to = Column(Integer, ForeignKey("users.id"), nullable=True)
    status = Column(String(16), nullable=False, default=constants.BORROW_ISSUED, index=True)
    allow_renewal = Column(Boolean, nullable=False, default=True)
    renewal_count = Column(Integer, nullable=False, default=0)
    fine_amount = Column(Numeric(10, 2), nullable=False, default=Decimal("0.00"))
    return_condition = Column(String(16), nullable=True)
    notes = Column(Text, nullable=True)

    member = relationship("User", foreign_keys=[member_id], lazy="joined")
    book = relationship("Book", lazy="joined")
    issuer = relationship("User", foreign_keys=[issued_by], lazy="joined")

    @property
    def is_active(self) -> bool:
        return self.status in constants.ACTIVE_BORROW_STATUSES

    def is_overdue(self, today: Optional[datetime.date] = None) -> bool:
        if self.status == constants.BORROW_OVERDUE:
            return True
        today = today or datetime.date.today()
        return self.status == constants.BORROW_ISSUED and self.due_date is not None and today > self.due_date

    def days_overdue(self, today: Optional[datetime.date] = None) -> int:
        if not self.is_overdue(today) or self.due_date is None:
            return 0
        today = today or datetime.date.today()
        return max((today - self.due_date).days, 0)

    def days_until_due(self, today: Optional[datetime.date] = None) -> int:
        if self.is_overdue(today) or self.due_date is None:
            return 0
        today = today or datetime.date.today()
        return (self.due_date - today).days

    def calculate_fine(self, per_day, today: Optional[datetime.date] = None) -> Decimal:
        return (Decimal(str(per_day)) * self.days_overdue(today)).quantize(Decimal("0.01"))

    def as_dict(self, today: Optional[datetime.date] = None) -> dict:
        return {
            "id": self.id,
            "request_id": self.request_id,
            "member_id": self.member_id,
            "member_name": self.member.full_name if self.member else None,
            "member_code": self.member.member_code if self.member else None,
            "book_id": self.book_id,
            "book_title": self.book.title if self.book else None,
            "book_author": self.book.author if self.book else None,
            "book_isbn": self.book.isbn if self.book else None,
            "issued_by": self.issued_by,
            "issued_by_name": self.issuer.full_name if self.issuer else None,
            "issue_date": _iso(self.issue_date),
            "due_date": _iso(self.due_date),
            "return_date": _iso(self.return_date),
            "returned_to": self.returned_to,
            "status": self.status,
            "is_overdue": self.is_overdue(today) if self.is_active else False,
            "days_overdue": self.days_overdue(today) if self.is_active else 0,
            "days_until_due": self.days_until_due(today) if self.is_active else 0,
            "allow_renewal": bool(self.allow_renewal),
            "renewal_count": self.renewal_count or 0,
            "fine_amount": _money(self.fine_amount),
            "return_condition": self.return_condition,
            "notes": self.notes,
        }

    def __repr__(self) -> str:  # pragma: no cover
        return f"<BorrowedBook id={self.id} member={self.member_id} book={self.book_id} status={self.status}>"


class EmailTemplate(Base):
    """Stored overrides for the bundled HTML email templates."""

    __tablename__ = "email_templates"

    id = Column(Integer, primary_key=True, autoincrement=True)
    template_key = Column(String(64), nullable=False, unique=True, index=True)
    subject = Column(String(255), nullable=False, default="")
    html_body = Column(Text, nullable=False, default="")
    created_at = Column(DateTime, default=datetime.datetime.utcnow, nullable=False)
    updated_at = Column(
        DateTime,
        default=datetime.datetime.utcnow,
        onupdate=datetime.datetime.utcnow,
        nullable=False,
    )

    def as_dict(self) -> dict:
        return {
            "id": self.id,
            "template_key": self.template_key,
            "subject": self.subject or "",
            "html_body": self.html_body or "",
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }

    def __repr__(self) -> str:  # pragma: no cover
        return f"<EmailTemplate key={self.template_key}>"


class ResetPasswordToken(Base):
    """Latest password reset nonce per user (hashed)."""

    __tablename__ = "reset_password_tokens"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, unique=True)
    nonce_hash = Column(String(255), nullable=False)
    created_at = Column(DateTime, default=datetime.datetime.utcnow, nullable=False)
    last_sent_at = Column(DateTime, default=datetime.datetime.utcnow, nullable=False)

    def __repr__(self) -> str:  # pragma: no cover
        return f"<ResetPasswordToken user_id={self.user_id}>"


__all__ = [
    "Base",
    "User",
    "Book",
    "BorrowRequest",
    "BorrowedBook",
    "EmailTemplate",
    "ResetPasswordToken",
]
