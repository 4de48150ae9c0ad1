"""Repository helpers for issued copies (loans) and their fines."""
from __future__ import annotations

from datetime import date, timedelta
from decimal import Decimal
from typing import Dict, List, Optional

from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from lms.db import session_scope
from lms.db.models import Book, BorrowedBook, User
from lms.utils import constants
from lms.utils.logging import get_logger

LOG = get_logger("borrowed_books_repo")
_ACTIVE = constants.ACTIVE_BORROW_STATUSES


def _today(today: Optional[date]) -> date:
    return today or date.today()


def _overdue_filter(today: date):
    return or_(
        BorrowedBook.status == constants.BORROW_OVERDUE,
        (BorrowedBook.status == constants.BORROW_ISSUED) & (BorrowedBook.due_date < today),
    )


def create_borrow(
    *,
    member_id: int,
    book_id: int,
    due_date: date,
    issued_by: Optional[int] = None,
    request_id: Optional[int] = None,
    issue_date: Optional[date] = None,
    allow_renewal: bool = True,
    notes: Optional[str] = None,
    session: Optional[Session] = None,
) -> BorrowedBook:
    with session_scope(session) as s:
        record = BorrowedBook(
            request_id=request_id,
            member_id=member_id,
            book_id=book_id,
            issued_by=issued_by,
            issue_date=issue_date or date.today(),
            due_date=due_date,
            status=constants.BORROW_ISSUED,
            allow_renewal=allow_renewal,
            renewal_count=0,
            fine_amount=Decimal("0.00"),
            notes=notes,
        )
        s.add(record)
        s.flush()
        s.refresh(record)
        return record


def get_borrow(borrow_id: int, *, session: Optional[Session] = None) -> Optional[BorrowedBook]:
    with session_scope(session) as s:
        return s.get(BorrowedBook, borrow_id)


def mark_returned(
    borrow_id: int,
    *,
    returned_to: int,
    fine_amount: Decimal,
    condition: str,
    return_date: Optional[date] = None,
    notes: Optional[str] = None,
    session: Session,
) -> Optional[BorrowedBook]:
    """Close an active loan; ``None`` when it is missing or already returned."""
    record = session.get(BorrowedBook, borrow_id)
    if record is None or record.status not in _ACTIVE:
        return None
    record.status = constants.BORROW_RETURNED
    record.return_date = return_date or date.today()
    record.returned_to = returned_to
    record.fine_amount = fine_amount
    record.return_condition = condition
    if notes:
        record.notes = f"{record.notes}\n{notes}".strip() if record.notes else notes
    session.flush()
    return record


def list_by_member(member_id: int) -> List[BorrowedBook]:
    with session_scope() as s:
        return (
            s.query(BorrowedBook)
            .filter(BorrowedBook.member_id == member_id)
            .order_by(BorrowedBook.issue_date.desc(), BorrowedBook.id.desc())
            .all()
        )


def list_active_by_member(member_id: int, *, session: Optional[Session] = None) -> List[BorrowedBook]:
    with session_scope(session) as s:
        return (
            s.query(BorrowedBook)
            .filter(BorrowedBook.member_id == member_id, BorrowedBook.status.in_(_ACTIVE))
            .order_by(BorrowedBook.due_date.asc(), BorrowedBook.id.asc())
            .all()
        )


def list_all(*, status: Optional[str] = None) -> List[BorrowedBook]:
    with session_scope() as s:
        query = s.query(BorrowedBook)
        if status:
            query = query.filter(BorrowedBook.status == status)
        return query.order_by(BorrowedBook.issue_date.desc(), BorrowedBook.id.desc()).all()


def list_active() -> List[BorrowedBook]:
    with session_scope() as s:
        return (
            s.query(BorrowedBook)
            .filter(BorrowedBook.status.in_(_ACTIVE))
            .order_by(BorrowedBook.due_date.asc(), BorrowedBook.id.asc())
            .all()
        )


def list_overdue(today: Optional[date] = None) -> List[BorrowedBook]:
    with session_scope() as s:
        return (
            s.query(BorrowedBook)
            .filter(_overdue_filter(_today(today)))
            .order_by(BorrowedBook.due_date.asc(), BorrowedBook.id.asc())
            .all()
        )


def list_overdue_by_member(member_id: int, today: Optional[date] = None, *, session: Optional[Session] = None) -> List[BorrowedBook]:
    with session_scope(session) as s:
        return (
            s.query(BorrowedBook)
            .filter(BorrowedBook.member_id == member_id, _overdue_filter(_today(today)))
            .order_by(BorrowedBook.due_date.asc())
            .all()
        )


def active_count_for_member(member_id: int, *, session: Optional[Session] = None) -> int:
    with session_scope(session) as s:
        return int(
            s.query(func.count(BorrowedBook.id))
            .filter(BorrowedBook.member_id == member_id, BorrowedBook.status.in_(_ACTIVE))
            .scalar()
            or 0
        )


def active_counts_by_member() -> Dict[int, int]:
    with session_scope() as s:
        rows = (
            s.query(BorrowedBook.member_id, func.count(BorrowedBook.id))
            .filter(BorrowedBook.status.in_(_ACTIVE))
            .group_by(BorrowedBook.member_id)
            .all()
        )
        return {int(member_id): int(count) for member_id, count in rows}


def overdue_count_for_member(member_id: int, today: Optional[date] = None) -> int:
    with session_scope() as s:
        return int(
            s.query(func.count(BorrowedBook.id))
            .filter(BorrowedBook.member_id == member_id, _overdue_filter(_today(today)))
            .scalar()
            or 0
        )


def total_overdue_count(today: Optional[date] = None) -> int:
    with session_scope() as s:
        return int(s.query(func.count(BorrowedBook.id)).filter(_overdue_filter(_today(today))).scalar() or 0)


def issued_on_count(day: Optional[date] = None) -> int:
    with session_scope() as s:
        return int(
            s.query(func.count(BorrowedBook.id)).filter(BorrowedBook.issue_date == _today(day)).scalar() or 0
        )


def active_count_for_book(book_id: int, *, session: Optional[Session] = None) -> int:
    with session_scope(session) as s:
        return int(
            s.query(func.count(BorrowedBook.id))
            .filter(BorrowedBook.book_id == book_id, BorrowedBook.status.in_(_ACTIVE))
            .scalar()
            or 0
        )


def count_for_book(book_id: int, *, session: Optional[Session] = None) -> int:
    with session_scope(session) as s:
        return int(s.query(func.count(BorrowedBook.id)).filter(BorrowedBook.book_id == book_id).scalar() or 0)


def update_fine(borrow_id: int, fine_amount: Decimal) -> bool:
    with session_scope() as s:
        record = s.get(BorrowedBook, borrow_id)
        if record is None:
            return False
        record.fine_amount = fine_amount
        return True


def update_status(borrow_id: int, status: str, *, session: Optional[Session] = None) -> bool:
    if status not in constants.BORROW_STATUSES:
        raise ValueError("invalid_borrow_status")
    with session_scope(session) as s:
        record = s.get(BorrowedBook, borrow_id)
        if record is None:
            return False
        record.status = status
        return True


def renew(borrow_id: int, additional_days: int, *, session: Optional[Session] = None) -> Optional[BorrowedBook]:
    """Extend the due date; ``None`` unless the loan is active and renewable."""
    with session_scope(session) as s:
        record = s.get(BorrowedBook, borrow_id)
        if record is None or record.status not in _ACTIVE or not record.allow_renewal:
            return None
        record.due_date = record.due_date + timedelta(days=additional_days)
        record.renewal_count = (record.renewal_count or 0) + 1
        s.flush()
        return record


def mark_overdue(today: Optional[date] = None, *, per_day: Decimal) -> List[BorrowedBook]:
    """Flip ISSUED loans past their due date to OVERDUE and store the running fine."""
    current = _today(today)
    with session_scope() as s:
        records = (
            s.query(BorrowedBook)
            .filter(BorrowedBook.status.in_(_ACTIVE), BorrowedBook.due_date < current)
            .all()
        )
        for record in records:
            record.status = constants.BORROW_OVERDUE
            record.fine_amount = record.calculate_fine(per_day, current)
        s.flush()
        return records


def search_active_by_book(term: str) -> List[BorrowedBook]:
    pattern = f"%{(term or '').strip()}%"
    with session_scope() as s:
        return (
            s.query(BorrowedBook)
            .join(Book, BorrowedBook.book_id == Book.id)
            .filter(
                BorrowedBook.status.in_(_ACTIVE),
                or_(Book.title.ilike(pattern), Book.isbn.ilike(pattern), Book.author.ilike(pattern)),
            )
            .order_by(BorrowedBook.due_date.asc())
            .all()
        )


def search_active_by_member(term: str) -> List[BorrowedBook]:
    pattern = f"%{(term or '').strip()}%"
    with session_scope() as s:
        return (
            s.query(BorrowedBook)
            .join(User, BorrowedBook.member_id == User.id)
            .filter(
                BorrowedBook.status.in_(_ACTIVE),
                or_(
                    User.full_name.ilike(pattern),
                    User.username.ilike(pattern),
                    User.member_code.ilike(pattern),
                ),
            )
            .order_by(BorrowedBook.due_date.asc())
            .all()
        )


def borrow_counts_by_book() -> Dict[int, int]:
    with session_scope() as s:
        rows = s.query(BorrowedBook.book_id, func.count(BorrowedBook.id)).group_by(BorrowedBook.book_id).all()
        return {int(book_id): int(count) for book_id, count in rows}


def borrow_counts_by_member() -> Dict[int, int]:
    with session_scope() as s:
        rows = s.query(BorrowedBook.member_id, func.count(BorrowedBook.id)).group_by(BorrowedBook.member_id).all()
        return {int(member_id): int(count) for member_id, count in rows}


def list_returned_with_fines() -> List[BorrowedBook]:
    with session_scope() as s:
        return (
            s.query(BorrowedBook)
            .filter(BorrowedBook.status == constants.BORROW_RETURNED, BorrowedBook.fine_amount > 0)
            .order_by(BorrowedBook.return_date.desc(), BorrowedBook.id.desc())
            .all()
        )


def fines_total() -> Decimal:
    """Sum of fees charged on returned loans."""
    with session_scope() as s:
        total = (
            s.query(func.coalesce(func.sum(BorrowedBook.fine_amount), 0))
            .filter(BorrowedBook.status == constants.BORROW_RETURNED)
            .scalar()
        )
        return Decimal(str(total or 0)).quantize(Decimal("0.01"))


__all__ = [
    "create_borrow",
    "get_borrow",
    "mark_returned",
    "list_by_member",
    "list_active_by_member",
    "list_all",
    "list_active",
    "list_overdue",
    "list_overdue_by_member",
    "active_count_for_member",
    "active_counts_by_member",
    "overdue_count_for_member",
    "total_overdue_count",
    "issued_on_count",
    "active_count_for_book",
    "count_for_book",
    "update_fine",
    "update_status",
    "renew",
    "mark_overdue",
    "search_active_by_book",
    "search_active_by_member",
    "borrow_counts_by_book",
    "borrow_counts_by_member",
    "list_returned_with_fines",
    "fines_total",
]
