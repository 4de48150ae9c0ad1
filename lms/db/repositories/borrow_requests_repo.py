"""Repository helpers for member borrow requests."""
from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from lms.db import session_scope
from lms.db.models import BorrowRequest
from lms.utils import constants
from lms.utils.logging import get_logger

LOG = get_logger("borrow_requests_repo")


def _validate_status(status: str) -> str:
    normalized = (status or "").strip().upper()
    if normalized not in constants.REQUEST_STATUSES:
        raise ValueError("invalid_request_status")
    return normalized


def create_request(
    *,
    member_id: int,
    book_id: int,
    status: str = constants.REQUEST_PENDING,
    approved_by: Optional[int] = None,
    approved_date: Optional[datetime] = None,
    borrow_duration_days: Optional[int] = None,
    notes: Optional[str] = None,
    session: Optional[Session] = None,
) -> BorrowRequest:
    with session_scope(session) as s:
        record = BorrowRequest(
            member_id=member_id,
            book_id=book_id,
            status=_validate_status(status),
            approved_by=approved_by,
            approved_date=approved_date,
            borrow_duration_days=borrow_duration_days,
            notes=notes,
        )
        s.add(record)
        s.flush()
        s.refresh(record)
        return record


def get_request(request_id: int, *, session: Optional[Session] = None) -> Optional[BorrowRequest]:
    with session_scope(session) as s:
        return s.get(BorrowRequest, request_id)


def list_by_status(status: str) -> List[BorrowRequest]:
    normalized = _validate_status(status)
    with session_scope() as s:
        return (
            s.query(BorrowRequest)
            .filter(BorrowRequest.status == normalized)
            .order_by(BorrowRequest.request_date.desc(), BorrowRequest.id.desc())
            .all()
        )


def list_pending() -> List[BorrowRequest]:
    """Pending requests, oldest first (work queue order)."""
    with session_scope() as s:
        return (
            s.query(BorrowRequest)
            .filter(BorrowRequest.status == constants.REQUEST_PENDING)
            .order_by(BorrowRequest.request_date.asc(), BorrowRequest.id.asc())
            .all()
        )


def list_by_member(member_id: int) -> List[BorrowRequest]:
    with session_scope() as s:
        return (
            s.query(BorrowRequest)
            .filter(BorrowRequest.member_id == member_id)
            .order_by(BorrowRequest.request_date.desc(), BorrowRequest.id.desc())
            .all()
        )


def list_all() -> List[BorrowRequest]:
    with session_scope() as s:
        return (
            s.query(BorrowRequest)
            .order_by(BorrowRequest.request_date.desc(), BorrowRequest.id.desc())
            .all()
        )


def pending_count_for_member(member_id: int) -> int:
    with session_scope() as s:
        return int(
            s.query(func.count(BorrowRequest.id))
            .filter(
                BorrowRequest.member_id == member_id,
                BorrowRequest.status == constants.REQUEST_PENDING,
            )
            .scalar()
            or 0
        )


def total_pending_count() -> int:
    with session_scope() as s:
        return int(
            s.query(func.count(BorrowRequest.id))
            .filter(BorrowRequest.status == constants.REQUEST_PENDING)
            .scalar()
            or 0
        )


def has_pending(member_id: int, book_id: int, *, session: Optional[Session] = None) -> bool:
    with session_scope(session) as s:
        return (
            s.query(BorrowRequest.id)
            .filter(
                BorrowRequest.member_id == member_id,
                BorrowRequest.book_id == book_id,
                BorrowRequest.status == constants.REQUEST_PENDING,
            )
            .first()
            is not None
        )


def mark_approved(
    request_id: int,
    *,
    approved_by: int,
    borrow_duration_days: int,
    notes: Optional[str] = None,
    session: Session,
) -> Optional[BorrowRequest]:
    """Flip a PENDING request to APPROVED; ``None`` when it is not pending."""
    record = session.get(BorrowRequest, request_id)
    if record is None or record.status != constants.REQUEST_PENDING:
        return None
    record.status = constants.REQUEST_APPROVED
    record.approved_by = approved_by
    record.approved_date = datetime.utcnow()
    record.borrow_duration_days = borrow_duration_days
    if notes:
        record.notes = notes
    session.flush()
    session.refresh(record)
    return record


def mark_rejected(
    request_id: int,
    *,
    rejected_by: int,
    reason: Optional[str] = None,
    session: Optional[Session] = None,
) -> Optional[BorrowRequest]:
    with session_scope(session) as s:
        record = s.get(BorrowRequest, request_id)
        if record is None or record.status != constants.REQUEST_PENDING:
            return None
        record.status = constants.REQUEST_REJECTED
        record.approved_by = rejected_by
        record.approved_date = datetime.utcnow()
        if reason:
            record.notes = reason
        s.flush()
        s.refresh(record)
        return record


def cancel_request(request_id: int, *, session: Optional[Session] = None) -> bool:
    """Cancel a request; only PENDING requests can be cancelled."""
    with session_scope(session) as s:
        record = s.get(BorrowRequest, request_id)
        if record is None or record.status != constants.REQUEST_PENDING:
            return False
        record.status = constants.REQUEST_CANCELLED
        return True


def update_status(request_id: int, status: str, *, session: Optional[Session] = None) -> bool:
    normalized = _validate_status(status)
    with session_scope(session) as s:
        record = s.get(BorrowRequest, request_id)
        if record is None:
            return False
        record.status = normalized
        return True


def delete_request(request_id: int) -> bool:
    with session_scope() as s:
        record = s.get(BorrowRequest, request_id)
        if record is None:
            return False
        s.delete(record)
        return True


def count_for_book(book_id: int, *, session: Optional[Session] = None) -> int:
    with session_scope(session) as s:
        return int(
            s.query(func.count(BorrowRequest.id)).filter(BorrowRequest.book_id == book_id).scalar() or 0
        )


__all__ = [
    "create_request",
    "get_request",
    "list_by_status",
    "list_pending",
    "list_by_member",
    "list_all",
    "pending_count_for_member",
    "total_pending_count",
    "has_pending",
    "mark_approved",
    "mark_rejected",
    "cancel_request",
    "update_status",
    "delete_request",
    "count_for_book",
]
