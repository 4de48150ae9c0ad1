"""Borrow request workflow: members submit, librarians approve or reject.

Approval is a single transaction: the request flips to APPROVED, the loan
row is created and one copy leaves the shelf. If any step fails nothing
is written and the request stays PENDING.
"""
from __future__ import annotations

from datetime import date
from typing import Any, Dict, List, Optional

from lms.db import app_session
from lms.db.models import BorrowRequest
from lms.db.repositories import books_repo, borrow_requests_repo
from lms.services import auth_service, circulation_service, email_delivery
from lms.services.errors import ConflictError, NotFoundError
from lms.utils import constants, validation
from lms.utils.logging import get_logger

LOG = get_logger("requests_service")


class RequestNotFoundError(NotFoundError):
    """Raised when a request id does not exist (or is not the member's)."""


class RequestStateError(ConflictError):
    """Raised when the request is no longer PENDING."""


class DuplicateRequestError(ConflictError):
    """Raised when the member already has a PENDING request for the book."""


def submit_request(member_id: int, book_id: int, notes: Optional[str] = None) -> BorrowRequest:
    member = auth_service.require_active_member(member_id)
    with app_session() as session:
        book = books_repo.get_book(book_id, session=session)
        if book is None:
            raise NotFoundError("book_not_found")
        if not book.is_available:
            raise circulation_service.BookUnavailableError("book_unavailable")
        if borrow_requests_repo.has_pending(member.id, book_id, session=session):
            raise DuplicateRequestError("duplicate_request")
        record = borrow_requests_repo.create_request(
            member_id=member.id,
            book_id=book_id,
            notes=validation.sanitize(notes) or None,
            session=session,
        )
    LOG.info("Borrow request id=%s member_id=%s book_id=%s", record.id, member.id, book_id)
    return record


def cancel_request(member_id: int, request_id: int) -> BorrowRequest:
    with app_session() as session:
        record = borrow_requests_repo.get_request(request_id, session=session)
        if record is None or record.member_id != member_id:
            raise RequestNotFoundError("request_not_found")
        if not borrow_requests_repo.cancel_request(request_id, session=session):
            raise RequestStateError("request_not_pending")
    LOG.info("Borrow request id=%s cancelled by member_id=%s", request_id, member_id)
    return record


def approve_request(
    request_id: int,
    librarian_id: int,
    *,
    duration_days: Any = None,
    allow_renewal: bool = True,
    notes: Optional[str] = None,
    today: Optional[date] = None,
) -> Dict[str, Any]:
    librarian = auth_service.require_staff(librarian_id, constants.PERM_APPROVE_REQUESTS)
    duration = circulation_service.validate_duration(duration_days)
    cleaned_notes = validation.sanitize(notes) or None
    with app_session() as session:
        record = borrow_requests_repo.get_request(request_id, session=session)
        if record is None:
            raise RequestNotFoundError("request_not_found")
        if not record.is_pending:
            raise RequestStateError("request_not_pending")
        if record.member is None or not record.member.is_active_account:
            raise RequestStateError("member_inactive")
        if record.book is None or not record.book.is_available:
            raise circulation_service.BookUnavailableError("book_unavailable")
        approved = borrow_requests_repo.mark_approved(
            request_id,
            approved_by=librarian.id,
            borrow_duration_days=duration,
            notes=cleaned_notes,
            session=session,
        )
        if approved is None:
            raise RequestStateError("request_not_pending")
        borrow = circulation_service.issue_in_session(
            session,
            member_id=record.member_id,
            book_id=record.book_id,
            librarian_id=librarian.id,
            duration_days=duration,
            request_id=request_id,
            allow_renewal=allow_renewal,
            notes=cleaned_notes,
            today=today,
        )
        context = circulation_service.book_issued_context(borrow)
        recipient = record.member.email
        payload = {"request": approved.as_dict(), "borrow": borrow.as_dict(today)}
    LOG.info(
        "Approved request id=%s by=%s borrow_id=%s due=%s",
        request_id,
        librarian.id,
        payload["borrow"]["id"],
        payload["borrow"]["due_date"],
    )
    payload["email_sent"] = email_delivery.notify("book_issued", recipient=recipient, context=context)
    return payload


def reject_request(request_id: int, librarian_id: int, reason: Optional[str] = None) -> BorrowRequest:
    librarian = auth_service.require_staff(librarian_id, constants.PERM_APPROVE_REQUESTS)
    cleaned_reason = validation.sanitize(reason) or None
    with app_session() as session:
        record = borrow_requests_repo.get_request(request_id, session=session)
        if record is None:
            raise RequestNotFoundError("request_not_found")
        rejected = borrow_requests_repo.mark_rejected(
            request_id, rejected_by=librarian.id, reason=cleaned_reason, session=session
        )
        if rejected is None:
            raise RequestStateError("request_not_pending")
        context = {
            "member_name": rejected.member.full_name if rejected.member else "",
            "book_title": rejected.book.title if rejected.book else "",
            "author": rejected.book.author if rejected.book else "",
            "reason": cleaned_reason or "",
        }
        recipient = rejected.member.email if rejected.member else None
    LOG.info("Rejected request id=%s by=%s", request_id, librarian.id)
    email_delivery.notify("request_rejected", recipient=recipient, context=context)
    return rejected


def get_request(request_id: int) -> BorrowRequest:
    record = borrow_requests_repo.get_request(request_id)
    if record is None:
        raise RequestNotFoundError("request_not_found")
    return record


def list_requests(status: Optional[str] = None) -> List[BorrowRequest]:
    """All requests, or those in ``status``; ``pending`` lists oldest first."""
    normalized = (status or "all").strip().upper()
    if normalized in ("", "ALL"):
        return borrow_requests_repo.list_all()
    if normalized == constants.REQUEST_PENDING:
        return borrow_requests_repo.list_pending()
    return borrow_requests_repo.list_by_status(normalized)


def member_requests(member_id: int) -> List[BorrowRequest]:
    return borrow_requests_repo.list_by_member(member_id)


__all__ = [
    "RequestNotFoundError",
    "RequestStateError",
    "DuplicateRequestError",
    "submit_request",
    "cancel_request",
    "approve_request",
    "reject_request",
    "get_request",
    "list_requests",
    "member_requests",
]
