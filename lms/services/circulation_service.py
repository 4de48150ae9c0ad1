"""Circulation: issuing copies, returns with fees, renewals and overdue sweeps.

Every operation that moves a copy runs in one ``app_session()``
transaction: the loan row and the book's ``available_copies`` change
together or not at all. Notification emails go out after the commit.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from lms import config as app_config
from lms.db import app_session
from lms.db.models import BorrowedBook
from lms.db.repositories import books_repo, borrow_requests_repo, borrowed_books_repo, users_repo
from lms.services import auth_service, email_delivery
from lms.services.errors import AccessDeniedError, ConflictError, NotFoundError, ValidationError
from lms.utils import constants, validation
from lms.utils.currency import format_usd, to_money
from lms.utils.logging import get_logger

LOG = get_logger("circulation_service")


class BorrowNotFoundError(NotFoundError):
    """Raised when a loan id does not exist."""


class BookUnavailableError(ConflictError):
    """Raised when no copy of the book is on the shelf."""


class CirculationStateError(ConflictError):
    """Raised when the loan is not in a state that allows the operation."""


class CirculationValidationError(ValidationError):
    """Raised for invalid durations, conditions or fee amounts."""


@dataclass(frozen=True)
class ReturnQuote:
    borrow_id: int
    due_date: date
    return_date: date
    days_overdue: int
    late_fee: Decimal
    damage_fee: Decimal
    condition: str

    @property
    def total(self) -> Decimal:
        return (self.late_fee + self.damage_fee).quantize(Decimal("0.01"))

    def as_dict(self) -> Dict[str, Any]:
        return {
            "borrow_id": self.borrow_id,
            "due_date": self.due_date.isoformat(),
            "return_date": self.return_date.isoformat(),
            "days_overdue": self.days_overdue,
            "late_fee": str(self.late_fee),
            "damage_fee": str(self.damage_fee),
            "total_fees": str(self.total),
            "condition": self.condition,
        }


@dataclass
class IssueResult:
    borrow: BorrowedBook
    overdue_warnings: List[Dict[str, Any]] = field(default_factory=list)
    email_sent: bool = False

    def as_dict(self) -> Dict[str, Any]:
        return {
            "borrow": self.borrow.as_dict(),
            "overdue_warnings": self.overdue_warnings,
            "email_sent": self.email_sent,
        }


def validate_duration(value: Any) -> int:
    """Loan length in days (default from config, allowed 1..90)."""
    if value is None or value == "":
        return app_config.default_borrow_days()
    if not validation.is_integer_in_range(value, app_config.MIN_BORROW_DAYS, app_config.MAX_BORROW_DAYS):
        raise CirculationValidationError(
            "invalid_duration",
            {
                "duration_days": "Duration must be between {0} and {1} days".format(
                    app_config.MIN_BORROW_DAYS, app_config.MAX_BORROW_DAYS
                )
            },
        )
    return int(str(value).strip())


def normalize_condition(value: Any) -> str:
    if value is None or value == "":
        value = constants.CONDITION_GOOD
    candidate = value.strip().capitalize() if isinstance(value, str) else ""
    if candidate not in constants.RETURN_CONDITIONS:
        raise CirculationValidationError(
            "invalid_condition", {"condition": "Condition must be Good, Damaged or Lost"}
        )
    return candidate


def book_issued_context(borrow: BorrowedBook) -> Dict[str, Any]:
    duration = (borrow.due_date - borrow.issue_date).days if borrow.issue_date and borrow.due_date else None
    return {
        "member_name": borrow.member.full_name if borrow.member else "",
        "book_title": borrow.book.title if borrow.book else "",
        "author": borrow.book.author if borrow.book else "",
        "isbn": borrow.book.isbn if borrow.book else "",
        "issue_date": borrow.issue_date.isoformat() if borrow.issue_date else "",
        "due_date": borrow.due_date.isoformat() if borrow.due_date else "",
        "borrow_days": duration,
        "notes": borrow.notes or "None",
        "late_fee_per_day": format_usd(app_config.late_fee_per_day()),
    }


def issue_in_session(
    session: Session,
    *,
    member_id: int,
    book_id: int,
    librarian_id: int,
    duration_days: int,
    request_id: Optional[int] = None,
    allow_renewal: bool = True,
    notes: Optional[str] = None,
    today: Optional[date] = None,
) -> BorrowedBook:
    """Take one copy off the shelf and record the loan inside ``session``."""
    issue_day = today or date.today()
    try:
        books_repo.adjust_available(book_id, -1, session=session)
    except books_repo.StockError as exc:
        if str(exc) == "book_not_found":
            raise NotFoundError("book_not_found") from exc
        raise BookUnavailableError("book_unavailable") from exc
    return borrowed_books_repo.create_borrow(
        member_id=member_id,
        book_id=book_id,
        issued_by=librarian_id,
        request_id=request_id,
        issue_date=issue_day,
        due_date=issue_day + timedelta(days=duration_days),
        allow_renewal=allow_renewal,
        notes=notes,
        session=session,
    )


def _resolve_member(member_term: Any, session: Session):
    term = str(member_term or "").strip()
    if not term:
        raise CirculationValidationError("member_required", {"member": "Member ID or username is required"})
    member = users_repo.get_by_member_code(term, session=session)
    if member is None:
        member = users_repo.get_by_member_code(term.upper(), session=session)
    if member is None:
        member = users_repo.get_by_username(term, session=session)
    if member is None and term.isdigit():
        member = users_repo.get_user(int(term), session=session)
    if member is None:
        raise NotFoundError("member_not_found")
    if not member.is_member:
        raise CirculationValidationError("not_a_member", {"member": "User is not a member"})
    if not member.is_active_account:
        raise CirculationValidationError("member_inactive", {"member": "Member account is not active"})
    return member


def issue_book(
    librarian_id: int,
    *,
    book_id: int,
    member: Any,
    duration_days: Any = None,
    notes: Optional[str] = None,
    allow_renewal: bool = True,
    today: Optional[date] = None,
) -> IssueResult:
    """Over-the-counter issue: auto-approved request plus the loan, atomically."""
    librarian = auth_service.require_staff(librarian_id, constants.PERM_ISSUE_RETURNS)
    duration = validate_duration(duration_days)
    cleaned_notes = validation.sanitize(notes) or None
    with app_session() as session:
        member_user = _resolve_member(member, session)
        book = books_repo.get_book(book_id, session=session)
        if book is None:
            raise NotFoundError("book_not_found")
        if not book.is_available:
            raise BookUnavailableError("book_unavailable")
        request = borrow_requests_repo.create_request(
            member_id=member_user.id,
            book_id=book_id,
            status=constants.REQUEST_APPROVED,
            approved_by=librarian.id,
            approved_date=datetime.utcnow(),
            borrow_duration_days=duration,
            notes=cleaned_notes,
            session=session,
        )
        borrow = issue_in_session(
            session,
            member_id=member_user.id,
            book_id=book_id,
            librarian_id=librarian.id,
            duration_days=duration,
            request_id=request.id,
            allow_renewal=allow_renewal,
            notes=cleaned_notes,
            today=today,
        )
        overdue = borrowed_books_repo.list_overdue_by_member(member_user.id, today, session=session)
        warnings = [
            {
                "borrow_id": item.id,
                "book_title": item.book.title if item.book else None,
                "due_date": item.due_date.isoformat(),
                "days_overdue": item.days_overdue(today),
            }
            for item in overdue
            if item.id != borrow.id
        ]
        context = book_issued_context(borrow)
        recipient = member_user.email
    LOG.info(
        "Issued book_id=%s to member_id=%s by=%s due=%s",
        book_id,
        borrow.member_id,
        librarian.id,
        borrow.due_date,
    )
    if warnings:
        LOG.warning("Member member_id=%s has %s overdue book(s)", borrow.member_id, len(warnings))
    sent = email_delivery.notify("book_issued", recipient=recipient, context=context)
    return IssueResult(borrow=borrow, overdue_warnings=warnings, email_sent=sent)


def search_active_borrows(term: str) -> List[BorrowedBook]:
    """Active loans matching a book first; falls back to matching the member."""
    cleaned = (term or "").strip()
    if not cleaned:
        return borrowed_books_repo.list_active()
    results = borrowed_books_repo.search_active_by_book(cleaned)
    if not results:
        results = borrowed_books_repo.search_active_by_member(cleaned)
    return results


def _quote(borrow: BorrowedBook, condition: str, today: date) -> ReturnQuote:
    days = max((today - borrow.due_date).days, 0)
    late_fee = (app_config.late_fee_per_day() * days).quantize(Decimal("0.01"))
    damage_fee = Decimal("0.00")
    if condition in (constants.CONDITION_DAMAGED, constants.CONDITION_LOST) and borrow.book is not None:
        damage_fee = to_money(borrow.book.price)
    return ReturnQuote(
        borrow_id=borrow.id,
        due_date=borrow.due_date,
        return_date=today,
        days_overdue=days,
        late_fee=late_fee,
        damage_fee=damage_fee,
        condition=condition,
    )


def return_quote(borrow_id: int, condition: Optional[str] = None, today: Optional[date] = None) -> ReturnQuote:
    """Suggested fees for returning ``borrow_id`` today in ``condition``."""
    normalized = normalize_condition(condition)
    borrow = borrowed_books_repo.get_borrow(borrow_id)
    if borrow is None:
        raise BorrowNotFoundError("borrow_not_found")
    if not borrow.is_active:
        raise CirculationStateError("already_returned")
    return _quote(borrow, normalized, today or date.today())


def _fee_override(value: Any, field_name: str) -> Optional[Decimal]:
    if value is None or value == "":
        return None
    parsed = validation.parse_decimal(value)
    if parsed is None or parsed < 0:
        raise CirculationValidationError("invalid_fee", {field_name: "Fees must be non-negative amounts"})
    return parsed


def return_book(
    borrow_id: int,
    librarian_id: int,
    *,
    condition: Any = None,
    late_fee: Any = None,
    damage_fee: Any = None,
    notes: Optional[str] = None,
    today: Optional[date] = None,
) -> Dict[str, Any]:
    """Close a loan, charge fees and put the copy back (a Lost copy leaves stock)."""
    librarian = auth_service.require_staff(librarian_id, constants.PERM_ISSUE_RETURNS)
    normalized = normalize_condition(condition)
    late_override = _fee_override(late_fee, "late_fee")
    damage_override = _fee_override(damage_fee, "damage_fee")
    return_day = today or date.today()
    with app_session() as session:
        borrow = borrowed_books_repo.get_borrow(borrow_id, session=session)
        if borrow is None:
            raise BorrowNotFoundError("borrow_not_found")
        if not borrow.is_active:
            raise CirculationStateError("already_returned")
        quote = _quote(borrow, normalized, return_day)
        final_late = late_override if late_override is not None else quote.late_fee
        final_damage = damage_override if damage_override is not None else quote.damage_fee
        total = (final_late + final_damage).quantize(Decimal("0.01"))
        record = borrowed_books_repo.mark_returned(
            borrow_id,
            returned_to=librarian.id,
            fine_amount=total,
            condition=normalized,
            return_date=return_day,
            notes=validation.sanitize(notes) or None,
            session=session,
        )
        if normalized == constants.CONDITION_LOST:
            # The copy leaves the collection; the shelf count is unchanged.
            book = books_repo.get_book(borrow.book_id, session=session)
            if book is not None and book.total_copies > book.available_copies:
                book.total_copies -= 1
        else:
            books_repo.adjust_available(borrow.book_id, 1, session=session)
        context = {
            "member_name": borrow.member.full_name if borrow.member else "",
            "book_title": borrow.book.title if borrow.book else "",
            "author": borrow.book.author if borrow.book else "",
            "isbn": borrow.book.isbn if borrow.book else "",
            "return_date": return_day.isoformat(),
            "due_date": borrow.due_date.isoformat(),
            "condition": normalized,
            "days_overdue": quote.days_overdue,
            "late_fee": format_usd(final_late),
            "damage_fee": format_usd(final_damage),
            "total_fees": format_usd(total),
        }
        recipient = borrow.member.email if borrow.member else None
        payload = record.as_dict(return_day) if record else {}
    LOG.info(
        "Returned borrow_id=%s condition=%s days_overdue=%s fees=%s by=%s",
        borrow_id,
        normalized,
        quote.days_overdue,
        total,
        librarian.id,
    )
    sent = email_delivery.notify("book_returned", recipient=recipient, context=context)
    return {
        "borrow": payload,
        "days_overdue": quote.days_overdue,
        "late_fee": str(final_late),
        "damage_fee": str(final_damage),
        "total_fees": str(total),
        "email_sent": sent,
    }


def renew_borrow(
    borrow_id: int,
    actor_id: int,
    *,
    additional_days: Any = None,
    today: Optional[date] = None,
) -> BorrowedBook:
    """Extend an active, renewable, not-yet-overdue loan."""
    actor = users_repo.get_user(actor_id)
    if actor is None or not actor.is_active_account:
        raise AccessDeniedError("account_inactive")
    if additional_days is None or additional_days == "":
        days = app_config.renewal_days()
    else:
        days = validate_duration(additional_days)
    with app_session() as session:
        borrow = borrowed_books_repo.get_borrow(borrow_id, session=session)
        if borrow is None:
            raise BorrowNotFoundError("borrow_not_found")
        if actor.is_member:
            if borrow.member_id != actor.id:
                raise BorrowNotFoundError("borrow_not_found")
        elif not actor.has_permission(constants.PERM_ISSUE_RETURNS):
            raise AccessDeniedError("permission_denied")
        if not borrow.is_active:
            raise CirculationStateError("already_returned")
        if not borrow.allow_renewal:
            raise CirculationStateError("renewal_not_allowed")
        if borrow.is_overdue(today):
            raise CirculationStateError("borrow_overdue")
        record = borrowed_books_repo.renew(borrow_id, days, session=session)
        if record is None:
            raise CirculationStateError("renewal_not_allowed")
    LOG.info("Renewed borrow_id=%s by %s days (count=%s)", borrow_id, days, record.renewal_count)
    return record


def refresh_overdue(today: Optional[date] = None) -> int:
    """Mark loans past due as OVERDUE and store their running fine."""
    records = borrowed_books_repo.mark_overdue(today, per_day=app_config.late_fee_per_day())
    if records:
        LOG.info("Marked %s loan(s) overdue", len(records))
    return len(records)


def member_borrows(member_id: int, *, active_only: bool = False) -> List[BorrowedBook]:
    if active_only:
        return borrowed_books_repo.list_active_by_member(member_id)
    return borrowed_books_repo.list_by_member(member_id)


def overdue_borrows(today: Optional[date] = None) -> List[Dict[str, Any]]:
    per_day = app_config.late_fee_per_day()
    rows = []
    for borrow in borrowed_books_repo.list_overdue(today):
        payload = borrow.as_dict(today)
        payload["fine_due"] = str(borrow.calculate_fine(per_day, today))
        rows.append(payload)
    return rows


__all__ = [
    "BorrowNotFoundError",
    "BookUnavailableError",
    "CirculationStateError",
    "CirculationValidationError",
    "ReturnQuote",
    "IssueResult",
    "validate_duration",
    "normalize_condition",
    "book_issued_context",
    "issue_in_session",
    "issue_book",
    "search_active_borrows",
    "return_quote",
    "return_book",
    "renew_borrow",
    "refresh_overdue",
    "member_borrows",
    "overdue_borrows",
]
