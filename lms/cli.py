"""Command line entry point (``lms``).

Subcommands
-----------
serve            run the development HTTP server
init-db          create the schema (idempotent)
seed             demo admin / librarian / member accounts and sample books
refresh-overdue  mark loans past due as OVERDUE with their running fine
purge-tokens     delete password reset tokens older than N days
report TYPE      print a report as JSON (or CSV with --csv)

Exit codes: 0 success, 1 domain error, 2 interrupted, 99 unexpected failure.
"""
from __future__ import annotations

import argparse
import json
import sys
import traceback
from datetime import date
from typing import Any, Dict, List, Optional

from lms.db import init_engine_once
from lms.db.repositories import books_repo, users_repo
from lms.services import (
    auth_service,
    catalog_service,
    circulation_service,
    password_reset_service,
    reports_service,
)
from lms.services.errors import LibraryError, ValidationError
from lms.utils import constants
from lms.utils.logging import get_logger

LOG = get_logger("cli")

DEMO_ACCOUNTS: List[Dict[str, Any]] = [
    {
        "username": "admin",
        "password": "admin123",
        "role": constants.ROLE_ADMIN,
        "full_name": "System Administrator",
        "email": "admin@library.local",
        "employee_id": "ADMIN",
    },
    {
        "username": "librarian",
        "password": "librarian123",
        "role": constants.ROLE_LIBRARIAN,
        "full_name": "Demo Librarian",
        "email": "librarian@library.local",
        "employee_id": "librarian",
        "can_approve_requests": True,
        "can_issue_returns": True,
        "can_revoke_membership": True,
    },
    {
        "username": "member",
        "password": "member123",
        "role": constants.ROLE_MEMBER,
        "full_name": "Demo Member",
        "email": "member@library.local",
        "phone": "555-0100",
        "address": "1 Library Lane, Springfield",
    },
]

SAMPLE_BOOKS: List[Dict[str, Any]] = [
    {"isbn": "9780132350884", "title": "Clean Code", "author": "Robert C. Martin",
     "publisher": "Prentice Hall", "publication_year": 2008, "category": "Technology",
     "total_copies": 5, "price": "45.99", "shelf_location": "T-01"},
    {"isbn": "9780201633610", "title": "Design Patterns", "author": "Erich Gamma",
     "publisher": "Addison-Wesley", "publication_year": 1994, "category": "Technology",
     "total_copies": 3, "price": "54.99", "shelf_location": "T-02"},
    {"isbn": "9780061120084", "title": "To Kill a Mockingbird", "author": "Harper Lee",
     "publisher": "Harper Perennial", "publication_year": 1960, "category": "Fiction",
     "total_copies": 4, "price": "18.99", "shelf_location": "F-01"},
    {"isbn": "9780451524935", "title": "1984", "author": "George Orwell",
     "publisher": "Signet Classic", "publication_year": 1950, "category": "Fiction",
     "total_copies": 6, "price": "9.99", "shelf_location": "F-02"},
    {"isbn": "9780553380163", "title": "A Brief History of Time", "author": "Stephen Hawking",
     "publisher": "Bantam", "publication_year": 1998, "category": "Science",
     "total_copies": 2, "price": "18.00", "shelf_location": "S-01"},
    {"isbn": "9780143127550", "title": "Sapiens", "author": "Yuval Noah Harari",
     "publisher": "Harper", "publication_year": 2015, "category": "History",
     "total_copies": 3, "price": "24.99", "shelf_location": "H-01"},
]


def _seed_account(account: Dict[str, Any]) -> bool:
    """Create a demo account; returns False when the username is taken."""
    if users_repo.username_exists(account["username"]):
        return False
    fields = {k: v for k, v in account.items() if k != "password"}
    fields["password_hash"] = auth_service.hash_password(account["password"])
    fields["status"] = constants.USER_ACTIVE
    user = users_repo.create_user(**fields)
    if user.is_member and not user.member_code:
        users_repo.update_fields(user.id, {"member_code": constants.MEMBER_CODE_FORMAT.format(user.id)})
    return True


def seed() -> Dict[str, int]:
    created = {"accounts": 0, "books": 0}
    for account in DEMO_ACCOUNTS:
        if _seed_account(account):
            created["accounts"] += 1
            print(f"[SEED] account ok {account['username']} ({account['role']})")
        else:
            print(f"[SEED] account skip {account['username']} (exists)")
    for book in SAMPLE_BOOKS:
        if books_repo.isbn_exists(book["isbn"]):
            print(f"[SEED] book skip {book['isbn']} (exists)")
            continue
        catalog_service.add_book(book)
        created["books"] += 1
        print(f"[SEED] book ok {book['isbn']} {book['title']}")
    return created


def _print_json(payload: Any) -> None:
    print(json.dumps(payload, indent=2, sort_keys=False, default=str))


def run(args: argparse.Namespace) -> int:
    init_engine_once()
    if args.command == "init-db":
        print("[INIT] schema ok")
        return 0
    if args.command == "seed":
        summary = seed()
        print(f"[SEED] done accounts={summary['accounts']} books={summary['books']}")
        return 0
    if args.command == "refresh-overdue":
        updated = circulation_service.refresh_overdue()
        print(f"[OVERDUE] marked {updated} loan(s) overdue")
        return 0
    if args.command == "purge-tokens":
        removed = password_reset_service.purge_expired_records(args.days)
        print(f"[TOKENS] purged {removed} token(s)")
        return 0
    if args.command == "report":
        document = reports_service.generate_report(args.type, start=args.start, end=args.end)
        if args.csv:
            sys.stdout.write(reports_service.report_to_csv(document))
        else:
            _print_json(document)
        return 0
    if args.command == "serve":
        from lms.startup.wiring import create_app

        create_app().run(host=args.host, port=args.port, debug=args.debug)
        return 0
    raise ValueError(f"unknown command {args.command}")


def _positive_int(value: str) -> int:
    try:
        parsed = int(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"invalid number {value!r}") from exc
    if parsed <= 0:
        raise argparse.ArgumentTypeError("must be a positive number of days")
    return parsed


def _date(value: str) -> date:
    try:
        return date.fromisoformat(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"invalid date {value!r} (expected YYYY-MM-DD)") from exc


def parse_args(argv: Optional[List[str]]) -> argparse.Namespace:
    ap = argparse.ArgumentParser(prog="lms", description="Library Management System")
    sub = ap.add_subparsers(dest="command", required=True)

    serve = sub.add_parser("serve", help="Run the development HTTP server")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=5000)
    serve.add_argument("--debug", action="store_true")

    sub.add_parser("init-db", help="Create database tables")
    sub.add_parser("seed", help="Insert demo accounts and sample books (idempotent)")
    sub.add_parser("refresh-overdue", help="Mark past-due loans as OVERDUE")

    purge = sub.add_parser("purge-tokens", help="Delete old password reset tokens")
    purge.add_argument("--days", type=_positive_int, default=None, help="Age threshold in days (default 30)")

    report = sub.add_parser("report", help="Generate a report")
    report.add_argument("type", choices=sorted(reports_service.REPORTS))
    report.add_argument("--start", type=_date, default=None)
    report.add_argument("--end", type=_date, default=None)
    report.add_argument("--csv", action="store_true", help="Output CSV instead of JSON")
    return ap.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    try:
        args = parse_args(sys.argv[1:] if argv is None else argv)
        return run(args)
    except (LibraryError, ValidationError) as exc:
        details = getattr(exc, "fields", None)
        print(f"ERROR: {exc}" + (f" {details}" if details else ""), file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        print("\nInterrupted.", file=sys.stderr)
        return 2
    except Exception as exc:
        print(f"FATAL: Unhandled exception: {exc}", file=sys.stderr)
        traceback.print_exc()
        return 99


if __name__ == "__main__":
    sys.exit(main())
