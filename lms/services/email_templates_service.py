"""Email template management service.

Every template ships as a bundled Jinja file under ``lms/templates/email``;
administrators may store an override (subject + HTML body) in the database.
Resolution order: database override, then bundled default.
"""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional

from jinja2 import Environment, BaseLoader, TemplateSyntaxError

from lms.db.repositories import email_templates_repo
from lms.utils.logging import get_logger

LOG = get_logger("email_templates_service")

_TEMPLATE_DIR = Path(__file__).resolve().parents[1] / "templates" / "email"
_SUBJECT_MAX = 255
_SYNTAX_ENV = Environment(loader=BaseLoader())

TEMPLATE_DEFINITIONS = {
    "book_issued": {
        "label": "Book issued",
        "description": "Sent to the member when a copy is issued or a borrow request is approved.",
        "subject": "Book Issued – {{ book_title }}",
    },
    "book_returned": {
        "label": "Book returned",
        "description": "Return confirmation with condition and fees.",
        "subject": "Book Return Confirmation – {{ book_title }}",
    },
    "membership_approved": {
        "label": "Membership approved",
        "description": "Sent when an administrator activates a membership application.",
        "subject": "Membership Approval",
    },
    "request_rejected": {
        "label": "Borrow request rejected",
        "description": "Sent when a librarian rejects a pending borrow request.",
        "subject": "Borrow Request Update – {{ book_title }}",
    },
    "password_reset": {
        "label": "Password reset",
        "description": "Contains the single-use password reset link.",
        "subject": "Reset your password",
    },
}
TOKEN_DEFINITIONS = {
    "book_issued": [
        "member_name", "book_title", "author", "isbn", "issue_date", "due_date",
        "borrow_days", "notes", "late_fee_per_day", "library_name", "logo_url",
    ],
    "book_returned": [
        "member_name", "book_title", "author", "isbn", "return_date", "due_date", "condition",
        "days_overdue", "late_fee", "damage_fee", "total_fees", "library_name", "logo_url",
    ],
    "membership_approved": [
        "full_name", "username", "member_code", "approval_date", "login_url", "library_name", "logo_url",
    ],
    "request_rejected": ["member_name", "book_title", "author", "reason", "library_name"],
    "password_reset": ["user_name", "reset_url", "library_name"],
}


class TemplateValidationError(ValueError):
    """Raised when template input fails validation."""


@dataclass(frozen=True)
class ResolvedTemplate:
    key: str
    subject: str
    html_body: str
    customized: bool
    updated_at: Optional[str] = None


def template_definitions() -> Dict[str, Dict[str, str]]:
    return {key: dict(meta) for key, meta in TEMPLATE_DEFINITIONS.items()}


def token_definitions(template_key: str) -> List[str]:
    return list(TOKEN_DEFINITIONS.get(template_key, []))


def _validate_template_key(template_key: str) -> str:
    key = (template_key or "").strip().lower()
    if key not in TEMPLATE_DEFINITIONS:
        raise TemplateValidationError("unsupported_template")
    return key


def default_body(template_key: str) -> str:
    key = _validate_template_key(template_key)
    return (_TEMPLATE_DIR / f"{key}.html").read_text(encoding="utf-8")


def _resolve(key: str, record: Optional[Any]) -> ResolvedTemplate:
    default_subject = TEMPLATE_DEFINITIONS[key]["subject"]
    if record and (record.html_body or "").strip():
        return ResolvedTemplate(
            key=key,
            subject=record.subject or default_subject,
            html_body=record.html_body,
            customized=True,
            updated_at=record.updated_at.isoformat() if record.updated_at else None,
        )
    return ResolvedTemplate(key=key, subject=default_subject, html_body=default_body(key), customized=False)


def resolve_template(template_key: str) -> ResolvedTemplate:
    key = _validate_template_key(template_key)
    return _resolve(key, email_templates_repo.get_template(key))


def fetch_templates_context() -> Dict[str, List[Dict[str, object]]]:
    overrides = {record.template_key: record for record in email_templates_repo.list_templates()}
    templates_payload: List[Dict[str, object]] = []
    for template_key, meta in TEMPLATE_DEFINITIONS.items():
        resolved = _resolve(template_key, overrides.get(template_key))
        templates_payload.append({
            "key": template_key,
            "label": meta["label"],
            "description": meta["description"],
            "subject": resolved.subject,
            "html": resolved.html_body,
            "customized": resolved.customized,
            "updated_at": resolved.updated_at,
            "tokens": token_definitions(template_key),
        })
    return {"templates": templates_payload}


def _validate_subject(subject: Optional[str]) -> str:
    value = (subject or "").strip()
    if "\n" in value or "\r" in value:
        raise TemplateValidationError("subject_multiline")
    if len(value) > _SUBJECT_MAX:
        raise TemplateValidationError("subject_too_long")
    return value


def _validate_syntax(source: str) -> None:
    try:
        _SYNTAX_ENV.parse(source)
    except TemplateSyntaxError as exc:
        raise TemplateValidationError("template_syntax_error") from exc


def save_template(template_key: str, html_body: str, subject: Optional[str] = None) -> ResolvedTemplate:
    normalized_key = _validate_template_key(template_key)
    normalized_subject = _validate_subject(subject)
    content = html_body or ""
    if not content.strip():
        raise TemplateValidationError("body_required")
    _validate_syntax(content)
    if normalized_subject:
        _validate_syntax(normalized_subject)
    record = email_templates_repo.upsert_template(normalized_key, content, normalized_subject)
    LOG.info("Saved email template key=%s", normalized_key)
    return ResolvedTemplate(
        key=record.template_key,
        subject=record.subject or TEMPLATE_DEFINITIONS[normalized_key]["subject"],
        html_body=record.html_body or "",
        customized=True,
        updated_at=record.updated_at.isoformat() if record.updated_at else None,
    )


def reset_template(template_key: str) -> ResolvedTemplate:
    """Drop the stored override so the bundled default applies again."""
    key = _validate_template_key(template_key)
    email_templates_repo.delete_template(key)
    return resolve_template(key)


__all__ = [
    "TemplateValidationError",
    "ResolvedTemplate",
    "template_definitions",
    "token_definitions",
    "default_body",
    "resolve_template",
    "fetch_templates_context",
    "save_template",
    "reset_template",
]
