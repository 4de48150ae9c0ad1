"""Repository helpers for stored email template overrides."""
from __future__ import annotations

from typing import List, Optional

from lms.db import session_scope
from lms.db.models import EmailTemplate
from lms.utils.logging import get_logger

LOG = get_logger("email_templates_repo")


def get_template(template_key: str) -> Optional[EmailTemplate]:
    with session_scope() as session:
        return (
            session.query(EmailTemplate)
            .filter(EmailTemplate.template_key == template_key)
            .one_or_none()
        )


def list_templates() -> List[EmailTemplate]:
    with session_scope() as session:
        return session.query(EmailTemplate).order_by(EmailTemplate.template_key.asc()).all()


def upsert_template(template_key: str, html_body: str, subject: str) -> EmailTemplate:
    with session_scope() as session:
        record = (
            session.query(EmailTemplate)
            .filter(EmailTemplate.template_key == template_key)
            .one_or_none()
        )
        if record:
            record.html_body = html_body
            record.subject = subject
            session.flush()
            return record
        record = EmailTemplate(
            template_key=template_key,
            html_body=html_body,
            subject=subject,
        )
        session.add(record)
        session.flush()
        LOG.info("Stored email template override key=%s", template_key)
        return record


def delete_template(template_key: str) -> bool:
    with session_scope() as session:
        deleted = (
            session.query(EmailTemplate)
            .filter(EmailTemplate.template_key == template_key)
            .delete(synchronize_session=False)
        )
        return bool(deleted)


__all__ = ["get_template", "list_templates", "upsert_template", "delete_template"]
