"""Template-driven email delivery over SMTP.

Messages are rendered in the caller's thread (template overrides live in
the database) and handed to SMTP either inline or on a daemon thread when
``LMS_MAIL_ASYNC`` is on. Business operations call ``notify``, which never
raises: a mail failure is logged and the operation stands.
"""
from __future__ import annotations

import html
import re
import smtplib
import ssl
import threading
from email.message import EmailMessage
from email.utils import formataddr, make_msgid
from typing import Any, Dict, Mapping, Optional

from flask import has_request_context, request
from jinja2 import BaseLoader, Environment, TemplateError

from lms import config as app_config
from lms.services import email_templates_service
from lms.utils.currency import register_currency_filters
from lms.utils.logging import get_logger

LOG = get_logger("email_delivery")
_JINJA_ENV = Environment(loader=BaseLoader(), autoescape=False, trim_blocks=True, lstrip_blocks=True)
register_currency_filters(_JINJA_ENV)
_HTML_BREAK_PATTERN = re.compile(r"</p>|<br\s*/?>|</tr>|</h[1-6]>", re.IGNORECASE)
_CELL_BREAK_PATTERN = re.compile(r"</td>", re.IGNORECASE)
_TAG_PATTERN = re.compile(r"<[^>]+>")


class EmailDeliveryError(RuntimeError):
    """Base error for email delivery failures."""


class TemplateMissingError(EmailDeliveryError):
    """Raised when the requested template is not configured."""


class MailNotConfiguredError(EmailDeliveryError):
    """Raised when SMTP settings are absent."""


class EmailSendError(EmailDeliveryError):
    """Raised when the SMTP conversation fails."""


def absolute_site_url(path: str) -> str:
    """Return an absolute URL using request context or configured public URL."""

    if not path:
        return ""
    candidate = path.strip()
    if candidate.startswith(("http://", "https://")):
        return candidate
    if not candidate.startswith("/"):
        candidate = f"/{candidate}"
    base_url: Optional[str] = None
    configured = app_config.public_url()
    if configured:
        if configured.startswith(("http://", "https://")):
            base_url = configured.rstrip("/")
        else:
            base_url = f"https://{configured.strip('/')}"
    if not base_url and has_request_context():
        base_url = request.url_root.rstrip("/")
    if not base_url:
        return candidate
    return f"{base_url}{candidate}"


def _render_template(template_str: str, context: Mapping[str, Any]) -> str:
    try:
        template = _JINJA_ENV.from_string(template_str or "")
        return template.render(**context)
    except TemplateError as exc:
        raise EmailDeliveryError("template_render_failed") from exc


def _html_to_text(value: str) -> str:
    if not value:
        return ""
    working = _CELL_BREAK_PATTERN.sub(" ", value)
    working = _HTML_BREAK_PATTERN.sub("\n", working)
    working = _TAG_PATTERN.sub("", working)
    working = html.unescape(working)
    working = re.sub(r"[ \t]+\n", "\n", working)
    working = re.sub(r"\n\s*\n+", "\n\n", working)
    return working.strip()


def _escape_context(context: Mapping[str, Any]) -> Dict[str, Any]:
    escaped: Dict[str, Any] = {}
    for key, value in context.items():
        escaped[key] = html.escape(value) if isinstance(value, str) else value
    return escaped


def _base_context() -> Dict[str, Any]:
    return {"library_name": app_config.library_name(), "logo_url": ""}


def render_email(template_key: str, context: Mapping[str, Any]) -> Dict[str, str]:
    """Return ``subject``, ``html`` and ``text`` for a template + context."""
    try:
        template = email_templates_service.resolve_template(template_key)
    except (email_templates_service.TemplateValidationError, OSError) as exc:
        raise TemplateMissingError(f"{template_key}_template_missing") from exc
    merged = _base_context()
    merged.update(context)
    subject = _render_template(template.subject, merged).strip()
    html_body = _render_template(template.html_body, _escape_context(merged))
    text_body = _html_to_text(html_body)
    return {
        "subject": " ".join(subject.split()) or template_key.replace("_", " ").title(),
        "html": html_body,
        "text": text_body,
    }


def _mail_settings() -> Dict[str, Any]:
    host = app_config.smtp_host()
    if not host:
        raise MailNotConfiguredError("mail_not_configured")
    sender = app_config.mail_from()
    if not sender:
        raise MailNotConfiguredError("mail_from_missing")
    return {
        "host": host,
        "port": app_config.smtp_port(),
        "username": app_config.smtp_username(),
        "password": app_config.smtp_password(),
        "use_tls": app_config.smtp_use_tls(),
        "use_ssl": app_config.smtp_use_ssl(),
        "timeout": app_config.smtp_timeout(),
        "from_addr": sender,
        "from_name": app_config.mail_from_name(),
    }


def build_message(
    *,
    recipient: str,
    subject: str,
    html_body: str,
    text_body: str,
    settings: Mapping[str, Any],
) -> EmailMessage:
    message = EmailMessage()
    message["Subject"] = subject
    message["From"] = formataddr((str(settings["from_name"]), str(settings["from_addr"])))
    message["To"] = recipient
    message["Message-ID"] = make_msgid()
    message.set_content(text_body or _html_to_text(html_body) or subject)
    if html_body:
        message.add_alternative(html_body, subtype="html")
    return message


def _smtp_send(message: EmailMessage, settings: Mapping[str, Any]) -> None:
    timeout = settings.get("timeout") or 30
    try:
        if settings.get("use_ssl"):
            client = smtplib.SMTP_SSL(
                settings["host"], settings["port"], timeout=timeout, context=ssl.create_default_context()
            )
        else:
            client = smtplib.SMTP(settings["host"], settings["port"], timeout=timeout)
        with client:
            if not settings.get("use_ssl") and settings.get("use_tls"):
                client.starttls(context=ssl.create_default_context())
            if settings.get("username") and settings.get("password"):
                client.login(settings["username"], settings["password"])
            client.send_message(message)
    except (smtplib.SMTPException, OSError) as exc:
        raise EmailSendError("smtp_failed") from exc


def _send_in_background(message: EmailMessage, settings: Mapping[str, Any], label: str) -> None:
    def _worker() -> None:
        try:
            _smtp_send(message, settings)
            LOG.info("Sent email %s to=%s", label, message["To"])
        except EmailDeliveryError:
            LOG.error("Background email failed %s to=%s", label, message["To"], exc_info=True)

    thread = threading.Thread(target=_worker, name=f"lms-mail-{label}", daemon=True)
    thread.start()


def send_template_email(template_key: str, *, recipient: str, context: Mapping[str, Any]) -> Dict[str, object]:
    """Render ``template_key`` and send it; raises EmailDeliveryError subclasses."""
    if not recipient:
        raise EmailDeliveryError("recipient_required")
    settings = _mail_settings()
    rendered = render_email(template_key, context)
    message = build_message(
        recipient=recipient,
        subject=rendered["subject"],
        html_body=rendered["html"],
        text_body=rendered["text"],
        settings=settings,
    )
    if app_config.mail_async():
        _send_in_background(message, settings, template_key)
        LOG.info("Queued email %s to=%s", template_key, recipient)
        return {"template": template_key, "queued": True, "subject": rendered["subject"]}
    _smtp_send(message, settings)
    LOG.info("Sent email %s to=%s", template_key, recipient)
    return {"template": template_key, "queued": False, "sent": True, "subject": rendered["subject"]}


def notify(template_key: str, *, recipient: Optional[str], context: Mapping[str, Any]) -> bool:
    """Best-effort wrapper for business operations; returns whether mail went out."""
    try:
        send_template_email(template_key, recipient=recipient or "", context=context)
    except MailNotConfiguredError:
        LOG.info("Mail not configured; skipped %s email to=%s", template_key, recipient)
        return False
    except EmailDeliveryError:
        LOG.warning("Failed sending %s email to=%s", template_key, recipient, exc_info=True)
        return False
    return True


__all__ = [
    "EmailDeliveryError",
    "TemplateMissingError",
    "MailNotConfiguredError",
    "EmailSendError",
    "absolute_site_url",
    "render_email",
    "build_message",
    "send_template_email",
    "notify",
]
