"""Application configuration accessors.

Centralizes environment variable parsing & defaults. Every accessor reads
the environment on each call so tests can monkeypatch variables without
reloading modules (only ``metadata`` is cached).
"""
from __future__ import annotations

import os
from decimal import Decimal, InvalidOperation
from functools import lru_cache

APP_NAME = "lms"
APP_VERSION = "0.4.0"
APP_DESCRIPTION = "Library management service"

DEFAULT_DB_PATH = "library.db"
DEFAULT_LOG_LEVEL = "INFO"
DEFAULT_LIBRARY_NAME = "Library Management System"
DEFAULT_LATE_FEE_PER_DAY = Decimal("1.00")
DEFAULT_BORROW_DAYS = 14
MIN_BORROW_DAYS = 1
MAX_BORROW_DAYS = 90
DEFAULT_RENEWAL_DAYS = 14
_TRUE = {"1", "true", "yes", "on"}


def _raw_env(name: str, default: str | None = None) -> str | None:
    val = os.getenv(name)
    return val if val is not None else default


def _optional_env(name: str) -> str | None:
    value = os.getenv(name)
    if value is None:
        return None
    value = value.strip()
    return value or None


def env_bool(name: str, default: bool = False) -> bool:
    raw = _raw_env(name, str(default).lower())
    if raw is None:
        return default
    return raw.lower() in _TRUE


def env_int(name: str, default: int) -> int:
    raw = _optional_env(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def get_db_path() -> str:
    raw = _raw_env("LMS_DB_PATH", DEFAULT_DB_PATH)
    if raw and raw != ":memory:" and not os.path.isabs(raw):
        data_root = os.getenv("LMS_DATA_DIR")
        if data_root:
            return os.path.join(data_root, raw)
    return raw  # type: ignore[return-value]


def database_url() -> str | None:
    """Full SQLAlchemy URL (e.g. ``mysql+pymysql://...``); overrides LMS_DB_PATH."""
    return _optional_env("LMS_DATABASE_URL")


def log_level_name() -> str:
    return _raw_env("LMS_LOG_LEVEL", DEFAULT_LOG_LEVEL).upper()  # type: ignore[return-value]


def secret_key() -> str | None:
    return _optional_env("LMS_SECRET_KEY")


@lru_cache(maxsize=1)
def metadata() -> dict:
    return {
        "name": APP_NAME,
        "version": APP_VERSION,
        "description": APP_DESCRIPTION,
    }


def summarize_runtime_config() -> dict:
    return {
        "db_path": get_db_path(),
        "database_url_set": bool(database_url()),
        "log_level": log_level_name(),
        "smtp_host": smtp_host(),
        "mail_async": mail_async(),
        "late_fee_per_day": str(late_fee_per_day()),
        "default_borrow_days": default_borrow_days(),
    }


__all__ = [
    "APP_NAME",
    "APP_VERSION",
    "APP_DESCRIPTION",
    "MIN_BORROW_DAYS",
    "MAX_BORROW_DAYS",
    "get_db_path",
    "database_url",
    "log_level_name",
    "secret_key",
    "metadata",
    "summarize_runtime_config",
    "env_bool",
    "env_int",
]


def library_name() -> str:
    """Display name used in email bodies and report titles."""
    return _optional_env("LMS_LIBRARY_NAME") or DEFAULT_LIBRARY_NAME

__all__.append("library_name")


def public_url() -> str | None:
    """Public base URL used to build absolute links in emails (LMS_PUBLIC_URL)."""
    return _optional_env("LMS_PUBLIC_URL")

__all__.append("public_url")


def reset_token_hours() -> int:
    """Lifetime of password reset links in hours (LMS_RESET_TOKEN_HOURS, default 24)."""
    value = env_int("LMS_RESET_TOKEN_HOURS", 24)
    return value if value > 0 else 24

__all__.append("reset_token_hours")


# ---------------- Circulation rules ---------------

def late_fee_per_day() -> Decimal:
    raw = _optional_env("LMS_LATE_FEE_PER_DAY")
    if raw is None:
        return DEFAULT_LATE_FEE_PER_DAY
    try:
        value = Decimal(raw)
    except InvalidOperation:
        return DEFAULT_LATE_FEE_PER_DAY
    if value < 0:
        return DEFAULT_LATE_FEE_PER_DAY
    return value.quantize(Decimal("0.01"))


def default_borrow_days() -> int:
    value = env_int("LMS_DEFAULT_BORROW_DAYS", DEFAULT_BORROW_DAYS)
    if value < MIN_BORROW_DAYS or value > MAX_BORROW_DAYS:
        return DEFAULT_BORROW_DAYS
    return value


def renewal_days() -> int:
    value = env_int("LMS_RENEWAL_DAYS", DEFAULT_RENEWAL_DAYS)
    return value if value > 0 else DEFAULT_RENEWAL_DAYS

__all__.extend(["late_fee_per_day", "default_borrow_days", "renewal_days"])


# ---------------- Mail (SMTP) ---------------

def smtp_host() -> str | None:
    return _optional_env("LMS_SMTP_HOST")


def smtp_port() -> int:
    default = 465 if smtp_use_ssl() else 587
    return env_int("LMS_SMTP_PORT", default)


def smtp_username() -> str | None:
    return _optional_env("LMS_SMTP_USERNAME")


def smtp_password() -> str | None:
    return _optional_env("LMS_SMTP_PASSWORD")


def smtp_use_tls() -> bool:
    return env_bool("LMS_SMTP_USE_TLS", True)


def smtp_use_ssl() -> bool:
    return env_bool("LMS_SMTP_USE_SSL", False)


def smtp_timeout() -> int:
    return env_int("LMS_SMTP_TIMEOUT", 30)


def mail_from() -> str | None:
    return _optional_env("LMS_MAIL_FROM") or smtp_username()


def mail_from_name() -> str:
    return _optional_env("LMS_MAIL_FROM_NAME") or DEFAULT_LIBRARY_NAME


def mail_async() -> bool:
    """Send mail on a background thread (LMS_MAIL_ASYNC, default on)."""
    return env_bool("LMS_MAIL_ASYNC", True)

__all__.extend([
    "smtp_host",
    "smtp_port",
    "smtp_username",
    "smtp_password",
    "smtp_use_tls",
    "smtp_use_ssl",
    "smtp_timeout",
    "mail_from",
    "mail_from_name",
    "mail_async",
])


# ---------------- Admin bootstrap ---------------

def admin_bootstrap_enabled() -> bool:
    return env_bool("LMS_BOOTSTRAP_ADMIN", False)


def admin_bootstrap_username() -> str:
    return _optional_env("LMS_ADMIN_USERNAME") or "admin"


def admin_bootstrap_password() -> str | None:
    return _optional_env("LMS_ADMIN_PASSWORD")


def admin_bootstrap_email() -> str | None:
    return _optional_env("LMS_ADMIN_EMAIL")

__all__.extend([
    "admin_bootstrap_enabled",
    "admin_bootstrap_username",
    "admin_bootstrap_password",
    "admin_bootstrap_email",
])
