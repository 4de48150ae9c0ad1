"""Password reset nonces, at most one per user.

Only the hash of the nonce embedded in the emailed link is stored. Issuing a
new link replaces the row, which invalidates every earlier link for that user.
"""
from __future__ import annotations

from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.orm import Query, Session

from lms.db import session_scope
from lms.db.models import ResetPasswordToken
from lms.utils.logging import get_logger

LOG = get_logger("reset_passwords_repo")
RETENTION_DAYS = 30


def _for_user(s: Session, user_id: int) -> Optional[ResetPasswordToken]:
    return s.query(ResetPasswordToken).filter(ResetPasswordToken.user_id == user_id).one_or_none()


def _stale(s: Session, older_than_days: int) -> Query:
    cutoff = datetime.utcnow() - timedelta(days=older_than_days)
    return s.query(ResetPasswordToken).filter(ResetPasswordToken.created_at < cutoff)


def upsert_token(
    *,
    user_id: int,
    nonce_hash: str,
    last_sent_at: Optional[datetime] = None,
    session: Optional[Session] = None,
) -> ResetPasswordToken:
    now = datetime.utcnow()
    with session_scope(session) as s:
        pruned = _stale(s, RETENTION_DAYS).delete(synchronize_session=False)
        if pruned:
            LOG.debug("Pruned %s stale reset token(s)", pruned)
        record = _for_user(s, user_id)
        if record is None:
            record = ResetPasswordToken(user_id=user_id)
            s.add(record)
        record.nonce_hash = nonce_hash
        record.created_at = now
        record.last_sent_at = last_sent_at or now
        s.flush()
        return record


def get_token(*, user_id: int, session: Optional[Session] = None) -> Optional[ResetPasswordToken]:
    with session_scope(session) as s:
        return _for_user(s, user_id)


def delete_token(*, user_id: int, session: Optional[Session] = None) -> bool:
    with session_scope(session) as s:
        record = _for_user(s, user_id)
        if record is None:
            return False
        s.delete(record)
        return True


def purge_expired_tokens(*, older_than_days: int = RETENTION_DAYS) -> int:
    if older_than_days <= 0:
        raise ValueError("older_than_days_positive")
    with session_scope() as s:
        return int(_stale(s, older_than_days).delete(synchronize_session=False) or 0)


__all__ = [
    "RETENTION_DAYS",
    "upsert_token",
    "get_token",
    "delete_token",
    "purge_expired_tokens",
]
