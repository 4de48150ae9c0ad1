"""Blueprint registration.

Called from startup wiring; safe to call more than once on the same app.
"""
from __future__ import annotations
from typing import Any

from .admin import bp as admin_bp
from .auth import bp as auth_bp
from .health import register_health
from .librarian import bp as librarian_bp
from .member import bp as member_bp
from lms.utils.logging import get_logger

LOG = get_logger("routes.inject")

_BLUEPRINTS = (auth_bp, member_bp, librarian_bp, admin_bp)


def register_all(app: Any) -> None:
    for bp in _BLUEPRINTS:
        if bp.name in app.blueprints:
            continue
        app.register_blueprint(bp)
        LOG.debug("Registered blueprint %s at %s", bp.name, bp.url_prefix)
    register_health(app)

__all__ = ["register_all"]
