"""``/healthz`` probe for containers and load balancers.

Answers 200 when a trivial query succeeds and 503 otherwise, along with the
service name and version.
"""
from __future__ import annotations

from typing import Any

from flask import Blueprint, jsonify
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from lms import config as app_config
from lms.db.engine import app_session
from lms.utils.logging import get_logger

LOG = get_logger("health")

bp = Blueprint("health", __name__)


def _database_reachable() -> bool:
    try:
        with app_session() as s:
            s.execute(text("SELECT 1"))
    except SQLAlchemyError as exc:
        LOG.warning("Health DB probe failed: %s", exc)
        return False
    return True


@bp.route("/healthz", methods=["GET"])
def healthz():
    meta = app_config.metadata()
    db_ok = _database_reachable()
    body = {
        "status": "ok" if db_ok else "degraded",
        "db": db_ok,
        "service": meta["name"],
        "version": meta["version"],
    }
    return jsonify(body), 200 if db_ok else 503


def register_health(app: Any) -> None:
    if "health" in app.blueprints:
        return
    app.register_blueprint(bp)
    LOG.debug("health blueprint registered")


__all__ = ["register_health"]
