"""
Health probes.

    GET /api/v1/health/ready   process is up (load balancer)
    GET /api/v1/health/live    layer store + view cache status

Only the layer store decides the status code. A degraded or unreachable
view cache is reported but still answers 200, since views are recomputed
from the store while the cache is bypassed.
"""

import logging
import time

from flask import Blueprint, current_app, jsonify
from sqlalchemy.exc import SQLAlchemyError

from signposting.models import db

logger = logging.getLogger(__name__)

health_bp = Blueprint("health_bp", __name__, url_prefix="/api/v1/health")


def _layer_store_check() -> dict:
    started = time.perf_counter()
    try:
        db.session.execute(db.text("SELECT 1"))
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.error("Health: layer store unreachable: %s", exc)
        return {"status": "error", "detail": str(exc)}
    return {"status": "ok", "latency_ms": round((time.perf_counter() - started) * 1000, 1)}


@health_bp.route("/ready", methods=["GET"])
def ready():
    return jsonify({"status": "ok"}), 200


@health_bp.route("/live", methods=["GET"])
def live():
    store = _layer_store_check()
    cache = current_app.extensions.get("view_cache")
    checks = {
        "database": store,
        "view_cache": cache.health_check() if cache is not None else {"status": "absent"},
    }
    healthy = store["status"] == "ok"
    return jsonify({
        "status": "healthy" if healthy else "unhealthy",
        "env": current_app.config.get("ENV_NAME"),
        "checks": checks,
    }), 200 if healthy else 503
