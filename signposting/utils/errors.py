"""JSON error envelope shared by the blueprints.

Body shape::

    {"error": "<message>", "code": "ERR_...", "details": {...}}

``details`` is present only when there is something to put in it, e.g. the
per-field messages of a rejected item payload or ``pending_count`` when a
clinical sign-off is refused.
"""

from __future__ import annotations

from flask import jsonify


class E:
    """Error codes. The HTTP status is looked up in ``_STATUS``."""

    VALIDATION_REQUIRED = "ERR_VALIDATION_REQUIRED"   # missing query/body field
    VALIDATION_INVALID = "ERR_VALIDATION_INVALID"     # wrong type
    VALIDATION_RULE = "ERR_VALIDATION_RULE"           # well-formed, rejected by a rule
    NOT_FOUND = "ERR_NOT_FOUND"
    CONFLICT_DUPLICATE = "ERR_CONFLICT_DUPLICATE"
    FORBIDDEN = "ERR_FORBIDDEN"
    STORAGE_UNAVAILABLE = "ERR_STORAGE_UNAVAILABLE"
    INTERNAL = "ERR_INTERNAL"


_STATUS: dict[str, int] = {
    E.VALIDATION_REQUIRED: 400,
    E.VALIDATION_INVALID: 400,
    E.VALIDATION_RULE: 422,
    E.NOT_FOUND: 404,
    E.CONFLICT_DUPLICATE: 409,
    E.FORBIDDEN: 403,
    E.STORAGE_UNAVAILABLE: 503,
    E.INTERNAL: 500,
}


def api_error(code: str, message: str, *, status: int | None = None, details: dict | None = None):
    """Build ``(response, status)`` for a view or errorhandler to return.

    ``status`` overrides the code's default; unknown codes map to 400.
    """
    body: dict = {"error": message, "code": code}
    if details:
        body["details"] = details
    return jsonify(body), status or _STATUS.get(code, 400)
