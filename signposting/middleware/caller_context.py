"""
Caller Context Middleware — reads the caller identity resolved upstream.

Authentication itself happens outside this service (gateway / session
layer). It forwards the result as headers:

    X-Caller-Id             opaque user id (used as actor on writes)
    X-Caller-Role           SUPERUSER | USER
    X-Caller-Admin-Tenants  comma-separated surgery ids the caller administers

The middleware turns them into ``g.caller`` (a CallerIdentity). Decorators
raise ForbiddenError, which the blueprint renders as 403.

When API_AUTH_ENABLED is false and no identity headers are present, the
decorators pass through (development / testing), mirroring the legacy
fall-through of the permission decorators.

Usage:
    @library_bp.route("/base-items", methods=["POST"])
    @require_superuser
    def create_base_item():
        ...

    @library_bp.route("/tenants/<int:tenant_id>/overrides/<base_item_id>", methods=["PUT"])
    @require_tenant_admin
    def put_override(tenant_id, base_item_id):
        ...
"""

import functools
import logging

from flask import current_app, g, request

from signposting.core.caller import ROLE_SUPERUSER, ROLE_USER, CallerIdentity
from signposting.core.exceptions import ForbiddenError

logger = logging.getLogger(__name__)


def _parse_tenant_ids(raw: str) -> frozenset:
    ids = set()
    for part in (raw or "").split(","):
        part = part.strip()
        if part.isdigit():
            ids.add(int(part))
    return frozenset(ids)


def caller_from_headers(headers) -> CallerIdentity | None:
    """Build a CallerIdentity from request headers, or None when absent."""
    caller_id = headers.get("X-Caller-Id")
    role = (headers.get("X-Caller-Role") or "").strip().upper()
    if not caller_id and not role:
        return None
    if role not in (ROLE_SUPERUSER, ROLE_USER):
        role = ROLE_USER
    return CallerIdentity(
        caller_id=caller_id,
        role=role,
        admin_tenant_ids=_parse_tenant_ids(headers.get("X-Caller-Admin-Tenants", "")),
    )


def _auth_enabled() -> bool:
    return str(current_app.config.get("API_AUTH_ENABLED", "false")).lower() == "true"


def current_caller() -> CallerIdentity | None:
    return getattr(g, "caller", None)


def current_actor() -> str | None:
    caller = current_caller()
    return caller.caller_id if caller else None


def init_caller_context(app):
    """Register the caller-context before_request hook."""

    @app.before_request
    def _caller_context():
        g.caller = None
        if not request.path.startswith("/api/v1/"):
            return None
        g.caller = caller_from_headers(request.headers)
        return None


def _missing_identity():
    if _auth_enabled():
        raise ForbiddenError("Caller identity required")


def require_superuser(f):
    """Decorator: caller must carry the SUPERUSER role."""
    @functools.wraps(f)
    def decorated(*args, **kwargs):
        caller = current_caller()
        if caller is None:
            _missing_identity()
            return f(*args, **kwargs)
        if not caller.is_superuser:
            logger.warning("Superuser required, caller=%s", caller.caller_id,
                           extra={"event_type": "forbidden"})
            raise ForbiddenError("Superuser role required")
        return f(*args, **kwargs)
    return decorated


def require_tenant_admin(f):
    """Decorator: caller must administer the ``tenant_id`` route argument."""
    @functools.wraps(f)
    def decorated(*args, **kwargs):
        tenant_id = kwargs.get("tenant_id")
        caller = current_caller()
        if caller is None:
            _missing_identity()
            return f(*args, **kwargs)
        if not caller.is_tenant_admin(tenant_id):
            logger.warning("Tenant admin required, caller=%s", caller.caller_id,
                           extra={"tenant_id": tenant_id, "event_type": "forbidden"})
            raise ForbiddenError("Tenant admin role required", tenant_id=tenant_id)
        return f(*args, **kwargs)
    return decorated
