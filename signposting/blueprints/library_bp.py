"""
Library Blueprint — HTTP surface of the effective-view engine.

All routes live under /api/v1. Surgery-scoped routes carry the surgery id
in the path so every request is tenant-scoped.

Effective views:
    GET    /tenants/<tid>/items                    ?include_disabled=&letter=&q=
    GET    /tenants/<tid>/items/<item_id>
    GET    /tenants/<tid>/items/by-slug/<slug>
    GET    /tenants/<tid>/items/by-name            ?name=
    GET    /tenants/<tid>/library-status
    PUT    /tenants/<tid>/items/<item_id>/enabled  {"enabled": bool}

Base library (superuser):
    GET    /base-items
    POST   /base-items
    GET    /base-items/<id>
    PATCH  /base-items/<id>
    DELETE /base-items/<id>

Custom items (tenant admin):
    GET    /tenants/<tid>/custom-items
    POST   /tenants/<tid>/custom-items
    GET    /tenants/<tid>/custom-items/<id>
    PATCH  /tenants/<tid>/custom-items/<id>
    DELETE /tenants/<tid>/custom-items/<id>
    POST   /tenants/<tid>/custom-items/<id>/promote

Overrides (tenant admin):
    PUT    /tenants/<tid>/overrides/<base_id>          {<field>: value|null, "hidden": bool}
    DELETE /tenants/<tid>/overrides/<base_id>/fields
    POST   /tenants/<tid>/overrides/<base_id>/hide
    POST   /tenants/<tid>/overrides/<base_id>/unhide
    DELETE /tenants/<tid>/overrides
    GET    /tenants/<tid>/hidden-items

Clinical review (tenant admin):
    GET    /tenants/<tid>/review
    PUT    /tenants/<tid>/review/<item_id>             {"status", "age_group", "note"}
    POST   /tenants/<tid>/review/reset
    POST   /tenants/<tid>/review/bulk-approve          {"search"}
    POST   /tenants/<tid>/review/complete
    POST   /tenants/<tid>/review/request-rereview      (superuser)

Layer contract:
    - Blueprint: parse input, call service, return JSON.
    - NO db.session calls here; all writes are owned by the services.
    - Reads are retried once on StorageUnavailableError.
"""

import dataclasses
import logging

from flask import Blueprint, jsonify, request

from signposting.core.caller import CallerIdentity
from signposting.core.exceptions import (
    ConflictError,
    ForbiddenError,
    NotFoundError,
    StorageUnavailableError,
    ValidationError,
)
from signposting.middleware.caller_context import (
    current_actor,
    current_caller,
    require_superuser,
    require_tenant_admin,
)
from signposting.services import (
    effective_view_service,
    library_service,
    override_service,
    promotion_service,
    review_service,
)
from signposting.utils.errors import E, api_error

logger = logging.getLogger(__name__)

library_bp = Blueprint("library", __name__, url_prefix="/api/v1")


# ── Error handlers ─────────────────────────────────────────────────────────────


@library_bp.errorhandler(NotFoundError)
def _handle_not_found(error: NotFoundError):
    return api_error(E.NOT_FOUND, str(error))


@library_bp.errorhandler(ValidationError)
def _handle_validation(error: ValidationError):
    return api_error(E.VALIDATION_RULE, str(error), details=error.details)


@library_bp.errorhandler(ConflictError)
def _handle_conflict(error: ConflictError):
    return api_error(E.CONFLICT_DUPLICATE, str(error))


@library_bp.errorhandler(ForbiddenError)
def _handle_forbidden(error: ForbiddenError):
    return api_error(E.FORBIDDEN, str(error))


@library_bp.errorhandler(StorageUnavailableError)
def _handle_storage(error: StorageUnavailableError):
    logger.error("Storage unavailable in library_bp endpoint=%s: %s", request.endpoint, error)
    return api_error(E.STORAGE_UNAVAILABLE, "Storage temporarily unavailable")


# ── Helpers ────────────────────────────────────────────────────────────────────


def _read(fn, *args, **kwargs):
    """Run a read-only service call, retrying once if storage is unavailable."""
    try:
        return fn(*args, **kwargs)
    except StorageUnavailableError as exc:
        logger.warning("Retrying read after storage error: %s", exc)
        return fn(*args, **kwargs)


def _json_body() -> dict:
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


def _flag(name: str) -> bool:
    return (request.args.get(name) or "").lower() in ("1", "true", "yes")


def _items(items) -> list:
    return [i.to_dict() for i in items]


# ═════════════════════════════════════════════════════════════════════════════
# Effective views
# ═════════════════════════════════════════════════════════════════════════════


@library_bp.route("/tenants/<int:tenant_id>/items", methods=["GET"])
def list_effective_items(tenant_id: int):
    """Resolved view, optionally filtered by first letter and free text."""
    include_disabled = _flag("include_disabled")
    letter = request.args.get("letter") or None
    q = request.args.get("q") or None
    if letter or q:
        items = _read(effective_view_service.search_items, tenant_id,
                      letter=letter, q=q, include_disabled=include_disabled)
    else:
        items = _read(effective_view_service.resolve, tenant_id, include_disabled)
    return jsonify({"items": _items(items), "total": len(items)}), 200


@library_bp.route("/tenants/<int:tenant_id>/items/by-slug/<slug>", methods=["GET"])
def get_effective_item_by_slug(tenant_id: int, slug: str):
    item = _read(effective_view_service.get_effective_item_by_slug, tenant_id, slug,
                 include_disabled=_flag("include_disabled"))
    return jsonify(item.to_dict()), 200


@library_bp.route("/tenants/<int:tenant_id>/items/by-name", methods=["GET"])
def get_effective_item_by_name(tenant_id: int):
    name = (request.args.get("name") or "").strip()
    if not name:
        return api_error(E.VALIDATION_REQUIRED, "Query parameter 'name' is required")
    item = _read(effective_view_service.get_effective_item_by_name, tenant_id, name,
                 include_disabled=_flag("include_disabled"))
    return jsonify(item.to_dict()), 200


@library_bp.route("/tenants/<int:tenant_id>/items/<item_id>", methods=["GET"])
def get_effective_item(tenant_id: int, item_id: str):
    item = _read(effective_view_service.get_effective_item, tenant_id, item_id,
                 include_disabled=_flag("include_disabled"))
    return jsonify(item.to_dict()), 200


@library_bp.route("/tenants/<int:tenant_id>/library-status", methods=["GET"])
@require_tenant_admin
def get_library_status(tenant_id: int):
    return jsonify(_read(effective_view_service.library_status, tenant_id)), 200


@library_bp.route("/tenants/<int:tenant_id>/items/<item_id>/enabled", methods=["PUT"])
@require_tenant_admin
def set_item_enabled(tenant_id: int, item_id: str):
    data = _json_body()
    enabled = data.get("enabled")
    if not isinstance(enabled, bool):
        return api_error(E.VALIDATION_INVALID, "Field 'enabled' must be a boolean")
    row = library_service.set_item_enabled(tenant_id, item_id, enabled, actor=current_actor())
    return jsonify(row), 200


# ═════════════════════════════════════════════════════════════════════════════
# Base library
# ═════════════════════════════════════════════════════════════════════════════


@library_bp.route("/base-items", methods=["GET"])
def list_base_items():
    items = _read(library_service.list_base_items, include_deleted=_flag("include_deleted"))
    return jsonify({"items": items, "total": len(items)}), 200


@library_bp.route("/base-items", methods=["POST"])
@require_superuser
def create_base_item():
    item = library_service.create_base_item(_json_body(), actor=current_actor())
    return jsonify(item), 201


@library_bp.route("/base-items/<base_item_id>", methods=["GET"])
def get_base_item(base_item_id: str):
    return jsonify(_read(library_service.get_base_item, base_item_id)), 200


@library_bp.route("/base-items/<base_item_id>", methods=["PATCH"])
@require_superuser
def update_base_item(base_item_id: str):
    item = library_service.update_base_item(base_item_id, _json_body(), actor=current_actor())
    return jsonify(item), 200


@library_bp.route("/base-items/<base_item_id>", methods=["DELETE"])
@require_superuser
def delete_base_item(base_item_id: str):
    library_service.delete_base_item(base_item_id, actor=current_actor())
    return jsonify({"ok": True}), 200


# ═════════════════════════════════════════════════════════════════════════════
# Custom items
# ═════════════════════════════════════════════════════════════════════════════


@library_bp.route("/tenants/<int:tenant_id>/custom-items", methods=["GET"])
@require_tenant_admin
def list_custom_items(tenant_id: int):
    items = _read(library_service.list_custom_items, tenant_id)
    return jsonify({"items": items, "total": len(items)}), 200


@library_bp.route("/tenants/<int:tenant_id>/custom-items", methods=["POST"])
@require_tenant_admin
def create_custom_item(tenant_id: int):
    caller = current_caller()
    item = library_service.create_custom_item(
        tenant_id, _json_body(), actor=current_actor(),
        by_superuser=bool(caller and caller.is_superuser),
    )
    return jsonify(item), 201


@library_bp.route("/tenants/<int:tenant_id>/custom-items/<custom_item_id>", methods=["GET"])
@require_tenant_admin
def get_custom_item(tenant_id: int, custom_item_id: str):
    return jsonify(_read(library_service.get_custom_item, tenant_id, custom_item_id)), 200


@library_bp.route("/tenants/<int:tenant_id>/custom-items/<custom_item_id>", methods=["PATCH"])
@require_tenant_admin
def update_custom_item(tenant_id: int, custom_item_id: str):
    item = library_service.update_custom_item(
        tenant_id, custom_item_id, _json_body(), actor=current_actor(),
    )
    return jsonify(item), 200


@library_bp.route("/tenants/<int:tenant_id>/custom-items/<custom_item_id>", methods=["DELETE"])
@require_tenant_admin
def delete_custom_item(tenant_id: int, custom_item_id: str):
    library_service.delete_custom_item(tenant_id, custom_item_id, actor=current_actor())
    return jsonify({"ok": True}), 200


@library_bp.route("/tenants/<int:tenant_id>/custom-items/<custom_item_id>/promote", methods=["POST"])
@require_tenant_admin
def promote_custom_item(tenant_id: int, custom_item_id: str):
    """Promote into the shared library, acting within the path's surgery."""
    caller = current_caller() or CallerIdentity()
    caller = dataclasses.replace(caller, tenant_id=tenant_id)
    base = promotion_service.promote(custom_item_id, caller)
    return jsonify(base), 201


# ═════════════════════════════════════════════════════════════════════════════
# Overrides
# ═════════════════════════════════════════════════════════════════════════════


@library_bp.route("/tenants/<int:tenant_id>/overrides/<base_item_id>", methods=["PUT"])
@require_tenant_admin
def put_override(tenant_id: int, base_item_id: str):
    """Patch fields and/or the hidden flag. null or "" resets a field to inherit."""
    data = dict(_json_body())
    hidden = data.pop("hidden", None)
    if hidden is not None and not isinstance(hidden, bool):
        return api_error(E.VALIDATION_INVALID, "Field 'hidden' must be a boolean")
    override = override_service.set_override(
        tenant_id, base_item_id, patch=data, hidden=hidden, actor=current_actor(),
    )
    return jsonify({"override": override}), 200


@library_bp.route("/tenants/<int:tenant_id>/overrides/<base_item_id>/fields", methods=["DELETE"])
@require_tenant_admin
def clear_override_fields(tenant_id: int, base_item_id: str):
    override = override_service.clear_override_fields(tenant_id, base_item_id, actor=current_actor())
    return jsonify({"override": override}), 200


@library_bp.route("/tenants/<int:tenant_id>/overrides/<base_item_id>/hide", methods=["POST"])
@require_tenant_admin
def hide_item(tenant_id: int, base_item_id: str):
    override = override_service.hide_item(tenant_id, base_item_id, actor=current_actor())
    return jsonify({"override": override}), 200


@library_bp.route("/tenants/<int:tenant_id>/overrides/<base_item_id>/unhide", methods=["POST"])
@require_tenant_admin
def unhide_item(tenant_id: int, base_item_id: str):
    override = override_service.unhide_item(tenant_id, base_item_id, actor=current_actor())
    return jsonify({"override": override}), 200


@library_bp.route("/tenants/<int:tenant_id>/overrides", methods=["DELETE"])
@require_tenant_admin
def clear_tenant_overrides(tenant_id: int):
    deleted = override_service.clear_tenant_overrides(tenant_id)
    return jsonify({"deleted": deleted}), 200


@library_bp.route("/tenants/<int:tenant_id>/hidden-items", methods=["GET"])
@require_tenant_admin
def list_hidden_items(tenant_id: int):
    hidden = _read(override_service.list_hidden_items, tenant_id)
    return jsonify({"items": hidden, "total": len(hidden)}), 200


# ═════════════════════════════════════════════════════════════════════════════
# Clinical review
# ═════════════════════════════════════════════════════════════════════════════


@library_bp.route("/tenants/<int:tenant_id>/review", methods=["GET"])
@require_tenant_admin
def get_review_summary(tenant_id: int):
    return jsonify(_read(review_service.get_review_summary, tenant_id)), 200


@library_bp.route("/tenants/<int:tenant_id>/review/<item_id>", methods=["PUT"])
@require_tenant_admin
def set_review_status(tenant_id: int, item_id: str):
    data = _json_body()
    status = (data.get("status") or "").strip().upper()
    if not status:
        return api_error(E.VALIDATION_REQUIRED, "Field 'status' is required")
    row = review_service.set_review_status(
        tenant_id,
        item_id,
        status,
        age_group=data.get("age_group") or None,
        note=data.get("note"),
        actor=current_actor(),
    )
    return jsonify(row), 200


@library_bp.route("/tenants/<int:tenant_id>/review/reset", methods=["POST"])
@require_tenant_admin
def reset_all_reviews(tenant_id: int):
    reset = review_service.reset_all_reviews(tenant_id, actor=current_actor())
    return jsonify({"reset": reset}), 200


@library_bp.route("/tenants/<int:tenant_id>/review/bulk-approve", methods=["POST"])
@require_tenant_admin
def bulk_approve(tenant_id: int):
    data = _json_body()
    approved = review_service.bulk_approve(
        tenant_id, actor=current_actor(), search=data.get("search") or None,
    )
    return jsonify({"approved": approved}), 200


@library_bp.route("/tenants/<int:tenant_id>/review/complete", methods=["POST"])
@require_tenant_admin
def complete_review(tenant_id: int):
    tenant = review_service.complete_review(tenant_id, actor=current_actor())
    return jsonify(tenant), 200


@library_bp.route("/tenants/<int:tenant_id>/review/request-rereview", methods=["POST"])
@require_superuser
def request_rereview(tenant_id: int):
    reset = review_service.request_rereview(tenant_id, actor=current_actor())
    return jsonify({"reset": reset}), 200
