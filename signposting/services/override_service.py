"""
Tenant override service.

A TenantOverride is the sparse per-(surgery, base item) patch. Rows are
created lazily on the first edit or hide and deleted as soon as they
neither hide nor edit anything, so the table only holds real divergence.

Every mutation commits, then invalidates the surgery's two view tags and
``all-items`` before returning.
"""

from __future__ import annotations

import logging

from sqlalchemy import select

from signposting.engine.patch import INHERIT, parse_patch
from signposting.engine.resolver import has_edits
from signposting.engine.types import CONTENT_FIELDS
from signposting.models import db
from signposting.models.library import BaseItem, TenantOverride
from signposting.services import invalidator, review_service
from signposting.services.effective_view_service import default_cache
from signposting.services.helpers.scoped_queries import get_live_base_item, get_tenant
from signposting.services.helpers.unit_of_work import commit_or_raise

logger = logging.getLogger(__name__)


def _find_override(tenant_id: int, base_item_id: str):
    return TenantOverride.query_for_tenant(tenant_id).filter_by(base_item_id=base_item_id).first()


def set_override(
    tenant_id: int,
    base_item_id: str,
    patch: dict | None = None,
    hidden: bool | None = None,
    actor: str | None = None,
    cache=None,
) -> dict | None:
    """Apply a field patch and/or hidden flag to a surgery's view of a base item.

    Args:
        patch: field → value; None/blank clears the field back to inherit,
            absent fields are left as they are.
        hidden: True hides, False restores, None leaves the flag unchanged.

    Returns:
        The override as a dict, or None when the result is a no-op (the row
        was deleted or never created).

    Raises:
        NotFoundError: unknown surgery, or base item missing / deleted.
        ValidationError: malformed patch.
        ConflictError: a concurrent request created the same override first.
    """
    parsed = parse_patch(patch)
    get_tenant(tenant_id)
    base = get_live_base_item(base_item_id)

    row = _find_override(tenant_id, base_item_id)
    wants_row = bool(hidden) or any(v is not INHERIT for v in parsed.values())
    if row is None and not wants_row:
        return None

    if row is None:
        row = TenantOverride(tenant_id=tenant_id, base_item_id=base_item_id, is_hidden=False)
        db.session.add(row)

    for field_name, value in parsed.items():
        setattr(row, field_name, None if value is INHERIT else value)
    if hidden is not None:
        row.is_hidden = bool(hidden)
    row.updated_by = actor

    result = None
    if not row.is_hidden and not has_edits(row):
        if row in db.session.new:
            db.session.expunge(row)
        else:
            db.session.delete(row)
    else:
        result = row

    regrouped = 0
    if "age_group" in parsed:
        age_group = (result.age_group if result is not None else None) or base.age_group
        regrouped = review_service.discard_other_age_groups(tenant_id, base_item_id, age_group)

    commit_or_raise(
        "set_override", resource="TenantOverride", field="base_item_id", value=base_item_id,
    )
    cache = default_cache(cache)
    invalidator.on_tenant_layer_changed(cache, tenant_id)
    if regrouped:
        review_service.refresh_requires_review(tenant_id, cache)

    logger.info(
        "Override %s for base item %s",
        "saved" if result is not None else "cleared",
        base_item_id,
        extra={"tenant_id": tenant_id, "item_id": base_item_id, "event_type": "override_set"},
    )
    return result.to_dict() if result is not None else None


def hide_item(tenant_id: int, base_item_id: str, actor: str | None = None, cache=None):
    """Suppress a base item from the surgery's default view."""
    return set_override(tenant_id, base_item_id, hidden=True, actor=actor, cache=cache)


def unhide_item(tenant_id: int, base_item_id: str, actor: str | None = None, cache=None):
    """Restore a hidden base item. Field edits are kept."""
    return set_override(tenant_id, base_item_id, hidden=False, actor=actor, cache=cache)


def clear_override_fields(tenant_id: int, base_item_id: str, actor: str | None = None, cache=None):
    """Revert every edited field to the live base value. The hidden flag is kept."""
    return set_override(
        tenant_id, base_item_id, patch={f: None for f in CONTENT_FIELDS}, actor=actor, cache=cache,
    )


def clear_tenant_overrides(tenant_id: int, cache=None) -> int:
    """Delete every override of a surgery in one transaction.

    Returns:
        Number of rows deleted.
    """
    get_tenant(tenant_id)
    deleted = TenantOverride.query_for_tenant(tenant_id).delete(synchronize_session=False)
    commit_or_raise("clear_tenant_overrides")
    invalidator.on_tenant_layer_changed(default_cache(cache), tenant_id)
    logger.info("Cleared %d overrides", deleted,
                extra={"tenant_id": tenant_id, "event_type": "overrides_cleared"})
    return deleted


def list_hidden_items(tenant_id: int) -> list[dict]:
    """Hidden base items of a surgery, ordered by base name."""
    get_tenant(tenant_id)
    rows = db.session.execute(
        select(TenantOverride, BaseItem)
        .join(BaseItem, BaseItem.id == TenantOverride.base_item_id)
        .where(
            TenantOverride.tenant_id == tenant_id,
            TenantOverride.is_hidden.is_(True),
            BaseItem.is_deleted.is_(False),
        )
    ).all()
    hidden = [
        {
            "base_item_id": base.id,
            "name": base.name,
            "slug": base.slug,
            "age_group": base.age_group,
            "has_edits": has_edits(override),
            "updated_by": override.updated_by,
            "updated_at": override.updated_at.isoformat() if override.updated_at else None,
        }
        for override, base in rows
    ]
    hidden.sort(key=lambda h: (h["name"].casefold(), h["base_item_id"]))
    return hidden
