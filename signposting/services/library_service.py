"""
Library lifecycle service — base items, custom items and enablement.

Base items are global (superuser-only at the HTTP layer); every change
invalidates ``all-items``. Custom items and enablement rows belong to one
surgery; their changes invalidate that surgery's tags plus ``all-items``.

Deletes are soft. The rows that hang off a deleted item (overrides,
enablement, review statuses) are removed in the same transaction so no
surgery ever sees a review row for an item that no longer exists.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone

from sqlalchemy import select

from signposting.engine.partition import REVIEW_PENDING
from signposting.engine.patch import validate_content
from signposting.models import db
from signposting.models.library import (
    BaseItem,
    ItemEnablement,
    ReviewStatus,
    TenantCustomItem,
    TenantOverride,
)
from signposting.services import invalidator
from signposting.services.effective_view_service import default_cache
from signposting.services.helpers.scoped_queries import (
    get_live_base_item,
    get_scoped,
    get_tenant,
    resolve_item_family,
)
from signposting.services.helpers.unit_of_work import commit_or_raise, flush_or_raise
from signposting.services.review_service import refresh_requires_review
from signposting.utils.slug import unique_slug

logger = logging.getLogger(__name__)


def _now():
    return datetime.now(timezone.utc)


def base_slugs() -> set[str]:
    """Every base slug ever issued, deleted items included (the column is unique)."""
    return set(db.session.execute(select(BaseItem.slug)).scalars().all())


def _custom_slugs(tenant_id: int) -> set[str]:
    return set(db.session.execute(
        select(TenantCustomItem.slug).where(TenantCustomItem.tenant_id == tenant_id)
    ).scalars().all())


# ═════════════════════════════════════════════════════════════════════════════
# Base items
# ═════════════════════════════════════════════════════════════════════════════


def list_base_items(include_deleted: bool = False) -> list[dict]:
    stmt = select(BaseItem)
    if not include_deleted:
        stmt = stmt.where(BaseItem.is_deleted.is_(False))
    items = db.session.execute(stmt).scalars().all()
    return [b.to_dict() for b in sorted(items, key=lambda b: (b.name.casefold(), b.id))]


def get_base_item(base_item_id: str) -> dict:
    return get_live_base_item(base_item_id).to_dict()


def create_base_item(data: dict, actor: str | None = None, cache=None) -> dict:
    """Create a shared-library item with a unique slug derived from its name.

    Raises:
        ValidationError: invalid content.
        ConflictError: slug collision with a concurrent create.
    """
    content = validate_content(data)
    slug = unique_slug(data.get("slug") or content["name"], base_slugs())

    item = BaseItem(id=str(uuid.uuid4()), slug=slug, **content)
    db.session.add(item)
    commit_or_raise("create_base_item", resource="BaseItem", field="slug", value=slug)
    invalidator.on_base_item_changed(default_cache(cache))

    logger.info("Base item created: %s", slug,
                extra={"item_id": item.id, "event_type": "base_item_created"})
    return item.to_dict()


def _discard_stale_base_reviews(item: BaseItem) -> set:
    """Drop review rows no longer keyed to the age group each surgery sees."""
    overridden = {
        o.tenant_id: o.age_group
        for o in TenantOverride.query.filter_by(base_item_id=item.id)
        if o.age_group
    }
    stale = [
        r for r in ReviewStatus.query.filter_by(item_id=item.id).all()
        if r.age_group != overridden.get(r.tenant_id, item.age_group)
    ]
    for row in stale:
        db.session.delete(row)
    return {row.tenant_id for row in stale}


def update_base_item(base_item_id: str, data: dict, actor: str | None = None, cache=None) -> dict:
    """Partially update a base item. Surgeries without an override on a
    field see the new value on their next read."""
    item = get_live_base_item(base_item_id)
    content = validate_content(data, partial=True)
    for field_name, value in content.items():
        setattr(item, field_name, value)
    regrouped = _discard_stale_base_reviews(item) if "age_group" in content else set()
    commit_or_raise("update_base_item", resource="BaseItem", field="id", value=base_item_id)
    cache = default_cache(cache)
    invalidator.on_base_item_changed(cache)
    for tenant_id in sorted(regrouped):
        refresh_requires_review(tenant_id, cache)

    logger.info("Base item updated: %s", item.slug,
                extra={"item_id": item.id, "event_type": "base_item_updated"})
    return item.to_dict()


def delete_base_item(base_item_id: str, actor: str | None = None, cache=None) -> None:
    """Soft-delete a base item and drop every surgery's linked rows."""
    item = get_live_base_item(base_item_id)
    item.is_deleted = True
    TenantOverride.query.filter_by(base_item_id=base_item_id).delete(synchronize_session=False)
    ItemEnablement.query.filter_by(base_item_id=base_item_id).delete(synchronize_session=False)
    ReviewStatus.query.filter_by(item_id=base_item_id).delete(synchronize_session=False)
    commit_or_raise("delete_base_item")
    invalidator.on_base_item_changed(default_cache(cache))

    logger.info("Base item deleted: %s", item.slug,
                extra={"item_id": base_item_id, "event_type": "base_item_deleted"})


# ═════════════════════════════════════════════════════════════════════════════
# Custom items
# ═════════════════════════════════════════════════════════════════════════════


def list_custom_items(tenant_id: int) -> list[dict]:
    get_tenant(tenant_id)
    items = TenantCustomItem.query_for_tenant(tenant_id).filter_by(is_deleted=False).all()
    return [c.to_dict() for c in sorted(items, key=lambda c: (c.name.casefold(), c.id))]


def get_custom_item(tenant_id: int, custom_item_id: str) -> dict:
    return get_scoped(TenantCustomItem, custom_item_id, tenant_id=tenant_id).to_dict()


def create_custom_item(tenant_id: int, data: dict, actor: str | None = None, cache=None,
                       by_superuser: bool = False) -> dict:
    """Create a surgery-private item.

    A surgery admin's new item starts disabled with a PENDING review row so
    it is clinically reviewed before it is shown. A superuser acting for the
    surgery creates it enabled.
    """
    tenant = get_tenant(tenant_id)
    content = validate_content(data)
    slug = unique_slug(data.get("slug") or content["name"], _custom_slugs(tenant_id))

    item = TenantCustomItem(
        id=str(uuid.uuid4()), tenant_id=tenant_id, slug=slug, created_by=actor, **content,
    )
    db.session.add(item)
    # Layer rows below reference the item by FK; insert it first.
    flush_or_raise("create_custom_item", resource="TenantCustomItem", field="slug", value=slug)

    db.session.add(ItemEnablement(
        tenant_id=tenant_id,
        custom_item_id=item.id,
        is_enabled=by_superuser,
        last_edited_by=actor,
        last_edited_at=_now(),
    ))
    if not by_superuser:
        db.session.add(ReviewStatus(
            tenant_id=tenant_id,
            item_id=item.id,
            age_group=content["age_group"],
            status=REVIEW_PENDING,
        ))
    tenant.requires_clinical_review = True
    commit_or_raise("create_custom_item", resource="TenantCustomItem", field="slug", value=slug)
    invalidator.on_tenant_layer_changed(default_cache(cache), tenant_id)

    logger.info("Custom item created: %s", slug,
                extra={"tenant_id": tenant_id, "item_id": item.id, "event_type": "custom_item_created"})
    return item.to_dict()


def update_custom_item(tenant_id: int, custom_item_id: str, data: dict,
                       actor: str | None = None, cache=None) -> dict:
    """Partially update a custom item. Edited content goes back to PENDING review."""
    item = get_scoped(TenantCustomItem, custom_item_id, tenant_id=tenant_id)
    content = validate_content(data, partial=True)
    changed = {k: v for k, v in content.items() if getattr(item, k) != v}
    for field_name, value in changed.items():
        setattr(item, field_name, value)

    if changed:
        ReviewStatus.query_for_tenant(tenant_id).filter_by(item_id=item.id).delete(
            synchronize_session=False,
        )
        db.session.add(ReviewStatus(
            tenant_id=tenant_id, item_id=item.id, age_group=item.age_group, status=REVIEW_PENDING,
        ))

    commit_or_raise("update_custom_item", resource="TenantCustomItem", field="id", value=custom_item_id)
    if changed:
        cache = default_cache(cache)
        invalidator.on_tenant_layer_changed(cache, tenant_id)
        refresh_requires_review(tenant_id, cache)
        logger.info("Custom item updated: %s fields=%s", item.slug, sorted(changed),
                    extra={"tenant_id": tenant_id, "item_id": item.id, "event_type": "custom_item_updated"})
    return item.to_dict()


def delete_custom_item(tenant_id: int, custom_item_id: str, actor: str | None = None, cache=None) -> None:
    """Soft-delete a custom item with its enablement and review rows."""
    item = get_scoped(TenantCustomItem, custom_item_id, tenant_id=tenant_id)
    item.is_deleted = True
    ItemEnablement.query_for_tenant(tenant_id).filter_by(custom_item_id=item.id).delete(
        synchronize_session=False,
    )
    ReviewStatus.query_for_tenant(tenant_id).filter_by(item_id=item.id).delete(
        synchronize_session=False,
    )
    commit_or_raise("delete_custom_item")
    cache = default_cache(cache)
    invalidator.on_tenant_layer_changed(cache, tenant_id)
    refresh_requires_review(tenant_id, cache)

    logger.info("Custom item deleted: %s", item.slug,
                extra={"tenant_id": tenant_id, "item_id": item.id, "event_type": "custom_item_deleted"})


# ═════════════════════════════════════════════════════════════════════════════
# Enablement
# ═════════════════════════════════════════════════════════════════════════════


def set_item_enabled(tenant_id: int, item_id: str, enabled: bool,
                     actor: str | None = None, cache=None) -> dict:
    """Switch a base or custom item on or off for one surgery.

    Raises:
        NotFoundError: item is neither a live base item nor one of the
            surgery's live custom items.
    """
    get_tenant(tenant_id)
    family, _ = resolve_item_family(tenant_id, item_id)
    column = "base_item_id" if family == "base" else "custom_item_id"

    row = ItemEnablement.query_for_tenant(tenant_id).filter_by(**{column: item_id}).first()
    if row is None:
        row = ItemEnablement(tenant_id=tenant_id, **{column: item_id})
        db.session.add(row)
    row.is_enabled = bool(enabled)
    row.last_edited_by = actor
    row.last_edited_at = _now()

    commit_or_raise("set_item_enabled", resource="ItemEnablement", field=column, value=item_id)
    invalidator.on_tenant_layer_changed(default_cache(cache), tenant_id)

    logger.info("Item %s %s", item_id, "enabled" if enabled else "disabled",
                extra={"tenant_id": tenant_id, "item_id": item_id, "event_type": "item_enablement_set"})
    return row.to_dict()
