"""
Effective-view service — the cache-checked read path.

    resolve(tenant_id, include_disabled)
        cache hit  → cached EffectiveItem list
        cache miss → capture tag stamp → read layers → resolve_items → put

Plus the read helpers built on the resolved view: lookups by id / slug /
name, A-Z search, and the library-status breakdown used by the admin
library screen.

Cache failures are logged and the view is recomputed; the cache is never
required for a correct answer. Storage failures raise
StorageUnavailableError (the blueprint retries reads once).
"""

from __future__ import annotations

import logging
import time

from flask import current_app, has_app_context
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from signposting.core.exceptions import CacheUnavailableError, NotFoundError, StorageUnavailableError
from signposting.engine.resolver import orphaned_override_ids, resolve_items
from signposting.engine.types import SOURCE_CUSTOM, SOURCE_OVERRIDE, LayerSnapshot
from signposting.models import db
from signposting.models.library import BaseItem, ItemEnablement, TenantCustomItem, TenantOverride
from signposting.services.helpers.scoped_queries import get_tenant

logger = logging.getLogger(__name__)

STATUS_BASE = "BASE"
STATUS_MODIFIED = "MODIFIED"
STATUS_LOCAL_ONLY = "LOCAL_ONLY"
STATUS_DISABLED = "DISABLED"


def default_cache(cache=None):
    """Return ``cache`` or, inside an app context, the app's view cache."""
    if cache is not None:
        return cache
    if has_app_context():
        return current_app.extensions.get("view_cache")
    return None


# ── Layer read ───────────────────────────────────────────────────────────


def load_snapshot(tenant_id: int) -> LayerSnapshot:
    """Read every layer row that can contribute to ``tenant_id``'s view."""
    try:
        base_items = db.session.execute(
            select(BaseItem).where(BaseItem.is_deleted.is_(False))
        ).scalars().all()
        custom_items = db.session.execute(
            select(TenantCustomItem).where(
                TenantCustomItem.tenant_id == tenant_id,
                TenantCustomItem.is_deleted.is_(False),
            )
        ).scalars().all()
        overrides = TenantOverride.query_for_tenant(tenant_id).all()
        enablement = ItemEnablement.query_for_tenant(tenant_id).all()
    except OperationalError as exc:
        db.session.rollback()
        raise StorageUnavailableError("load_snapshot", exc) from exc

    return LayerSnapshot(
        base_items=list(base_items),
        custom_items=list(custom_items),
        overrides={o.base_item_id: o for o in overrides},
        enablement={e.item_id: e.is_enabled for e in enablement},
    )


def _prune_orphans(tenant_id: int, snapshot: LayerSnapshot) -> int:
    """Delete overrides whose base item is gone. Failures are logged only."""
    orphans = orphaned_override_ids(snapshot)
    if not orphans:
        return 0
    try:
        TenantOverride.query_for_tenant(tenant_id).filter(
            TenantOverride.base_item_id.in_(orphans)
        ).delete(synchronize_session=False)
        db.session.commit()
    except OperationalError as exc:
        db.session.rollback()
        logger.warning("Orphaned override cleanup failed for tenant=%s: %s", tenant_id, exc,
                       extra={"tenant_id": tenant_id})
        return 0
    logger.info("Pruned %d orphaned overrides", len(orphans),
                extra={"tenant_id": tenant_id, "event_type": "orphan_pruned"})
    return len(orphans)


# ── Resolve ──────────────────────────────────────────────────────────────


def resolve(tenant_id: int, include_disabled: bool = False, cache=None) -> list:
    """Return the ordered EffectiveItem list for a surgery.

    Raises:
        NotFoundError: unknown or inactive surgery (checked on a cache miss).
        StorageUnavailableError: the layer store could not be read.
    """
    cache = default_cache(cache)
    usable = cache is not None and cache.recover()
    stamp = None

    if usable:
        try:
            items, hit = cache.get(tenant_id, include_disabled)
            if hit:
                return items
            stamp = cache.current_stamp(tenant_id, include_disabled)
        except CacheUnavailableError as exc:
            logger.warning("View cache read failed, recomputing: %s", exc,
                           extra={"tenant_id": tenant_id})
            # Invalidations may have been lost while the backend was away.
            cache.mark_degraded()
            usable = False

    started = time.perf_counter()
    get_tenant(tenant_id)
    snapshot = load_snapshot(tenant_id)
    items = resolve_items(snapshot, include_disabled=include_disabled)
    _prune_orphans(tenant_id, snapshot)

    logger.debug(
        "Resolved view tenant=%s include_disabled=%s items=%d",
        tenant_id, include_disabled, len(items),
        extra={"tenant_id": tenant_id,
               "duration_ms": (time.perf_counter() - started) * 1000},
    )

    if usable and stamp is not None:
        try:
            cache.put(tenant_id, include_disabled, items, stamp=stamp)
        except CacheUnavailableError as exc:
            logger.warning("View cache write failed: %s", exc, extra={"tenant_id": tenant_id})
    return items


# ── Lookups ──────────────────────────────────────────────────────────────


def get_effective_item(tenant_id: int, item_id: str, include_disabled: bool = False, cache=None):
    for item in resolve(tenant_id, include_disabled, cache):
        if item.id == item_id:
            return item
    raise NotFoundError(resource="EffectiveItem", resource_id=item_id, tenant_id=tenant_id)


def get_effective_item_by_slug(tenant_id: int, slug: str, include_disabled: bool = False, cache=None):
    for item in resolve(tenant_id, include_disabled, cache):
        if item.slug == slug:
            return item
    raise NotFoundError(resource="EffectiveItem", resource_id=slug, tenant_id=tenant_id)


def get_effective_item_by_name(tenant_id: int, name: str, include_disabled: bool = False, cache=None):
    """Case-insensitive match on the effective (possibly overridden) name."""
    wanted = (name or "").strip().casefold()
    for item in resolve(tenant_id, include_disabled, cache):
        if item.name.casefold() == wanted:
            return item
    raise NotFoundError(resource="EffectiveItem", resource_id=name, tenant_id=tenant_id)


def search_items(tenant_id: int, letter: str | None = None, q: str | None = None,
                 include_disabled: bool = False, cache=None) -> list:
    """Filter the resolved view by first letter and/or free text.

    ``letter="#"`` matches names that do not start with a letter. ``q`` is a
    case-insensitive substring match on name and brief instruction.
    """
    items = resolve(tenant_id, include_disabled, cache)
    if letter:
        letter = letter.strip()
        if letter == "#":
            items = [i for i in items if not i.name[:1].isalpha()]
        else:
            initial = letter[:1].casefold()
            items = [i for i in items if i.name[:1].casefold() == initial]
    if q and q.strip():
        needle = q.strip().casefold()
        items = [
            i for i in items
            if needle in i.name.casefold() or needle in (i.brief_instruction or "").casefold()
        ]
    return items


# ── Library status ───────────────────────────────────────────────────────


def _library_status_of(item) -> str:
    if not item.is_enabled:
        return STATUS_DISABLED
    if item.source == SOURCE_CUSTOM:
        return STATUS_LOCAL_ONLY
    if item.source == SOURCE_OVERRIDE:
        return STATUS_MODIFIED
    return STATUS_BASE


def library_status(tenant_id: int, cache=None) -> dict:
    """Admin library breakdown.

    Returns:
        {
          "in_use":      every non-hidden item with BASE / MODIFIED /
                         LOCAL_ONLY / DISABLED status,
          "available":   hidden base items that can be restored,
          "custom_only": custom items with no enablement row yet,
        }
    """
    items = resolve(tenant_id, include_disabled=True, cache=cache)
    rows = {e.item_id: e for e in ItemEnablement.query_for_tenant(tenant_id).all()}

    in_use = []
    available = []
    custom_only = []
    for item in items:
        if item.is_hidden:
            available.append({"base_item_id": item.base_item_id, "name": item.name})
            continue
        row = rows.get(item.id)
        status = _library_status_of(item)
        in_use.append({
            "id": item.id,
            "name": item.name,
            "slug": item.slug,
            "age_group": item.age_group,
            "source": item.source,
            "status": status,
            "can_revert_to_base": status == STATUS_MODIFIED,
            "last_edited_at": row.last_edited_at.isoformat() if row and row.last_edited_at else None,
            "last_edited_by": row.last_edited_by if row else None,
        })
        if item.source == SOURCE_CUSTOM and row is None:
            custom_only.append({"custom_item_id": item.id, "name": item.name})

    return {"in_use": in_use, "available": available, "custom_only": custom_only}
