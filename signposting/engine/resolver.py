"""
Effective-view resolver.

Merges one surgery's layers into the ordered list of items it sees:

    live BaseItems  ──► apply TenantOverride (field by field) ──┐
                                                                 ├──► sort ──► [EffectiveItem]
    live TenantCustomItems (never overridable) ─────────────────┘

Visibility:
    - hidden override or disabled enablement row → dropped from the default
      view, kept with is_enabled=False when include_disabled=True
    - overrides whose base item is missing are ignored (orphans)

Ordering is (name.casefold(), id) so cached and freshly computed lists are
identical. The module does no I/O; callers pass a LayerSnapshot.
"""

from __future__ import annotations

import logging

from signposting.engine.patch import is_set
from signposting.engine.types import (
    SOURCE_BASE,
    SOURCE_CUSTOM,
    SOURCE_OVERRIDE,
    CONTENT_FIELDS,
    EffectiveItem,
    LayerSnapshot,
)

logger = logging.getLogger(__name__)


def _prefer_override(base_value, override_value):
    return override_value if is_set(override_value) else base_value


# One entry per content field, in CONTENT_FIELDS order.
FIELD_MERGERS = {
    "name": _prefer_override,
    "age_group": _prefer_override,
    "brief_instruction": _prefer_override,
    "instructions": _prefer_override,
    "instructions_json": _prefer_override,
    "instructions_html": _prefer_override,
    "highlighted_text": _prefer_override,
    "link_to_page": _prefer_override,
}

if tuple(FIELD_MERGERS) != CONTENT_FIELDS:
    raise RuntimeError("FIELD_MERGERS must cover CONTENT_FIELDS exactly")


def merge_content(base, override=None) -> dict:
    """Return the merged content dict of a base row and an optional override row."""
    merged = {}
    for field_name, merge in FIELD_MERGERS.items():
        base_value = getattr(base, field_name)
        if override is None:
            merged[field_name] = base_value
        else:
            merged[field_name] = merge(base_value, getattr(override, field_name, None))
    return merged


def has_edits(override) -> bool:
    """True when any content field of the override carries a value."""
    return any(is_set(getattr(override, f, None)) for f in FIELD_MERGERS)


def orphaned_override_ids(snapshot: LayerSnapshot) -> list[str]:
    """Base ids referenced by overrides that no longer resolve to a live base item."""
    live = {b.id for b in snapshot.base_items}
    return sorted(bid for bid in snapshot.overrides if bid not in live)


def resolve_items(snapshot: LayerSnapshot, include_disabled: bool = False) -> list[EffectiveItem]:
    """Resolve a layer snapshot into the surgery's ordered effective view."""
    items: list[EffectiveItem] = []

    for base in snapshot.base_items:
        override = snapshot.overrides.get(base.id)
        hidden = bool(override is not None and override.is_hidden)
        enabled = snapshot.enablement.get(base.id, True)
        visible = enabled and not hidden
        if not visible and not include_disabled:
            continue

        edited = override is not None and has_edits(override)
        items.append(EffectiveItem(
            id=base.id,
            slug=base.slug,
            source=SOURCE_OVERRIDE if edited else SOURCE_BASE,
            base_item_id=base.id,
            is_hidden=hidden,
            is_enabled=visible,
            **merge_content(base, override if edited else None),
        ))

    for custom in snapshot.custom_items:
        enabled = snapshot.enablement.get(custom.id, True)
        if not enabled and not include_disabled:
            continue
        items.append(EffectiveItem(
            id=custom.id,
            slug=custom.slug,
            source=SOURCE_CUSTOM,
            is_enabled=enabled,
            **merge_content(custom),
        ))

    orphans = orphaned_override_ids(snapshot)
    if orphans:
        logger.debug("Ignoring %d orphaned overrides: %s", len(orphans), orphans)

    items.sort(key=lambda item: item.sort_key)
    return items
