"""
Promotion — moves a surgery's custom item into the shared library.

All of the following happen in one transaction:

    1. clone the custom content into a new BaseItem (fresh slug from its name)
    2. re-point the promoting surgery's enablement row at the new base id,
       keeping its enabled flag
    3. re-key the surgery's review rows to the new base id, keeping state
    4. retire the custom row (is_deleted=True, promoted_to_id=<new id>)

No reader can observe both items or neither: the custom row stops being
live in the same commit that makes the base row live. After commit the
global tag and the promoting surgery's tags are invalidated.

Only CUSTOM → BASE is supported.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone

from signposting.core.exceptions import ConflictError, ForbiddenError, NotFoundError
from signposting.engine.types import CONTENT_FIELDS
from signposting.models import db
from signposting.models.library import BaseItem, ItemEnablement, ReviewStatus, TenantCustomItem
from signposting.services import invalidator
from signposting.services.effective_view_service import default_cache
from signposting.services.helpers.scoped_queries import get_tenant
from signposting.services.helpers.unit_of_work import commit_or_raise, flush_or_raise
from signposting.services.library_service import base_slugs
from signposting.utils.slug import unique_slug

logger = logging.getLogger(__name__)


def promote(custom_item_id: str, caller, cache=None) -> dict:
    """Promote a custom item to a base item.

    Args:
        custom_item_id: The TenantCustomItem to promote.
        caller: CallerIdentity. Superusers may promote any surgery's item;
            anyone else only items of ``caller.tenant_id``.

    Returns:
        The new BaseItem as a dict.

    Raises:
        NotFoundError: no such custom item within the caller's scope.
        ConflictError: the item was already promoted.
        ForbiddenError: the caller may not promote at all.
    """
    if not caller.is_superuser and not caller.admin_tenant_ids and caller.tenant_id is None:
        raise ForbiddenError("Promotion requires a tenant or superuser scope")

    row = db.session.get(TenantCustomItem, custom_item_id)
    if row is None or not caller.can_promote(row.tenant_id):
        # Out-of-scope items look exactly like missing ones.
        raise NotFoundError(resource="TenantCustomItem", resource_id=custom_item_id)
    if row.promoted_to_id is not None:
        raise ConflictError("TenantCustomItem", "promoted_to_id", row.promoted_to_id)
    if row.is_deleted:
        raise NotFoundError(resource="TenantCustomItem", resource_id=custom_item_id)

    tenant_id = row.tenant_id
    get_tenant(tenant_id)

    slug = unique_slug(row.name, base_slugs())
    base = BaseItem(
        id=str(uuid.uuid4()),
        slug=slug,
        **{f: getattr(row, f) for f in CONTENT_FIELDS},
    )
    db.session.add(base)
    flush_or_raise("promote", resource="BaseItem", field="slug", value=slug)

    enablement = ItemEnablement.query_for_tenant(tenant_id).filter_by(
        custom_item_id=row.id,
    ).first()
    if enablement is not None:
        enablement.custom_item_id = None
        enablement.base_item_id = base.id
        enablement.last_edited_by = caller.caller_id
        enablement.last_edited_at = datetime.now(timezone.utc)

    re_keyed = ReviewStatus.query_for_tenant(tenant_id).filter_by(item_id=row.id).update(
        {ReviewStatus.item_id: base.id}, synchronize_session=False,
    )

    row.is_deleted = True
    row.promoted_to_id = base.id

    commit_or_raise("promote", resource="BaseItem", field="slug", value=slug)
    invalidator.on_promotion(default_cache(cache), tenant_id)

    logger.info(
        "Promoted custom item %s to base item %s (review rows re-keyed: %d)",
        custom_item_id, base.id, re_keyed,
        extra={"tenant_id": tenant_id, "item_id": base.id, "event_type": "item_promoted"},
    )
    return base.to_dict()
