"""
Scoped lookup helpers.

Every get-by-id in the services goes through these helpers instead of
``db.session.get(Model, pk)``. A custom item, enablement row or review row
always carries a tenant scope; looking one up without it would let one
surgery read or mutate another surgery's content.

Cross-tenant access is indistinguishable from a missing record: both raise
NotFoundError → HTTP 404.

Usage:
    tenant = get_tenant(tenant_id)
    base = get_live_base_item(base_item_id)
    custom = get_scoped(TenantCustomItem, custom_id, tenant_id=tenant_id)
"""

import logging

from sqlalchemy import select

from signposting.core.exceptions import NotFoundError
from signposting.models import db
from signposting.models.library import BaseItem, TenantCustomItem
from signposting.models.tenant import Tenant

logger = logging.getLogger(__name__)


def get_scoped(model, pk, *, tenant_id: int, include_deleted: bool = False):
    """Fetch one tenant-owned row by primary key.

    Soft-deleted rows are treated as missing unless ``include_deleted``.

    Raises:
        ValueError: tenant_id is None or the model has no tenant_id column.
        NotFoundError: the row is absent, deleted, or owned by another tenant.
    """
    if tenant_id is None:
        raise ValueError(
            f"{model.__name__} id={pk} requires a tenant scope. "
            "Unscoped lookups are forbidden."
        )
    if not hasattr(model, "tenant_id"):
        raise ValueError(f"{model.__name__} has no tenant_id column; refusing scoped lookup")

    stmt = select(model).where(model.id == pk, model.tenant_id == tenant_id)
    if not include_deleted and hasattr(model, "is_deleted"):
        stmt = stmt.where(model.is_deleted.is_(False))

    result = db.session.execute(stmt).scalar_one_or_none()
    if result is None:
        logger.debug("get_scoped: %s id=%s not found for tenant=%s", model.__name__, pk, tenant_id)
        raise NotFoundError(resource=model.__name__, resource_id=pk)
    return result


def get_scoped_or_none(model, pk, *, tenant_id: int, include_deleted: bool = False):
    """Same as get_scoped but returns None instead of raising NotFoundError."""
    try:
        return get_scoped(model, pk, tenant_id=tenant_id, include_deleted=include_deleted)
    except NotFoundError:
        return None


def get_tenant(tenant_id) -> Tenant:
    tenant = db.session.get(Tenant, tenant_id)
    if tenant is None or not tenant.is_active:
        raise NotFoundError(resource="Tenant", resource_id=tenant_id)
    return tenant


def get_live_base_item(base_item_id) -> BaseItem:
    """Base items are global; only the soft-delete filter applies."""
    item = db.session.execute(
        select(BaseItem).where(BaseItem.id == base_item_id, BaseItem.is_deleted.is_(False))
    ).scalar_one_or_none()
    if item is None:
        raise NotFoundError(resource="BaseItem", resource_id=base_item_id)
    return item


def resolve_item_family(tenant_id: int, item_id: str):
    """Classify ``item_id`` as a live base item or a custom item of this tenant.

    Returns:
        ("base", BaseItem) or ("custom", TenantCustomItem).

    Raises:
        NotFoundError: neither family has a live row in scope.
    """
    base = db.session.execute(
        select(BaseItem).where(BaseItem.id == item_id, BaseItem.is_deleted.is_(False))
    ).scalar_one_or_none()
    if base is not None:
        return "base", base
    custom = get_scoped_or_none(TenantCustomItem, item_id, tenant_id=tenant_id)
    if custom is not None:
        return "custom", custom
    raise NotFoundError(resource="Item", resource_id=item_id, tenant_id=tenant_id)
