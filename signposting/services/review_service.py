"""
Clinical review service.

Review rows are keyed by (surgery, item id, age group) and read lazily:
an item without a row is PENDING. Partitions are always computed over the
include-disabled view so that items a surgery has switched off still need
sign-off before they can be switched back on.

Surgery sign-off:
    requires_clinical_review  True while anything is pending; recomputed
                              after every review mutation
    complete_review           stamps last_clinical_review_at / reviewer,
                              rejected while anything is pending
    request_rereview          every row back to PENDING, flag set again
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from signposting.core.exceptions import ValidationError
from signposting.engine.partition import (
    REVIEW_APPROVED,
    REVIEW_CHANGES_REQUIRED,
    REVIEW_PENDING,
    REVIEW_STATES,
    ReviewPartition,
    partition,
    review_key,
)
from signposting.engine.patch import AGE_GROUPS
from signposting.models import db
from signposting.models.library import ReviewStatus
from signposting.services import invalidator
from signposting.services.effective_view_service import default_cache, get_effective_item, resolve
from signposting.services.helpers.scoped_queries import get_tenant
from signposting.services.helpers.unit_of_work import commit_or_raise

logger = logging.getLogger(__name__)

REVIEW_NOTE_MAX = 1000


def _now():
    return datetime.now(timezone.utc)


def _status_map(tenant_id: int) -> dict:
    return {
        review_key(r.item_id, r.age_group): r.status
        for r in ReviewStatus.query_for_tenant(tenant_id).all()
    }


def _find_row(tenant_id: int, item_id: str, age_group: str):
    return ReviewStatus.query_for_tenant(tenant_id).filter_by(
        item_id=item_id, age_group=age_group,
    ).first()


def discard_other_age_groups(tenant_id: int, item_id: str, age_group: str) -> int:
    """Delete an item's review rows keyed to any age group but ``age_group``.

    Runs inside the caller's transaction; the caller commits. The item reads
    as PENDING for its new age group until it is reviewed again.
    """
    return ReviewStatus.query_for_tenant(tenant_id).filter(
        ReviewStatus.item_id == item_id,
        ReviewStatus.age_group != age_group,
    ).delete(synchronize_session=False)


# ── Partition / summary ──────────────────────────────────────────────────


def get_review_partition(tenant_id: int, cache=None, search: str | None = None) -> ReviewPartition:
    """Partition the surgery's include-disabled view by review state."""
    items = resolve(tenant_id, include_disabled=True, cache=cache)
    if search and search.strip():
        needle = search.strip().casefold()
        items = [i for i in items if needle in i.name.casefold()]
    return partition(items, _status_map(tenant_id))


def refresh_requires_review(tenant_id: int, cache=None) -> bool:
    """Recompute ``requires_clinical_review`` from the pending count."""
    tenant = get_tenant(tenant_id)
    pending = len(get_review_partition(tenant_id, cache).pending)
    required = pending > 0
    if tenant.requires_clinical_review != required:
        tenant.requires_clinical_review = required
        commit_or_raise("refresh_requires_review")
    return required


def get_review_summary(tenant_id: int, cache=None) -> dict:
    tenant = get_tenant(tenant_id)
    result = get_review_partition(tenant_id, cache)
    required = len(result.pending) > 0
    if tenant.requires_clinical_review != required:
        tenant.requires_clinical_review = required
        commit_or_raise("get_review_summary")
    return {
        "tenant_id": tenant_id,
        **result.to_dict(include_items=True),
        "requires_clinical_review": tenant.requires_clinical_review,
        "last_clinical_review_at": (
            tenant.last_clinical_review_at.isoformat() if tenant.last_clinical_review_at else None
        ),
        "last_clinical_reviewer_id": tenant.last_clinical_reviewer_id,
    }


# ── Mutations ────────────────────────────────────────────────────────────


def set_review_status(
    tenant_id: int,
    item_id: str,
    status: str,
    age_group: str | None = None,
    note: str | None = None,
    actor: str | None = None,
    cache=None,
) -> dict:
    """Set one item's review state for a surgery.

    ``age_group`` defaults to the item's effective age group. The note is
    only stored for CHANGES_REQUIRED and cleared on any other transition.

    Raises:
        ValidationError: unknown status / age group, or note too long.
        NotFoundError: item not in the surgery's include-disabled view.
    """
    if status not in REVIEW_STATES:
        raise ValidationError(
            f"Invalid review status '{status}'",
            details={"status": f"must be one of: {', '.join(REVIEW_STATES)}"},
        )
    if note is not None and len(note) > REVIEW_NOTE_MAX:
        raise ValidationError("Review note too long", details={"note": f"must be ≤ {REVIEW_NOTE_MAX} characters"})

    cache = default_cache(cache)
    item = get_effective_item(tenant_id, item_id, include_disabled=True, cache=cache)
    age_group = age_group or item.age_group
    if age_group not in AGE_GROUPS:
        raise ValidationError(
            f"Invalid age group '{age_group}'",
            details={"age_group": f"must be one of: {', '.join(AGE_GROUPS)}"},
        )

    row = _find_row(tenant_id, item_id, age_group)
    if row is None:
        row = ReviewStatus(tenant_id=tenant_id, item_id=item_id, age_group=age_group)
        db.session.add(row)
    row.status = status
    row.review_note = (note or None) if status == REVIEW_CHANGES_REQUIRED else None
    row.last_reviewed_at = _now()
    row.last_reviewed_by = actor

    commit_or_raise("set_review_status", resource="ReviewStatus", field="item_id", value=item_id)
    invalidator.on_review_status_changed(cache, tenant_id)
    refresh_requires_review(tenant_id, cache)

    logger.info(
        "Review status %s for item %s (%s)", status, item_id, age_group,
        extra={"tenant_id": tenant_id, "item_id": item_id, "event_type": "review_status_set"},
    )
    return row.to_dict()


def reset_all_reviews(tenant_id: int, actor: str | None = None, cache=None) -> int:
    """Move every APPROVED / CHANGES_REQUIRED row back to PENDING.

    Returns:
        Number of rows reset.
    """
    get_tenant(tenant_id)
    cache = default_cache(cache)
    rows = ReviewStatus.query_for_tenant(tenant_id).filter(
        ReviewStatus.status.in_([REVIEW_APPROVED, REVIEW_CHANGES_REQUIRED])
    ).all()
    now = _now()
    for row in rows:
        row.status = REVIEW_PENDING
        row.review_note = None
        row.last_reviewed_at = now
        row.last_reviewed_by = actor
    commit_or_raise("reset_all_reviews")
    invalidator.on_review_status_changed(cache, tenant_id)
    refresh_requires_review(tenant_id, cache)
    logger.info("Reset %d review rows", len(rows),
                extra={"tenant_id": tenant_id, "event_type": "reviews_reset"})
    return len(rows)


def bulk_approve(tenant_id: int, actor: str | None = None, search: str | None = None, cache=None) -> int:
    """Approve every pending item (optionally filtered by name) in one transaction.

    Missing rows are created as APPROVED.

    Returns:
        Number of items approved.
    """
    cache = default_cache(cache)
    pending = get_review_partition(tenant_id, cache, search=search).pending
    if not pending:
        return 0

    existing = {
        review_key(r.item_id, r.age_group): r
        for r in ReviewStatus.query_for_tenant(tenant_id).all()
    }
    now = _now()
    for item in pending:
        row = existing.get(review_key(item.id, item.age_group))
        if row is None:
            row = ReviewStatus(tenant_id=tenant_id, item_id=item.id, age_group=item.age_group)
            db.session.add(row)
        row.status = REVIEW_APPROVED
        row.review_note = None
        row.last_reviewed_at = now
        row.last_reviewed_by = actor

    commit_or_raise("bulk_approve", resource="ReviewStatus", field="item_id")
    invalidator.on_review_status_changed(cache, tenant_id)
    refresh_requires_review(tenant_id, cache)
    logger.info("Bulk-approved %d items", len(pending),
                extra={"tenant_id": tenant_id, "event_type": "reviews_bulk_approved"})
    return len(pending)


def complete_review(tenant_id: int, actor: str | None = None, cache=None) -> dict:
    """Record the surgery's clinical sign-off.

    Raises:
        ValidationError: items are still pending (details carry pending_count).
    """
    tenant = get_tenant(tenant_id)
    pending = len(get_review_partition(tenant_id, cache).pending)
    if pending:
        raise ValidationError(
            f"Cannot complete review: {pending} item(s) still pending",
            details={"pending_count": pending},
        )
    tenant.requires_clinical_review = False
    tenant.last_clinical_review_at = _now()
    tenant.last_clinical_reviewer_id = actor
    commit_or_raise("complete_review")
    logger.info("Clinical review completed", extra={"tenant_id": tenant_id, "event_type": "review_completed"})
    return tenant.to_dict()


def request_rereview(tenant_id: int, actor: str | None = None, cache=None) -> int:
    """Send every reviewed item back to PENDING and flag the surgery.

    The last completed sign-off is kept as history.
    """
    tenant = get_tenant(tenant_id)
    cache = default_cache(cache)
    rows = ReviewStatus.query_for_tenant(tenant_id).all()
    for row in rows:
        row.status = REVIEW_PENDING
        row.review_note = None
        row.last_reviewed_at = None
        row.last_reviewed_by = None
    tenant.requires_clinical_review = True
    commit_or_raise("request_rereview")
    invalidator.on_review_status_changed(cache, tenant_id)
    logger.info("Re-review requested by %s", actor or "unknown",
                extra={"tenant_id": tenant_id, "event_type": "rereview_requested"})
    return len(rows)
