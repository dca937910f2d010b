"""
View-cache invalidator.

Called by every mutation path after its transaction has committed and
before the service returns, so a reader that starts after the write
returns never sees a stale view.

Tag selection:
    every mutation            → all-items
    tenant-local mutation     → tenant:{id}:enabled + tenant:{id}:with-disabled

Both visibility modes of the tenant are always dropped, even when only one
could have changed.

Failure policy: cache errors never undo committed data. Each tag is
retried VIEW_CACHE_INVALIDATION_RETRIES times; if a tag still cannot be
invalidated the cache is marked degraded and a flush is tried at once;
if that fails too, reads bypass the cache until a later flush succeeds.
"""

import logging
import time

from flask import current_app, has_app_context

from signposting.core.exceptions import CacheUnavailableError
from signposting.services.view_cache import GLOBAL_TAG, tenant_tags

logger = logging.getLogger(__name__)

DEFAULT_RETRIES = 3
_RETRY_BACKOFF_S = 0.05


def _max_attempts() -> int:
    if has_app_context():
        return max(1, int(current_app.config.get("VIEW_CACHE_INVALIDATION_RETRIES", DEFAULT_RETRIES)))
    return DEFAULT_RETRIES


def tags_for(tenant_id=None) -> list[str]:
    tags = [GLOBAL_TAG]
    if tenant_id is not None:
        tags.extend(tenant_tags(tenant_id))
    return tags


def invalidate(cache, tenant_id=None, *, event_type: str = "layer_changed") -> bool:
    """Invalidate the global tag and, when given, both tags of ``tenant_id``.

    Returns:
        True when every tag was invalidated; False when the cache had to be
        marked degraded.
    """
    if cache is None:
        return True

    attempts = _max_attempts()
    ok = True
    for tag in tags_for(tenant_id):
        for attempt in range(1, attempts + 1):
            try:
                cache.invalidate_tag(tag)
                break
            except CacheUnavailableError as exc:
                logger.warning(
                    "View cache invalidation failed (tag=%s attempt=%d/%d): %s",
                    tag, attempt, attempts, exc,
                    extra={"cache_tag": tag, "tenant_id": tenant_id, "event_type": event_type},
                )
                if attempt < attempts:
                    time.sleep(_RETRY_BACKOFF_S * attempt)
        else:
            ok = False

    if not ok:
        cache.mark_degraded()
        logger.error(
            "View cache marked degraded after failed invalidation",
            extra={"tenant_id": tenant_id, "event_type": event_type},
        )
        # A flush bumps the shared tag versions, so on Redis every worker
        # stops serving the stale entries, not just this one.
        cache.recover()
    return ok


# ── Mutation hooks ───────────────────────────────────────────────────────


def on_base_item_changed(cache) -> bool:
    """Base item created, edited, deleted or promoted into."""
    return invalidate(cache, event_type="base_item_changed")


def on_tenant_layer_changed(cache, tenant_id) -> bool:
    """Override, custom item or enablement row of one surgery changed."""
    return invalidate(cache, tenant_id, event_type="tenant_layer_changed")


def on_review_status_changed(cache, tenant_id) -> bool:
    return invalidate(cache, tenant_id, event_type="review_status_changed")


def on_promotion(cache, tenant_id) -> bool:
    return invalidate(cache, tenant_id, event_type="promotion")
