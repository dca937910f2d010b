"""
Tests: read-after-write cache correctness and degraded mode.

Every test reads through the cache first so the following write has a
populated entry to invalidate.
"""

import json

import fakeredis
import pytest

from signposting.core.exceptions import CacheUnavailableError
from signposting.services import effective_view_service, invalidator, library_service, override_service
from signposting.services.view_cache import MemoryViewCache, RedisViewCache


class _FlakyCache(MemoryViewCache):
    """Memory cache whose invalidation (and optionally flush) can be made to fail."""

    def __init__(self):
        super().__init__(ttl_seconds=60)
        self.fail_invalidate = False
        self.fail_flush = False
        self.invalidate_attempts = 0

    def _invalidate(self, tag):
        self.invalidate_attempts += 1
        if self.fail_invalidate:
            raise CacheUnavailableError("invalidate")
        return super()._invalidate(tag)

    def _flush(self):
        if self.fail_flush:
            raise CacheUnavailableError("flush")
        super()._flush()


@pytest.fixture(autouse=True)
def _no_backoff(monkeypatch):
    monkeypatch.setattr(invalidator, "_RETRY_BACKOFF_S", 0)


# ── Read path ────────────────────────────────────────────────────────────────


def test_second_read_is_served_from_cache(tenant, make_base, view_cache):
    make_base("Earache")

    first = effective_view_service.resolve(tenant.id)
    cached, hit = view_cache.get(tenant.id, False)

    assert hit is True
    assert cached == first


def test_cached_and_fresh_views_are_byte_identical(tenant, make_base, make_custom, view_cache):
    make_base("Cough")
    make_base("earache")
    make_custom(tenant.id, "Back pain")

    cached = effective_view_service.resolve(tenant.id, include_disabled=True)
    view_cache.flush()
    fresh = effective_view_service.resolve(tenant.id, include_disabled=True)

    dump = lambda items: json.dumps([i.to_dict() for i in items], sort_keys=True)  # noqa: E731
    assert dump(cached) == dump(fresh)


# ── Read-after-write ─────────────────────────────────────────────────────────


def test_tenant_override_is_visible_on_next_read(tenant, make_base):
    base = make_base("Earache")
    assert effective_view_service.resolve(tenant.id)[0].name == "Earache"

    override_service.set_override(tenant.id, base["id"], {"name": "Ear pain"})

    assert effective_view_service.resolve(tenant.id)[0].name == "Ear pain"


def test_base_edit_is_visible_to_every_tenant(tenant, other_tenant, make_base):
    base = make_base("Earache", brief_instruction="See GP")
    effective_view_service.resolve(tenant.id)
    effective_view_service.resolve(other_tenant.id, include_disabled=True)

    library_service.update_base_item(base["id"], {"brief_instruction": "Pharmacy first"})

    assert effective_view_service.resolve(tenant.id)[0].brief_instruction == "Pharmacy first"
    assert effective_view_service.resolve(other_tenant.id, include_disabled=True)[0].brief_instruction == "Pharmacy first"


def test_hide_invalidates_both_visibility_modes(tenant, make_base):
    base = make_base("Earache")
    effective_view_service.resolve(tenant.id)
    effective_view_service.resolve(tenant.id, include_disabled=True)

    override_service.hide_item(tenant.id, base["id"])

    assert effective_view_service.resolve(tenant.id) == []
    full = effective_view_service.resolve(tenant.id, include_disabled=True)
    assert full[0].is_hidden is True


def test_enablement_toggle_is_visible_on_next_read(tenant, make_base):
    base = make_base("Earache")
    effective_view_service.resolve(tenant.id)

    library_service.set_item_enabled(tenant.id, base["id"], False)

    assert effective_view_service.resolve(tenant.id) == []


# ── Degraded mode ────────────────────────────────────────────────────────────


def test_failed_invalidation_is_retried_then_flushes_the_cache(app, tenant, make_base):
    cache = _FlakyCache()
    base = make_base("Earache")
    effective_view_service.resolve(tenant.id, cache=cache)
    cache.fail_invalidate = True

    override_service.set_override(tenant.id, base["id"], {"name": "Ear pain"}, cache=cache)

    retries = app.config["VIEW_CACHE_INVALIDATION_RETRIES"]
    assert cache.invalidate_attempts == 3 * retries  # all-items + two tenant tags
    assert cache.degraded is False
    assert cache.get(tenant.id, False)[1] is False
    assert effective_view_service.resolve(tenant.id, cache=cache)[0].name == "Ear pain"


def test_degraded_cache_is_bypassed_until_flush_succeeds(tenant, make_base):
    cache = _FlakyCache()
    base = make_base("Earache")
    effective_view_service.resolve(tenant.id, cache=cache)
    cache.fail_invalidate = True
    cache.fail_flush = True

    override_service.set_override(tenant.id, base["id"], {"name": "Ear pain"}, cache=cache)

    # Stale entry is still stored but must not be served.
    assert effective_view_service.resolve(tenant.id, cache=cache)[0].name == "Ear pain"
    assert cache.degraded is True

    cache.fail_invalidate = False
    cache.fail_flush = False
    assert effective_view_service.resolve(tenant.id, cache=cache)[0].name == "Ear pain"
    assert cache.degraded is False
    assert cache.get(tenant.id, False)[1] is True


def test_write_is_committed_even_when_invalidation_fails(tenant, make_base):
    cache = _FlakyCache()
    base = make_base("Earache")
    cache.fail_invalidate = True
    cache.fail_flush = True

    override_service.set_override(tenant.id, base["id"], {"name": "Ear pain"}, cache=cache)

    assert effective_view_service.resolve(tenant.id, cache=None)[0].name == "Ear pain"


# ── Shared Redis cache ───────────────────────────────────────────────────────


class _FlakyRedisCache(RedisViewCache):
    """One worker's view of a shared Redis whose invalidations fail."""

    def _invalidate(self, tag):
        raise CacheUnavailableError("invalidate")


def test_failed_invalidation_on_one_worker_clears_shared_entries(tenant, make_base):
    server = fakeredis.FakeServer()
    failing = _FlakyRedisCache(fakeredis.FakeRedis(server=server, decode_responses=True), ttl_seconds=60)
    other = RedisViewCache(fakeredis.FakeRedis(server=server, decode_responses=True), ttl_seconds=60)
    base = make_base("Earache")
    effective_view_service.resolve(tenant.id, cache=other)
    assert other.get(tenant.id, False)[1] is True

    override_service.set_override(tenant.id, base["id"], {"name": "Ear pain"}, cache=failing)

    assert other.get(tenant.id, False)[1] is False
    assert effective_view_service.resolve(tenant.id, cache=other)[0].name == "Ear pain"


def test_failed_cache_read_marks_cache_degraded(tenant, make_base):
    cache = _FlakyCache()
    make_base("Earache")
    effective_view_service.resolve(tenant.id, cache=cache)

    def _broken_load(key, tags):
        raise CacheUnavailableError("get")

    cache._load = _broken_load

    assert effective_view_service.resolve(tenant.id, cache=cache)[0].name == "Earache"
    assert cache.degraded is True
