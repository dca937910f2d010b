"""
Tag-addressed view cache.

Caches each surgery's resolved view under a stable key and indexes it by
two invalidation tags:

    key / tenant tag   tenant:{tenant_id}:{enabled|with-disabled}
    global tag         all-items

These strings are a contract other subsystems (e.g. an external purge
trigger) rely on. Do not change their format.

Backends:
  - MemoryViewCache  per-process dict guarded by one RLock (dev/testing,
                     single-process deployments)
  - RedisViewCache   shared Redis instance (REDIS_URL) for multi-worker
                     deployments
  - NullViewCache    always misses; used when Redis is configured but
                     unreachable in production (cache bypass)

Version stamps:
  Every tag has a monotonically increasing version. A reader captures the
  stamp (versions of the entry's two tags) *before* reading the layer store
  and stores it with the entry; get() only returns an entry whose stamp is
  still current. A put that raced with an invalidation is therefore never
  served, whichever order the two reach the backend in.

The cache instance is created per app in ``init_view_cache`` and stored on
``app.extensions["view_cache"]``; services take it as an argument.
"""

from __future__ import annotations

import json
import logging
import threading
import time
from abc import ABC, abstractmethod

from signposting.core.exceptions import CacheUnavailableError
from signposting.engine.types import EffectiveItem

logger = logging.getLogger(__name__)

GLOBAL_TAG = "all-items"
DEFAULT_TTL = 300


# ── Key / tag builders ───────────────────────────────────────────────────

def visibility_mode(include_disabled: bool) -> str:
    return "with-disabled" if include_disabled else "enabled"


def tenant_tag(tenant_id, include_disabled: bool) -> str:
    return f"tenant:{tenant_id}:{visibility_mode(include_disabled)}"


def cache_key(tenant_id, include_disabled: bool) -> str:
    """Cache key of a surgery view. Identical to its tenant tag."""
    return tenant_tag(tenant_id, include_disabled)


def entry_tags(tenant_id, include_disabled: bool) -> tuple[str, str]:
    return (tenant_tag(tenant_id, include_disabled), GLOBAL_TAG)


def tenant_tags(tenant_id) -> tuple[str, str]:
    """Both visibility-mode tags of a surgery."""
    return (tenant_tag(tenant_id, False), tenant_tag(tenant_id, True))


def _encode(items, stamp) -> str:
    return json.dumps(
        {"stamp": list(stamp), "items": [i.to_dict() for i in items]},
        sort_keys=True,
        ensure_ascii=False,
    )


def _decode(raw: str):
    payload = json.loads(raw)
    return payload["stamp"], [EffectiveItem.from_dict(d) for d in payload["items"]]


# ── Base class ───────────────────────────────────────────────────────────


class ViewCache(ABC):
    """Backend-independent cache protocol.

    Backend hooks raise CacheUnavailableError on failure; callers in the
    service layer decide whether to swallow it.
    """

    backend_name = "abstract"

    def __init__(self, ttl_seconds: int = DEFAULT_TTL):
        self.ttl_seconds = ttl_seconds
        self.degraded = False

    # -- backend hooks -------------------------------------------------

    @abstractmethod
    def _load(self, key: str, tags: tuple[str, ...]) -> tuple[str | None, list[int]]:
        """Return (raw entry or None, current versions of ``tags``)."""

    @abstractmethod
    def _versions(self, tags: tuple[str, ...]) -> list[int]:
        ...

    @abstractmethod
    def _store(self, key: str, tags: tuple[str, ...], raw: str, stamp: list[int]) -> None:
        ...

    @abstractmethod
    def _invalidate(self, tag: str) -> int:
        """Bump the tag version and drop indexed entries. Returns entries dropped."""

    @abstractmethod
    def _flush(self) -> None:
        ...

    @abstractmethod
    def _ping(self) -> None:
        ...

    # -- public API ----------------------------------------------------

    def get(self, tenant_id, include_disabled: bool):
        """Return ``(items, hit)``. On a miss ``items`` is None."""
        tags = entry_tags(tenant_id, include_disabled)
        raw, versions = self._load(cache_key(tenant_id, include_disabled), tags)
        if raw is None:
            return None, False
        try:
            stamp, items = _decode(raw)
        except (ValueError, KeyError, TypeError):
            logger.warning("Discarding unreadable view cache entry %s",
                           cache_key(tenant_id, include_disabled))
            return None, False
        if stamp != versions:
            return None, False
        return items, True

    def current_stamp(self, tenant_id, include_disabled: bool) -> list[int]:
        """Versions of the entry's tags. Capture before reading the layer store."""
        return self._versions(entry_tags(tenant_id, include_disabled))

    def put(self, tenant_id, include_disabled: bool, items, stamp=None) -> None:
        """Store a resolved view. ``stamp`` defaults to the current versions."""
        tags = entry_tags(tenant_id, include_disabled)
        if stamp is None:
            stamp = self._versions(tags)
        self._store(cache_key(tenant_id, include_disabled), tags, _encode(items, stamp), list(stamp))

    def invalidate_tag(self, tag: str) -> int:
        dropped = self._invalidate(tag)
        logger.debug("View cache invalidated tag=%s dropped=%d", tag, dropped,
                     extra={"cache_tag": tag})
        return dropped

    def flush(self) -> None:
        """Drop every entry (and clear the degraded flag on success)."""
        self._flush()
        self.degraded = False

    def mark_degraded(self) -> None:
        """Stop serving entries until a flush succeeds."""
        self.degraded = True

    def recover(self) -> bool:
        """Try to leave degraded mode. Returns True when the cache is usable."""
        if not self.degraded:
            return True
        try:
            self.flush()
        except CacheUnavailableError as exc:
            logger.warning("View cache still unavailable: %s", exc)
            return False
        logger.info("View cache recovered (backend=%s)", self.backend_name)
        return True

    def health_check(self) -> dict:
        try:
            self._ping()
        except CacheUnavailableError as exc:
            return {"status": "error", "backend": self.backend_name, "detail": str(exc)}
        status = "degraded" if self.degraded else "ok"
        return {"status": status, "backend": self.backend_name}


# ── In-memory backend ────────────────────────────────────────────────────


class MemoryViewCache(ViewCache):
    """Per-process cache. One RLock guards entries, tag index and versions."""

    backend_name = "memory"

    def __init__(self, ttl_seconds: int = DEFAULT_TTL):
        super().__init__(ttl_seconds)
        self._lock = threading.RLock()
        self._entries: dict = {}        # key → (raw, expire_ts)
        self._tag_index: dict = {}      # tag → {keys}
        self._tag_versions: dict = {}   # tag → int

    def _versions(self, tags):
        with self._lock:
            return [self._tag_versions.get(t, 0) for t in tags]

    def _load(self, key, tags):
        with self._lock:
            entry = self._entries.get(key)
            versions = [self._tag_versions.get(t, 0) for t in tags]
            if entry is None:
                return None, versions
            raw, expires = entry
            if expires and time.time() > expires:
                self._entries.pop(key, None)
                return None, versions
            return raw, versions

    def _store(self, key, tags, raw, stamp):
        with self._lock:
            if [self._tag_versions.get(t, 0) for t in tags] != stamp:
                # Invalidated while the view was being computed.
                return
            expires = time.time() + self.ttl_seconds if self.ttl_seconds else None
            self._entries[key] = (raw, expires)
            for tag in tags:
                self._tag_index.setdefault(tag, set()).add(key)

    def _invalidate(self, tag):
        with self._lock:
            self._tag_versions[tag] = self._tag_versions.get(tag, 0) + 1
            keys = self._tag_index.pop(tag, set())
            dropped = 0
            for key in keys:
                if self._entries.pop(key, None) is not None:
                    dropped += 1
            return dropped

    def _flush(self):
        with self._lock:
            self._entries.clear()
            self._tag_index.clear()
            # Bump instead of reset so in-flight stamps cannot match again.
            for tag in list(self._tag_versions):
                self._tag_versions[tag] += 1

    def _ping(self):
        return None


# ── Redis backend ────────────────────────────────────────────────────────


class RedisViewCache(ViewCache):
    """Shared cache for multi-worker deployments.

    Layout (all keys under ``prefix``):
        {prefix}entry:{cache_key}   JSON entry, expires after ttl
        {prefix}tagver:{tag}        INCR counter
        {prefix}tagidx:{tag}        SET of cache keys carrying the tag
    """

    backend_name = "redis"

    def __init__(self, client, ttl_seconds: int = DEFAULT_TTL, prefix: str = "view:"):
        super().__init__(ttl_seconds)
        self._r = client
        self._prefix = prefix

    def _entry_key(self, key):
        return f"{self._prefix}entry:{key}"

    def _ver_key(self, tag):
        return f"{self._prefix}tagver:{tag}"

    def _idx_key(self, tag):
        return f"{self._prefix}tagidx:{tag}"

    def _call(self, operation, fn):
        import redis as _redis
        try:
            return fn()
        except _redis.exceptions.RedisError as exc:
            raise CacheUnavailableError(operation, exc) from exc

    @staticmethod
    def _as_versions(values):
        return [int(v) if v is not None else 0 for v in values]

    def _versions(self, tags):
        return self._as_versions(
            self._call("versions", lambda: self._r.mget([self._ver_key(t) for t in tags]))
        )

    def _load(self, key, tags):
        def _read():
            pipe = self._r.pipeline(transaction=False)
            pipe.get(self._entry_key(key))
            pipe.mget([self._ver_key(t) for t in tags])
            return pipe.execute()

        raw, versions = self._call("get", _read)
        return raw, self._as_versions(versions)

    def _store(self, key, tags, raw, stamp):
        def _write():
            if self._as_versions(self._r.mget([self._ver_key(t) for t in tags])) != stamp:
                return
            pipe = self._r.pipeline(transaction=True)
            pipe.set(self._entry_key(key), raw, ex=self.ttl_seconds or None)
            for tag in tags:
                pipe.sadd(self._idx_key(tag), key)
                if self.ttl_seconds:
                    pipe.expire(self._idx_key(tag), self.ttl_seconds)
            pipe.execute()

        self._call("put", _write)

    def _invalidate(self, tag):
        def _drop():
            keys = self._r.smembers(self._idx_key(tag))
            pipe = self._r.pipeline(transaction=True)
            pipe.incr(self._ver_key(tag))
            if keys:
                pipe.delete(*[self._entry_key(k) for k in keys])
            pipe.delete(self._idx_key(tag))
            results = pipe.execute()
            return int(results[1]) if keys else 0

        return self._call("invalidate", _drop)

    def _flush(self):
        def _clear():
            entries = list(self._r.scan_iter(match=f"{self._prefix}entry:*"))
            indexes = list(self._r.scan_iter(match=f"{self._prefix}tagidx:*"))
            versions = list(self._r.scan_iter(match=f"{self._prefix}tagver:*"))
            pipe = self._r.pipeline(transaction=True)
            for ver in versions:
                pipe.incr(ver)
            if entries or indexes:
                pipe.delete(*(entries + indexes))
            pipe.execute()

        self._call("flush", _clear)

    def _ping(self):
        self._call("ping", self._r.ping)


# ── Bypass backend ───────────────────────────────────────────────────────


class NullViewCache(ViewCache):
    """Never stores anything; every read recomputes."""

    backend_name = "none"

    def _versions(self, tags):
        return [0 for _ in tags]

    def _load(self, key, tags):
        return None, self._versions(tags)

    def _store(self, key, tags, raw, stamp):
        return None

    def _invalidate(self, tag):
        return 0

    def _flush(self):
        return None

    def _ping(self):
        return None


# ── Factory ──────────────────────────────────────────────────────────────


def build_view_cache(config) -> ViewCache:
    """Create the backend selected by ``VIEW_CACHE_BACKEND``.

    ``redis`` falls back to the in-memory cache outside production and to
    NullViewCache in production, where a per-process cache would not see
    invalidations issued by other workers.
    """
    backend = (config.get("VIEW_CACHE_BACKEND") or "memory").lower()
    ttl = int(config.get("VIEW_CACHE_TTL", DEFAULT_TTL))

    if backend == "none":
        return NullViewCache(ttl)
    if backend != "redis":
        return MemoryViewCache(ttl)

    redis_url = config.get("REDIS_URL") or ""
    try:
        import redis as _redis
        client = _redis.from_url(redis_url, decode_responses=True, socket_timeout=2)
        client.ping()
        logger.info("View cache: using Redis at %s", redis_url.split("@")[-1])
        return RedisViewCache(client, ttl, prefix=config.get("VIEW_CACHE_PREFIX", "view:"))
    except Exception as exc:
        if config.get("ENV_NAME") == "production":
            logger.error("Redis unavailable (%s) — view cache bypassed", exc)
            return NullViewCache(ttl)
        logger.warning("Redis unavailable (%s), falling back to memory view cache", exc)
        return MemoryViewCache(ttl)


def init_view_cache(app) -> ViewCache:
    """Attach a fresh view cache to ``app.extensions``."""
    cache = build_view_cache(app.config)
    app.extensions["view_cache"] = cache
    return cache
