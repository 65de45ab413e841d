"""
Alert cache - short-TTL, capacity-bounded read cache over alert lists.

Two read paths are cached:
    user-alerts:<user_id>        open alerts assigned to a user
    project-alerts:<project_id>  open alerts of a project

Entries expire after ``ALERT_CACHE_TTL_SECONDS`` (checked on access and
swept on every write).  When ``ALERT_CACHE_MAX_ENTRIES`` is exceeded the
least recently used entry is evicted.

Uses Redis when ALERT_CACHE_REDIS_URL is set so that invalidation reaches
every app instance; falls back to the in-process backend when Redis is
unreachable.  The cache is advisory: a miss or an outage only costs a
database read.

Values are stored as JSON, so callers always get their own copy.  Each
invalidation bumps a per-key generation; ``get_or_load`` drops a loaded
value whose key was invalidated while the loader ran.
"""

from __future__ import annotations

import json
import logging
import threading
import time
from collections import OrderedDict
from contextlib import contextmanager

from flask import current_app

logger = logging.getLogger(__name__)

DEFAULT_TTL = 60
DEFAULT_MAX_ENTRIES = 1000


# ── Key builders ─────────────────────────────────────────────────────────

def user_key(user_id) -> str:
    return f"user-alerts:{user_id}"


def project_key(project_id) -> str:
    return f"project-alerts:{project_id}"


# ── In-memory backend ────────────────────────────────────────────────────


class _MemoryBackend:
    """OrderedDict LRU with per-entry expiry.  All access under one lock."""

    name = "memory"

    def __init__(self, max_entries: int, clock=time.monotonic) -> None:
        self.max_entries = max_entries
        self._clock = clock
        self._store: OrderedDict = OrderedDict()  # key → (value_json, expires_at)
        self._lock = threading.Lock()
        self.evictions = 0

    def get(self, key):
        with self._lock:
            entry = self._store.get(key)
            if entry is None:
                return None
            value, expires_at = entry
            if self._clock() >= expires_at:
                del self._store[key]
                return None
            self._store.move_to_end(key)
            return value

    def setex(self, key, ttl_seconds, value):
        with self._lock:
            now = self._clock()
            self._sweep(now)
            self._store[key] = (value, now + ttl_seconds)
            self._store.move_to_end(key)
            while len(self._store) > self.max_entries:
                self._store.popitem(last=False)
                self.evictions += 1

    def delete(self, *keys) -> int:
        removed = 0
        with self._lock:
            for k in keys:
                if self._store.pop(k, None) is not None:
                    removed += 1
        return removed

    def keys_containing(self, substring: str) -> list[str]:
        with self._lock:
            return [k for k in self._store if substring in k]

    def size(self) -> int:
        with self._lock:
            self._sweep(self._clock())
            return len(self._store)

    def flush(self):
        with self._lock:
            self._store.clear()

    def ping(self):
        return True

    def _sweep(self, now):
        expired = [k for k, (_v, exp) in self._store.items() if now >= exp]
        for k in expired:
            del self._store[k]


# ── Redis backend ────────────────────────────────────────────────────────


class _RedisBackend:
    """Shared backend.  Keys are namespaced; Redis handles TTL and eviction."""

    name = "redis"
    NAMESPACE = "wfalerts:"

    def __init__(self, client) -> None:
        self._client = client
        self.evictions = 0

    def get(self, key):
        return self._client.get(self.NAMESPACE + key)

    def setex(self, key, ttl_seconds, value):
        self._client.setex(self.NAMESPACE + key, int(ttl_seconds), value)

    def delete(self, *keys) -> int:
        if not keys:
            return 0
        return int(self._client.delete(*[self.NAMESPACE + k for k in keys]))

    def keys_containing(self, substring: str) -> list[str]:
        n = len(self.NAMESPACE)
        return [k[n:] for k in self._client.scan_iter(match=f"{self.NAMESPACE}*{substring}*")]

    def size(self) -> int:
        return sum(1 for _ in self._client.scan_iter(match=f"{self.NAMESPACE}*"))

    def flush(self):
        keys = list(self._client.scan_iter(match=f"{self.NAMESPACE}*"))
        if keys:
            self._client.delete(*keys)

    def ping(self):
        return self._client.ping()


def _make_backend(redis_url: str | None, max_entries: int, clock=time.monotonic):
    """Redis when configured and reachable, otherwise in-memory."""
    if redis_url and not redis_url.startswith("memory://"):
        try:
            import redis as _redis
            client = _redis.from_url(redis_url, decode_responses=True)
            client.ping()
            logger.info("Alert cache: using Redis at %s", redis_url.split("@")[-1])
            return _RedisBackend(client)
        except Exception as exc:
            logger.warning("Redis unavailable (%s) - falling back to memory alert cache", exc)
    return _MemoryBackend(max_entries, clock=clock)


# ── Public cache object ──────────────────────────────────────────────────


class AlertCache:
    """Advisory cache in front of the alert read paths."""

    def __init__(
        self,
        ttl_seconds: int = DEFAULT_TTL,
        max_entries: int = DEFAULT_MAX_ENTRIES,
        redis_url: str | None = None,
        clock=time.monotonic,
    ) -> None:
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self._backend = _make_backend(redis_url, max_entries, clock=clock)
        self._stats_lock = threading.Lock()
        self.hits = 0
        self.misses = 0
        # Bumped on every invalidation; a load that straddles one is not cached.
        self._gen_lock = threading.Lock()
        self._generations: dict[str, int] = {}
        self._epoch = 0

    @property
    def backend_name(self) -> str:
        return self._backend.name

    def get(self, key):
        try:
            raw = self._backend.get(key)
            value = json.loads(raw) if raw is not None else None
        except (json.JSONDecodeError, TypeError) as exc:
            logger.warning("Alert cache entry for %s is unreadable: %s", key, exc)
            value = None
        except Exception as exc:
            logger.warning("Alert cache read failed for %s: %s", key, exc)
            value = None
        with self._stats_lock:
            if value is None:
                self.misses += 1
            else:
                self.hits += 1
        return value

    def set(self, key, value, ttl_seconds: int | None = None) -> None:
        try:
            self._backend.setex(key, ttl_seconds or self.ttl_seconds, json.dumps(value, default=str))
        except Exception as exc:
            logger.warning("Alert cache write failed for %s: %s", key, exc)

    def _generation(self, key) -> tuple[int, int]:
        with self._gen_lock:
            return self._epoch, self._generations.get(key, 0)

    @contextmanager
    def _invalidating(self, *keys, everything=False):
        """Bump generations and hold them while the backend entries are dropped."""
        with self._gen_lock:
            if everything:
                self._epoch += 1
            for k in keys:
                self._generations[k] = self._generations.get(k, 0) + 1
            yield

    def get_or_load(self, key, loader):
        """Cache-aside read: call *loader* on miss and cache its result.

        The result is not cached when *key* was invalidated while *loader*
        ran, so rows read before a concurrent mutation never outlive it.
        """
        value = self.get(key)
        if value is not None:
            return value
        generation = self._generation(key)
        value = loader()
        if value is None:
            return value
        with self._gen_lock:
            if (self._epoch, self._generations.get(key, 0)) != generation:
                logger.debug("Alert cache: %s invalidated during load, not caching", key)
                return value
            self.set(key, value)
        return value

    def invalidate(self, key) -> bool:
        with self._invalidating(key):
            try:
                return self._backend.delete(key) > 0
            except Exception as exc:
                logger.error("Alert cache invalidation failed for %s: %s", key, exc)
                return False

    def invalidate_pattern(self, substring: str) -> int:
        """Drop every key containing *substring*.  Returns the count removed."""
        with self._invalidating(everything=True):
            try:
                keys = self._backend.keys_containing(substring)
                return self._backend.delete(*keys) if keys else 0
            except Exception as exc:
                logger.error("Alert cache pattern invalidation failed for %r: %s", substring, exc)
                return 0

    def invalidate_project_related(self, project_id, user_ids=()) -> int:
        keys = [project_key(project_id)]
        keys.extend(user_key(uid) for uid in sorted({u for u in user_ids if u is not None}))
        with self._invalidating(*keys):
            try:
                removed = self._backend.delete(*keys)
            except Exception as exc:
                logger.error("Alert cache invalidation failed for project %s: %s", project_id, exc)
                return 0
        logger.debug(
            "Alert cache invalidated: %s", keys, extra={"project_id": project_id},
        )
        return removed

    def clear(self) -> None:
        with self._invalidating(everything=True):
            self._backend.flush()
        with self._stats_lock:
            self.hits = 0
            self.misses = 0

    def stats(self) -> dict:
        try:
            size = self._backend.size()
        except Exception as exc:
            logger.warning("Alert cache size unavailable: %s", exc)
            size = None
        with self._stats_lock:
            hits, misses = self.hits, self.misses
        lookups = hits + misses
        return {
            "backend": self._backend.name,
            "size": size,
            "max_size": self.max_entries,
            "ttl_seconds": self.ttl_seconds,
            "hits": hits,
            "misses": misses,
            "hit_rate": round(hits / lookups, 3) if lookups else 0.0,
            "evictions": self._backend.evictions,
        }


def init_alert_cache(app) -> AlertCache:
    cache = AlertCache(
        ttl_seconds=app.config.get("ALERT_CACHE_TTL_SECONDS", DEFAULT_TTL),
        max_entries=app.config.get("ALERT_CACHE_MAX_ENTRIES", DEFAULT_MAX_ENTRIES),
        redis_url=app.config.get("ALERT_CACHE_REDIS_URL") or None,
    )
    app.extensions["alert_cache"] = cache
    return cache


def get_alert_cache() -> AlertCache:
    return current_app.extensions["alert_cache"]
