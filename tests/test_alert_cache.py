"""
Tests - Alert cache (TTL + LRU, in-memory backend).

Covers:
    1. TTL expiry on read and sweep on write (fake clock)
    2. LRU eviction at capacity
    3. Pattern / project-related invalidation
    4. Stats
    5. Loads that straddle an invalidation are not cached
    6. Stored entries are copies, not caller objects
    7. Redis fallback when unreachable
"""

from workflow_engine.models.workflow import WorkflowAlert
from workflow_engine.services import alert_manager
from workflow_engine.services import workflow_service as svc
from workflow_engine.services.alert_cache import (
    AlertCache,
    get_alert_cache,
    project_key,
    user_key,
)


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


def _cache(ttl=60, max_entries=3):
    clock = FakeClock()
    return AlertCache(ttl_seconds=ttl, max_entries=max_entries, clock=clock), clock


class TestTTL:

    def test_entry_served_before_expiry(self):
        cache, clock = _cache()
        cache.set("k", [1])
        clock.advance(59)
        assert cache.get("k") == [1]

    def test_entry_expires_at_ttl(self):
        cache, clock = _cache()
        cache.set("k", [1])
        clock.advance(60)
        assert cache.get("k") is None

    def test_per_call_ttl_override(self):
        cache, clock = _cache()
        cache.set("k", [1], ttl_seconds=5)
        clock.advance(6)
        assert cache.get("k") is None

    def test_write_sweeps_expired_entries(self):
        cache, clock = _cache(max_entries=10)
        cache.set("a", 1)
        cache.set("b", 2)
        clock.advance(61)
        cache.set("c", 3)
        assert cache.stats()["size"] == 1


class TestLRU:

    def test_least_recently_used_is_evicted(self):
        cache, _clock = _cache(max_entries=2)
        cache.set("a", 1)
        cache.set("b", 2)
        assert cache.get("a") == 1
        cache.set("c", 3)

        assert cache.get("b") is None
        assert cache.get("a") == 1
        assert cache.get("c") == 3
        assert cache.stats()["evictions"] == 1

    def test_size_never_exceeds_capacity(self):
        cache, _clock = _cache(max_entries=3)
        for i in range(10):
            cache.set(f"k{i}", i)
        stats = cache.stats()
        assert stats["size"] == 3
        assert stats["evictions"] == 7


class TestInvalidation:

    def test_invalidate_single_key(self):
        cache, _clock = _cache()
        cache.set("k", 1)
        assert cache.invalidate("k") is True
        assert cache.invalidate("k") is False

    def test_invalidate_pattern(self):
        cache, _clock = _cache(max_entries=10)
        cache.set(user_key(1), [])
        cache.set(user_key(2), [])
        cache.set(project_key(1), [])
        assert cache.invalidate_pattern("user-alerts:") == 2
        assert cache.get(project_key(1)) == []

    def test_invalidate_project_related(self):
        cache, _clock = _cache(max_entries=10)
        cache.set(project_key(7), [])
        cache.set(user_key(1), [])
        cache.set(user_key(2), [])
        assert cache.invalidate_project_related(7, {1, None}) == 2
        assert cache.get(user_key(2)) == []


class TestStats:

    def test_hit_rate(self):
        cache, _clock = _cache()
        cache.set("k", 1)
        cache.get("k")
        cache.get("k")
        cache.get("missing")
        stats = cache.stats()
        assert stats["hits"] == 2
        assert stats["misses"] == 1
        assert stats["hit_rate"] == 0.667
        assert stats["backend"] == "memory"
        assert stats["max_size"] == 3
        assert stats["ttl_seconds"] == 60

    def test_clear_resets(self):
        cache, _clock = _cache()
        cache.set("k", 1)
        cache.get("k")
        cache.clear()
        stats = cache.stats()
        assert stats["size"] == 0
        assert stats["hits"] == 0

    def test_get_or_load_calls_loader_once(self):
        cache, _clock = _cache()
        calls = []

        def _load():
            calls.append(1)
            return [{"id": 1}]

        assert cache.get_or_load("k", _load) == [{"id": 1}]
        assert cache.get_or_load("k", _load) == [{"id": 1}]
        assert len(calls) == 1


class TestInvalidationDuringLoad:

    def test_load_straddling_project_invalidation_is_not_cached(self):
        cache, _clock = _cache()

        def _load():
            rows = [{"line_item_id": 1}]
            cache.invalidate_project_related(7, ())
            return rows

        assert cache.get_or_load(project_key(7), _load) == [{"line_item_id": 1}]
        assert cache.get(project_key(7)) is None

    def test_load_straddling_pattern_invalidation_is_not_cached(self):
        cache, _clock = _cache()

        def _load():
            rows = [{"id": 1}]
            cache.invalidate_pattern("user-alerts:")
            return rows

        cache.get_or_load(user_key(1), _load)
        assert cache.get(user_key(1)) is None

    def test_unrelated_invalidation_does_not_block_caching(self):
        cache, _clock = _cache()

        def _load():
            cache.invalidate(user_key(99))
            return [{"id": 1}]

        cache.get_or_load(user_key(1), _load)
        assert cache.get(user_key(1)) == [{"id": 1}]

    def test_completion_during_project_read_is_not_served_stale(self, mini_run, mini, project, users):
        i1, i2, _i3 = [li.id for li in mini.ordered_line_items]

        def _load():
            rows = [
                {"line_item_id": a.line_item_id}
                for a in WorkflowAlert.query.filter_by(project_id=project.id, status="ACTIVE")
            ]
            svc.complete_line_item(project.id, i1, users["office"].id)
            return rows

        stale = get_alert_cache().get_or_load(project_key(project.id), _load)
        assert [a["line_item_id"] for a in stale] == [i1]
        assert [a["line_item_id"] for a in alert_manager.alerts_for_project(project.id)] == [i2]


class TestStoredCopies:

    def test_mutating_returned_value_leaves_entry_intact(self):
        cache, _clock = _cache()
        cache.set("k", [{"id": 1}])
        got = cache.get("k")
        got[0]["id"] = 9
        got.append({"id": 2})
        assert cache.get("k") == [{"id": 1}]

    def test_mutating_original_after_set_leaves_entry_intact(self):
        cache, _clock = _cache()
        value = [1]
        cache.set("k", value)
        value.append(2)
        assert cache.get("k") == [1]


class TestBackendSelection:

    def test_unreachable_redis_falls_back_to_memory(self):
        cache = AlertCache(redis_url="redis://127.0.0.1:1/0")
        assert cache.backend_name == "memory"

    def test_cache_stats_endpoint(self, client):
        res = client.get("/api/v1/alerts/cache/stats")
        assert res.status_code == 200
        assert res.get_json()["backend"] == "memory"
