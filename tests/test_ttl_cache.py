"""Unit tests for the bounded LRU/TTL cache."""

import threading

import pytest

from tiered_ratelimit.utils.ttl_cache import LRUTTLCache


def test_set_and_get_updates_hit_miss_counters(clock) -> None:
    cache: LRUTTLCache[dict] = LRUTTLCache(max_entries=10, clock=clock)

    assert cache.get("missing") is None

    cache.set("key", {"remaining": 3}, ttl=10)

    assert cache.get("key") == {"remaining": 3}

    stats = cache.stats()
    assert stats["hits"] == 1
    assert stats["misses"] == 1


def test_entry_expires_after_its_own_ttl(clock) -> None:
    cache: LRUTTLCache[int] = LRUTTLCache(clock=clock)
    cache.set("short", 1, ttl=5)
    cache.set("long", 2, ttl=50)

    clock.advance(6)

    assert cache.get("short") is None
    assert cache.get("long") == 2
    assert cache.stats()["evictions"] == 1


def test_entry_is_absent_exactly_at_expiry(clock) -> None:
    cache: LRUTTLCache[int] = LRUTTLCache(clock=clock)
    cache.set("k", 1, ttl=5)

    clock.advance(5)

    assert cache.get("k") is None
    assert "k" not in cache


@pytest.mark.parametrize("ttl", [0, -1, -0.001])
def test_non_positive_ttl_is_ignored(clock, ttl: float) -> None:
    cache: LRUTTLCache[int] = LRUTTLCache(clock=clock)

    cache.set("k", 1, ttl=ttl)

    assert len(cache) == 0
    assert cache.get("k") is None


def test_non_positive_ttl_does_not_replace_existing_entry(clock) -> None:
    cache: LRUTTLCache[int] = LRUTTLCache(clock=clock)
    cache.set("k", 1, ttl=10)

    cache.set("k", 2, ttl=0)

    assert cache.get("k") == 1


def test_set_replaces_value_and_expiry(clock) -> None:
    cache: LRUTTLCache[int] = LRUTTLCache(clock=clock)
    cache.set("k", 1, ttl=5)
    cache.set("k", 2, ttl=20)

    clock.advance(10)

    assert cache.get("k") == 2
    assert len(cache) == 1


def test_lru_eviction_removes_least_recently_used(clock) -> None:
    cache: LRUTTLCache[dict] = LRUTTLCache(max_entries=2, clock=clock)
    cache.set("a", {"v": 1}, ttl=100)
    cache.set("b", {"v": 2}, ttl=100)

    # Access "a" so that "b" becomes least recently used
    assert cache.get("a") == {"v": 1}

    cache.set("c", {"v": 3}, ttl=100)

    assert cache.get("a") == {"v": 1}
    assert cache.get("c") == {"v": 3}
    assert cache.get("b") is None


def test_without_reads_insertion_order_decides_eviction(clock) -> None:
    cache: LRUTTLCache[int] = LRUTTLCache(max_entries=3, clock=clock)
    for idx, key in enumerate("abcd"):
        cache.set(key, idx, ttl=100)

    assert "a" not in cache
    assert all(key in cache for key in "bcd")
    assert cache.stats()["evictions"] == 1


def test_expired_entries_are_purged_before_capacity_eviction(clock) -> None:
    cache: LRUTTLCache[int] = LRUTTLCache(max_entries=2, clock=clock)
    cache.set("stale", 0, ttl=1)
    cache.set("fresh", 1, ttl=100)

    clock.advance(2)
    cache.set("new", 2, ttl=100)

    # "fresh" survives because the expired entry freed the slot
    assert cache.get("fresh") == 1
    assert cache.get("new") == 2


def test_contains_does_not_promote(clock) -> None:
    cache: LRUTTLCache[int] = LRUTTLCache(max_entries=2, clock=clock)
    cache.set("a", 1, ttl=100)
    cache.set("b", 2, ttl=100)

    assert "a" in cache
    cache.set("c", 3, ttl=100)

    assert "a" not in cache


def test_delete_and_clear(clock) -> None:
    cache: LRUTTLCache[int] = LRUTTLCache(clock=clock)
    cache.set("a", 1, ttl=10)
    cache.set("b", 2, ttl=10)
    cache.get("a")

    cache.delete("a")
    cache.delete("unknown")
    assert "a" not in cache
    assert len(cache) == 1

    cache.clear()

    stats = cache.stats()
    assert stats["entries"] == 0
    assert stats["hits"] == 0
    assert stats["misses"] == 0
    assert stats["evictions"] == 0


def test_invalid_capacity() -> None:
    with pytest.raises(ValueError):
        LRUTTLCache(max_entries=0)


def test_thread_safety_under_concurrent_access() -> None:
    cache: LRUTTLCache[int] = LRUTTLCache(max_entries=20)
    errors: list[BaseException] = []

    def _worker(idx: int) -> None:
        try:
            for round_ in range(200):
                key = f"k-{(idx + round_) % 40}"
                cache.set(key, round_, ttl=30)
                cache.get(key)
        except BaseException as exc:  # pragma: no cover - only on failure
            errors.append(exc)

    threads = [threading.Thread(target=_worker, args=(i,)) for i in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert not errors
    assert len(cache) <= 20
