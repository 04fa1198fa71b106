# ==============================
# Tests: Cache Manager
# ==============================
from __future__ import annotations

import pytest

from kbcore.cache.manager import CacheManager
from kbcore.cache.strategies import LFUStrategy, LRUStrategy, strategy_for
from kbcore.config.schema import CacheConfig


class _Tick:
    def __init__(self) -> None:
        self.t = 0.0

    def __call__(self) -> float:
        return self.t


def test_ttl_expiry_is_lazy_and_counted() -> None:
    tick = _Tick()
    cache = CacheManager(max_size=10, default_ttl=5.0, clock=tick)
    cache.set("a", 1)
    cache.set("b", 2, ttl=60.0)

    tick.t = 4.9
    assert cache.get("a") == 1

    tick.t = 5.0
    assert cache.get("a") is None
    assert cache.get("b") == 2

    stats = cache.stats()
    assert stats.expirations == 1
    assert stats.hits == 2
    assert stats.misses == 1
    assert stats.hit_rate == pytest.approx(2 / 3, abs=1e-4)


def test_non_positive_ttl_never_expires() -> None:
    tick = _Tick()
    cache = CacheManager(max_size=3, default_ttl=0, clock=tick)
    cache.set("k", "v")
    tick.t = 10_000_000.0
    assert cache.get("k") == "v"


def test_lru_evicts_least_recently_used() -> None:
    tick = _Tick()
    cache = CacheManager(max_size=2, default_ttl=None, strategy="lru", clock=tick)
    cache.set("a", 1)
    tick.t = 1
    cache.set("b", 2)
    tick.t = 2
    cache.get("a")
    tick.t = 3
    cache.set("c", 3)

    assert cache.has("a")
    assert not cache.has("b")
    assert cache.has("c")
    assert cache.stats().evictions == 1


def test_lfu_evicts_least_frequently_used() -> None:
    tick = _Tick()
    cache = CacheManager(max_size=2, default_ttl=None, strategy="lfu", clock=tick)
    cache.set("a", 1)
    tick.t = 1
    cache.set("b", 2)
    for i in range(3):
        tick.t = 2 + i
        cache.get("a")
    tick.t = 10
    cache.get("b")
    tick.t = 11
    cache.set("c", 3)

    assert cache.has("a")
    assert not cache.has("b")
    assert len(cache) == 2


def test_lfu_refresh_keeps_frequency() -> None:
    tick = _Tick()
    cache = CacheManager(max_size=2, default_ttl=None, strategy="lfu", clock=tick)
    cache.set("hot", 1)
    tick.t = 1
    cache.set("cold", 2)
    for i in range(3):
        tick.t = 2 + i
        cache.get("hot")
    tick.t = 6
    cache.get("cold")
    # overwriting the hot entry must not reset it below the cold one
    tick.t = 7
    cache.set("hot", 10)
    tick.t = 8
    cache.set("new", 3)

    assert cache.get("hot") == 10
    assert not cache.has("cold")
    assert cache.has("new")


def test_overwriting_an_expired_entry_starts_fresh() -> None:
    tick = _Tick()
    cache = CacheManager(max_size=2, default_ttl=None, strategy="lfu", clock=tick)
    cache.set("a", 1, ttl=1.0)
    cache.get("a")
    cache.get("a")
    tick.t = 2.0
    cache.set("a", 2)
    cache.set("b", 3)
    cache.get("b")
    tick.t = 3.0
    cache.set("c", 4)

    assert not cache.has("a")
    assert cache.has("b")


def test_full_cache_prefers_dropping_expired_entries() -> None:
    tick = _Tick()
    cache = CacheManager(max_size=2, default_ttl=None, clock=tick)
    cache.set("short", 1, ttl=1.0)
    cache.set("long", 2)
    tick.t = 2.0
    cache.set("new", 3)

    assert cache.keys() == ["long", "new"]
    assert cache.stats().evictions == 0
    assert cache.stats().expirations == 1


def test_invalidate_pattern_only_drops_matches() -> None:
    cache = CacheManager(max_size=10)
    cache.set("embed:loop over a list", (0.1, 0.2))
    cache.set("embed:microflow", (0.3,))
    cache.set("search:loop", ["x"])

    removed = cache.invalidate_pattern("embed:*")

    assert removed == 2
    assert cache.keys() == ["search:loop"]
    assert cache.keys("embed:*") == []


def test_get_or_set_computes_once() -> None:
    cache = CacheManager(max_size=4)
    calls = []

    def factory() -> int:
        calls.append(1)
        return 42

    assert cache.get_or_set("answer", factory) == 42
    assert cache.get_or_set("answer", factory) == 42
    assert len(calls) == 1


def test_disabled_cache_stores_nothing() -> None:
    cache = CacheManager.from_config(CacheConfig(enabled=False))
    cache.set("a", 1)
    assert cache.get("a") is None
    assert len(cache) == 0


def test_sweep_removes_expired_entries() -> None:
    tick = _Tick()
    cache = CacheManager(max_size=10, default_ttl=1.0, clock=tick)
    for key in ("a", "b", "c"):
        cache.set(key, key)
    cache.set("keep", 1, ttl=100.0)
    tick.t = 5.0

    assert cache.sweep() == 3
    assert cache.keys() == ["keep"]


def test_strategy_lookup() -> None:
    assert isinstance(strategy_for("LRU"), LRUStrategy)
    assert isinstance(strategy_for("lfu"), LFUStrategy)
    with pytest.raises(ValueError):
        strategy_for("fifo")
    with pytest.raises(ValueError):
        CacheManager(max_size=0)
