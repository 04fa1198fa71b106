# ==============================
# Cache Manager
# ==============================
"""
Bounded key/value cache with TTL expiry and pluggable eviction.

Rules:
- Expiry is checked lazily on access and eagerly by sweep().
- At capacity, the configured strategy picks one victim per insert.
- invalidate_pattern() takes a shell-style wildcard ("embed:*").
- Cached values never reference corpus records; dropping any entry only costs
  a recomputation.

Thread-safe: every operation holds one lock.
"""

from __future__ import annotations

import fnmatch
import logging
import threading
import time
from typing import Any, Callable, List, Optional, Union

from pydantic import BaseModel, Field

from kbcore.cache.strategies import CacheEntry, EvictionStrategy, strategy_for
from kbcore.config.schema import CacheConfig

logger = logging.getLogger("kbase.cache")


class CacheStats(BaseModel):
    size: int
    max_size: int
    hits: int
    misses: int
    evictions: int
    expirations: int
    hit_rate: float = Field(description="hits / (hits + misses), 0.0 when unused")
    strategy: str


class CacheManager:
    def __init__(
        self,
        *,
        max_size: int = 100,
        default_ttl: Optional[float] = 3600.0,
        strategy: Union[str, EvictionStrategy] = "lru",
        enabled: bool = True,
        clock: Callable[[], float] = time.monotonic,
        name: str = "cache",
    ) -> None:
        if max_size < 1:
            raise ValueError("max_size must be >= 1")
        self.name = name
        self.enabled = enabled
        self.max_size = max_size
        self.default_ttl = default_ttl
        self.strategy = strategy_for(strategy) if isinstance(strategy, str) else strategy
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: dict = {}
        self._hits = 0
        self._misses = 0
        self._evictions = 0
        self._expirations = 0
        self._sweeper: Optional[threading.Thread] = None
        self._stop_sweeper = threading.Event()

    @classmethod
    def from_config(cls, config: CacheConfig, *, name: str = "cache", **overrides: Any) -> "CacheManager":
        kwargs = {
            "max_size": config.max_size,
            "default_ttl": config.default_ttl_seconds,
            "strategy": config.strategy,
            "enabled": config.enabled,
            "name": name,
        }
        kwargs.update(overrides)
        return cls(**kwargs)

    # ------------------------------
    # Core operations
    # ------------------------------

    def get(self, key: str, default: Any = None) -> Any:
        if not self.enabled:
            return default
        with self._lock:
            entry = self._entries.get(key)
            now = self._clock()
            if entry is None:
                self._misses += 1
                return default
            if entry.is_expired(now):
                del self._entries[key]
                self._expirations += 1
                self._misses += 1
                return default
            entry.touch(now)
            self._hits += 1
            return entry.value

    def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        if not self.enabled:
            return
        ttl = self.default_ttl if ttl is None else ttl
        with self._lock:
            now = self._clock()
            if key not in self._entries and len(self._entries) >= self.max_size:
                self._purge_expired_locked(now)
                if len(self._entries) >= self.max_size:
                    self._evict_locked()
            expires_at = now + ttl if ttl is not None and ttl > 0 else None
            # a refresh keeps the LFU frequency of a live entry
            previous = self._entries.get(key)
            access_count = previous.access_count if previous is not None and not previous.is_expired(now) else 0
            self._entries[key] = CacheEntry(
                value=value,
                expires_at=expires_at,
                created_at=now,
                last_access=now,
                access_count=access_count,
            )

    def has(self, key: str) -> bool:
        if not self.enabled:
            return False
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return False
            if entry.is_expired(self._clock()):
                del self._entries[key]
                self._expirations += 1
                return False
            return True

    def get_or_set(self, key: str, factory: Callable[[], Any], ttl: Optional[float] = None) -> Any:
        """
        Return the cached value or compute, store and return it.
        The factory runs outside the lock; concurrent misses may compute twice.
        """
        sentinel = object()
        value = self.get(key, sentinel)
        if value is not sentinel:
            return value
        value = factory()
        self.set(key, value, ttl)
        return value

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._entries.pop(key, None) is not None

    def keys(self, pattern: Optional[str] = None) -> List[str]:
        with self._lock:
            keys = list(self._entries.keys())
        if pattern is None:
            return keys
        return [k for k in keys if fnmatch.fnmatchcase(k, pattern)]

    def invalidate_pattern(self, pattern: str) -> int:
        with self._lock:
            victims = [k for k in self._entries if fnmatch.fnmatchcase(k, pattern)]
            for k in victims:
                del self._entries[k]
        logger.info("Cache invalidated", extra={"component": self.name, "query": pattern, "count": len(victims)})
        return len(victims)

    def clear(self) -> None:
        with self._lock:
            size = len(self._entries)
            self._entries.clear()
        logger.info("Cache cleared", extra={"component": self.name, "count": size})

    def sweep(self) -> int:
        with self._lock:
            cleaned = self._purge_expired_locked(self._clock())
        if cleaned:
            logger.debug("Cache sweep", extra={"component": self.name, "count": cleaned})
        return cleaned

    def stats(self) -> CacheStats:
        with self._lock:
            total = self._hits + self._misses
            return CacheStats(
                size=len(self._entries),
                max_size=self.max_size,
                hits=self._hits,
                misses=self._misses,
                evictions=self._evictions,
                expirations=self._expirations,
                hit_rate=round(self._hits / total, 4) if total else 0.0,
                strategy=self.strategy.name,
            )

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    # ------------------------------
    # Periodic sweep
    # ------------------------------

    def start_sweeper(self, interval_seconds: float) -> None:
        if interval_seconds <= 0 or self._sweeper is not None:
            return
        self._stop_sweeper.clear()

        def _loop() -> None:
            while not self._stop_sweeper.wait(interval_seconds):
                self.sweep()

        self._sweeper = threading.Thread(target=_loop, name=f"{self.name}-sweeper", daemon=True)
        self._sweeper.start()

    def stop_sweeper(self) -> None:
        if self._sweeper is None:
            return
        self._stop_sweeper.set()
        self._sweeper.join(timeout=1.0)
        self._sweeper = None

    # ------------------------------
    # Internals (lock held)
    # ------------------------------

    def _purge_expired_locked(self, now: float) -> int:
        expired = [k for k, e in self._entries.items() if e.is_expired(now)]
        for k in expired:
            del self._entries[k]
        self._expirations += len(expired)
        return len(expired)

    def _evict_locked(self) -> None:
        victim = self.strategy.select_victim(self._entries)
        if victim is None:
            return
        del self._entries[victim]
        self._evictions += 1
        logger.debug("Cache eviction", extra={"component": self.name, "query": victim})
