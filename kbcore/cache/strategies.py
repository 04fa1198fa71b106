# ==============================
# Cache Eviction Strategies
# ==============================
"""
Pluggable victim selection for CacheManager.

A strategy only chooses which key to drop when the cache is full; it never
mutates entries. Ties resolve to the oldest inserted entry (dict order).
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Optional


@dataclass
class CacheEntry:
    value: Any
    expires_at: Optional[float]
    created_at: float
    last_access: float
    access_count: int = 0

    def is_expired(self, now: float) -> bool:
        return self.expires_at is not None and now >= self.expires_at

    def touch(self, now: float) -> None:
        self.last_access = now
        self.access_count += 1


class EvictionStrategy(ABC):
    name: str = "base"

    @abstractmethod
    def select_victim(self, entries: Dict[str, CacheEntry]) -> Optional[str]:
        raise NotImplementedError


class LRUStrategy(EvictionStrategy):
    """Evict the least recently accessed entry."""
    name = "lru"

    def select_victim(self, entries: Dict[str, CacheEntry]) -> Optional[str]:
        victim: Optional[str] = None
        oldest = float("inf")
        for key, entry in entries.items():
            if entry.last_access < oldest:
                oldest = entry.last_access
                victim = key
        return victim


class LFUStrategy(EvictionStrategy):
    """Evict the least frequently accessed entry; LRU breaks ties."""
    name = "lfu"

    def select_victim(self, entries: Dict[str, CacheEntry]) -> Optional[str]:
        victim: Optional[str] = None
        best = (float("inf"), float("inf"))
        for key, entry in entries.items():
            rank = (entry.access_count, entry.last_access)
            if rank < best:
                best = rank
                victim = key
        return victim


_STRATEGIES = {
    LRUStrategy.name: LRUStrategy,
    LFUStrategy.name: LFUStrategy,
}


def strategy_for(name: str) -> EvictionStrategy:
    cls = _STRATEGIES.get((name or "").lower())
    if cls is None:
        raise ValueError(f"Unknown cache strategy '{name}'. Use one of: {', '.join(sorted(_STRATEGIES))}")
    return cls()
