# ==============================
# Query Analytics
# ==============================
"""
In-process search analytics.

Tracks, per search call:
- hit/miss counts (a miss is a zero-result search)
- search term frequency
- a bounded window of response times and recent queries
- recently missed queries (knowledge gaps), de-duplicated, oldest dropped first
- match-type distribution (fusion layer only)
- term pairs that co-occur in queries, as candidate term expansions

Thread-safe. Nothing is persisted.
"""

from __future__ import annotations

import threading
from collections import Counter, deque
from datetime import datetime
from itertools import combinations
from typing import Deque, Dict, Iterable, List, Optional

from pydantic import BaseModel, Field

from kbcore.knowledge.base import utc_now


class TermCount(BaseModel):
    term: str
    count: int


class QueryEvent(BaseModel):
    query: str
    results: int
    elapsed_ms: float
    timestamp: datetime


class TermPair(BaseModel):
    terms: List[str]
    count: int


class KnowledgeGaps(BaseModel):
    missed_queries: List[str] = Field(default_factory=list)
    miss_rate: float = 0.0
    suggestion: Optional[str] = None


class AnalyticsSnapshot(BaseModel):
    total_searches: int = 0
    hits: int = 0
    misses: int = 0
    hit_rate: float = 0.0
    avg_response_ms: float = 0.0
    top_terms: List[TermCount] = Field(default_factory=list)
    missed_queries: List[str] = Field(default_factory=list)
    match_types: Dict[str, int] = Field(default_factory=dict)
    recent: List[QueryEvent] = Field(default_factory=list)


class QueryAnalytics:
    def __init__(self, *, history_size: int = 100, missed_limit: int = 50) -> None:
        self._lock = threading.Lock()
        self.history_size = history_size
        self.missed_limit = missed_limit
        self.reset()

    def reset(self) -> None:
        with self._lock:
            self._total = 0
            self._hits = 0
            self._misses = 0
            self._terms: Counter = Counter()
            self._pairs: Counter = Counter()
            self._match_types: Counter = Counter()
            self._times: Deque[float] = deque(maxlen=self.history_size)
            self._recent: Deque[QueryEvent] = deque(maxlen=self.history_size)
            self._missed: Deque[str] = deque()

    def record(
        self,
        query: str,
        terms: Iterable[str],
        result_count: int,
        elapsed_ms: float,
        *,
        match_types: Optional[Dict[str, int]] = None,
    ) -> None:
        distinct = sorted(set(terms))
        with self._lock:
            self._total += 1
            if result_count > 0:
                self._hits += 1
            else:
                self._misses += 1
                key = query.strip()
                if key and key not in self._missed:
                    self._missed.append(key)
                    while len(self._missed) > self.missed_limit:
                        self._missed.popleft()
            self._terms.update(distinct)
            self._pairs.update(combinations(distinct, 2))
            if match_types:
                self._match_types.update(match_types)
            self._times.append(float(elapsed_ms))
            self._recent.append(
                QueryEvent(query=query, results=result_count, elapsed_ms=round(float(elapsed_ms), 3), timestamp=utc_now())
            )

    def top_terms(self, count: int = 10) -> List[TermCount]:
        with self._lock:
            ranked = sorted(self._terms.items(), key=lambda kv: (-kv[1], kv[0]))[:count]
        return [TermCount(term=t, count=c) for t, c in ranked]

    def suggested_expansions(self, *, min_count: int = 2, limit: int = 10) -> List[TermPair]:
        with self._lock:
            ranked = sorted(self._pairs.items(), key=lambda kv: (-kv[1], kv[0]))
        return [TermPair(terms=list(pair), count=c) for pair, c in ranked if c >= min_count][:limit]

    def knowledge_gaps(self) -> KnowledgeGaps:
        with self._lock:
            missed = list(self._missed)
            rate = round(self._misses / self._total, 4) if self._total else 0.0
        suggestion = None
        if len(missed) > 5:
            suggestion = "Consider adding knowledge for: " + ", ".join(missed[-5:])
        return KnowledgeGaps(missed_queries=missed, miss_rate=rate, suggestion=suggestion)

    def snapshot(self, *, top: int = 10) -> AnalyticsSnapshot:
        top_terms = self.top_terms(top)
        with self._lock:
            avg = sum(self._times) / len(self._times) if self._times else 0.0
            return AnalyticsSnapshot(
                total_searches=self._total,
                hits=self._hits,
                misses=self._misses,
                hit_rate=round(self._hits / self._total, 4) if self._total else 0.0,
                avg_response_ms=round(avg, 3),
                top_terms=top_terms,
                missed_queries=list(self._missed),
                match_types=dict(self._match_types),
                recent=list(self._recent),
            )
