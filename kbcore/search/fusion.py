# ==============================
# Hybrid Retrieval (Fusion Layer)
# ==============================
"""
Weighted reciprocal rank fusion of keyword and vector results.

For each source s with weight w_s, a record at 1-based rank r contributes
    w_s / (r + k)
Contributions are summed per record.

Rules:
- Keyword and vector sub-searches run concurrently and both are awaited.
- A source that returns nothing (or is switched off) simply contributes
  nothing; the other source's weighted ranking stands on its own.
- match_type: "both" | "keyword" | "vector".
- Order: fused_score desc, then raw keyword score desc, then id asc.
- Zero results is status "no_results", not an error.
- Vector failures never fail a search.
"""

from __future__ import annotations

import logging
import time
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Dict, List, Optional, Tuple

from pydantic import BaseModel, Field

from kbcore.config.schema import FusionConfig
from kbcore.errors import ValidationError
from kbcore.knowledge.base import KnowledgeRecord
from kbcore.knowledge.corpus import Corpus
from kbcore.search.analytics import QueryAnalytics
from kbcore.search.keyword_index import KeywordHit, KeywordIndex
from kbcore.search.vector_index import VectorHit, VectorIndex

logger = logging.getLogger("kbase.fusion")

MODES = ("hybrid", "keyword", "vector")


class FusedResult(BaseModel):
    record: KnowledgeRecord
    match_type: str
    fused_score: float
    keyword_score: Optional[float] = None
    vector_score: Optional[float] = None
    keyword_rank: Optional[int] = None
    vector_rank: Optional[int] = None


class SearchOutcome(BaseModel):
    query: str
    mode: str
    status: str = Field(description="ok | no_results")
    results: List[FusedResult] = Field(default_factory=list)
    keyword_count: int = 0
    vector_count: int = 0
    vector_status: str = "ready"
    elapsed_ms: float = 0.0


def resolve_mode(mode: Optional[str], keyword_only: bool = False, vector_only: bool = False) -> str:
    if keyword_only and vector_only:
        raise ValidationError("keyword_only and vector_only are mutually exclusive.", field="mode")
    flag_mode = "keyword" if keyword_only else "vector" if vector_only else None
    if mode is None:
        return flag_mode or "hybrid"
    normalized = str(mode).strip().lower()
    if normalized not in MODES:
        raise ValidationError(f"Unknown search mode '{mode}'.", field="mode", details={"allowed": list(MODES)})
    if flag_mode is not None and flag_mode != normalized:
        raise ValidationError(f"mode '{normalized}' conflicts with {flag_mode}_only.", field="mode")
    return normalized


class HybridRetriever:
    def __init__(
        self,
        keyword_index: KeywordIndex,
        vector_index: VectorIndex,
        corpus: Corpus,
        config: Optional[FusionConfig] = None,
        *,
        analytics: Optional[QueryAnalytics] = None,
    ) -> None:
        self.keyword_index = keyword_index
        self.vector_index = vector_index
        self.corpus = corpus
        self.config = config or FusionConfig()
        self.analytics = analytics or QueryAnalytics()
        self._executor = ThreadPoolExecutor(max_workers=4, thread_name_prefix="kbase-fusion")

    def close(self) -> None:
        self._executor.shutdown(wait=False)

    def search(
        self,
        query: str,
        limit: Optional[int] = None,
        keyword_only: bool = False,
        vector_only: bool = False,
        mode: Optional[str] = None,
    ) -> SearchOutcome:
        resolved = resolve_mode(mode, keyword_only, vector_only)
        limit = self.config.default_limit if limit is None else limit
        if limit < 1:
            raise ValidationError("limit must be >= 1.", field="limit")
        started = time.perf_counter()
        depth = limit * self.config.candidate_multiplier

        keyword_future: Optional[Future] = None
        vector_future: Optional[Future] = None
        if resolved in ("hybrid", "keyword"):
            keyword_future = self._executor.submit(self.keyword_index.search, query, depth)
        if resolved in ("hybrid", "vector"):
            vector_future = self._executor.submit(self.vector_index.search, query, depth)

        keyword_hits: List[KeywordHit] = keyword_future.result() if keyword_future is not None else []
        vector_hits: List[VectorHit] = []
        if vector_future is not None:
            try:
                vector_hits = vector_future.result()
            except Exception as e:
                logger.exception("Vector search failed", extra={"component": "fusion", "query": query, "error": str(e)})

        results = self.fuse(keyword_hits, vector_hits)[:limit]
        elapsed_ms = (time.perf_counter() - started) * 1000.0
        match_types: Dict[str, int] = {}
        for r in results:
            match_types[r.match_type] = match_types.get(r.match_type, 0) + 1
        self.analytics.record(
            query or "",
            self.keyword_index.tokenizer.unique_terms(query or "", stem=False),
            len(results),
            elapsed_ms,
            match_types=match_types,
        )
        outcome = SearchOutcome(
            query=query,
            mode=resolved,
            status="ok" if results else "no_results",
            results=results,
            keyword_count=len(keyword_hits),
            vector_count=len(vector_hits),
            vector_status=self.vector_index.status,
            elapsed_ms=round(elapsed_ms, 3),
        )
        logger.info(
            "Hybrid search",
            extra={"component": "fusion", "query": query, "count": len(results)},
        )
        return outcome

    def fuse(self, keyword_hits: List[KeywordHit], vector_hits: List[VectorHit]) -> List[FusedResult]:
        k = self.config.rrf_k
        rows: Dict[str, Dict[str, object]] = {}

        for rank, hit in enumerate(keyword_hits, start=1):
            row = rows.setdefault(hit.record.id, {"record": hit.record, "fused": 0.0})
            row["fused"] = float(row["fused"]) + self.config.keyword_weight / (rank + k)
            row["keyword_score"] = hit.score
            row["keyword_rank"] = rank

        for rank, hit in enumerate(vector_hits, start=1):
            record = rows.get(hit.record_id, {}).get("record") or self.corpus.get(hit.record_id)
            if record is None:
                # deleted since it was embedded
                continue
            row = rows.setdefault(hit.record_id, {"record": record, "fused": 0.0})
            row["fused"] = float(row["fused"]) + self.config.vector_weight / (rank + k)
            row["vector_score"] = hit.score
            row["vector_rank"] = rank

        fused: List[FusedResult] = []
        for row in rows.values():
            in_keyword = "keyword_rank" in row
            in_vector = "vector_rank" in row
            fused.append(
                FusedResult(
                    record=row["record"],
                    match_type="both" if in_keyword and in_vector else "keyword" if in_keyword else "vector",
                    fused_score=float(row["fused"]),
                    keyword_score=row.get("keyword_score"),
                    vector_score=row.get("vector_score"),
                    keyword_rank=row.get("keyword_rank"),
                    vector_rank=row.get("vector_rank"),
                )
            )
        fused.sort(key=_order_key)
        return fused


def _order_key(result: FusedResult) -> Tuple[float, float, str]:
    return (-result.fused_score, -(result.keyword_score or 0.0), result.record.id)
