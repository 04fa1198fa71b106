# ==============================
# Knowledge Service (Facade)
# ==============================
"""
Single entry point used by the gateway (HTTP + CLI) and scripts.

Wiring (from_settings):
  Settings -> CorpusBackend -> Corpus -> KnowledgeStore
                                     -> KeywordIndex
           -> EmbeddingProvider + Cache -> VectorIndex
  KeywordIndex + VectorIndex -> HybridRetriever

The store's reindex listener keeps both indexes in step with every corpus
mutation before the mutation returns.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from pydantic import BaseModel, Field

from kbcore.cache.manager import CacheManager, CacheStats
from kbcore.config.schema import Settings
from kbcore.embeddings.base import EmbeddingProvider
from kbcore.embeddings.router import build_embedding_provider
from kbcore.knowledge.base import ChangeKind, CorpusChange, IngestResult, KnowledgeRecord, StaleRecord, utc_now
from kbcore.knowledge.corpus import Corpus
from kbcore.knowledge.quality import QualityReport, QualityScorer
from kbcore.knowledge.store import KnowledgeStore, StalenessReport
from kbcore.logging.metrics import Metrics
from kbcore.search.analytics import AnalyticsSnapshot, KnowledgeGaps, QueryAnalytics, TermCount, TermPair
from kbcore.search.fusion import HybridRetriever, SearchOutcome
from kbcore.search.keyword_index import IndexStats, KeywordIndex
from kbcore.search.similarity import InMemorySimilarityBackend, SimilarityBackend
from kbcore.search.vector_index import ReindexReport, VectorIndex
from kbcore.storage.base import CorpusBackend
from kbcore.storage.router import create_backend

logger = logging.getLogger("kbase.service")


class ServiceStats(BaseModel):
    corpus_size: int
    indexed_terms: int
    vector_count: int
    cache_hit_rate: float
    vector_status: str
    embedding_provider: str
    files: Dict[str, int] = Field(default_factory=dict)
    cache: CacheStats
    search: AnalyticsSnapshot
    metrics: Dict[str, Any] = Field(default_factory=dict)


class ReindexSummary(BaseModel):
    keyword: IndexStats
    vector: ReindexReport


class KnowledgeGapsReport(BaseModel):
    missed_queries: List[str] = Field(default_factory=list)
    miss_rate: float = 0.0
    suggestion: Optional[str] = None
    top_terms: List[TermCount] = Field(default_factory=list)
    suggested_expansions: List[TermPair] = Field(default_factory=list)


class KnowledgeService:
    def __init__(
        self,
        *,
        settings: Settings,
        corpus: Corpus,
        store: KnowledgeStore,
        keyword_index: KeywordIndex,
        vector_index: VectorIndex,
        retriever: HybridRetriever,
        cache: CacheManager,
        metrics: Optional[Metrics] = None,
    ) -> None:
        self.settings = settings
        self.corpus = corpus
        self.store = store
        self.keyword_index = keyword_index
        self.vector_index = vector_index
        self.retriever = retriever
        self.cache = cache
        self.metrics = metrics or Metrics()
        self.store.add_listener(self._on_change)

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        backend: Optional[CorpusBackend] = None,
        provider: Optional[EmbeddingProvider] = None,
        similarity: Optional[SimilarityBackend] = None,
        clock: Callable[[], datetime] = utc_now,
        start_sweeper: bool = False,
    ) -> "KnowledgeService":
        corpus = Corpus()
        store = KnowledgeStore(
            corpus,
            backend or create_backend(settings),
            config=settings.knowledge,
            scorer=QualityScorer(settings.quality, clock=clock),
            clock=clock,
        )
        cache = CacheManager.from_config(settings.cache, name="cache")
        if start_sweeper:
            cache.start_sweeper(settings.cache.sweep_interval_seconds)
        keyword_index = KeywordIndex(corpus, settings.search)
        vector_index = VectorIndex(
            provider or build_embedding_provider(settings),
            similarity or InMemorySimilarityBackend(),
            cache=cache,
            config=settings.vector,
            corpus=corpus,
        )
        retriever = HybridRetriever(
            keyword_index,
            vector_index,
            corpus,
            settings.fusion,
            analytics=QueryAnalytics(
                history_size=settings.search.analytics_history,
                missed_limit=settings.search.missed_query_limit,
            ),
        )
        service = cls(
            settings=settings,
            corpus=corpus,
            store=store,
            keyword_index=keyword_index,
            vector_index=vector_index,
            retriever=retriever,
            cache=cache,
        )
        store.load()
        service.reindex_all()
        return service

    def close(self) -> None:
        self.cache.stop_sweeper()
        self.retriever.close()
        self.vector_index.close()

    # ------------------------------
    # Reindex hand-off
    # ------------------------------

    def _on_change(self, change: CorpusChange) -> None:
        if change.kind == ChangeKind.USAGE:
            return
        self.keyword_index.rebuild()
        self.metrics.inc("reindex.keyword")
        if change.kind == ChangeKind.DELETED:
            for record_id in change.record_ids:
                self.vector_index.remove(record_id)
            return
        if not change.text_changed:
            return
        for record_id in change.record_ids:
            record = self.corpus.get(record_id)
            if record is None:
                continue
            if not self.vector_index.upsert_record(record):
                self.metrics.inc("reindex.failed_records")
        self.metrics.inc("reindex.vector")

    def reindex_all(self) -> ReindexSummary:
        timer = self.metrics.start_timer("reindex")
        keyword = self.keyword_index.rebuild()
        vector = self.vector_index.reindex(self.corpus.records(), clear=True)
        self.metrics.stop_timer(timer)
        self.metrics.inc("reindex.failed_records", len(vector.failed))
        logger.info(
            "Full reindex",
            extra={"component": "service", "count": keyword.entries, "error": ",".join(vector.failed) or None},
        )
        return ReindexSummary(keyword=keyword, vector=vector)

    # ------------------------------
    # Query path
    # ------------------------------

    def search(self, query: str, limit: Optional[int] = None, mode: str = "hybrid") -> SearchOutcome:
        timer = self.metrics.start_timer("search")
        outcome = self.retriever.search(query, limit=limit, mode=mode)
        self.metrics.stop_timer(timer)
        self.metrics.inc("search.requests")
        if outcome.status == "no_results":
            self.metrics.inc("search.no_results")
        elif self.settings.knowledge.track_usage:
            self.store.record_usage(r.record.id for r in outcome.results)
        return outcome

    # ------------------------------
    # Self-learning path
    # ------------------------------

    def ingest(
        self,
        file: str,
        category: Optional[str],
        body: Dict[str, Any],
        source: str,
        verified: bool = False,
        domain_version: Optional[str] = None,
    ) -> IngestResult:
        timer = self.metrics.start_timer("ingest")
        try:
            result = self.store.ingest(file, category, body, source, verified=verified, domain_version=domain_version)
        except Exception:
            self.metrics.inc("ingest.rejected")
            raise
        finally:
            self.metrics.stop_timer(timer)
        self.metrics.inc("ingest.merged" if result.merged else "ingest.created")
        return result

    def update(self, record_id: str, patch: Dict[str, Any]) -> KnowledgeRecord:
        return self.store.update(record_id, patch)

    def mark_verified(self, record_id: str, verified: bool = True) -> KnowledgeRecord:
        return self.store.mark_verified(record_id, verified)

    def delete(self, record_id: str) -> KnowledgeRecord:
        return self.store.delete(record_id)

    def get_record(self, record_id: str) -> KnowledgeRecord:
        return self.store.get(record_id)

    # ------------------------------
    # Maintenance + reporting
    # ------------------------------

    def get_stale_records(self, horizon_days: Optional[int] = None) -> List[StaleRecord]:
        return self.store.get_stale_records(horizon_days)

    def staleness_report(self, horizon_days: Optional[int] = None) -> StalenessReport:
        return self.store.staleness_report(horizon_days)

    def quality_report(self, record_id: str) -> QualityReport:
        return self.store.quality_report(record_id)

    def knowledge_gaps(self) -> KnowledgeGapsReport:
        analytics = self.retriever.analytics
        gaps: KnowledgeGaps = analytics.knowledge_gaps()
        return KnowledgeGapsReport(
            missed_queries=gaps.missed_queries,
            miss_rate=gaps.miss_rate,
            suggestion=gaps.suggestion,
            top_terms=analytics.top_terms(),
            suggested_expansions=analytics.suggested_expansions(),
        )

    def get_stats(self) -> ServiceStats:
        cache_stats = self.cache.stats()
        vector_stats = self.vector_index.stats()
        return ServiceStats(
            corpus_size=len(self.corpus),
            indexed_terms=self.keyword_index.stats().terms,
            vector_count=vector_stats.count,
            cache_hit_rate=cache_stats.hit_rate,
            vector_status=vector_stats.status,
            embedding_provider=vector_stats.provider,
            files=self.corpus.files(),
            cache=cache_stats,
            search=self.retriever.analytics.snapshot(),
            metrics=self.metrics.snapshot(),
        )
