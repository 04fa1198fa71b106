# ==============================
# Vector Index
# ==============================
"""
Semantic side of retrieval: embed through the provider (cached), store and
query through a similarity backend.

Rules:
- Every provider call runs on a worker pool and is bounded by
  vector.timeout_seconds. Timeouts and provider errors become
  ProviderUnavailable, flip status to "unavailable" and are swallowed by
  search() / upsert_record() (no vector signal, not an error).
- status returns to "ready" on the next successful provider call.
- Query and record embeddings are cached under "embed:<normalized text>".
  A hit never reaches the provider. reindex() clears "embed:*" afterwards.
- Scores are cosine similarity clamped to [0, 1].
- A dimension mismatch in the backend is IndexCorruption and answered with a
  full reindex from the Corpus.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeout
from typing import Any, Callable, Dict, List, Optional, Sequence

from pydantic import BaseModel, Field

from kbcore.cache.manager import CacheManager
from kbcore.config.schema import VectorConfig
from kbcore.embeddings.base import EmbeddingProvider
from kbcore.errors import IndexCorruption, ProviderUnavailable
from kbcore.knowledge.base import KnowledgeRecord
from kbcore.knowledge.body import display_title, flatten_text
from kbcore.knowledge.corpus import Corpus
from kbcore.search.similarity import InMemorySimilarityBackend, SimilarityBackend
from kbcore.utils.text import normalize_text

logger = logging.getLogger("kbase.vector")

STATUS_READY = "ready"
STATUS_UNAVAILABLE = "unavailable"
EMBED_KEY_PREFIX = "embed:"


class VectorHit(BaseModel):
    record_id: str
    score: float


class VectorStats(BaseModel):
    count: int
    dimension: Optional[int] = None
    status: str
    provider: str = ""


class ReindexReport(BaseModel):
    indexed: int = 0
    failed: List[str] = Field(default_factory=list)
    status: str = Field(default="ok", description="ok | partial | failed")


def embed_cache_key(text: str) -> str:
    return EMBED_KEY_PREFIX + normalize_text(text)


class VectorIndex:
    def __init__(
        self,
        provider: EmbeddingProvider,
        backend: Optional[SimilarityBackend] = None,
        *,
        cache: Optional[CacheManager] = None,
        config: Optional[VectorConfig] = None,
        corpus: Optional[Corpus] = None,
    ) -> None:
        self.provider = provider
        self.backend = backend or InMemorySimilarityBackend()
        self.config = config or VectorConfig()
        self.cache = cache or CacheManager(
            max_size=self.config.embed_cache_size,
            default_ttl=self.config.embed_cache_ttl_seconds,
            name="embed-cache",
        )
        self.corpus = corpus
        self._status = STATUS_READY
        self._last_error: Optional[str] = None
        self._executor = ThreadPoolExecutor(max_workers=4, thread_name_prefix="kbase-embed")

    @property
    def status(self) -> str:
        return self._status

    def close(self) -> None:
        self._executor.shutdown(wait=False)

    # ------------------------------
    # Provider boundary
    # ------------------------------

    def _call(self, fn: Callable[..., Any], *args: Any) -> Any:
        future = self._executor.submit(fn, *args)
        try:
            result = future.result(timeout=self.config.timeout_seconds)
        except FutureTimeout as e:
            future.cancel()
            self._mark_unavailable(f"timed out after {self.config.timeout_seconds}s")
            raise ProviderUnavailable(
                "Embedding provider timed out.",
                details={"provider": self.provider.name, "timeout_seconds": self.config.timeout_seconds},
            ) from e
        except ProviderUnavailable as e:
            self._mark_unavailable(e.message)
            raise
        except Exception as e:
            self._mark_unavailable(str(e))
            raise ProviderUnavailable(f"Embedding provider failed: {e}", details={"provider": self.provider.name}) from e
        if self._status != STATUS_READY:
            logger.info("Embedding provider recovered", extra={"component": "vector"})
        self._status = STATUS_READY
        self._last_error = None
        return result

    def _mark_unavailable(self, reason: str) -> None:
        if self._status != STATUS_UNAVAILABLE:
            logger.warning("Embedding provider unavailable", extra={"component": "vector", "error": reason})
        self._status = STATUS_UNAVAILABLE
        self._last_error = reason

    def embed(self, text: str) -> List[float]:
        """Embedding for text, served from cache when possible. Raises ProviderUnavailable."""
        key = embed_cache_key(text)
        cached = self.cache.get(key)
        if cached is not None:
            return list(cached)
        vector = [float(x) for x in self._call(self.provider.embed, text)]
        self.cache.set(key, tuple(vector), ttl=self.config.embed_cache_ttl_seconds)
        return vector

    # ------------------------------
    # Writes
    # ------------------------------

    def upsert(self, record_id: str, vector: Sequence[float], metadata: Optional[Dict[str, Any]] = None) -> None:
        self.backend.upsert(record_id, vector, metadata)

    def upsert_record(self, record: KnowledgeRecord) -> bool:
        """Embed and store one record. False when the provider is unavailable."""
        try:
            vector = self.embed(flatten_text(record.body))
        except ProviderUnavailable as e:
            logger.warning(
                "Vector upsert skipped",
                extra={"component": "vector", "record_id": record.id, "error": e.message},
            )
            return False
        try:
            self.upsert(record.id, vector, self._metadata(record))
        except IndexCorruption as e:
            logger.error(
                "Vector index corrupt, running full reindex",
                extra={"component": "vector", "record_id": record.id, "error": e.message},
            )
            if self.corpus is None:
                raise
            report = self.reindex(self.corpus.records(), clear=True)
            return record.id not in report.failed
        return True

    def remove(self, record_id: str) -> bool:
        return self.backend.delete(record_id)

    @staticmethod
    def _metadata(record: KnowledgeRecord) -> Dict[str, Any]:
        return {"file": record.file, "category": record.category, "title": display_title(record.body)}

    # ------------------------------
    # Search
    # ------------------------------

    def search(self, text: str, top_k: Optional[int] = None, min_score: Optional[float] = None) -> List[VectorHit]:
        if not self.config.enabled or not (text or "").strip() or self.backend.count() == 0:
            return []
        k = top_k if top_k is not None else self.config.top_k
        threshold = self.config.min_score if min_score is None else min_score
        try:
            vector = self.embed(text)
        except ProviderUnavailable:
            return []
        try:
            ranked = self.backend.query(vector, k)
        except IndexCorruption as e:
            logger.error("Vector query failed", extra={"component": "vector", "query": text, "error": e.message})
            return []
        hits: List[VectorHit] = []
        for record_id, raw in ranked:
            score = round(max(0.0, min(1.0, raw)), 6)
            if score >= threshold and score > 0.0:
                hits.append(VectorHit(record_id=record_id, score=score))
        return hits

    def stats(self) -> VectorStats:
        return VectorStats(
            count=self.backend.count(),
            dimension=self.backend.dimension or self.provider.dimension,
            status=self._status,
            provider=self.provider.name,
        )

    # ------------------------------
    # Bulk reindex
    # ------------------------------

    def reindex(self, records: Sequence[KnowledgeRecord], clear: bool = True) -> ReindexReport:
        records = list(records)
        texts = [flatten_text(r.body) for r in records]
        if clear:
            self.provider.fit(texts)
            self.backend.clear()

        report = ReindexReport()
        size = self.config.batch_size
        for start in range(0, len(records), size):
            batch = records[start : start + size]
            batch_texts = texts[start : start + size]
            try:
                vectors = self._call(self.provider.embed_batch, batch_texts)
            except ProviderUnavailable:
                vectors = [self._embed_one(r, t) for r, t in zip(batch, batch_texts)]
            for record, vector in zip(batch, vectors):
                if vector is None:
                    report.failed.append(record.id)
                    continue
                try:
                    self.upsert(record.id, vector, self._metadata(record))
                    report.indexed += 1
                except IndexCorruption as e:
                    logger.error(
                        "Vector upsert rejected",
                        extra={"component": "vector", "record_id": record.id, "error": e.message},
                    )
                    report.failed.append(record.id)

        self.cache.invalidate_pattern(EMBED_KEY_PREFIX + "*")
        if report.failed:
            report.status = "failed" if report.indexed == 0 else "partial"
        logger.info(
            "Vector reindex finished",
            extra={"component": "vector", "count": report.indexed, "error": ",".join(report.failed) or None},
        )
        return report

    def _embed_one(self, record: KnowledgeRecord, text: str) -> Optional[List[float]]:
        try:
            return self._call(self.provider.embed, text)
        except ProviderUnavailable as e:
            logger.warning("Record embedding failed", extra={"component": "vector", "record_id": record.id, "error": e.message})
            return None
