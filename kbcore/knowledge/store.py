# ==============================
# Knowledge Store
# ==============================
"""
The self-learning write path: validate, score, dedup/merge, persist, hand off
to reindexing.

Rules:
- Mutations (ingest/update/delete/record_usage) are serialized by one RLock.
- A mutation is complete only after:
  1) the backend persisted it,
  2) the Corpus holds the new record instance,
  3) every reindex listener received the CorpusChange.
  Listener failures are logged; they never fail the mutation.
- Records are copy-on-write: the store builds a new instance and put()s it.
- Duplicates are merged, not rejected. The losing body goes to history.
- history never holds the current body; repeats are pruned on every write.
- Bodies are deep-copied on the way in. Callers keep no handle on stored state.
- Stale records are only reported, never removed.
"""

from __future__ import annotations

import copy
import logging
import threading
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Iterable, List, Optional

from pydantic import BaseModel, Field

from kbcore.config.schema import KnowledgeConfig
from kbcore.errors import NotFoundError, ValidationError
from kbcore.knowledge.base import (
    ChangeKind,
    CorpusChange,
    HistorySnapshot,
    IngestResult,
    KnowledgeRecord,
    RecordMetadata,
    SnapshotOutcome,
    StaleRecord,
    utc_now,
)
from kbcore.knowledge.body import normalize_body
from kbcore.knowledge.corpus import Corpus
from kbcore.knowledge.dedup import DuplicateDetector
from kbcore.knowledge.quality import QualityReport, QualityScorer
from kbcore.storage.base import CorpusBackend

logger = logging.getLogger("kbase.store")

ReindexListener = Callable[[CorpusChange], None]

PATCHABLE_FIELDS = ("body", "source", "verified", "category", "domain_version")


class StalenessReport(BaseModel):
    horizon_days: int
    total_records: int
    stale_count: int
    by_file: Dict[str, int] = Field(default_factory=dict)
    by_reason: Dict[str, int] = Field(default_factory=dict)
    records: List[StaleRecord] = Field(default_factory=list)


def _require_text(value: Any, *, field: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"'{field}' must be a non-empty string.", field=field)
    return value.strip()


def _require_bool(value: Any, *, field: str) -> bool:
    # "false" from a JSON patch must not read as True
    if not isinstance(value, bool):
        raise ValidationError(f"'{field}' must be a boolean.", field=field)
    return value


def _optional_text(value: Any, *, field: str) -> Optional[str]:
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError(f"'{field}' must be a string.", field=field)
    return value.strip() or None


class KnowledgeStore:
    def __init__(
        self,
        corpus: Corpus,
        backend: CorpusBackend,
        *,
        config: Optional[KnowledgeConfig] = None,
        scorer: Optional[QualityScorer] = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.corpus = corpus
        self.backend = backend
        self.config = config or KnowledgeConfig()
        self.scorer = scorer or QualityScorer(clock=clock)
        self.detector = DuplicateDetector(self.config.duplicate_threshold)
        self._clock = clock
        self._lock = threading.RLock()
        self._listeners: List[ReindexListener] = []

    # ------------------------------
    # Wiring
    # ------------------------------

    def add_listener(self, listener: ReindexListener) -> None:
        self._listeners.append(listener)

    def load(self) -> int:
        """Populate the Corpus from the backend. Returns the record count."""
        with self._lock:
            records = self.backend.load_all()
            self.corpus.clear()
            for record in records:
                self.corpus.put(record)
        logger.info("Corpus loaded", extra={"component": "store", "count": len(records)})
        return len(records)

    def get(self, record_id: str) -> KnowledgeRecord:
        record = self.corpus.get(record_id)
        if record is None:
            raise NotFoundError(f"Unknown record id '{record_id}'.", details={"record_id": record_id})
        return record

    # ------------------------------
    # Ingest
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
        file = self._validate_file(file)
        category = _optional_text(category, field="category")
        source = _require_text(source, field="source")
        domain_version = _optional_text(domain_version, field="domain_version")
        verified = _require_bool(verified, field="verified")
        canonical = normalize_body(body).joined()

        with self._lock:
            now = self._clock()
            match = None
            if self.config.conflict_detection:
                match = self.detector.find(canonical, self.corpus.partition(file, category))
            if match is not None:
                existing, similarity = match
                return self._merge(
                    existing,
                    body=copy.deepcopy(body),
                    source=source,
                    verified=verified,
                    domain_version=domain_version,
                    similarity=similarity,
                    now=now,
                )

            metadata = RecordMetadata(
                source=source,
                created_at=now,
                updated_at=now,
                verified=verified,
                domain_version=domain_version,
            )
            metadata.quality_score = self.scorer.score(metadata, now)
            record = KnowledgeRecord(file=file, category=category, body=copy.deepcopy(body), metadata=metadata)
            self._publish(record)
            logger.info(
                "Record created",
                extra={"component": "store", "record_id": record.id, "file": file, "category": category},
            )
            self._notify(CorpusChange(kind=ChangeKind.CREATED, record_ids=[record.id]))
            return IngestResult(record=record, merged=False, quality_score=metadata.quality_score)

    def _merge(
        self,
        existing: KnowledgeRecord,
        *,
        body: Dict[str, Any],
        source: str,
        verified: bool,
        domain_version: Optional[str],
        similarity: float,
        now: datetime,
    ) -> IngestResult:
        # The candidate is scored as if it were the record now, carrying the
        # existing usage so both sides are compared on body provenance alone.
        candidate_meta = existing.metadata.model_copy(
            update={"source": source, "verified": verified, "updated_at": now, "history": []}
        )
        candidate_score = self.scorer.score(candidate_meta, now)
        existing_score = self.scorer.score(existing.metadata, now)
        candidate_won = candidate_score > existing_score

        merged = existing.model_copy(deep=True)
        meta = merged.metadata
        if candidate_won:
            meta.history.append(existing.snapshot(outcome=SnapshotOutcome.SUPERSEDED))
            merged.body = body
            meta.source = source
            meta.verified = verified
            if domain_version is not None:
                meta.domain_version = domain_version
        else:
            meta.history.append(
                HistorySnapshot(
                    body=body,
                    quality_score=candidate_score,
                    source=source,
                    verified=verified,
                    timestamp=now,
                    version=existing.version,
                    outcome=SnapshotOutcome.REJECTED,
                )
            )
        meta.version = existing.version + 1
        meta.updated_at = now
        meta.history = self._prune_history(meta.history, merged.body)
        meta.quality_score = self.scorer.score(meta, now)

        self._publish(merged)
        logger.info(
            "Record merged",
            extra={
                "component": "store",
                "record_id": merged.id,
                "file": merged.file,
                "category": merged.category,
                "count": meta.version,
            },
        )
        self._notify(CorpusChange(kind=ChangeKind.MERGED, record_ids=[merged.id], text_changed=candidate_won))
        return IngestResult(
            record=merged,
            merged=True,
            quality_score=meta.quality_score,
            duplicate_of=existing.id,
            similarity=round(similarity, 4),
            candidate_won=candidate_won,
        )

    # ------------------------------
    # Update / delete
    # ------------------------------

    def update(self, record_id: str, patch: Dict[str, Any]) -> KnowledgeRecord:
        if not isinstance(patch, dict) or not patch:
            raise ValidationError("Patch must be a non-empty object.", field="patch")
        unknown = sorted(set(patch) - set(PATCHABLE_FIELDS))
        if unknown:
            raise ValidationError(
                f"Unsupported patch fields: {', '.join(unknown)}",
                field="patch",
                details={"allowed": list(PATCHABLE_FIELDS)},
            )
        if "body" in patch:
            normalize_body(patch["body"])
        source = _require_text(patch["source"], field="source") if "source" in patch else None
        verified = _require_bool(patch["verified"], field="verified") if "verified" in patch else None

        with self._lock:
            existing = self.get(record_id)
            now = self._clock()
            updated = existing.model_copy(deep=True)
            meta = updated.metadata
            body_changed = "body" in patch and patch["body"] != existing.body
            if body_changed:
                meta.history.append(existing.snapshot(outcome=SnapshotOutcome.SUPERSEDED))
                updated.body = copy.deepcopy(patch["body"])
                meta.history = self._prune_history(meta.history, updated.body)
            if source is not None:
                meta.source = source
            if "verified" in patch:
                meta.verified = verified
            if "category" in patch:
                updated.category = _optional_text(patch["category"], field="category")
            if "domain_version" in patch:
                meta.domain_version = _optional_text(patch["domain_version"], field="domain_version")
            meta.version = existing.version + 1
            meta.updated_at = now
            meta.quality_score = self.scorer.score(meta, now)

            self._publish(updated)
            logger.info(
                "Record updated",
                extra={"component": "store", "record_id": record_id, "file": updated.file, "count": meta.version},
            )
            self._notify(CorpusChange(kind=ChangeKind.UPDATED, record_ids=[record_id]))
            return updated

    def mark_verified(self, record_id: str, verified: bool = True) -> KnowledgeRecord:
        return self.update(record_id, {"verified": verified})

    def delete(self, record_id: str) -> KnowledgeRecord:
        with self._lock:
            existing = self.get(record_id)
            self.backend.delete(record_id)
            self.corpus.remove(record_id)
            logger.info("Record deleted", extra={"component": "store", "record_id": record_id, "file": existing.file})
            self._notify(CorpusChange(kind=ChangeKind.DELETED, record_ids=[record_id]))
            return existing

    def record_usage(self, record_ids: Iterable[str]) -> int:
        """Count a retrieval against each record. No version bump; unknown ids are ignored."""
        touched: List[str] = []
        with self._lock:
            now = self._clock()
            for record_id in dict.fromkeys(record_ids):
                existing = self.corpus.get(record_id)
                if existing is None:
                    continue
                updated = existing.model_copy(deep=True)
                updated.metadata.usage_count += 1
                updated.metadata.last_used_at = now
                updated.metadata.quality_score = self.scorer.score(updated.metadata, now)
                self._publish(updated)
                touched.append(record_id)
            if touched:
                self._notify(CorpusChange(kind=ChangeKind.USAGE, record_ids=touched, text_changed=False))
        return len(touched)

    # ------------------------------
    # Queries
    # ------------------------------

    def find_near_duplicate(self, file: str, category: Optional[str], body: Dict[str, Any]) -> Optional[KnowledgeRecord]:
        canonical = normalize_body(body).joined()
        match = self.detector.find(canonical, self.corpus.partition(file, category))
        return match[0] if match is not None else None

    def recompute_quality(self, record: KnowledgeRecord) -> float:
        return self.scorer.score(record.metadata, self._clock())

    def quality_report(self, record_id: str) -> QualityReport:
        return self.scorer.report(self.get(record_id), self._clock())

    def get_stale_records(self, horizon_days: Optional[int] = None) -> List[StaleRecord]:
        horizon = int(horizon_days if horizon_days is not None else self.config.stale_horizon_days)
        if horizon < 0:
            raise ValidationError("horizon_days must be >= 0.", field="horizon_days")
        now = self._clock()
        cutoff = now - timedelta(days=horizon)
        superseded = set(self.config.superseded_versions)
        out: List[StaleRecord] = []
        for record in self.corpus.records():
            reasons: List[str] = []
            if record.metadata.updated_at < cutoff:
                reasons.append("age")
            if record.metadata.domain_version and record.metadata.domain_version in superseded:
                reasons.append("superseded_version")
            if reasons:
                days_old = max(0, (now - record.metadata.updated_at).days)
                out.append(StaleRecord(record=record, days_old=days_old, reasons=reasons))
        out.sort(key=lambda s: (-s.days_old, s.record.id))
        return out

    def staleness_report(self, horizon_days: Optional[int] = None) -> StalenessReport:
        horizon = int(horizon_days if horizon_days is not None else self.config.stale_horizon_days)
        stale = self.get_stale_records(horizon)
        by_file: Dict[str, int] = {}
        by_reason: Dict[str, int] = {}
        for item in stale:
            by_file[item.record.file] = by_file.get(item.record.file, 0) + 1
            for reason in item.reasons:
                by_reason[reason] = by_reason.get(reason, 0) + 1
        return StalenessReport(
            horizon_days=horizon,
            total_records=len(self.corpus),
            stale_count=len(stale),
            by_file=dict(sorted(by_file.items())),
            by_reason=dict(sorted(by_reason.items())),
            records=stale,
        )

    # ------------------------------
    # Internals
    # ------------------------------

    def _validate_file(self, file: Any) -> str:
        file = _require_text(file, field="file")
        allowed = self.config.files
        if allowed and file not in allowed:
            raise ValidationError(
                f"Unknown knowledge file '{file}'.",
                field="file",
                details={"allowed": list(allowed)},
            )
        return file

    def _prune_history(self, history: List[HistorySnapshot], current_body: Dict[str, Any]) -> List[HistorySnapshot]:
        """Drop snapshots that repeat the current body, then cap."""
        return self._cap_history([s for s in history if s.body != current_body])

    def _cap_history(self, history: List[HistorySnapshot]) -> List[HistorySnapshot]:
        limit = self.config.max_history
        if limit <= 0:
            return []
        return history[-limit:]

    def _publish(self, record: KnowledgeRecord) -> None:
        self.backend.save(record)
        self.corpus.put(record)

    def _notify(self, change: CorpusChange) -> None:
        for listener in list(self._listeners):
            try:
                listener(change)
            except Exception as e:
                logger.exception(
                    "Reindex listener failed",
                    extra={"component": "store", "record_id": ",".join(change.record_ids), "error": str(e)},
                )
