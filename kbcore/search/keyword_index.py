# ==============================
# Keyword Index
# ==============================
"""
In-memory inverted index over the Corpus with explainable scoring.

Scoring (weights from SearchConfig.weights, defaults 0.5 / 0.3 / 0.2):
  score = w_coverage * coverage + w_proximity * proximity + w_quality * quality_score

- coverage: matched distinct query terms / distinct query terms. A term that
  only matched through the fuzzy fallback counts fuzzy_credit (default 0.8).
- proximity: 1 / mean gap, where the gap between two consecutive matched
  query terms is the smallest position distance between their occurrences.
  A matched single-term query scores 1.0; fewer than two matched terms of a
  multi-term query scores 0.
- quality_score: the record's stored quality.

Rules:
- Rebuilds are stop-the-world: a new immutable snapshot is built off to the
  side and swapped in with one reference assignment. Searches read whichever
  snapshot was current when they started.
- Indexed text and queries go through the same tokenizer, stemming included.
  Analytics sees the surface query words.
- Postings are built from records in id order, so two builds over the same
  corpus are identical.
- A malformed record is logged and skipped, never fatal.
- A snapshot that fails verification is discarded and rebuilt once from the
  Corpus.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, NamedTuple, Optional, Sequence, Tuple

from pydantic import BaseModel, Field

from kbcore.config.schema import SearchConfig
from kbcore.errors import IndexCorruption
from kbcore.knowledge.base import KnowledgeRecord
from kbcore.knowledge.body import flatten_text
from kbcore.knowledge.corpus import Corpus
from kbcore.search.analytics import QueryAnalytics
from kbcore.search.text import Tokenizer
from kbcore.utils.text import levenshtein

logger = logging.getLogger("kbase.keyword")


class Posting(NamedTuple):
    record_id: str
    positions: Tuple[int, ...]


class IndexStats(BaseModel):
    entries: int = Field(description="Records indexed")
    terms: int = Field(description="Distinct terms")
    skipped: int = Field(default=0, description="Malformed records left out")


class KeywordHit(BaseModel):
    record: KnowledgeRecord
    score: float
    matched_terms: List[str] = Field(default_factory=list)
    fuzzy_terms: List[str] = Field(default_factory=list)


@dataclass(frozen=True)
class IndexSnapshot:
    postings: Dict[str, Tuple[Posting, ...]] = field(default_factory=dict)
    records: Dict[str, KnowledgeRecord] = field(default_factory=dict)
    terms_by_length: Dict[int, Tuple[str, ...]] = field(default_factory=dict)
    skipped: int = 0

    @property
    def stats(self) -> IndexStats:
        return IndexStats(entries=len(self.records), terms=len(self.postings), skipped=self.skipped)


def _min_gap(left: Sequence[int], right: Sequence[int]) -> int:
    """Smallest |a - b| over two sorted position lists (two-pointer walk)."""
    i = j = 0
    best = None
    while i < len(left) and j < len(right):
        gap = abs(left[i] - right[j])
        if best is None or gap < best:
            best = gap
        if left[i] < right[j]:
            i += 1
        else:
            j += 1
    return best if best is not None else 0


class KeywordIndex:
    def __init__(
        self,
        corpus: Corpus,
        config: Optional[SearchConfig] = None,
        *,
        analytics: Optional[QueryAnalytics] = None,
        tokenizer: Optional[Tokenizer] = None,
    ) -> None:
        self.corpus = corpus
        self.config = config or SearchConfig()
        self.tokenizer = tokenizer or Tokenizer(
            self.config.stopwords,
            stemming=self.config.stemming,
            stem_rules=self.config.stem_rules,
        )
        # expansion keys meet query terms after stemming
        self._expansions: Dict[str, List[str]] = {}
        for key, aliases in self.config.term_expansions.items():
            for term in self.tokenizer.tokens(key) or [key.lower()]:
                self._expansions.setdefault(term, []).extend(aliases)
        self.analytics = analytics or QueryAnalytics(
            history_size=self.config.analytics_history,
            missed_limit=self.config.missed_query_limit,
        )
        self._snapshot = IndexSnapshot()

    # ------------------------------
    # Build
    # ------------------------------

    def index(self, records: Optional[Iterable[Any]] = None) -> IndexStats:
        """Rebuild from records (default: the whole Corpus) and swap atomically."""
        source = list(records) if records is not None else self.corpus.records()
        snapshot = self._build(source)
        try:
            self.verify(snapshot)
        except IndexCorruption as e:
            logger.error("Keyword index failed verification, rebuilding from corpus", extra={"component": "keyword", "error": str(e)})
            snapshot = self._build(self.corpus.records())
            self.verify(snapshot)
        self._snapshot = snapshot
        stats = snapshot.stats
        logger.info(
            "Keyword index rebuilt",
            extra={"component": "keyword", "count": stats.entries},
        )
        return stats

    def rebuild(self) -> IndexStats:
        return self.index(None)

    def _build(self, records: List[Any]) -> IndexSnapshot:
        by_id: Dict[str, KnowledgeRecord] = {}
        skipped = 0
        for raw in records:
            try:
                record = raw if isinstance(raw, KnowledgeRecord) else KnowledgeRecord.model_validate(raw)
            except ValueError as e:
                skipped += 1
                logger.warning("Skipping malformed record", extra={"component": "keyword", "error": str(e)})
                continue
            by_id[record.id] = record

        postings: Dict[str, List[Posting]] = {}
        indexed: Dict[str, KnowledgeRecord] = {}
        for record_id in sorted(by_id):
            record = by_id[record_id]
            try:
                positioned = self.tokenizer.positioned(flatten_text(record.body))
            except (TypeError, ValueError) as e:
                skipped += 1
                logger.warning(
                    "Skipping unindexable record",
                    extra={"component": "keyword", "record_id": record_id, "error": str(e)},
                )
                continue
            if not positioned:
                skipped += 1
                logger.warning("Skipping record with no searchable text", extra={"component": "keyword", "record_id": record_id})
                continue
            per_term: Dict[str, List[int]] = {}
            for term, pos in positioned:
                per_term.setdefault(term, []).append(pos)
            for term, positions in per_term.items():
                postings.setdefault(term, []).append(Posting(record_id, tuple(positions)))
            indexed[record_id] = record

        by_length: Dict[int, List[str]] = {}
        for term in sorted(postings):
            by_length.setdefault(len(term), []).append(term)

        return IndexSnapshot(
            postings={t: tuple(p) for t, p in postings.items()},
            records=indexed,
            terms_by_length={n: tuple(ts) for n, ts in by_length.items()},
            skipped=skipped,
        )

    @staticmethod
    def verify(snapshot: IndexSnapshot) -> None:
        """Raise IndexCorruption when postings and records disagree."""
        seen = set()
        for term, postings in snapshot.postings.items():
            previous_id = None
            for posting in postings:
                if posting.record_id not in snapshot.records:
                    raise IndexCorruption(
                        f"Posting for '{term}' references unknown record.",
                        details={"term": term, "record_id": posting.record_id},
                    )
                if previous_id is not None and posting.record_id <= previous_id:
                    raise IndexCorruption(f"Postings for '{term}' are out of order.", details={"term": term})
                if not posting.positions or list(posting.positions) != sorted(set(posting.positions)):
                    raise IndexCorruption(f"Bad positions for '{term}'.", details={"term": term, "record_id": posting.record_id})
                previous_id = posting.record_id
                seen.add(posting.record_id)
        if seen != set(snapshot.records):
            raise IndexCorruption("Indexed records without postings.", details={"count": len(set(snapshot.records) - seen)})

    # ------------------------------
    # Introspection
    # ------------------------------

    def stats(self) -> IndexStats:
        return self._snapshot.stats

    def postings(self, term: str) -> Tuple[Posting, ...]:
        return self._snapshot.postings.get(term, ())

    def export_postings(self) -> Dict[str, List[Tuple[str, Tuple[int, ...]]]]:
        snap = self._snapshot
        return {t: [(p.record_id, p.positions) for p in snap.postings[t]] for t in sorted(snap.postings)}

    # ------------------------------
    # Search
    # ------------------------------

    def search(
        self,
        query: str,
        max_results: Optional[int] = None,
        min_score: Optional[float] = None,
        file_filter: Optional[str] = None,
        category_filter: Optional[str] = None,
    ) -> List[KeywordHit]:
        started = time.perf_counter()
        snapshot = self._snapshot
        limit = max_results if max_results is not None else self.config.max_results
        threshold = self.config.min_score if min_score is None else min_score
        terms = self.tokenizer.unique_terms(query or "")

        hits: List[KeywordHit] = []
        if terms and limit > 0:
            hits = self._score(snapshot, terms, threshold, file_filter, category_filter)[:limit]

        elapsed_ms = (time.perf_counter() - started) * 1000.0
        self.analytics.record(query or "", self.tokenizer.unique_terms(query or "", stem=False), len(hits), elapsed_ms)
        logger.debug(
            "Keyword search",
            extra={"component": "keyword", "query": query, "count": len(hits)},
        )
        return hits

    def _expand(self, snapshot: IndexSnapshot, term: str) -> Dict[str, float]:
        """Indexed terms standing in for one query term, with their credit."""
        out: Dict[str, float] = {}
        if term in snapshot.postings:
            out[term] = 1.0
        for alias in self._expansions.get(term, []):
            for tok in self.tokenizer.tokens(alias):
                if tok in snapshot.postings:
                    out.setdefault(tok, 1.0)
        if out or not self.config.fuzzy_enabled or len(term) < self.config.fuzzy_min_term_length:
            return out

        max_distance = min(self.config.fuzzy_max_distance, 1 if len(term) < 7 else 2)
        for length in range(len(term) - max_distance, len(term) + max_distance + 1):
            for candidate in snapshot.terms_by_length.get(length, ()):
                distance = levenshtein(term, candidate, max_distance=max_distance)
                if 0 < distance <= max_distance:
                    out[candidate] = self.config.fuzzy_credit
        return out

    def _score(
        self,
        snapshot: IndexSnapshot,
        terms: List[str],
        threshold: float,
        file_filter: Optional[str],
        category_filter: Optional[str],
    ) -> List[KeywordHit]:
        # record_id -> query term -> (credit, positions)
        matches: Dict[str, Dict[str, Tuple[float, List[int]]]] = {}
        fuzzy: Dict[str, set] = {}
        for term in terms:
            for indexed_term, credit in self._expand(snapshot, term).items():
                for posting in snapshot.postings.get(indexed_term, ()):
                    per_record = matches.setdefault(posting.record_id, {})
                    prev_credit, prev_positions = per_record.get(term, (0.0, []))
                    per_record[term] = (max(prev_credit, credit), prev_positions + list(posting.positions))
                    if credit < 1.0:
                        fuzzy.setdefault(posting.record_id, set()).add(term)

        weights = self.config.weights
        hits: List[KeywordHit] = []
        for record_id, per_term in matches.items():
            record = snapshot.records[record_id]
            if file_filter is not None and record.file != file_filter:
                continue
            if category_filter is not None and record.category != category_filter:
                continue
            coverage = sum(credit for credit, _ in per_term.values()) / len(terms)
            proximity = self._proximity(terms, per_term)
            score = round(
                weights.coverage * coverage + weights.proximity * proximity + weights.quality * record.quality_score,
                6,
            )
            if score < threshold:
                continue
            hits.append(
                KeywordHit(
                    record=record,
                    score=score,
                    matched_terms=[t for t in terms if t in per_term],
                    fuzzy_terms=sorted(t for t in fuzzy.get(record_id, ()) if per_term.get(t, (1.0,))[0] < 1.0),
                )
            )
        hits.sort(key=lambda h: (-h.score, -h.record.quality_score, h.record.id))
        return hits

    @staticmethod
    def _proximity(terms: List[str], per_term: Dict[str, Tuple[float, List[int]]]) -> float:
        matched = [t for t in terms if t in per_term]
        if len(terms) == 1:
            return 1.0 if matched else 0.0
        if len(matched) < 2:
            return 0.0
        gaps = []
        for left, right in zip(matched, matched[1:]):
            gap = _min_gap(sorted(per_term[left][1]), sorted(per_term[right][1]))
            gaps.append(max(1, gap))
        return 1.0 / (sum(gaps) / len(gaps))
