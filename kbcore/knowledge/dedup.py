# ==============================
# Near-Duplicate Detection
# ==============================
"""
Finds an existing record whose canonical text is close enough to a candidate
to be treated as the same knowledge.

Rules:
- Only records in the same (file, category) partition are compared.
- Texts are normalized (lowercase, whitespace collapsed) before comparison.
- similarity >= threshold is a duplicate. The best match wins; equal
  similarity resolves to the lowest id.

The scan is linear in the partition size. Fine for tens of thousands of
records per partition; beyond that, a blocking key (e.g. shingles) is needed.
"""

from __future__ import annotations

from typing import Iterable, Optional, Tuple

from kbcore.errors import ValidationError
from kbcore.knowledge.base import KnowledgeRecord
from kbcore.knowledge.body import normalize_body
from kbcore.utils.text import normalize_text, similarity_ratio


def canonical_text(body: dict) -> str:
    return normalize_text(normalize_body(body).joined())


class DuplicateDetector:
    def __init__(self, threshold: float = 0.8) -> None:
        if not 0.0 <= threshold <= 1.0:
            raise ValueError("threshold must be within [0, 1]")
        self.threshold = threshold

    def similarity(self, left: str, right: str) -> float:
        return similarity_ratio(normalize_text(left), normalize_text(right))

    def find(
        self,
        candidate_text: str,
        records: Iterable[KnowledgeRecord],
        *,
        exclude_id: Optional[str] = None,
    ) -> Optional[Tuple[KnowledgeRecord, float]]:
        target = normalize_text(candidate_text)
        best: Optional[Tuple[KnowledgeRecord, float]] = None
        for record in records:
            if record.id == exclude_id:
                continue
            try:
                existing = canonical_text(record.body)
            except ValidationError:
                continue
            ratio = similarity_ratio(target, existing, min_ratio=self.threshold)
            if ratio < self.threshold:
                continue
            if best is None or ratio > best[1] or (ratio == best[1] and record.id < best[0].id):
                best = (record, ratio)
        return best
