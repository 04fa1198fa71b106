# ==============================
# Local Hashing Provider
# ==============================
"""
Deterministic, offline embedding provider.

Hashed bag-of-words: each token is hashed (md5, stable across processes) to a
bucket and a sign; bucket weights are 1 + log(tf), optionally scaled by an IDF
learned with fit(). Vectors are L2-normalized so cosine is a dot product.

Good enough for near-synonym-free lexical overlap and for tests; swap in a
hosted provider for real semantic recall.
"""

from __future__ import annotations

import hashlib
import math
from collections import Counter
from typing import Dict, List, Optional, Sequence

import numpy as np

from kbcore.embeddings.base import EmbeddingProvider
from kbcore.search.text import Tokenizer


def _bucket(token: str, dimension: int) -> tuple:
    digest = hashlib.md5(token.encode("utf-8")).digest()
    index = int.from_bytes(digest[:4], "little") % dimension
    sign = 1.0 if digest[4] & 1 else -1.0
    return index, sign


class LocalHashingProvider(EmbeddingProvider):
    name = "local"

    def __init__(self, *, dimension: int = 384, tokenizer: Optional[Tokenizer] = None) -> None:
        if dimension < 8:
            raise ValueError("dimension must be >= 8")
        self._dimension = dimension
        self.tokenizer = tokenizer or Tokenizer()
        self._idf: Dict[str, float] = {}
        self._default_idf = 1.0

    @property
    def dimension(self) -> int:
        return self._dimension

    def fit(self, texts: Sequence[str]) -> None:
        docs = [set(self.tokenizer.tokens(t)) for t in texts]
        n = len(docs)
        df: Counter = Counter()
        for doc in docs:
            df.update(doc)
        self._idf = {term: 1.0 + math.log((n + 1) / (count + 1)) for term, count in df.items()}
        # unseen terms are treated as rare
        self._default_idf = 1.0 + math.log(n + 1) if n else 1.0

    def _vector(self, text: str) -> List[float]:
        vec = np.zeros(self._dimension, dtype=np.float64)
        counts = Counter(self.tokenizer.tokens(text))
        for token, tf in counts.items():
            index, sign = _bucket(token, self._dimension)
            weight = (1.0 + math.log(tf)) * self._idf.get(token, self._default_idf)
            vec[index] += sign * weight
        norm = float(np.linalg.norm(vec))
        if norm > 0.0:
            vec /= norm
        return vec.tolist()

    def embed_batch(self, texts: Sequence[str]) -> List[List[float]]:
        return [self._vector(t) for t in texts]
