# ==============================
# Embedding Provider Contracts
# ==============================
"""
Provider boundary for text embeddings.

Rules:
- Only the Vector Index calls providers.
- No env reads here. Keys and endpoints are injected from Settings.
- Providers raise ProviderUnavailable for any transport or payload failure;
  they never return partial vectors.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Sequence

from pydantic import BaseModel, ConfigDict, Field


class EmbeddingRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    model: str = Field(..., description="Model or deployment name")
    input: List[str] = Field(default_factory=list)
    metadata: Dict[str, Any] = Field(default_factory=dict)


class EmbeddingResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    ok: bool = Field(default=True)
    model: str = Field(...)
    vectors: List[List[float]] = Field(default_factory=list)
    usage: Dict[str, Any] = Field(default_factory=dict)
    error: Optional[Dict[str, Any]] = Field(default=None)


class EmbeddingProvider(ABC):
    name: str = "base"

    @property
    @abstractmethod
    def dimension(self) -> int:
        raise NotImplementedError

    @abstractmethod
    def embed_batch(self, texts: Sequence[str]) -> List[List[float]]:
        raise NotImplementedError

    def embed(self, text: str) -> List[float]:
        return self.embed_batch([text])[0]

    def fit(self, texts: Sequence[str]) -> None:
        """Corpus-aware providers (local hashing) learn from the corpus here."""
        return None
