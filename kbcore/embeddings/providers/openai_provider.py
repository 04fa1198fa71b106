# ==============================
# OpenAI / Azure OpenAI Embedding Providers
# ==============================
"""
HTTP adapters for hosted embedding endpoints.

Important:
- No environment reads here. API keys and endpoints come from Settings
  (hydrated by kbcore/config/loader.py).
- Every request carries a timeout. Transport errors, non-2xx responses and
  malformed payloads all raise ProviderUnavailable.
- Inputs are sent in chunks of config.batch_size; results keep input order.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Sequence

import requests

from kbcore.config.schema import AzureEmbeddingConfig, OpenAIEmbeddingConfig
from kbcore.embeddings.base import EmbeddingProvider, EmbeddingRequest, EmbeddingResponse
from kbcore.errors import ProviderUnavailable

logger = logging.getLogger("kbase.embeddings")


def _parse_response(model: str, body: Any, expected: int) -> EmbeddingResponse:
    if not isinstance(body, dict) or not isinstance(body.get("data"), list):
        raise ProviderUnavailable("Embedding response missing 'data'.", details={"model": model})
    rows = sorted(body["data"], key=lambda r: int(r.get("index", 0)))
    vectors = [list(map(float, r.get("embedding") or [])) for r in rows]
    if len(vectors) != expected or any(not v for v in vectors):
        raise ProviderUnavailable(
            "Embedding response size mismatch.",
            details={"model": model, "expected": expected, "received": len(vectors)},
        )
    return EmbeddingResponse(ok=True, model=model, vectors=vectors, usage=body.get("usage") or {})


class _HttpEmbeddingProvider(EmbeddingProvider):
    """Shared request loop; subclasses supply url, headers and batch size."""

    def __init__(self, *, timeout: float = 3.0, session: Optional[requests.Session] = None) -> None:
        self.timeout = timeout
        self.session = session or requests.Session()

    def _url(self) -> str:
        raise NotImplementedError

    def _headers(self) -> Dict[str, str]:
        raise NotImplementedError

    def _model(self) -> str:
        raise NotImplementedError

    def _batch_size(self) -> int:
        return 16

    def _request(self, request: EmbeddingRequest) -> EmbeddingResponse:
        payload: Dict[str, Any] = {"input": request.input, "model": request.model}
        try:
            resp = self.session.post(self._url(), json=payload, headers=self._headers(), timeout=self.timeout)
        except requests.RequestException as exc:
            raise ProviderUnavailable(f"{self.name} embedding request failed: {exc}", details={"model": request.model}) from exc
        if not resp.ok:
            raise ProviderUnavailable(
                f"{self.name} embedding request returned HTTP {resp.status_code}.",
                details={"model": request.model, "status": resp.status_code},
            )
        try:
            body = resp.json()
        except ValueError as exc:
            raise ProviderUnavailable(f"{self.name} embedding response was not JSON.") from exc
        return _parse_response(request.model, body, len(request.input))

    def embed_batch(self, texts: Sequence[str]) -> List[List[float]]:
        out: List[List[float]] = []
        size = self._batch_size()
        for start in range(0, len(texts), size):
            chunk = [t if t.strip() else " " for t in texts[start : start + size]]
            response = self._request(EmbeddingRequest(model=self._model(), input=chunk))
            out.extend(response.vectors)
        logger.debug("Embedded batch", extra={"component": "embeddings", "count": len(texts)})
        return out


class OpenAIEmbeddingProvider(_HttpEmbeddingProvider):
    name = "openai"

    def __init__(self, config: OpenAIEmbeddingConfig, *, timeout: float = 3.0, session: Optional[requests.Session] = None) -> None:
        if not config.api_key:
            raise ValueError("OpenAI embeddings require embeddings.openai.api_key")
        super().__init__(timeout=timeout, session=session)
        self.config = config

    @property
    def dimension(self) -> int:
        return self.config.dimension

    def _url(self) -> str:
        return f"{self.config.api_base.rstrip('/')}/embeddings"

    def _headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.config.api_key}", "Content-Type": "application/json"}

    def _model(self) -> str:
        return self.config.model

    def _batch_size(self) -> int:
        return self.config.batch_size


class AzureOpenAIEmbeddingProvider(_HttpEmbeddingProvider):
    name = "azure"

    def __init__(self, config: AzureEmbeddingConfig, *, timeout: float = 3.0, session: Optional[requests.Session] = None) -> None:
        if not config.api_key or not config.endpoint:
            raise ValueError("Azure embeddings require embeddings.azure.endpoint and api_key")
        super().__init__(timeout=timeout, session=session)
        self.config = config

    @property
    def dimension(self) -> int:
        return self.config.dimension

    def _url(self) -> str:
        base = (self.config.endpoint or "").rstrip("/")
        return f"{base}/openai/deployments/{self.config.deployment}/embeddings?api-version={self.config.api_version}"

    def _headers(self) -> Dict[str, str]:
        return {"api-key": str(self.config.api_key), "Content-Type": "application/json"}

    def _model(self) -> str:
        return self.config.deployment

    def _batch_size(self) -> int:
        return self.config.batch_size
