# ==============================
# Embedding Provider Router
# ==============================
"""
Chooses the embedding provider from settings.

provider:
- azure | openai | local: exactly that provider (misconfiguration is an error)
- auto: azure when endpoint + key are set, else openai when a key is set,
  else the offline local provider
"""

from __future__ import annotations

import logging

from kbcore.config.schema import Settings
from kbcore.embeddings.base import EmbeddingProvider
from kbcore.embeddings.providers.local_provider import LocalHashingProvider
from kbcore.embeddings.providers.openai_provider import AzureOpenAIEmbeddingProvider, OpenAIEmbeddingProvider

logger = logging.getLogger("kbase.embeddings")


def build_embedding_provider(settings: Settings) -> EmbeddingProvider:
    cfg = settings.embeddings
    timeout = settings.vector.timeout_seconds
    choice = (cfg.provider or "auto").strip().lower()

    if choice == "auto":
        if cfg.azure.endpoint and cfg.azure.api_key:
            choice = "azure"
        elif cfg.openai.api_key:
            choice = "openai"
        else:
            choice = "local"

    if choice == "azure":
        provider: EmbeddingProvider = AzureOpenAIEmbeddingProvider(cfg.azure, timeout=timeout)
    elif choice == "openai":
        provider = OpenAIEmbeddingProvider(cfg.openai, timeout=timeout)
    elif choice == "local":
        provider = LocalHashingProvider(dimension=cfg.local_dimension)
    else:
        raise ValueError(f"Unknown embeddings provider '{cfg.provider}'. Use auto, azure, openai or local.")

    logger.info("Embedding provider selected", extra={"component": "embeddings", "query": provider.name})
    return provider
