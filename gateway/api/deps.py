# ==============================
# API Dependencies / Singletons
# ==============================
from __future__ import annotations

from functools import lru_cache

from kbcore.config.loader import load_settings
from kbcore.config.schema import Settings
from kbcore.logging.logger import bootstrap_logger
from kbcore.service import KnowledgeService


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    settings = load_settings()
    bootstrap_logger(settings)
    return settings


@lru_cache(maxsize=1)
def get_service() -> KnowledgeService:
    settings = get_settings()
    return KnowledgeService.from_settings(settings, start_sweeper=True)
