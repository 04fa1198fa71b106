# ==============================
# Storage Router
# ==============================
"""
Picks the corpus backend from settings.

v1:
- sqlite (default): durable, file under app.paths.storage_dir.
- memory: dev/testing, nothing survives the process.
"""

from __future__ import annotations

import logging

from kbcore.config.schema import Settings
from kbcore.storage.base import CorpusBackend
from kbcore.storage.in_memory import InMemoryCorpusBackend
from kbcore.storage.sqlite_backend import SQLiteCorpusBackend

logger = logging.getLogger("kbase.storage")


def create_backend(settings: Settings) -> CorpusBackend:
    kind = (settings.storage.backend or "sqlite").strip().lower()
    if kind == "memory":
        return InMemoryCorpusBackend()
    if kind == "sqlite":
        db_file = settings.db_path()
        db_file.parent.mkdir(parents=True, exist_ok=True)
        backend = SQLiteCorpusBackend(db_path=str(db_file))
        backend.ensure_schema()
        logger.info("Corpus backend ready", extra={"component": "storage", "file": str(db_file)})
        return backend
    raise ValueError(f"Unknown storage backend '{settings.storage.backend}'. Use 'sqlite' or 'memory'.")
