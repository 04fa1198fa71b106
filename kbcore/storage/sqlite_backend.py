# ==============================
# SQLite Corpus Backend (v1)
# ==============================
"""
SQLite backend for durable knowledge records.

Tables:
- schema_version
- records

Notes:
- Idempotent schema creation on init.
- Minimal migration strategy: integer schema version.
- body and metadata stored as TEXT (json dumps of model_dump(mode="json")),
  so history snapshots and timestamps round-trip through pydantic validation.
- Searchable columns (file, category, version, updated_at, quality_score) are
  denormalized copies for ad-hoc inspection; the JSON is authoritative.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
from contextlib import closing
from pathlib import Path
from typing import Any, List, Optional

from kbcore.knowledge.base import KnowledgeRecord, RecordMetadata
from kbcore.storage.base import CorpusBackend

logger = logging.getLogger("kbase.storage")

SCHEMA_VERSION = 1


def _dumps(x: Any) -> str:
    return json.dumps(x, ensure_ascii=False, sort_keys=True)


def _loads(s: Optional[str], default: Any) -> Any:
    if s is None:
        return default
    try:
        return json.loads(s)
    except (TypeError, ValueError):
        return default


class SQLiteCorpusBackend(CorpusBackend):
    def __init__(self, *, db_path: str, initialize: bool = True) -> None:
        self.db_path = db_path
        self._write_lock = threading.Lock()
        if initialize:
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)
            self._init_db()

    def _connect(self) -> sqlite3.Connection:
        con = sqlite3.connect(self.db_path, check_same_thread=False, timeout=10.0)
        con.row_factory = sqlite3.Row
        con.execute("PRAGMA journal_mode=WAL;")
        con.execute("PRAGMA synchronous=NORMAL;")
        con.execute("PRAGMA busy_timeout=5000;")
        return con

    def _init_db(self) -> None:
        with closing(self._connect()) as con:
            con.execute(
                """
                CREATE TABLE IF NOT EXISTS schema_version (
                  id INTEGER PRIMARY KEY CHECK (id = 1),
                  version INTEGER NOT NULL
                )
                """
            )
            row = con.execute("SELECT version FROM schema_version WHERE id=1").fetchone()
            if row is None:
                con.execute("INSERT INTO schema_version (id, version) VALUES (1, ?)", (SCHEMA_VERSION,))
                version = SCHEMA_VERSION
            else:
                version = int(row["version"])

            if version < SCHEMA_VERSION:
                self._migrate(con, from_version=version, to_version=SCHEMA_VERSION)

            # v1 schema
            con.execute(
                """
                CREATE TABLE IF NOT EXISTS records (
                  id TEXT PRIMARY KEY,
                  file TEXT NOT NULL,
                  category TEXT,
                  version INTEGER NOT NULL,
                  quality_score REAL NOT NULL,
                  updated_at TEXT NOT NULL,
                  body_json TEXT NOT NULL,
                  metadata_json TEXT NOT NULL
                )
                """
            )
            con.execute("CREATE INDEX IF NOT EXISTS idx_records_partition ON records(file, category)")
            con.execute("CREATE INDEX IF NOT EXISTS idx_records_updated ON records(updated_at)")
            con.commit()

    def _migrate(self, con: sqlite3.Connection, *, from_version: int, to_version: int) -> None:
        # v1 only; placeholder for future migrations
        logger.info("Migrating corpus schema", extra={"component": "storage", "count": to_version})
        con.execute("UPDATE schema_version SET version=? WHERE id=1", (to_version,))
        con.commit()

    def ensure_schema(self) -> None:
        self._init_db()

    def get_schema_version(self) -> int:
        with closing(self._connect()) as con:
            try:
                row = con.execute("SELECT version FROM schema_version WHERE id=1").fetchone()
            except sqlite3.OperationalError:
                return 0
            return int(row["version"]) if row else 0

    # ------------------------------
    # Records
    # ------------------------------

    def save(self, record: KnowledgeRecord) -> None:
        metadata = record.metadata.model_dump(mode="json")
        with self._write_lock, closing(self._connect()) as con:
            con.execute(
                """
                INSERT OR REPLACE INTO records (
                  id, file, category, version, quality_score, updated_at, body_json, metadata_json
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    record.id,
                    record.file,
                    record.category,
                    int(record.metadata.version),
                    float(record.metadata.quality_score),
                    metadata["updated_at"],
                    _dumps(record.body),
                    _dumps(metadata),
                ),
            )
            con.commit()

    def delete(self, record_id: str) -> bool:
        with self._write_lock, closing(self._connect()) as con:
            cur = con.execute("DELETE FROM records WHERE id=?", (record_id,))
            con.commit()
            return cur.rowcount > 0

    def get(self, record_id: str) -> Optional[KnowledgeRecord]:
        with closing(self._connect()) as con:
            row = con.execute("SELECT * FROM records WHERE id=?", (record_id,)).fetchone()
        return self._row_to_record(row) if row is not None else None

    def load_all(self) -> List[KnowledgeRecord]:
        with closing(self._connect()) as con:
            rows = con.execute("SELECT * FROM records ORDER BY id ASC").fetchall()
        out: List[KnowledgeRecord] = []
        for row in rows:
            record = self._row_to_record(row)
            if record is not None:
                out.append(record)
        return out

    def count(self) -> int:
        with closing(self._connect()) as con:
            return int(con.execute("SELECT COUNT(1) FROM records").fetchone()[0])

    def _row_to_record(self, row: sqlite3.Row) -> Optional[KnowledgeRecord]:
        try:
            return KnowledgeRecord(
                id=row["id"],
                file=row["file"],
                category=row["category"],
                body=_loads(row["body_json"], {}) or {},
                metadata=RecordMetadata.model_validate(_loads(row["metadata_json"], {})),
            )
        except ValueError as e:
            # Corrupt row: skip it rather than refusing to start.
            logger.warning(
                "Skipping unreadable record row",
                extra={"component": "storage", "record_id": row["id"], "error": str(e)},
            )
            return None
