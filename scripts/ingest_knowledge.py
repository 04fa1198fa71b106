# ==============================
# Knowledge Harvest Ingestion Script (v1)
# ==============================
"""
Feed harvested knowledge JSON files through the Knowledge Store.

Usage examples:
  python scripts/ingest_knowledge.py --path data/knowledge/ --glob "*.json"
  python scripts/ingest_knowledge.py --file data/best-practices.json --source official-docs --verified
  python scripts/ingest_knowledge.py --file harvest.json --knowledge-file studio-pro --db /tmp/kb.sqlite

Accepted file shapes:
  {"categories": {"<category>": [<body>, ...]}, "items": [<body>, ...]}
  [<body>, ...]

Notes:
- The knowledge file name defaults to the JSON file stem.
- Every body carries a provenance string; default "harvest:<filename>@<utc timestamp>".
- Bodies go through normal ingest: quality scoring, dedup/merge, reindex.
  Re-running the same harvest merges instead of growing the corpus.
"""

from __future__ import annotations

import argparse
import glob
import json
import os
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple

from kbcore.config.loader import load_settings
from kbcore.errors import ValidationError
from kbcore.logging.logger import bootstrap_logger
from kbcore.service import KnowledgeService


def read_json_file(path: str) -> Any:
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)


def iter_bodies(data: Any) -> Iterator[Tuple[Optional[str], Any]]:
    """(category, body) pairs from one harvested document."""
    if isinstance(data, list):
        for body in data:
            yield None, body
        return
    if not isinstance(data, dict):
        return
    categories = data.get("categories") or {}
    if isinstance(categories, dict):
        for category in sorted(categories):
            entries = categories[category]
            if isinstance(entries, list):
                for body in entries:
                    yield category, body
    items = data.get("items") or []
    if isinstance(items, list):
        for body in items:
            yield None, body


def iter_files(
    *,
    root: Optional[str],
    explicit_files: Sequence[str],
    patterns: Optional[Sequence[str]],
    max_bytes: int,
) -> Tuple[List[str], List[str]]:
    files: List[str] = []
    skipped: List[str] = []

    for p in explicit_files:
        if os.path.isfile(p):
            files.append(os.path.abspath(p))
        else:
            skipped.append(f"{p} (not found)")

    if root:
        if not os.path.isdir(root):
            skipped.append(f"{root} (not a directory)")
        else:
            root_path = os.path.abspath(root)
            for pattern in patterns or ["**/*.json"]:
                for path in glob.glob(os.path.join(root_path, pattern), recursive=True):
                    if os.path.isfile(path) and path.lower().endswith(".json"):
                        files.append(os.path.abspath(path))

    filtered: List[str] = []
    for path in sorted(set(files)):
        try:
            size = os.path.getsize(path)
        except OSError:
            skipped.append(f"{path} (unreadable)")
            continue
        if size > max_bytes:
            skipped.append(f"{path} (>{max_bytes} bytes)")
            continue
        filtered.append(path)
    return filtered, skipped


def default_source(path: str, *, now: Optional[datetime] = None) -> str:
    ts = (now or datetime.now(timezone.utc)).strftime("%Y-%m-%dT%H:%M:%SZ")
    return f"harvest:{os.path.basename(path)}@{ts}"


def ingest_file(
    service: KnowledgeService,
    path: str,
    *,
    knowledge_file: Optional[str],
    source: Optional[str],
    verified: bool,
    domain_version: Optional[str],
) -> Dict[str, Any]:
    counts: Dict[str, Any] = {"created": 0, "merged": 0, "rejected": 0, "errors": []}
    try:
        data = read_json_file(path)
    except (OSError, ValueError) as exc:
        counts["errors"].append(f"{path}: {exc}")
        return counts

    file_name = knowledge_file or os.path.splitext(os.path.basename(path))[0]
    provenance = source or default_source(path)
    for idx, (category, body) in enumerate(iter_bodies(data)):
        try:
            result = service.ingest(
                file_name,
                category,
                body,
                provenance,
                verified=verified,
                domain_version=domain_version,
            )
        except ValidationError as exc:
            counts["rejected"] += 1
            counts["errors"].append(f"{path}[{idx}]: {exc.message}")
            continue
        counts["merged" if result.merged else "created"] += 1
    return counts


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    ap = argparse.ArgumentParser(description="Ingest harvested knowledge JSON into the knowledge store.")
    ap.add_argument("--path", help="Directory to scan for JSON files")
    ap.add_argument("--glob", action="append", help="Glob pattern relative to --path (can repeat)")
    ap.add_argument("--file", action="append", default=[], help="Specific JSON file to ingest (can repeat)")
    ap.add_argument("--knowledge-file", default=None, help="Target knowledge file name (default: JSON file stem)")
    ap.add_argument("--source", default=None, help="Provenance string (default: harvest:<file>@<timestamp>)")
    ap.add_argument("--verified", action="store_true", help="Mark ingested records as verified")
    ap.add_argument("--domain-version", default=None, help="Domain version the harvest targets")
    ap.add_argument("--db", default=None, help="Override the SQLite corpus path")
    ap.add_argument("--max-bytes", type=int, default=5_000_000, help="Skip files larger than this many bytes (default: 5MB)")
    return ap.parse_args(argv)


def run_ingest(args: argparse.Namespace, *, service: Optional[KnowledgeService] = None) -> int:
    if not args.path and not args.file:
        raise SystemExit("Provide --path or at least one --file")

    files, skipped = iter_files(root=args.path, explicit_files=args.file, patterns=args.glob, max_bytes=args.max_bytes)
    if not files:
        print("No eligible files found.")
        for note in skipped:
            print(f"SKIP: {note}")
        return 1

    owns_service = service is None
    if service is None:
        settings = load_settings()
        if args.db:
            settings = settings.model_copy(
                update={"storage": settings.storage.model_copy(update={"backend": "sqlite", "db_path": args.db})}
            )
        bootstrap_logger(settings)
        service = KnowledgeService.from_settings(settings)

    totals: Dict[str, Any] = {"created": 0, "merged": 0, "rejected": 0, "errors": []}
    try:
        for path in files:
            counts = ingest_file(
                service,
                path,
                knowledge_file=args.knowledge_file,
                source=args.source,
                verified=args.verified,
                domain_version=args.domain_version,
            )
            for key in ("created", "merged", "rejected"):
                totals[key] += counts[key]
            totals["errors"].extend(counts["errors"])
        stats = service.get_stats()
    finally:
        if owns_service:
            service.close()

    print(f"files_processed={len(files)} skipped={len(skipped)}")
    print(f"created={totals['created']} merged={totals['merged']} rejected={totals['rejected']}")
    print(f"corpus_size={stats.corpus_size} indexed_terms={stats.indexed_terms} vector_count={stats.vector_count}")
    if skipped:
        print("Skipped:")
        for msg in skipped[:20]:
            print(f"- {msg}")
    if totals["errors"]:
        print("Errors:")
        for msg in totals["errors"][:20]:
            print(f"- {msg}")
    return 0 if not totals["errors"] else 1


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = parse_args(argv)
    return run_ingest(args)


if __name__ == "__main__":
    raise SystemExit(main())
