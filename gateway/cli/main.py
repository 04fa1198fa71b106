# ==============================
# CLI Entrypoint
# ==============================
"""
CLI for the knowledge engine.

Supported commands:
  kbase search "loop over a list" --limit 5 --mode hybrid
  kbase ingest --file best-practices --category loops --source docs --body '{"title": "...", "text": "..."}'
  kbase ingest --file best-practices --source docs --body-file entry.json --verified
  kbase stats
  kbase stale --horizon-days 90
  kbase gaps
  kbase quality --id kr_123
  kbase verify --id kr_123
  kbase delete --id kr_123
  kbase reindex

Output is JSON on stdout; logs go to stderr.
"""

from __future__ import annotations

import argparse
import json
from pathlib import Path
from typing import Any, Dict, List, Optional

from kbcore.config.loader import load_settings
from kbcore.errors import KnowledgeEngineError
from kbcore.logging.logger import bootstrap_logger
from kbcore.service import KnowledgeService


def _json_load(text: str) -> Dict[str, Any]:
    try:
        value = json.loads(text)
    except ValueError as exc:
        raise SystemExit(f"Invalid JSON body: {exc}") from exc
    if not isinstance(value, dict):
        raise SystemExit("JSON body must be an object.")
    return value


def _load_body_arg(body: Optional[str], body_file: Optional[str]) -> Dict[str, Any]:
    if body and body_file:
        raise SystemExit("Provide only one of --body or --body-file.")
    if body_file:
        return _json_load(Path(body_file).read_text(encoding="utf-8"))
    if body:
        return _json_load(body)
    raise SystemExit("One of --body or --body-file is required.")


def _print_json(obj: Any) -> None:
    print(json.dumps(obj, indent=2, ensure_ascii=False, default=str))


def _print_error(err: KnowledgeEngineError) -> int:
    _print_json({"ok": False, "error": err.to_dict()})
    return 2


def cmd_search(service: KnowledgeService, *, query: str, limit: Optional[int], mode: str) -> int:
    outcome = service.search(query, limit=limit, mode=mode)
    _print_json(outcome.model_dump(mode="json"))
    return 0


def cmd_ingest(service: KnowledgeService, args: argparse.Namespace) -> int:
    body = _load_body_arg(args.body, args.body_file)
    result = service.ingest(
        args.file,
        args.category,
        body,
        args.source,
        verified=args.verified,
        domain_version=args.domain_version,
    )
    _print_json(result.model_dump(mode="json"))
    return 0


def cmd_stats(service: KnowledgeService) -> int:
    _print_json(service.get_stats().model_dump(mode="json"))
    return 0


def cmd_stale(service: KnowledgeService, *, horizon_days: Optional[int]) -> int:
    _print_json(service.staleness_report(horizon_days).model_dump(mode="json"))
    return 0


def cmd_gaps(service: KnowledgeService) -> int:
    _print_json(service.knowledge_gaps().model_dump(mode="json"))
    return 0


def main(argv: Optional[List[str]] = None, *, service: Optional[KnowledgeService] = None) -> int:
    ap = argparse.ArgumentParser(prog="kbase")
    sub = ap.add_subparsers(dest="cmd", required=True)

    ap_search = sub.add_parser("search")
    ap_search.add_argument("query")
    ap_search.add_argument("--limit", type=int, default=None)
    ap_search.add_argument("--mode", choices=["hybrid", "keyword", "vector"], default="hybrid")

    ap_ingest = sub.add_parser("ingest")
    ap_ingest.add_argument("--file", required=True)
    ap_ingest.add_argument("--category", default=None)
    ap_ingest.add_argument("--source", required=True, help="Provenance string")
    ap_ingest.add_argument("--body", help="JSON object string", default=None)
    ap_ingest.add_argument("--body-file", help="Path to JSON file with the record body", default=None)
    ap_ingest.add_argument("--verified", action="store_true")
    ap_ingest.add_argument("--domain-version", default=None)

    sub.add_parser("stats")

    ap_stale = sub.add_parser("stale")
    ap_stale.add_argument("--horizon-days", type=int, default=None)

    sub.add_parser("gaps")

    ap_quality = sub.add_parser("quality")
    ap_quality.add_argument("--id", required=True)

    ap_verify = sub.add_parser("verify")
    ap_verify.add_argument("--id", required=True)

    ap_delete = sub.add_parser("delete")
    ap_delete.add_argument("--id", required=True)

    sub.add_parser("reindex")

    args = ap.parse_args(argv)

    owns_service = service is None
    if service is None:
        settings = load_settings()
        bootstrap_logger(settings)
        service = KnowledgeService.from_settings(settings)

    try:
        if args.cmd == "search":
            return cmd_search(service, query=args.query, limit=args.limit, mode=args.mode)
        if args.cmd == "ingest":
            return cmd_ingest(service, args)
        if args.cmd == "stats":
            return cmd_stats(service)
        if args.cmd == "stale":
            return cmd_stale(service, horizon_days=args.horizon_days)
        if args.cmd == "gaps":
            return cmd_gaps(service)
        if args.cmd == "quality":
            _print_json(service.quality_report(args.id).model_dump(mode="json"))
            return 0
        if args.cmd == "verify":
            _print_json(service.mark_verified(args.id).model_dump(mode="json"))
            return 0
        if args.cmd == "delete":
            service.delete(args.id)
            _print_json({"deleted": args.id})
            return 0
        if args.cmd == "reindex":
            _print_json(service.reindex_all().model_dump(mode="json"))
            return 0
    except KnowledgeEngineError as e:
        return _print_error(e)
    finally:
        if owns_service:
            service.close()

    raise SystemExit("Unknown command")


if __name__ == "__main__":
    raise SystemExit(main())
