# ==============================
# API Server Entrypoint
# ==============================
"""
Serve the knowledge API.

  python -m gateway.api --port 8080

Host and port default to configs/app.yaml (app.host / app.port).
"""

from __future__ import annotations

import argparse
from typing import List, Optional

import uvicorn

from gateway.api.deps import get_settings
from gateway.api.http_app import create_app


def main(argv: Optional[List[str]] = None) -> None:
    ap = argparse.ArgumentParser(prog="python -m gateway.api")
    ap.add_argument("--host", default=None)
    ap.add_argument("--port", type=int, default=None)
    args = ap.parse_args(argv)

    settings = get_settings()
    host = args.host or settings.app.host
    port = int(args.port or settings.app.port)
    uvicorn.run(create_app(), host=host, port=port, log_level="debug" if settings.app.debug else "info")


if __name__ == "__main__":
    main()
