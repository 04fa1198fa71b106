# ==============================
# Config Loader (only env reader)
# ==============================
"""
Config loader for the knowledge engine.

Rules:
- This is the ONLY place allowed to read os.environ and .env.
- This is the ONLY place allowed to read secrets/secrets.yaml.
- Everything else receives a validated Settings object.

Precedence:
env > secrets/secrets.yaml > configs/*.yaml > defaults

Each configs/<file>.yaml holds the body of the Settings section(s) it maps to,
e.g. configs/search.yaml:

  max_results: 10
  fusion:
    vector_weight: 0.6

Testability:
- All functions accept injected paths and env dict.
- No hardcoded absolute paths.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from pydantic import ValidationError

from kbcore.config.schema import Settings

ENV_PREFIX = "KBASE__"

# configs/<file>.yaml -> Settings section(s) it may define
SECTION_FILES: Dict[str, tuple] = {
    "app.yaml": ("app",),
    "storage.yaml": ("storage",),
    "cache.yaml": ("cache",),
    "search.yaml": ("search", "vector", "fusion"),
    "embeddings.yaml": ("embeddings",),
    "knowledge.yaml": ("knowledge", "quality"),
    "logging.yaml": ("logging",),
}


# ==============================
# YAML Helpers
# ==============================


def _read_yaml(path: Path) -> Dict[str, Any]:
    if not path.exists():
        return {}
    raw = path.read_text(encoding="utf-8").strip()
    if not raw:
        return {}
    data = yaml.safe_load(raw)
    return data if isinstance(data, dict) else {}


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """
    Deep-merge dictionaries: override wins.
    """
    out: Dict[str, Any] = dict(base)
    for k, v in override.items():
        if k in out and isinstance(out[k], dict) and isinstance(v, dict):
            out[k] = _deep_merge(out[k], v)
        else:
            out[k] = v
    return out


def _section_payload(filename: str, data: Dict[str, Any]) -> Dict[str, Any]:
    """
    Map a config file body onto Settings sections.

    Single-section files hold the section body directly. Multi-section files
    (search.yaml, knowledge.yaml) hold one mapping per section; top-level keys
    that are not section names belong to the first section.
    """
    sections = SECTION_FILES[filename]
    if len(sections) == 1:
        return {sections[0]: data}
    out: Dict[str, Any] = {}
    primary: Dict[str, Any] = {}
    for k, v in data.items():
        if k in sections and k != sections[0] and isinstance(v, dict):
            out[k] = v
        elif k == sections[0] and isinstance(v, dict):
            primary = _deep_merge(primary, v)
        else:
            primary[k] = v
    out[sections[0]] = primary
    return out


# ==============================
# .env Loader
# ==============================


def _read_dotenv(dotenv_path: Path) -> Dict[str, str]:
    """
    Minimal .env parser (KEY=VALUE).
    - Ignores comments and blank lines.
    - Strips surrounding quotes.
    """
    if not dotenv_path.exists():
        return {}
    envs: Dict[str, str] = {}
    for line in dotenv_path.read_text(encoding="utf-8").splitlines():
        s = line.strip()
        if not s or s.startswith("#") or "=" not in s:
            continue
        key, val = s.split("=", 1)
        key = key.strip()
        val = val.strip().strip('"').strip("'")
        if key:
            envs[key] = val
    return envs


def _coerce(v: str) -> Any:
    vs = v.strip()
    if vs.lower() in {"true", "false"}:
        return vs.lower() == "true"
    if vs.isdigit() or (vs.startswith("-") and vs[1:].isdigit()):
        return int(vs)
    if "." in vs:
        try:
            return float(vs)
        except ValueError:
            pass
    return vs


def _apply_env_overrides(cfg: Dict[str, Any], env: Dict[str, str]) -> Dict[str, Any]:
    """
    Apply environment overrides with KBASE__ style nesting.

Example:
  KBASE__APP__PORT=8001
  KBASE__FUSION__VECTOR_WEIGHT=0.7
  KBASE__EMBEDDINGS__PROVIDER=local
  KBASE__SECRETS__OPENAI_API_KEY=...

Rules:
- Split by '__' after prefix KBASE__
- Lowercase keys for dict insertion
- Coerce booleans/ints/floats when obvious
    """
    out = dict(cfg)

    for k, v in env.items():
        if not k.startswith(ENV_PREFIX):
            continue
        path = k[len(ENV_PREFIX) :].split("__")
        if not path or any(not p for p in path):
            continue
        cur: Dict[str, Any] = out
        for i, seg in enumerate(path):
            key = seg.lower()
            if i == len(path) - 1:
                cur[key] = _coerce(v)
            else:
                nxt = cur.get(key)
                if not isinstance(nxt, dict):
                    nxt = {}
                else:
                    nxt = dict(nxt)
                cur[key] = nxt
                cur = nxt
    return out


# ==============================
# Public Loader API
# ==============================


def load_settings(
    *,
    repo_root: Optional[str] = None,
    configs_dir: Optional[str] = None,
    secrets_file: Optional[str] = None,
    dotenv_file: Optional[str] = None,
    env: Optional[Dict[str, str]] = None,
) -> Settings:
    """
    Load and validate Settings.

Inputs:
- repo_root: defaults to current working directory
- configs_dir: defaults to <repo_root>/configs
- secrets_file: defaults to <repo_root>/secrets/secrets.yaml
- dotenv_file: defaults to <repo_root>/.env
- env: injected env vars (defaults to os.environ)
    """
    env_vars = dict(env) if env is not None else dict(os.environ)

    root = Path(repo_root or os.getcwd()).expanduser().resolve()
    cfg_dir = root / (configs_dir or "configs")

    merged: Dict[str, Any] = {}
    for filename in SECTION_FILES:
        data = _read_yaml(cfg_dir / filename)
        if data:
            merged = _deep_merge(merged, _section_payload(filename, data))

    # secrets.yaml (optional); accepts either a bare mapping or a `secrets:` wrapper
    sec_path = Path(secrets_file) if secrets_file else (root / "secrets" / "secrets.yaml")
    secrets_cfg = _read_yaml(sec_path)
    if isinstance(secrets_cfg.get("secrets"), dict):
        secrets_cfg = secrets_cfg["secrets"]
    merged = _deep_merge(merged, {"secrets": secrets_cfg})

    # .env (optional) -> treated as env overrides (highest)
    dotenv_path = Path(dotenv_file) if dotenv_file else (root / ".env")
    dotenv_vars = _read_dotenv(dotenv_path)
    effective_env = dict(env_vars)
    # .env should not override real env by default; real env wins
    for k, v in dotenv_vars.items():
        effective_env.setdefault(k, v)

    merged = _apply_env_overrides(merged, effective_env)

    # ensure repo_root is set deterministically (override configs)
    merged = _deep_merge(merged, {"app": {"paths": {"repo_root": str(root)}}})

    try:
        settings = Settings.model_validate(merged)
    except ValidationError as e:
        raise ValueError(f"Invalid configuration: {e}") from e

    return _hydrate_provider_secrets(settings)


def _hydrate_provider_secrets(settings: Settings) -> Settings:
    """
    Map secrets into embedding provider configs without breaking precedence.
    """
    data = settings.model_dump()
    secrets = data.get("secrets", {}) or {}
    embeddings = data.get("embeddings", {}) or {}
    openai = (embeddings.get("openai", {}) or {}).copy()
    azure = (embeddings.get("azure", {}) or {}).copy()

    # Prefer explicit embeddings.*.api_key if already set
    if not openai.get("api_key") and secrets.get("openai_api_key"):
        openai["api_key"] = secrets["openai_api_key"]
    if not azure.get("api_key") and secrets.get("azure_openai_api_key"):
        azure["api_key"] = secrets["azure_openai_api_key"]
    if not azure.get("endpoint") and secrets.get("azure_openai_endpoint"):
        azure["endpoint"] = secrets["azure_openai_endpoint"]

    embeddings["openai"] = openai
    embeddings["azure"] = azure
    data["embeddings"] = embeddings
    return Settings.model_validate(data)
