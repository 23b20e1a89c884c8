"""
Explicit dotenv loader.

Rules:
- In production (`ENVIRONMENT=prod`): do not load `.env` / `.env.local`.
- Otherwise: load `.env` then `.env.local` (local overrides).
- Never called at import time; entry points opt in.

This must remain dependency-light and MUST NOT import `mlsecrets.config.config`.
"""

from __future__ import annotations

import os
from pathlib import Path

from dotenv import load_dotenv


def _env(name: str, default: str | None = None) -> str | None:
    v = os.getenv(name)
    return v if v is not None else default


def _is_prod_env() -> bool:
    return str(_env("ENVIRONMENT", "dev") or "dev").strip().lower() == "prod"


def load_dotenv_files(*, root: Path | None = None) -> list[Path]:
    """
    Load dotenv files for local/dev usage from ``root`` (default: current directory).

    Returns the files that were loaded. In prod, this is a no-op.
    """
    if _is_prod_env():
        return []

    root = root or Path.cwd()
    loaded = []

    # Load base .env first (if present)
    env_path = root / ".env"
    if env_path.exists():
        load_dotenv(dotenv_path=env_path, override=False)
        loaded.append(env_path)

    # Load .env.local second (override for local convenience)
    env_local_path = root / ".env.local"
    if env_local_path.exists():
        load_dotenv(dotenv_path=env_local_path, override=True)
        loaded.append(env_local_path)

    return loaded
