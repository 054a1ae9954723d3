"""API key lookup from the environment or a local secrets file."""

from __future__ import annotations

import os
from pathlib import Path

import yaml

from vault_rag.core.logging import get_logger

logger = get_logger(__name__)

GEMINI_API_KEY = "GEMINI_API_KEY"
CHROMA_API_KEY = "CHROMA_API_KEY"
TAVILY_API_KEY = "TAVILY_API_KEY"


def get_secret(name: str, secrets_path: Path | None = None) -> str | None:
    """Environment first, then the ``name: value`` YAML secrets file; blank values count as missing."""
    value = os.environ.get(name)
    if value and value.strip():
        return value.strip()
    if secrets_path is None:
        return None
    stored = load_secrets(secrets_path).get(name)
    if stored is None or not str(stored).strip():
        return None
    return str(stored).strip()


def load_secrets(path: Path) -> dict[str, object]:
    path = path.expanduser()
    if not path.exists():
        return {}
    with path.open("r", encoding="utf-8") as fh:
        raw = yaml.safe_load(fh) or {}
    if not isinstance(raw, dict):
        logger.warning("Ignoring secrets file %s: expected a mapping", path)
        return {}
    return raw


__all__ = ["CHROMA_API_KEY", "GEMINI_API_KEY", "TAVILY_API_KEY", "get_secret", "load_secrets"]
