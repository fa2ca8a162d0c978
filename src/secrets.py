"""Utilities for loading local (gitignored) Elasticsearch credentials."""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, Dict, Optional

DEFAULT_SECRETS_FILENAME = "local_secrets.json"


def _default_secrets_path() -> Path:
    root = Path(__file__).resolve().parents[1]
    return root / DEFAULT_SECRETS_FILENAME


def load_local_secrets(path: Optional[str | Path] = None) -> Dict[str, Any]:
    """Load secrets from a JSON file; return {} when the file is absent.

    A file that exists but does not parse raises ``json.JSONDecodeError``.
    """

    candidate = path or os.getenv("LOCAL_SECRETS_FILE") or _default_secrets_path()
    secrets_path = Path(candidate).expanduser()
    if not secrets_path.exists():
        return {}
    with secrets_path.open("r", encoding="utf-8") as handle:
        data = json.load(handle)
    return data if isinstance(data, dict) else {}


def elasticsearch_secrets(path: Optional[str | Path] = None) -> Dict[str, Any]:
    """Return the ``elasticsearch`` section of the secrets file."""

    section = load_local_secrets(path).get("elasticsearch", {})
    return section if isinstance(section, dict) else {}


__all__ = ["load_local_secrets", "elasticsearch_secrets", "DEFAULT_SECRETS_FILENAME"]
