"""Small serialization helpers shared by headers, query strings, and properties."""

from __future__ import annotations

import json
from typing import Any


def json_dumps(value: Any) -> str:
    """Encode value as compact JSON (no whitespace, non-ASCII kept as-is)."""
    return json.dumps(value, separators=(",", ":"), ensure_ascii=False)


def to_string(value: Any) -> str:
    """Return strings unchanged and JSON-encode everything else."""
    if isinstance(value, str):
        return value
    return json_dumps(value)


def byte_count(value: str) -> int:
    """Number of bytes value occupies once UTF-8 encoded."""
    return len(value.encode("utf-8"))
