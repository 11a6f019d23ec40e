"""Shared utility functions used across the pipeline."""
from __future__ import annotations

import re
from pathlib import Path
from typing import Any

import orjson

_WHITESPACE = re.compile(r"\s+")


# --- Text Utilities -----------------------------------------------------------

def normalize_whitespace(text: str) -> str:
    """Collapse every whitespace run (including newlines) to one space and trim."""
    return _WHITESPACE.sub(" ", text).strip()


def truncate_text(text: str, max_chars: int = 300) -> str:
    """Truncate text for display purposes."""
    if len(text) <= max_chars:
        return text
    return text[:max_chars].rstrip() + "..."


# --- File I/O -----------------------------------------------------------------

def save_json(data: Any, path: str | Path) -> None:
    """Serialise data to JSON using orjson."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "wb") as f:
        f.write(orjson.dumps(data, option=orjson.OPT_INDENT_2 | orjson.OPT_NON_STR_KEYS))


def load_json(path: str | Path) -> Any:
    """Load JSON data from file."""
    with open(Path(path), "rb") as f:
        return orjson.loads(f.read())


def ensure_dirs(*paths: str | Path) -> None:
    """Create directories (and parents) if they don't exist."""
    for p in paths:
        Path(p).mkdir(parents=True, exist_ok=True)
