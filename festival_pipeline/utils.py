"""Cross-cutting helpers: constants, ids, JSON file I/O."""

from __future__ import annotations

import json
import uuid
from pathlib import Path
from typing import Any

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

DEFAULT_MODEL = "gemini-2.5-flash"
DEFAULT_DATA_DIR = "data"
STORE_FILE_NAME = "festivals.json"

MAX_IMAGES = 10
MAX_OPERATION_HISTORY = 100
MIN_CHARS_FOR_IMAGE_TEXT = 30
MIN_CHARS_FOR_INPUT_TEXT = 50
IMAGE_TEXT_SEPARATOR = "\n\n--- next image text ---\n\n"
EDITING_NOTES_MIN_SCORE = 7

DOCUMENT_MIME_TYPES = frozenset(
    {
        "application/pdf",
        "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    }
)
IMAGE_MIME_TYPES = frozenset({"image/jpeg", "image/png", "image/webp"})


# ---------------------------------------------------------------------------
# Ids
# ---------------------------------------------------------------------------


def new_id(prefix: str = "") -> str:
    """Return a random id, optionally prefixed (``op_1f2e...``)."""
    value = uuid.uuid4().hex
    return f"{prefix}_{value}" if prefix else value


# ---------------------------------------------------------------------------
# JSON I/O
# ---------------------------------------------------------------------------


def load_json(path: Path, default: Any) -> Any:
    """Load JSON from *path*, returning *default* when the file is absent.

    Unlike a missing file, unreadable or corrupt content raises so callers
    can surface it instead of silently starting from scratch.
    """
    if not path.exists():
        return default
    with open(path, "r", encoding="utf-8") as fh:
        return json.load(fh)


def save_json(path: Path, payload: Any) -> Path:
    """Write *payload* as indented UTF-8 JSON and return the path."""
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_suffix(path.suffix + ".tmp")
    with open(tmp_path, "w", encoding="utf-8") as fh:
        json.dump(payload, fh, indent=2, ensure_ascii=False, default=str)
    tmp_path.replace(path)
    return path
