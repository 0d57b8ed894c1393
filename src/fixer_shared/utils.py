"""Shared utility functions for style-fixer."""

from __future__ import annotations

import json
import os
import re
from pathlib import Path
from typing import Any

from src.fixer_shared.constants import TEMP_SUFFIX

_SEPARATORS = re.compile(r"[/\\:]")
_LEADING_PLACEHOLDERS = re.compile(r"^_+")


def atomic_write_json(path: Path | str, data: Any) -> None:
    """Write JSON data atomically by writing to a temp file then renaming.

    The temp file replaces the final suffix with ``.tmp`` so that readers
    globbing for ``*.json`` never observe a partial write.

    Args:
        path: Target file path.
        data: JSON-serialisable data to write.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_suffix(TEMP_SUFFIX)
    try:
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, default=str)
            f.flush()
            os.fsync(f.fileno())
        os.replace(str(tmp_path), str(path))
    except BaseException:
        # Clean up temp file on any failure
        if tmp_path.exists():
            tmp_path.unlink()
        raise


def load_json(path: Path | str) -> dict | None:
    """Load JSON data from a file.

    Args:
        path: Path to the JSON file.

    Returns:
        Parsed JSON data, or None if the file is missing or invalid.
    """
    path = Path(path)
    try:
        with open(path, "r", encoding="utf-8") as f:
            return json.load(f)
    except (FileNotFoundError, json.JSONDecodeError, OSError):
        return None


def ensure_dir(path: Path | str) -> Path:
    """Ensure a directory exists, creating parent directories as needed."""
    path = Path(path)
    path.mkdir(parents=True, exist_ok=True)
    return path


def sanitize_filename(path: str) -> str:
    """Flatten a file path into a single path segment.

    Path separators (``/``, ``\\``) and drive colons are replaced with
    ``_`` and leading placeholders are stripped, so
    ``"src/foo/bar.ts"`` becomes ``"src_foo_bar.ts"`` and
    ``"/abs/x.py"`` becomes ``"abs_x.py"``.
    """
    return _LEADING_PLACEHOLDERS.sub("", _SEPARATORS.sub("_", path))
