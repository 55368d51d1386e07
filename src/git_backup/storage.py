"""Durable JSON file helpers shared by the mapping and history stores."""

import contextlib
import json
import logging
import os
from pathlib import Path
from typing import Any

from .constants import APP_NAME

logger = logging.getLogger(APP_NAME)


def read_json(path: Path, default: Any) -> Any:
    """Reads a JSON document, returning `default` if the file does not exist.

    Raises:
        ValueError: If the file exists but is not valid JSON.
    """
    if not path.exists():
        return default
    with open(path, encoding="utf-8") as f:
        return json.load(f)


def write_json_atomic(path: Path, data: Any) -> None:
    """Persists a JSON document so readers never observe a half-written file.

    The document goes to a sibling temp file, is flushed to disk and then
    swapped into place with `os.replace`.

    Args:
        path (Path): The destination file.
        data (Any): A JSON-serializable document.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_file = path.with_name(path.name + ".tmp")

    try:
        with open(tmp_file, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2)
            f.write("\n")
            f.flush()
            os.fsync(f.fileno())  # Force write to disk.

        # Atomic Swap.
        os.replace(tmp_file, path)
    except (OSError, TypeError, ValueError):
        logger.error(f"ERROR: Could not write {path}.")
        if tmp_file.exists():
            with contextlib.suppress(OSError):
                tmp_file.unlink()
        raise
