"""Wrappers for text and JSON file I/O with consistent encoding (UTF-8)."""

from __future__ import annotations

import json
import os
import tempfile
from pathlib import Path
from typing import Any

PathLike = Path | str


def read_text(path: PathLike, errors: str = "strict", **kwargs: Any) -> str:
    """Read path as text with UTF-8 encoding. Forwards extra kwargs to Path.read_text."""
    p = path if isinstance(path, Path) else Path(path)
    return p.read_text(encoding="utf-8", errors=errors, **kwargs)


def write_text(path: PathLike, text: str, **kwargs: Any) -> None:
    """Write text to path with UTF-8 encoding. Forwards extra kwargs to Path.write_text."""
    p = path if isinstance(path, Path) else Path(path)
    p.write_text(text, encoding="utf-8", **kwargs)


def write_text_atomic(path: PathLike, text: str) -> None:
    """Write *text* to a sibling temp file, then ``os.replace`` it over *path*.

    Readers see either the previous content or the new content, never a
    truncated file, even if the process dies mid-write.
    """
    p = path if isinstance(path, Path) else Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{p.name}.", suffix=".tmp", dir=p.parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(text)
            f.flush()
            os.fsync(f.fileno())
        # os.replace overwrites destination if it exists (required on Windows)
        os.replace(tmp_name, p)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


def read_json(path: PathLike) -> Any:
    """Parse a UTF-8 JSON file. Raises ``FileNotFoundError`` / ``json.JSONDecodeError``."""
    return json.loads(read_text(path))


def write_json_atomic(path: PathLike, data: Any) -> None:
    """Serialize *data* as indented JSON and write it atomically."""
    write_text_atomic(path, json.dumps(data, indent=2) + "\n")
