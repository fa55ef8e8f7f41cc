"""Atomic JSON artifacts (temp file + fsync + os.replace)."""

from __future__ import annotations

import json
import os
import tempfile
from datetime import date
from pathlib import Path
from typing import Any

from fno_engine.core.errors import FileWriteFailed


def atomic_write_json(path: str | Path, data: Any) -> Path:
    """Write ``data`` as JSON so readers see either the old or the new file, never a partial."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, default=str)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp, path)
    except OSError as e:
        if os.path.exists(tmp):
            os.unlink(tmp)
        raise FileWriteFailed(f"Could not write {path}: {e}", path=str(path)) from e
    return path


def dated_name(prefix: str, day: date, suffix: str = ".json") -> str:
    """``<prefix>_YYYYMMDD<suffix>``."""
    return f"{prefix}_{day:%Y%m%d}{suffix}"
