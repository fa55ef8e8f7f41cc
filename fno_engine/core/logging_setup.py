"""Process-wide logging configuration.

Console output always; a midnight- or hour-rotated file under ``log_dir`` when given.
"""

from __future__ import annotations

import logging
import logging.handlers
from pathlib import Path

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

_installed: list[logging.Handler] = []


def setup_logging(
    level: str = "info",
    log_dir: str | Path | None = None,
    rotation: str = "daily",
    retention_days: int = 30,
) -> None:
    """Configure the root logger. Calling again replaces the handlers it installed."""
    root = logging.getLogger()
    for handler in _installed:
        root.removeHandler(handler)
        handler.close()
    _installed.clear()

    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    formatter = logging.Formatter(LOG_FORMAT)

    console = logging.StreamHandler()
    console.setFormatter(formatter)
    root.addHandler(console)
    _installed.append(console)

    if log_dir is not None:
        path = Path(log_dir)
        path.mkdir(parents=True, exist_ok=True)
        when = "H" if rotation == "hourly" else "midnight"
        backups = retention_days * 24 if rotation == "hourly" else retention_days
        file_handler = logging.handlers.TimedRotatingFileHandler(
            path / "engine.log",
            when=when,
            backupCount=backups,
            encoding="utf-8",
        )
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)
        _installed.append(file_handler)
