from __future__ import annotations

import logging
import sys
from pathlib import Path

DEFAULT_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def normalize_level(level: str | int) -> int:
    """Coerce a level name or number to a logging level int (INFO when unknown)."""
    if isinstance(level, int):
        return level
    lvl = logging.getLevelName(str(level).strip().upper())
    if isinstance(lvl, int):
        return lvl
    try:
        return int(level)
    except ValueError:
        return logging.INFO


def setup_logging(
    level: str | int = "INFO",
    log_file: str | Path | None = None,
    fmt: str | None = None,
    datefmt: str | None = None,
) -> logging.Handler:
    """Configure logging for crawlq runs.

    - Replaces the root handlers with one stdout (or `log_file`) handler.
    - Sets the root logger, the `crawlq` namespace and any existing `crawlq.*`
      loggers to `level`.
    """
    lvl = normalize_level(level)

    handler: logging.Handler
    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        handler = logging.FileHandler(log_file, encoding="utf-8")
    else:
        handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(fmt or DEFAULT_FORMAT, datefmt=datefmt))

    logging.basicConfig(level=lvl, handlers=[handler], force=True)
    logging.getLogger("crawlq").setLevel(lvl)
    for name in list(logging.Logger.manager.loggerDict):
        if name.startswith("crawlq."):
            logging.getLogger(name).setLevel(lvl)
    return handler
