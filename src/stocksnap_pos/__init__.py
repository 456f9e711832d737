"""StockSnap point-of-sale core.

Importing the package configures the shared ``stocksnap_pos`` logger used by
every layer (data access, sale engine, CLI). Records go to a rotating file
under ``.logs/`` and to stderr.
"""

import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional


__version__ = "0.4.0"

PROJECT_ROOT = Path(__file__).resolve().parents[2]
LOG_DIR = PROJECT_ROOT / ".logs"
LOG_FILE = LOG_DIR / "stocksnap_pos.log"
LOG_LEVEL_ENV = "STOCKSNAP_POS_LOG_LEVEL"
LOG_FORMAT = "%(asctime)s | %(name)s | %(levelname)s | %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def _resolve_level() -> int:
    """Return the level named by ``STOCKSNAP_POS_LOG_LEVEL`` (INFO by default)."""

    requested = os.environ.get(LOG_LEVEL_ENV, "INFO").strip().upper()
    level = logging.getLevelName(requested)
    return level if isinstance(level, int) else logging.INFO


def _file_handler() -> Optional[logging.Handler]:
    try:
        LOG_DIR.mkdir(parents=True, exist_ok=True)
        handler = RotatingFileHandler(LOG_FILE, maxBytes=1_000_000, backupCount=5, encoding="utf-8")
    except OSError as exc:
        print(f"Warning: POS log file '{LOG_FILE}' unavailable ({exc}); logging to stderr only.", file=sys.stderr)
        return None
    return handler


def _configure_logging() -> logging.Logger:
    """Attach the file and stderr handlers once per process."""

    logger = logging.getLogger(__name__)
    if logger.handlers:
        return logger

    level = _resolve_level()
    logger.setLevel(level)
    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt=LOG_DATE_FORMAT)

    handlers = [_file_handler(), logging.StreamHandler(sys.stderr)]
    for handler in handlers:
        if handler is None:
            continue
        handler.setLevel(level)
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    return logger


log = _configure_logging()
log.debug("Logger initialized for the 'stocksnap_pos' package (level=%s)", logging.getLevelName(log.level))
