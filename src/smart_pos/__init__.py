"""Smart POS: cashier and back-office tools over a single Excel workbook.

Importing the package configures the shared :data:`log` logger. Log files go
to ``<project root>/.logs/smart_pos.log`` unless ``SMART_POS_LOG_DIR`` points
elsewhere; ``SMART_POS_LOG_LEVEL`` overrides the ``INFO`` default.
"""

import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional


PROJECT_ROOT = Path(__file__).resolve().parents[2]
LOG_DIR_ENV_VAR = "SMART_POS_LOG_DIR"
LOG_LEVEL_ENV_VAR = "SMART_POS_LOG_LEVEL"
LOG_FILE_NAME = "smart_pos.log"
LOG_FORMAT = "%(asctime)s | %(name)s | %(levelname)s | %(message)s"


def resolve_log_dir() -> Path:
    override = os.environ.get(LOG_DIR_ENV_VAR, "").strip()
    return Path(override).expanduser() if override else PROJECT_ROOT / ".logs"


def resolve_log_level() -> int:
    """Map ``SMART_POS_LOG_LEVEL`` to a logging level, falling back to INFO."""

    name = os.environ.get(LOG_LEVEL_ENV_VAR, "").strip().upper()
    level = logging.getLevelName(name) if name else logging.INFO
    return level if isinstance(level, int) else logging.INFO


def configure_logging(
    name: str = __name__,
    *,
    log_dir: Optional[Path] = None,
    level: Optional[int] = None,
) -> logging.Logger:
    """Attach a rotating file handler and a stderr handler to ``name``.

    Calling it again for a logger that already has handlers is a no-op. When
    the log directory cannot be created the logger still writes to stderr.
    """

    logger = logging.getLogger(name)
    if logger.handlers:
        return logger

    level = resolve_log_level() if level is None else level
    log_dir = resolve_log_dir() if log_dir is None else log_dir
    log_file = log_dir / LOG_FILE_NAME

    logger.setLevel(level)
    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")

    try:
        log_dir.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            log_file,
            maxBytes=1_000_000,
            backupCount=5,
            encoding="utf-8",
        )
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)
    except OSError as exc:
        print(
            f"Warning: unable to initialize log file at '{log_file}': {exc}",
            file=sys.stderr,
        )

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    return logger


log = configure_logging()
log.debug("Logger initialized for the 'smart_pos' package.")
