"""
Logging Configuration

Routes the package logger to a rotating log file and, for interactive use,
to the console. Module loggers (src.label_lookup.*) propagate to it.
"""

import logging
import os
from datetime import datetime
from logging.handlers import RotatingFileHandler
from typing import Dict, Optional

from src.label_lookup.config import LoggingConfig

PACKAGE_LOGGER = "src.label_lookup"
LOG_FILE_NAME = "label_lookup.log"
LOG_FORMAT = "%(asctime)s - %(threadName)s - %(name)s - %(levelname)s - %(message)s"

# Marks handlers installed here so a second call replaces rather than stacks them
_HANDLER_TAG = "_label_lookup_handler"


def setup_logger(
    config: Optional[LoggingConfig] = None,
    level: Optional[str] = None,
    console_output: bool = True
) -> logging.Logger:
    """
    Configure the package logger from LoggingConfig.

    Args:
        config: Logging settings (defaults to LoggingConfig())
        level: Level name overriding config.level
        console_output: Also log to stderr

    Returns:
        The package logger
    """
    config = config or LoggingConfig()
    level_value = getattr(logging, (level or config.level).upper())

    logger = logging.getLogger(PACKAGE_LOGGER)
    logger.setLevel(level_value)
    for handler in [h for h in logger.handlers if getattr(h, _HANDLER_TAG, False)]:
        logger.removeHandler(handler)
        handler.close()

    os.makedirs(config.log_dir, exist_ok=True)
    log_file = os.path.join(config.log_dir, LOG_FILE_NAME)
    handlers = [RotatingFileHandler(
        log_file,
        maxBytes=config.max_file_size,
        backupCount=config.backup_count,
        encoding="utf-8"
    )]
    if console_output:
        handlers.append(logging.StreamHandler())

    formatter = logging.Formatter(LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")
    for handler in handlers:
        handler.setFormatter(formatter)
        setattr(handler, _HANDLER_TAG, True)
        logger.addHandler(handler)

    logger.debug(f"Logging to {log_file}")
    return logger


def get_logger() -> logging.Logger:
    """Package logger; silent apart from propagation until setup_logger runs."""
    return logging.getLogger(PACKAGE_LOGGER)


def _log_banner(title: str, rows: Dict[str, object], logger: Optional[logging.Logger]):
    log = logger or get_logger()
    log.info("=" * 60)
    log.info(title)
    for label, value in rows.items():
        log.info(f"  {label}: {value}")
    log.info("=" * 60)


def log_batch_start(generation: int, total_names: int, workers: int, logger: Optional[logging.Logger] = None):
    """Log query run start."""
    _log_banner("LABEL QUERY STARTED", {
        "Run": generation,
        "Total Names": total_names,
        "Workers": workers,
        "Started At": datetime.now().isoformat(),
    }, logger)


def log_batch_end(generation: int, results: dict, logger: Optional[logging.Logger] = None):
    """Log query run end; results carries total/successful/failed counts."""
    _log_banner("LABEL QUERY COMPLETED", {
        "Run": generation,
        "Total": results.get("total", 0),
        "Successful": results.get("successful", 0),
        "Failed": results.get("failed", 0),
        "Completed At": datetime.now().isoformat(),
    }, logger)


def log_query_outcome(
    name: str,
    status: str,
    error: Optional[str] = None,
    logger: Optional[logging.Logger] = None
):
    """Log the terminal outcome of one name."""
    log = logger or get_logger()
    if status == "success":
        log.info(f"[OK] {name}")
    else:
        log.warning(f"[FAIL] {name}: {error or 'Unknown error'}")
