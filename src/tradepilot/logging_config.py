"""Logging setup for TradePilot.

All modules log through children of the ``tradepilot`` logger, obtained
with :func:`get_logger`. The CLI calls :func:`setup_logging` once per run.
"""

import logging
import sys
from pathlib import Path
from typing import List, Optional

ROOT_LOGGER_NAME = "tradepilot"
DEFAULT_LOG_DIR = Path("logs")
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def _resolve_log_file(log_file: Path) -> Path:
    """Bare file names land in ``logs/``; paths with a directory are kept."""
    if log_file.is_absolute() or log_file.parent != Path("."):
        return log_file
    return DEFAULT_LOG_DIR / log_file


def setup_logging(
    log_file: Optional[Path] = None,
    level: int = logging.INFO,
    console: bool = True,
) -> logging.Logger:
    """Configure the package root logger.

    Args:
        log_file: Optional log file; a bare name is placed under ``logs/``
        level: Logging level (default: INFO)
        console: Also log to stderr, keeping stdout free for ``--json`` output

    Returns:
        The ``tradepilot`` root logger
    """
    formatter = logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT)
    handlers: List[logging.Handler] = []

    if log_file is not None:
        log_file = _resolve_log_file(Path(log_file))
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file, encoding="utf-8"))
    if console:
        handlers.append(logging.StreamHandler(sys.stderr))

    logger = logging.getLogger(ROOT_LOGGER_NAME)
    logger.setLevel(level)
    # Repeated setup (tests, several CLI runs in one process) must not stack handlers
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)
        logger.addHandler(handler)
    logger.propagate = False

    if log_file is not None:
        logger.debug(f"Logging to {log_file}")
    return logger


def get_logger(name: str) -> logging.Logger:
    """Logger for one module, under the ``tradepilot`` namespace."""
    return logging.getLogger(f"{ROOT_LOGGER_NAME}.{name}")
