import logging
import sys
from pathlib import Path
from typing import Optional, Union

from src.config import LOG_DIR, LOG_LEVEL

# every src.* module logger propagates here
PACKAGE_LOGGER = "src"

# client libraries that log each poll or export attempt at INFO
QUIET_LOGGERS = ("kafka", "opentelemetry.exporter")


def resolve_level(level: Union[int, str, None]) -> int:
    """int levels pass through, names are looked up, anything else is INFO"""
    if isinstance(level, int):
        return level
    resolved = logging.getLevelName(str(level).upper())
    return resolved if isinstance(resolved, int) else logging.INFO


def setup_logging(
    log_file: str = "app.log",
    level: Union[int, str, None] = None,
    log_dir: Optional[str] = None,
) -> logging.Logger:
    """
    Attach console and file handlers to the package logger, once per process.

    The api, the score refresher and the batch job each pass their own
    log file. Calling again only adjusts the level.
    """
    logger = logging.getLogger(PACKAGE_LOGGER)
    logger.setLevel(resolve_level(LOG_LEVEL if level is None else level))

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    if logger.handlers:
        return logger

    formatter = logging.Formatter(
        "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )

    logs_dir = Path(log_dir or LOG_DIR)
    logs_dir.mkdir(parents=True, exist_ok=True)
    file_handler = logging.FileHandler(logs_dir / log_file)
    file_handler.setFormatter(formatter)
    logger.addHandler(file_handler)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    return logger
