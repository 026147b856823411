"""Root logger setup for the ledger API.

Records go to the console and to a log file at one shared level, taken from
the LOG_LEVEL env var unless the caller passes one. INFO shows every commit
and reversal; DEBUG adds the per-obligation detail of each plan.
"""

import logging
import os
import sys
from pathlib import Path

LOG_LEVEL_MAP = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}

LOG_FORMAT = "[%(asctime)s] %(name)s - %(levelname)s - %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def get_log_level(level_name: str | None = None) -> int:
    """Resolve a logging level.

    Args:
        level_name: Level name; falls back to the LOG_LEVEL environment variable

    Returns:
        Logging level constant (unknown names give INFO)
    """
    level_str = (level_name or os.getenv("LOG_LEVEL", "INFO")).upper()
    return LOG_LEVEL_MAP.get(level_str, logging.INFO)


def setup_server_logging(log_file: str = "logs/server.log", level_name: str | None = None) -> None:
    """
    Point the root logger at the console and a log file.

    Args:
        log_file: Log file path; missing parent directories are created
        level_name: Optional level name overriding LOG_LEVEL

    Calling it again replaces the handlers from the previous call, so the
    app lifespan and tests can both run it.
    """
    log_path = Path(log_file)
    log_path.parent.mkdir(parents=True, exist_ok=True)

    log_level = get_log_level(level_name)
    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt=LOG_DATE_FORMAT)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers.clear()

    for handler in (logging.StreamHandler(sys.stdout), logging.FileHandler(log_path)):
        handler.setLevel(log_level)
        handler.setFormatter(formatter)
        root_logger.addHandler(handler)
