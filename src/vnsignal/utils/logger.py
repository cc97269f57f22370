"""
Loguru setup for the signal engine.

Two sinks:
  - **stderr**: ``console_level`` and above, short timestamps, coloured.
    Worker-thread names are shown so interleaved pipeline units can be
    told apart.
  - **File** ``logs/vnsignal_YYYY-MM-DD.log``: DEBUG and above with source
    location, rotated at 10 MB, zipped, kept for ``retention_days``.

Third-party libraries that log through the standard ``logging`` module
(yfinance, urllib3, httpx) are capped at WARNING.

Call ``setup_logger()`` once, before the engine modules are imported.
"""
import logging
import sys
from pathlib import Path

from loguru import logger

LOG_FILE_PREFIX = "vnsignal"

# Third-party loggers that are chatty at INFO.
_QUIET_LOGGERS = ("urllib3", "yfinance", "peewee", "httpx", "google_genai")


def setup_logger(
    log_dir: str = "logs",
    console_level: str = "INFO",
    retention_days: int = 30,
) -> logger:
    """Install the engine's sinks on the global loguru logger.

    Args:
        log_dir: Directory for the daily log files; created if missing.
        console_level: Minimum level echoed to the terminal.
        retention_days: How long rotated files are kept.

    Returns:
        The configured ``logger`` singleton.
    """
    logger.remove()

    log_path = Path(log_dir)
    log_path.mkdir(parents=True, exist_ok=True)
    log_file = log_path / f"{LOG_FILE_PREFIX}_{{time:YYYY-MM-DD}}.log"

    logger.add(
        sys.stderr,
        level=console_level,
        format=(
            "<green>{time:HH:mm:ss}</green> | "
            "<level>{level: <8}</level> | "
            "<cyan>{thread.name: <10}</cyan> | "
            "<level>{message}</level>"
        ),
        colorize=True,
    )

    logger.add(
        log_file,
        level="DEBUG",
        rotation="10 MB",
        retention=f"{retention_days} days",
        compression="zip",
        format=(
            "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {thread.name} | "
            "{name}:{function}:{line} - {message}"
        ),
        enqueue=True,
        encoding="utf-8",
    )

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    return logger
