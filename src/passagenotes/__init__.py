"""Passage Notes - persistent highlight annotations for shared reading passages.

Readers mark spans of a rendered passage with highlight or strike-through
styling; the marks survive navigation between the questions that share the
passage and are committed to durable storage when a test is submitted.
"""

import logging
import os
from logging.handlers import RotatingFileHandler
from pathlib import Path

__version__ = "0.1.0"

# Handlers installed on the root logger by _setup_logging
_installed_handlers: list[logging.Handler] = []


def _setup_logging(log_dir: Path = Path("logs"), console_level: str = "INFO") -> None:
    """Configure logging to both console and rotating file.

    Only the first call installs handlers; later calls are no-ops.
    """
    if _installed_handlers:
        return
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / f"passagenotes.{os.getpid()}.log"

    # Root logger config
    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)

    # File handler - detailed logging with rotation (10MB, keep 5 backups)
    file_handler = RotatingFileHandler(
        log_file,
        maxBytes=10 * 1024 * 1024,
        backupCount=5,
        encoding="utf-8",
    )
    file_handler.setLevel(logging.DEBUG)
    file_formatter = logging.Formatter(
        "%(asctime)s | %(levelname)-8s | %(name)s:%(lineno)d | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    file_handler.setFormatter(file_formatter)

    # Console handler - less verbose
    console_handler = logging.StreamHandler()
    console_handler.setLevel(console_level)
    console_formatter = logging.Formatter("%(levelname)s: %(message)s")
    console_handler.setFormatter(console_formatter)

    root_logger.addHandler(file_handler)
    root_logger.addHandler(console_handler)
    _installed_handlers.extend((file_handler, console_handler))

    logging.info("Logging configured. Log file: %s", log_file.absolute())
