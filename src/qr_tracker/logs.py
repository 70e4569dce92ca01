"""Logging setup shared by every CLI command."""

import logging
from pathlib import Path
from typing import Optional

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def setup_logging(level: str = "INFO", log_file: Optional[str] = None) -> None:
    """Configure the root ``qr_tracker`` logger with console and optional file output."""
    log_level = getattr(logging, str(level).upper(), logging.INFO)
    logger = logging.getLogger("qr_tracker")
    # Repeated setup (tests, re-entrant CLI calls) must not duplicate handlers
    logger.handlers.clear()
    logger.setLevel(log_level)

    formatter = logging.Formatter(LOG_FORMAT)

    console = logging.StreamHandler()
    console.setFormatter(formatter)
    logger.addHandler(console)

    if log_file:
        path = Path(log_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(path, encoding="utf-8")
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)
