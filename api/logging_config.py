"""Centralized logging configuration for the PubMarket API."""

import os
import sys
import logging
from pathlib import Path

_HANDLER_TAG = "_pubmarket_handler"


def setup_logging():
    """Configure application-wide logging with file rotation.

    Safe to call more than once (every app startup calls it); handlers are only
    attached the first time.
    """
    from logging.handlers import RotatingFileHandler

    level_name = os.getenv("LOG_LEVEL", "INFO").upper()
    level = getattr(logging, level_name, logging.INFO)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    if any(getattr(h, _HANDLER_TAG, False) for h in root_logger.handlers):
        return

    fmt = logging.Formatter(
        "[%(asctime)s] %(levelname)s %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    console = logging.StreamHandler(sys.stdout)
    console.setFormatter(fmt)
    console.setLevel(level)
    setattr(console, _HANDLER_TAG, True)
    root_logger.addHandler(console)

    log_dir = os.getenv("LOG_DIR", "logs")
    if log_dir:
        Path(log_dir).mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            Path(log_dir) / "pubmarket.log",
            maxBytes=10 * 1024 * 1024,  # 10MB
            backupCount=5,
            encoding="utf-8",
        )
        file_handler.setFormatter(fmt)
        setattr(file_handler, _HANDLER_TAG, True)
        root_logger.addHandler(file_handler)

    # Quiet noisy libraries
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
