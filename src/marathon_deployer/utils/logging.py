"""Logging helpers."""

from __future__ import annotations

import logging
from typing import Optional

LOG_FORMAT = "[%(asctime)s] %(levelname)s %(name)s - %(message)s"

_LOGGING_CONFIGURED = False


def configure_logging(verbose: bool = False) -> None:
    """Configure the root logger once; later calls only adjust the level."""
    global _LOGGING_CONFIGURED
    level = logging.DEBUG if verbose else logging.INFO
    if _LOGGING_CONFIGURED:
        logging.getLogger().setLevel(level)
        return
    logging.basicConfig(level=level, format=LOG_FORMAT)
    # urllib3 logs every connection at DEBUG
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    _LOGGING_CONFIGURED = True


def get_logger(name: Optional[str] = None) -> logging.Logger:
    if not _LOGGING_CONFIGURED:
        configure_logging()
    return logging.getLogger(name)
