"""
Logging setup for the VeilPay client core.

Library modules grab a namespaced logger with ``get_logger("scanner")`` and
never configure handlers themselves; hosts call ``setup_logging()`` once.
"""
from __future__ import annotations

import logging
import os
import sys
from typing import Optional

ROOT_LOGGER_NAME = "veilpay"
LOG_FORMAT = "%(asctime)s %(levelname)-7s %(name)s: %(message)s"
DATE_FORMAT = "%Y-%m-%dT%H:%M:%S"

logging.getLogger(ROOT_LOGGER_NAME).addHandler(logging.NullHandler())


def get_logger(name: str) -> logging.Logger:
    """Return a logger under the ``veilpay.`` namespace."""
    if name.startswith(ROOT_LOGGER_NAME + ".") or name == ROOT_LOGGER_NAME:
        return logging.getLogger(name)
    return logging.getLogger(f"{ROOT_LOGGER_NAME}.{name}")


def setup_logging(level: Optional[str] = None, stream=None) -> logging.Logger:
    """
    Attach a single stream handler to the ``veilpay`` logger.

    Args:
        level: Level name; defaults to ``VEILPAY_LOG_LEVEL`` (or INFO)
        stream: Output stream (default: stderr)

    Returns:
        The configured root ``veilpay`` logger
    """
    level_name = (level or os.getenv("VEILPAY_LOG_LEVEL", "INFO")).upper()
    root = logging.getLogger(ROOT_LOGGER_NAME)
    root.setLevel(getattr(logging, level_name, logging.INFO))

    for handler in list(root.handlers):
        if getattr(handler, "_veilpay_handler", False):
            root.removeHandler(handler)

    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setFormatter(logging.Formatter(LOG_FORMAT, DATE_FORMAT))
    handler._veilpay_handler = True  # type: ignore[attr-defined]
    root.addHandler(handler)
    return root
