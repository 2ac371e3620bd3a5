"""
Logging helpers.

Usage:
    from rbac.utils import get_logger
    log = get_logger(__name__)
"""
import logging
import sys

from rbac.core import config

_configured = False


def configure_logging(level: str | None = None) -> None:
    """Attach a single stream handler to the package logger."""
    global _configured
    if _configured:
        return

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(
        logging.Formatter("%(asctime)s %(levelname)-5s [%(name)s] %(message)s", datefmt="%H:%M:%S")
    )
    root = logging.getLogger("rbac")
    root.addHandler(handler)
    root.setLevel(level or config.LOG_LEVEL)
    _configured = True


def get_logger(name: str) -> logging.Logger:
    """Return a logger, configuring the package handler on first use."""
    configure_logging()
    return logging.getLogger(name)
