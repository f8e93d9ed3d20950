"""Centralized logging helpers for the settlement engine."""

import logging
import sys


def setup_logging(level: str = "INFO") -> logging.Logger:
    """Configure and return the application logger.

    Attaches a stdout handler to the ``cod_settlements`` logger when
    ``dictConfig`` has not already done so, and applies ``level``.

    Args:
        level: The log level string (DEBUG, INFO, WARNING, ERROR, CRITICAL).

    Returns:
        The configured root application logger.
    """
    logger = logging.getLogger("cod_settlements")
    logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    if not logger.handlers:
        log_format = "%(asctime)s | %(levelname)-8s | %(name)-30s | %(message)s"
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(log_format, datefmt="%Y-%m-%d %H:%M:%S"))
        logger.addHandler(handler)

    # Prevent duplicate logs through the root logger
    logger.propagate = False

    return logger


def get_logger(name: str) -> logging.Logger:
    """Get a child logger under the cod_settlements namespace.

    Usage:
        from cod_settlements.core.logging import get_logger
        logger = get_logger(__name__)
        logger.info("Reconciling session %s", session_id)

    Args:
        name: Usually __name__ of the calling module.

    Returns:
        A child logger with the given name.
    """
    if name.startswith("cod_settlements"):
        return logging.getLogger(name)
    return logging.getLogger(f"cod_settlements.{name}")
