"""
Centralized logging for the challenge set explorer backend.

Structured, level-based logging using Python's built-in logging module.

Usage:
    from api.shared.logger import get_logger

    logger = get_logger(__name__)
    logger.info("Opened view %s for %s", view_id, file_name)
    logger.warning("Source id map missing, skipping %s", chart)
"""

import logging
import sys

_configured = False


def setup_logging(level: str = "INFO") -> None:
    """Configure root logging for the backend.

    Call once at startup (main.py). Subsequent calls are no-ops.
    """
    global _configured
    if _configured:
        return

    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
        stream=sys.stdout,
        force=True,
    )
    _configured = True


def get_logger(name: str) -> logging.Logger:
    """Return a logger scoped to the backend namespace.

    Args:
        name: Module name (typically ``__name__``).
    """
    return logging.getLogger(name)
