"""
longscribe.logging - Centralized logging configuration.

Provides a simple logging setup with optional verbose mode for debugging.
"""

from __future__ import annotations

import logging

logger = logging.getLogger("longscribe")

NOISY_LOGGERS = ("LiteLLM", "litellm", "httpx", "httpcore")


def configure_logging(verbose: bool = False) -> None:
    """Configure logging for the longscribe package.

    Args:
        verbose: If True, enable DEBUG level logging; otherwise WARNING level
    """
    level = logging.DEBUG if verbose else logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(levelname)s: %(message)s",
    )
    logger.setLevel(level)
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
