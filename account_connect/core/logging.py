"""
Logging utilities for the connection service.

Provides a consistent logging format and keeps HTTP client chatter (which can
include token endpoint URLs) out of INFO-level output.
"""

import logging
import sys

_NOISY_LOGGERS = ("httpx", "httpcore", "botocore", "urllib3")


def configure_logging(level: str = "INFO") -> None:
    """Configure root logging with a sensible default format."""
    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
        stream=sys.stdout,
    )
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


__all__ = ["configure_logging"]
