"""Console logging for the clearance service.

Configures the ``clearance`` logger hierarchy once with ISO 8601 timestamps;
module loggers created with ``logging.getLogger(__name__)`` inherit it.
"""

from __future__ import annotations

import logging
import os

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_FORMAT = "%(asctime)s [%(levelname)s] [%(name)s] %(message)s"
DATE_FORMAT = "%Y-%m-%dT%H:%M:%S"


def setup_logging(name: str = "clearance", level: str | None = None) -> logging.Logger:
    logger = logging.getLogger(name)

    level_upper = (level or LOG_LEVEL).upper()
    if not hasattr(logging, level_upper):
        raise ValueError(
            f"Invalid log level: {level_upper}. Must be one of: DEBUG, INFO, WARNING, ERROR, CRITICAL"
        )
    logger.setLevel(getattr(logging, level_upper))

    # Prevent duplicate handlers
    if logger.handlers:
        return logger

    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))
    logger.addHandler(handler)
    return logger
