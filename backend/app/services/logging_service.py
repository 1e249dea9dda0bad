"""Logging setup for the API process."""

import logging
from typing import Optional

logger = logging.getLogger(__name__)

DEFAULT_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"

# Third-party loggers that are noisy at INFO
QUIET_LOGGERS = ("aiosqlite", "sqlalchemy.engine")


def configure_logging(level: str = "INFO", fmt: Optional[str] = None) -> None:
    """Configure root logging once for the service.

    Args:
        level: Level name (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        fmt: Log record format, defaults to DEFAULT_FORMAT
    """
    numeric_level = logging.getLevelName(level.upper())
    if not isinstance(numeric_level, int):
        numeric_level = logging.INFO

    logging.basicConfig(level=numeric_level, format=fmt or DEFAULT_FORMAT, force=True)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(numeric_level, logging.WARNING))

    logger.debug(f"Logging configured at {logging.getLevelName(numeric_level)}")
