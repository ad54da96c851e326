"""Logging setup for scripts and embedding applications."""
import logging
from typing import Optional

from distledger.config import settings


LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def setup_logging(level: Optional[str] = None) -> None:
    """
    Configure the root logger.

    Args:
        level: Log level name. Defaults to settings.LOG_LEVEL.
    """
    logging.basicConfig(
        level=(level or settings.LOG_LEVEL).upper(),
        format=LOG_FORMAT,
    )
    # SQL echo is controlled by DEBUG, keep engine chatter out of INFO logs
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
