"""Logging configuration"""

import logging

from urnext.config import Settings


def setup_logging(settings: Settings) -> None:
    """Configure the root logger for the service."""
    level = getattr(logging, settings.log_level.upper(), logging.INFO)

    # force=True: uvicorn configures the root logger before the app starts
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        force=True,
    )

    # SQLAlchemy logs every statement at INFO when echo is on
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
