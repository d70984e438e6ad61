"""Logging configuration."""

import logging
import sys

from rentflow.config import settings

NOISY_LOGGERS = ("httpx", "httpcore", "stripe", "uvicorn.access", "sqlalchemy.engine")


def setup_logging(level: str | None = None) -> None:
    """Configure stdlib logging for the API process and the Celery worker."""
    logging.basicConfig(
        format="[%(asctime)s] %(levelname)s in %(name)s:%(lineno)d: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        stream=sys.stdout,
        level=(level or settings.log_level).upper(),
    )

    for noisy_logger in NOISY_LOGGERS:
        logging.getLogger(noisy_logger).setLevel(logging.WARNING)
