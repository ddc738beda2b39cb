import os
import sys

from loguru import logger

_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{line}</cyan> - "
    "<level>{message}</level> | {extra}"
)


def setup_logging(level: str | None = None, log_file: str | None = None):
    """Replace loguru's default sink. Safe to call more than once."""
    level = (level or os.getenv("LOG_LEVEL", "INFO")).upper()
    log_file = log_file or os.getenv("LOG_FILE")

    logger.remove()
    logger.add(sys.stderr, level=level, format=_FORMAT, enqueue=False)
    if log_file:
        logger.add(
            log_file,
            level=level,
            format=_FORMAT,
            rotation="10 MB",
            retention=5,
            serialize=True,
        )
    return logger
