"""
Logging setup — file sink with rotation plus a console sink.
Call once from the hosting process; library modules only use `logger`.
"""
from loguru import logger

from config import LOG_LEVEL, LOG_PATH


def setup_logging(level: str = LOG_LEVEL, path: str = LOG_PATH, console: bool = True):
    logger.remove()
    logger.add(
        path,
        level=level,
        rotation='50 MB',
        retention='7 days',
        format='{time:HH:mm:ss.SSS} | {level:<7} | {message}',
    )
    if console:
        logger.add(
            lambda msg: print(msg, end=''),
            level='INFO',
            format='{time:HH:mm:ss} | {level:<7} | {message}',
        )
