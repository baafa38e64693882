"""
Logging setup for mnemo processes.

Everything logs through loguru. Standard-library loggers (uvicorn, fastapi,
asyncio) are routed into loguru so a worker process has a single stream.
Call ``setup_logging`` once from the process entry point.
"""

import logging
import sys
from typing import Iterable

from loguru import logger

LOG_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | <level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>"
)

INTERCEPTED_LOGGERS = ("uvicorn", "uvicorn.access", "uvicorn.error", "fastapi", "asyncio")


class InterceptHandler(logging.Handler):
    """
    Forwards standard-library log records to loguru.
    See: https://loguru.readthedocs.io/en/stable/overview.html#entirely-compatible-with-standard-logging
    """

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        # Skip logging's own frames so loguru reports the real caller
        frame, depth = logging.currentframe(), 2
        while frame is not None and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())


def intercept_stdlib_loggers(names: Iterable[str] = INTERCEPTED_LOGGERS) -> None:
    """Send the named stdlib loggers (and the root logger) to loguru only."""
    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)
    for name in names:
        stdlib_logger = logging.getLogger(name)
        stdlib_logger.handlers = [InterceptHandler()]
        stdlib_logger.propagate = False


def setup_logging(level: str = "INFO", json_logs: bool = False) -> int:
    """
    Replace loguru's sinks with one stdout sink and intercept stdlib logging.

    Args:
        level: Minimum level for the stdout sink.
        json_logs: Emit one JSON object per record instead of the colored format.

    Returns:
        The loguru sink id.
    """
    logger.remove()
    if json_logs:
        sink_id = logger.add(sys.stdout, level=level, serialize=True)
    else:
        sink_id = logger.add(sys.stdout, format=LOG_FORMAT, level=level, colorize=True)

    intercept_stdlib_loggers()

    logger.info(f"Logging initialized (level={level}, json={json_logs})")
    return sink_id
