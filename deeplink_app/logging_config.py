"""
Loguru setup.

Standard-library loggers (uvicorn, sqlalchemy) are routed into loguru so the
whole process writes through a single sink.
"""

import logging
import sys

from loguru import logger

from deeplink_app.config import settings


class InterceptHandler(logging.Handler):
    """Bridge standard logging records into loguru."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        # Walk back to the frame that issued the logging call
        frame, depth = logging.currentframe(), 2
        while frame and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())


def configure_logging(level: str = None, serialize: bool = None) -> None:
    """
    Configure the loguru sink and intercept stdlib logging.

    Args:
        level: Minimum level, defaults to settings.log_level
        serialize: Emit JSON lines, defaults to settings.log_json
    """
    level = (level or settings.log_level).upper()
    serialize = settings.log_json if serialize is None else serialize

    logger.remove()
    logger.add(sys.stderr, level=level, serialize=serialize, backtrace=False)

    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)
    for name in ("uvicorn", "uvicorn.error", "uvicorn.access", "sqlalchemy.engine"):
        std_logger = logging.getLogger(name)
        std_logger.handlers = [InterceptHandler()]
        std_logger.propagate = False

    logger.bind(environment=settings.environment).debug("Logging configured", level=level)
