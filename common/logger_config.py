# common/logger_config.py
"""Centralized loguru configuration shared by every service."""

import logging
import os
import sys

from loguru import logger

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

log_format = " | ".join(
    (
        "<lk>{time:YYYY-MM-DD HH:mm:ss.SSS}</>",
        "<lvl>{level:<8}</>",
        "<m>{extra[service]}</>",
        "<c>{name}::{function}:{line}</>",
        "{message}",
    )
)


class InterceptHandler(logging.Handler):
    """Handler to intercept standard logging and redirect it to loguru."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        # Find the caller outside of the logging module
        frame, depth = logging.currentframe(), 2
        while frame and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())


def setup_logging(service_name: str) -> None:
    """
    Configure loguru for a service process.

    Removes the default sink, installs a stderr sink tagged with the
    service name, and routes uvicorn / SQLAlchemy stdlib loggers through
    loguru so everything shares one format.

    Parameters
    ----------
    service_name : str
        Short service identifier shown on every log line.
    """
    logger.remove()
    logger.configure(extra={"service": service_name})
    logger.add(sys.stderr, format=log_format, level=LOG_LEVEL, backtrace=False)

    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)
    for name in ("uvicorn", "uvicorn.error", "uvicorn.access", "sqlalchemy.engine"):
        std_logger = logging.getLogger(name)
        std_logger.handlers = [InterceptHandler()]
        std_logger.propagate = False
