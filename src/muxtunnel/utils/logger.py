"""
Logging setup for muxtunnel.

All modules log through loguru. Each module gets a logger bound to its
component name so sinks can show where an event came from:

    from muxtunnel.utils.logger import get_logger

    logger = get_logger(__name__)
    logger.info("Tunnel started")
"""

import sys
import traceback

from loguru import logger as _logger

from muxtunnel.models.enums import LogLevel

# Map our log levels to loguru level names
_LEVEL_MAP = {
    LogLevel.FULL: "TRACE",
    LogLevel.DEBUG: "DEBUG",
    LogLevel.INFO: "INFO",
    LogLevel.WARNING: "WARNING",
}

LOG_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{extra[component]}</cyan> - <level>{message}</level>"
)

FILE_LOG_FORMAT = (
    "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {extra[component]} - {message}"
)

# Records from loggers created without bind() still need the field
_logger.configure(extra={"component": "muxtunnel"})


def configure_logging(
    level: LogLevel | str = LogLevel.INFO,
    log_file: str | None = None,
) -> None:
    """
    Configure loguru sinks.

    Replaces any existing sinks, so calling it twice is safe.

    Args:
        level: Verbosity level.
        log_file: Optional path of a rotated log file.
    """
    level = LogLevel(level)
    loguru_level = _LEVEL_MAP.get(level, "INFO")
    full = level == LogLevel.FULL

    _logger.remove()
    _logger.add(
        sys.stderr,
        level=loguru_level,
        format=LOG_FORMAT,
        backtrace=full,
        diagnose=full,
    )

    if log_file:
        _logger.add(
            log_file,
            level=loguru_level,
            format=FILE_LOG_FORMAT,
            rotation="10 MB",
            retention=5,
            enqueue=True,
            backtrace=full,
            diagnose=full,
        )


def get_logger(name: str):
    """Get a logger bound to a component name."""
    if name.startswith("muxtunnel."):
        name = name[len("muxtunnel.") :]
    return _logger.bind(component=name)


def format_traceback(e: BaseException) -> str:
    """Format an exception with its traceback as a string."""
    return "".join(traceback.format_exception(type(e), e, e.__traceback__))
