"""
Logging Configuration
Routes the engine's log records (validation, run progress, energy and
material warnings, result I/O) to the console and optionally to a run log.

Library code only calls ``logging.getLogger(__name__)``; handlers are
attached here, by the CLI or by a host application.
"""
import logging
import sys
from typing import Optional

PACKAGE_LOGGER = "plasmafurnace"
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
DATE_FORMAT = "%H:%M:%S"


def setup_logging(level: int = logging.INFO, log_file: Optional[str] = None) -> logging.Logger:
    """
    Attach handlers to the 'plasmafurnace' logger.

    Calling it again replaces the previous handlers, so a host that switches
    the log file between runs does not get duplicated records.

    Args:
        level: Logging level for the logger and its handlers.
        log_file: Path of a run log, overwritten on each call.

    Returns:
        The package logger.
    """
    logger = logging.getLogger(PACKAGE_LOGGER)
    logger.setLevel(level)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if log_file:
        handlers.append(logging.FileHandler(log_file, mode="w", encoding="utf-8"))
    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    target = f"console and {log_file}" if log_file else "console"
    logger.debug(f"Logging to {target} at level {logging.getLevelName(level)}.")
    return logger
