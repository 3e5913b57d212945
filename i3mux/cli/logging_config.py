"""Logging configuration for the i3mux CLI.

Every module logs through ``logging.getLogger(__name__)``; this module only
decides where the ``i3mux`` hierarchy goes and how verbose it is:

- WARNING by default, INFO with --verbose, DEBUG with --debug
- stderr only, so command output on stdout stays parseable
- level names colored when stderr is a terminal
"""

import logging
import sys
from typing import Tuple


DEFAULT_FORMAT = "%(levelname)s: %(message)s"
VERBOSE_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
DEBUG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s:%(lineno)d: %(message)s"

ROOT_LOGGER = "i3mux"


class ColoredFormatter(logging.Formatter):
    """Formatter that colors the level name with ANSI codes."""

    LEVEL_COLORS = {
        logging.DEBUG: "\033[36m",
        logging.INFO: "\033[32m",
        logging.WARNING: "\033[33m",
        logging.ERROR: "\033[31m",
        logging.CRITICAL: "\033[35m",
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        color = self.LEVEL_COLORS.get(record.levelno)
        if color is None:
            return super().format(record)

        plain = record.levelname
        record.levelname = f"{color}{plain}{self.RESET}"
        try:
            return super().format(record)
        finally:
            # The same record may reach other handlers
            record.levelname = plain


def _level_and_format(verbose: bool, debug: bool) -> Tuple[int, str]:
    if debug:
        return logging.DEBUG, DEBUG_FORMAT
    if verbose:
        return logging.INFO, VERBOSE_FORMAT
    return logging.WARNING, DEFAULT_FORMAT


def setup_logging(verbose: bool = False, debug: bool = False) -> logging.Logger:
    """Route the ``i3mux`` logger hierarchy to stderr.

    Safe to call more than once; previous handlers are replaced.

    Args:
        verbose: INFO level with timestamps and logger names
        debug: DEBUG level, adds line numbers (wins over verbose)

    Returns:
        The configured ``i3mux`` logger
    """
    level, log_format = _level_and_format(verbose, debug)

    stream = sys.stderr
    formatter_class = ColoredFormatter if stream.isatty() else logging.Formatter
    handler = logging.StreamHandler(stream)
    handler.setLevel(level)
    handler.setFormatter(formatter_class(log_format))

    logger = logging.getLogger(ROOT_LOGGER)
    logger.handlers.clear()
    logger.addHandler(handler)
    logger.setLevel(level)
    logger.propagate = False

    return logger
