"""
Logging configuration for soltrace.

This module provides a centralized logging setup with colored output
for console and optional file logging.
"""

import logging
import sys
from typing import Optional

from soltrace.utils.colors import Colors

# Custom log level for very detailed tracing
TRACE = 5
logging.addLevelName(TRACE, 'TRACE')

ROOT_LOGGER_NAME = 'soltrace'


class ColoredFormatter(logging.Formatter):
    """
    Formatter that adds ANSI colors to log levels.

    Colors are only applied if the output stream supports them.
    """

    LEVEL_COLORS = {
        TRACE: Colors.DIM,
        logging.DEBUG: Colors.DIM,
        logging.INFO: Colors.BRIGHT_CYAN,
        logging.WARNING: Colors.BRIGHT_YELLOW,
        logging.ERROR: Colors.BRIGHT_RED,
        logging.CRITICAL: Colors.BOLD + Colors.BRIGHT_RED,
    }

    def __init__(self, fmt: str = None, datefmt: str = None, use_colors: bool = True):
        super().__init__(fmt, datefmt)
        self.use_colors = use_colors

    def format(self, record: logging.LogRecord) -> str:
        levelname = record.levelname
        if self.use_colors:
            color = self.LEVEL_COLORS.get(record.levelno, '')
            reset = Colors.RESET if color else ''
            record.levelname = f"{color}{levelname}{reset}"
        try:
            return super().format(record)
        finally:
            # Records are shared between handlers; the file handler must not see escapes
            record.levelname = levelname


class SoltraceLogger(logging.Logger):
    """
    Extended logger with trace level support.
    """

    def trace(self, msg, *args, **kwargs):
        """Log a message with TRACE level."""
        if self.isEnabledFor(TRACE):
            self._log(TRACE, msg, args, **kwargs)


logging.setLoggerClass(SoltraceLogger)


def setup_logging(
    level: int = logging.INFO,
    quiet: bool = False,
    debug: bool = False,
    verbose: bool = False,
    log_file: Optional[str] = None,
    use_colors: bool = True
) -> logging.Logger:
    """
    Configure logging for soltrace.

    Args:
        level: Base logging level
        quiet: If True, suppress all console output
        debug: If True, set level to DEBUG
        verbose: If True, set level to TRACE (more detailed than DEBUG)
        log_file: Optional path to log file
        use_colors: Whether to use colored output

    Returns:
        Configured logger instance
    """
    if verbose:
        effective_level = TRACE
    elif debug:
        effective_level = logging.DEBUG
    else:
        effective_level = level

    logger = logging.getLogger(ROOT_LOGGER_NAME)
    logger.setLevel(effective_level)
    logger.handlers.clear()
    logger.propagate = False

    if not quiet:
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setLevel(effective_level)

        supports_color = (
            hasattr(sys.stderr, 'isatty') and
            sys.stderr.isatty() and
            use_colors
        )

        console_handler.setFormatter(ColoredFormatter(
            fmt='%(levelname)s: %(message)s',
            use_colors=supports_color
        ))
        logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(logging.Formatter(
            fmt='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        ))
        logger.addHandler(file_handler)

    return logger


def get_logger(name: str = None) -> logging.Logger:
    """
    Get a logger instance.

    Args:
        name: Optional child name. ``get_logger('compiler')`` returns the
              ``soltrace.compiler`` logger; no name returns the package root.

    Returns:
        Logger instance
    """
    if name:
        return logging.getLogger(f'{ROOT_LOGGER_NAME}.{name}')
    return logging.getLogger(ROOT_LOGGER_NAME)
