"""
ANSI color helpers for terminal output.

Colors are disabled automatically when stdout is not a TTY or when the
NO_COLOR environment variable is set.
"""

import os
import sys


class Colors:
    """ANSI escape sequences."""
    RESET = '\033[0m'
    BOLD = '\033[1m'
    DIM = '\033[2m'
    UNDERLINE = '\033[4m'

    MAGENTA = '\033[35m'

    BRIGHT_RED = '\033[91m'
    BRIGHT_GREEN = '\033[92m'
    BRIGHT_YELLOW = '\033[93m'
    BRIGHT_CYAN = '\033[96m'


SUPPORTS_COLOR = (
    hasattr(sys.stdout, 'isatty')
    and sys.stdout.isatty()
    and 'NO_COLOR' not in os.environ
)


def _wrap(code: str, text) -> str:
    if not SUPPORTS_COLOR:
        return str(text)
    return f"{code}{text}{Colors.RESET}"


def bold(text) -> str:
    return _wrap(Colors.BOLD, text)


def dim(text) -> str:
    return _wrap(Colors.DIM, text)


# Semantic helpers
def error(text) -> str:
    return _wrap(Colors.BRIGHT_RED, text)


def success(text) -> str:
    return _wrap(Colors.BRIGHT_GREEN, text)


def warning(text) -> str:
    return _wrap(Colors.BRIGHT_YELLOW, text)


def info(text) -> str:
    return _wrap(Colors.BRIGHT_CYAN, text)


def address(text) -> str:
    return _wrap(Colors.MAGENTA, text)
