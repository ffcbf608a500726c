"""
Console logging setup for the bookbatch CLI
Provides a coloured formatter on top of the standard logging module
"""
import logging
import os
import sys
from typing import Optional


class Colors:
    """ANSI color codes for terminal output"""
    # Check if colors should be disabled
    NO_COLOR = os.environ.get('NO_COLOR') is not None or not sys.stdout.isatty()

    YELLOW = '' if NO_COLOR else '\033[93m'       # Headers and warnings
    WHITE = '' if NO_COLOR else '\033[97m'        # Main text
    GRAY = '' if NO_COLOR else '\033[90m'         # Technical details
    ORANGE = '' if NO_COLOR else '\033[38;5;214m' # Input sent to the LLM
    GREEN = '' if NO_COLOR else '\033[92m'        # Output from the LLM
    RED = '' if NO_COLOR else '\033[91m'          # Errors
    ENDC = '' if NO_COLOR else '\033[0m'          # Reset

    @classmethod
    def disable(cls):
        """Disable all colors"""
        cls.YELLOW = cls.WHITE = cls.GRAY = cls.ORANGE = cls.GREEN = cls.RED = cls.ENDC = ''


class ColoredFormatter(logging.Formatter):
    """Formats records as ``HH:MM:SS LEVEL name: message`` with a colour per level"""

    LEVEL_COLORS = {
        logging.DEBUG: 'GRAY',
        logging.INFO: 'WHITE',
        logging.WARNING: 'YELLOW',
        logging.ERROR: 'RED',
        logging.CRITICAL: 'RED',
    }

    def __init__(self, enable_colors: bool = True):
        super().__init__('%(asctime)s %(levelname)-7s %(name)s: %(message)s', datefmt='%H:%M:%S')
        self.enable_colors = enable_colors

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        if not self.enable_colors:
            return message
        color = getattr(Colors, self.LEVEL_COLORS.get(record.levelno, 'WHITE'))
        return f"{color}{message}{Colors.ENDC}" if color else message


def setup_cli_logger(enable_colors: bool = True, level: Optional[int] = None) -> logging.Logger:
    """
    Install a coloured console handler on the ``bookbatch`` logger.

    Calling it again replaces the previous handler instead of stacking a second one.

    Args:
        enable_colors: Use ANSI colours (still disabled by NO_COLOR or a non-TTY stdout)
        level: Log level, DEBUG when DEBUG_MODE is on and INFO otherwise

    Returns:
        The configured package logger
    """
    from bookbatch.config import DEBUG_MODE

    if not enable_colors:
        Colors.disable()

    logger = logging.getLogger('bookbatch')
    for handler in list(logger.handlers):
        if getattr(handler, '_bookbatch_cli', False):
            logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(ColoredFormatter(enable_colors=enable_colors and not Colors.NO_COLOR))
    handler._bookbatch_cli = True
    logger.addHandler(handler)
    logger.setLevel(level if level is not None else (logging.DEBUG if DEBUG_MODE else logging.INFO))
    logger.propagate = False
    return logger
