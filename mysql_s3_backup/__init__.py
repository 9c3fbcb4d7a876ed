import os
import logging
from logging.handlers import RotatingFileHandler


__version__ = '1.0.0'

# ANSI colours per level, mirroring the success/warning/error styling
LEVEL_COLORS = {
    logging.DEBUG: 36,
    logging.INFO: 32,
    logging.WARNING: 33,
    logging.ERROR: 31,
    logging.CRITICAL: 31,
}


class ColorFormatter(logging.Formatter):
    """Formatter that colours the level name for terminal output."""

    def __init__(self, fmt=None, datefmt=None, colors=True):
        super().__init__(fmt, datefmt)
        self.colors = colors

    def format(self, record):
        if not self.colors:
            return super().format(record)

        original = record.levelname
        color = LEVEL_COLORS.get(record.levelno, 0)
        record.levelname = f"\033[0;{color}m{original}\033[0m"
        try:
            return super().format(record)
        finally:
            record.levelname = original


def configure_logging(colors: bool = True, verbose: bool = False, log_file: str = None):
    """Configure application logging"""

    log_level = logging.DEBUG if verbose else logging.INFO

    # Console handler
    console_handler = logging.StreamHandler()
    console_handler.setLevel(log_level)
    console_handler.setFormatter(ColorFormatter(
        '[%(asctime)s] %(levelname)s in %(module)s: %(message)s',
        colors=colors
    ))
    handlers = [console_handler]

    # File handler
    if log_file:
        os.makedirs(os.path.dirname(os.path.abspath(log_file)), exist_ok=True)
        file_handler = RotatingFileHandler(
            log_file,
            maxBytes=10485760,  # 10MB
            backupCount=10
        )
        file_handler.setLevel(log_level)
        file_handler.setFormatter(logging.Formatter(
            '[%(asctime)s] %(levelname)s [%(name)s.%(funcName)s:%(lineno)d] %(message)s'
        ))
        handlers.append(file_handler)

    logging.basicConfig(level=log_level, handlers=handlers)

    logging.getLogger(__name__).debug(
        f"Logging configured (level: {logging.getLevelName(log_level)})"
    )
