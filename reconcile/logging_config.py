"""
Logging configuration for the Identity Reconciliation service

The console gets coloured level names; the optional log file gets the plain
format plus thread names, since identify calls run on the server's request
thread pool and lock waits are easier to follow per thread.
"""

import logging
import logging.handlers
from pathlib import Path
from typing import Dict, Optional
import colorama

from reconcile.config import LoggingSettings

colorama.init()

CONSOLE_FORMAT = '%(asctime)s | %(levelname)-8s | %(name)s | %(message)s'
FILE_FORMAT = '%(asctime)s | %(levelname)-8s | %(threadName)s | %(name)s:%(lineno)d | %(message)s'
DATE_FORMAT = '%Y-%m-%d %H:%M:%S'

# Third-party loggers that drown out identify decisions at INFO
QUIET_LOGGERS: Dict[str, int] = {
    'sqlalchemy.engine': logging.WARNING,
    'sqlalchemy.pool': logging.WARNING,
}

# Per-request access lines; the file already records every identify outcome
ACCESS_LOGGER = 'uvicorn.access'


class ColoredFormatter(logging.Formatter):
    """Console formatter that colours the level name"""

    LEVEL_COLORS = {
        logging.DEBUG: colorama.Fore.CYAN,
        logging.INFO: colorama.Fore.GREEN,
        logging.WARNING: colorama.Fore.YELLOW,
        logging.ERROR: colorama.Fore.RED,
        logging.CRITICAL: colorama.Fore.RED + colorama.Style.BRIGHT,
    }

    def format(self, record):
        color = self.LEVEL_COLORS.get(record.levelno)
        if color is None:
            return super().format(record)
        # Copy so other handlers see the plain level name
        colored = logging.makeLogRecord(record.__dict__)
        colored.levelname = f"{color}{record.levelname}{colorama.Style.RESET_ALL}"
        return super().format(colored)


def setup_logging(
    log_file: Optional[str] = None,
    log_level: str = "INFO",
    max_bytes: int = 10 * 1024 * 1024,
    backup_count: int = 5
) -> logging.Logger:
    """
    Configure the root logger.

    Args:
        log_file: Rotating log file path; console only when None
        log_level: Root level name (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        max_bytes: Size at which the log file rotates
        backup_count: Rotated files kept

    With a log file configured, uvicorn's access logger is limited to
    warnings.
    """
    root = logging.getLogger()
    root.setLevel(getattr(logging, log_level.upper()))
    root.handlers.clear()

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(ColoredFormatter(CONSOLE_FORMAT, datefmt=DATE_FORMAT))
    root.addHandler(console_handler)

    for name, level in QUIET_LOGGERS.items():
        logging.getLogger(name).setLevel(level)

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.handlers.RotatingFileHandler(
            log_path,
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding='utf-8'
        )
        file_handler.setFormatter(logging.Formatter(FILE_FORMAT, datefmt=DATE_FORMAT))
        root.addHandler(file_handler)
        logging.getLogger(ACCESS_LOGGER).setLevel(logging.WARNING)

    return root


def setup_logging_from_settings(settings: LoggingSettings) -> logging.Logger:
    """Apply the `logging` section of app_config.yml."""
    return setup_logging(log_file=settings.file, log_level=settings.level)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
