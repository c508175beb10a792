from __future__ import annotations

import logging
from logging.handlers import TimedRotatingFileHandler
from pathlib import Path
from typing import List, Optional

from page_cache.config.models import FileLoggingSettings, LoggingSettings

LOG_FORMAT = "[%(asctime)s][%(levelname)s][%(name)s] %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def _file_handler(settings: FileLoggingSettings) -> Optional[logging.Handler]:
    """Daily rotated log file, or None when file logging is off or the file cannot be opened."""
    path = settings.path.strip()
    if not path:
        return None
    try:
        Path(path).parent.mkdir(parents=True, exist_ok=True)
        handler = TimedRotatingFileHandler(
            filename=path,
            when="midnight",
            backupCount=settings.rotation.backup_count,
            encoding="utf-8",
        )
    except OSError:
        logging.getLogger(__name__).error("File logging handler failed to initialize. path=%s", path, exc_info=True)
        return None
    handler.suffix = "%Y-%m-%d"
    return handler


def init_logging(settings: LoggingSettings) -> None:
    """
    Route all page_cache loggers to stderr and, when `settings.file.path` is set, to a log file.

    Replaces any handlers already installed on the root logger. Python warnings are logged too.
    """

    level = logging.getLevelNamesMapping().get(settings.level.upper())
    if level is None:
        raise ValueError(f"Invalid logging level: {settings.level}")

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)

    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt=LOG_DATE_FORMAT)
    handlers: List[logging.Handler] = [logging.StreamHandler()]
    file_handler = _file_handler(settings.file)
    if file_handler is not None:
        handlers.append(file_handler)
    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)
        root_logger.addHandler(handler)
    logging.captureWarnings(True)


__all__ = ["init_logging"]
