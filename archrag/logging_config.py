"""
Logging configuration for archrag.

Modules log through ``logging.getLogger(__name__)``; this module only decides
where records go. Call :func:`configure_logging` once from an entry point.
"""

import logging
import sys
from pathlib import Path
from typing import Optional

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

_ROOT_LOGGER_NAME = "archrag"
_configured_handlers: list[logging.Handler] = []


class FlushingStreamHandler(logging.StreamHandler):
    """StreamHandler that flushes after every emit."""

    def emit(self, record):
        super().emit(record)
        try:
            self.flush()
        except Exception:
            self.handleError(record)


def _create_file_handler(log_file: str) -> logging.FileHandler:
    path = Path(log_file)
    path.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(path, mode='a', encoding='utf-8')
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    return handler


def configure_logging(level: str = "INFO", log_file: Optional[str] = None) -> logging.Logger:
    """
    Configure the ``archrag`` logger hierarchy.

    Safe to call more than once: handlers installed by a previous call are
    replaced rather than duplicated.

    Args:
        level: Logging level name (e.g. "DEBUG", "INFO")
        log_file: Optional path of a log file to append to

    Returns:
        The package root logger
    """
    logger = logging.getLogger(_ROOT_LOGGER_NAME)

    for handler in _configured_handlers:
        logger.removeHandler(handler)
        handler.close()
    _configured_handlers.clear()

    stream_handler = FlushingStreamHandler(sys.stderr)
    stream_handler.setFormatter(logging.Formatter(LOG_FORMAT))
    _configured_handlers.append(stream_handler)

    if log_file:
        _configured_handlers.append(_create_file_handler(log_file))

    for handler in _configured_handlers:
        logger.addHandler(handler)

    logger.setLevel(getattr(logging, level.upper(), logging.INFO))
    logger.propagate = False
    return logger
