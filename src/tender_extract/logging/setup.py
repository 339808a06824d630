"""Logging for the extraction pipeline: JSON file log plus a readable console.

Handlers installed by setup_logging():
    1. RotatingFileHandler -- JSON records, DEBUG level, size-based rotation
    2. StreamHandler -- text lines, INFO level

Documents are extracted concurrently, so every record is stamped with the
document it belongs to. ``document_scope(filename)`` sets the name for the
current task; asyncio tasks and ``asyncio.to_thread`` workers inherit it, so
lines from the cloud client, the local engine and the retry controller carry
the right filename without passing it around. Records logged outside any
document show ``-``.
"""

import logging
import logging.handlers
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from pathlib import Path

from pythonjsonlogger.json import JsonFormatter

NO_DOCUMENT = "-"

_current_document: ContextVar[str] = ContextVar("document", default=NO_DOCUMENT)

# Third-party loggers that flood DEBUG/INFO with per-request or per-chunk noise
LIBRARY_LEVELS = {
    "httpx": logging.WARNING,
    "httpcore": logging.WARNING,
    "PIL": logging.INFO,
    "pytesseract": logging.INFO,
}


@contextmanager
def document_scope(filename: str) -> Iterator[None]:
    """Attribute every log record in this context to *filename*."""
    token = _current_document.set(filename or NO_DOCUMENT)
    try:
        yield
    finally:
        _current_document.reset(token)


class DocumentFilter(logging.Filter):
    """Adds a ``document`` attribute to each record passing the handler."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.document = _current_document.get()
        return True


def setup_logging(
    log_dir: str = "logs",
    log_level_file: int = logging.DEBUG,
    log_level_console: int = logging.INFO,
    max_bytes: int = 10_485_760,  # 10MB
    backup_count: int = 5,
) -> None:
    """Install the JSON file handler and the console handler on the root logger.

    Creates *log_dir* if needed and replaces any handlers already on the
    root logger, so calling it twice does not duplicate output.

    Args:
        log_dir: Directory for ``extraction.log`` and its rotated backups.
        log_level_file: Level for the JSON file handler.
        log_level_console: Level for the console handler.
        max_bytes: File size that triggers rotation.
        backup_count: Rotated files to keep.
    """
    Path(log_dir).mkdir(parents=True, exist_ok=True)

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)
    root_logger.handlers.clear()
    document_filter = DocumentFilter()

    file_handler = logging.handlers.RotatingFileHandler(
        filename=str(Path(log_dir) / "extraction.log"),
        maxBytes=max_bytes,
        backupCount=backup_count,
        encoding="utf-8",
    )
    file_handler.setLevel(log_level_file)
    file_handler.addFilter(document_filter)
    file_handler.setFormatter(
        JsonFormatter(
            fmt="%(asctime)s %(name)s %(levelname)s %(document)s %(message)s",
            rename_fields={
                "asctime": "timestamp",
                "levelname": "level",
                "name": "component",
            },
            datefmt="%Y-%m-%dT%H:%M:%S",
        )
    )

    console_handler = logging.StreamHandler()
    console_handler.setLevel(log_level_console)
    console_handler.addFilter(document_filter)
    console_handler.setFormatter(
        logging.Formatter(
            fmt="%(asctime)s [%(levelname)-8s] %(name)s <%(document)s>: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
    )

    root_logger.addHandler(file_handler)
    root_logger.addHandler(console_handler)

    for name, level in LIBRARY_LEVELS.items():
        logging.getLogger(name).setLevel(level)
