"""Logging setup for the Syngrafi editor.

Records are tagged with the completion batch they belong to (``batch=-`` outside
a batch) so the interleaved lines of one concurrent fan-out can be grouped.
"""

from __future__ import annotations

import contextvars
import logging
import logging.handlers
import os
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

__all__ = ["setup_logging", "get_log_path", "batch_context", "current_batch"]

LOG_FILE_NAME = "syngrafi.log"
LOG_FORMAT = "%(asctime)s %(levelname)-7s [%(name)s] batch=%(batch)s %(message)s"

_DEFAULT_LOG_DIR = Path.home() / ".syngrafi" / "logs"
_QUIET_LOGGERS = ("asyncio", "httpx", "httpcore", "openai")
_BATCH: contextvars.ContextVar[int | None] = contextvars.ContextVar("syngrafi_batch", default=None)
_INSTALLED: list[logging.Handler] = []
_LOG_PATH: Path | None = None


class _BatchFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        token = _BATCH.get()
        record.batch = "-" if token is None else token
        return True


@contextmanager
def batch_context(token: int) -> Iterator[None]:
    """Tag every record emitted in this context (and tasks spawned from it)."""

    reset = _BATCH.set(token)
    try:
        yield
    finally:
        _BATCH.reset(reset)


def current_batch() -> int | None:
    return _BATCH.get()


def setup_logging(
    level: int = logging.INFO,
    *,
    log_dir: Path | str | None = None,
    console: bool = True,
    max_bytes: int = 1_000_000,
    backup_count: int = 3,
    force: bool = False,
) -> Path:
    """Install the rotating file handler and, optionally, a console handler.

    The file always receives DEBUG records; ``level`` applies to the console.
    Calling again is a no-op unless ``force`` is set, in which case the handlers
    installed by the previous call are replaced and foreign handlers are kept.
    """

    global _LOG_PATH
    if _INSTALLED and not force and _LOG_PATH is not None:
        return _LOG_PATH

    directory = Path(log_dir or os.environ.get("SYNGRAFI_LOG_DIR") or _DEFAULT_LOG_DIR).expanduser()
    directory.mkdir(parents=True, exist_ok=True)
    log_path = directory / LOG_FILE_NAME

    root = logging.getLogger()
    for handler in _INSTALLED:
        root.removeHandler(handler)
        handler.close()
    _INSTALLED.clear()

    formatter = logging.Formatter(LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")
    tagger = _BatchFilter()

    file_handler = logging.handlers.RotatingFileHandler(
        log_path, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8"
    )
    file_handler.setLevel(logging.DEBUG)
    _INSTALLED.append(file_handler)
    if console:
        console_handler = logging.StreamHandler()
        console_handler.setLevel(level)
        _INSTALLED.append(console_handler)

    for handler in _INSTALLED:
        handler.setFormatter(formatter)
        handler.addFilter(tagger)
        root.addHandler(handler)
    root.setLevel(min(level, logging.DEBUG))
    logging.captureWarnings(True)

    # Third-party chatter stays at WARNING even in debug runs.
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))

    _LOG_PATH = log_path
    return log_path


def get_log_path() -> Path | None:
    """Return the active log file, if logging has been configured."""

    return _LOG_PATH
