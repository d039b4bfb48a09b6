# src/sparkboard/logging_setup.py

from __future__ import annotations

import logging
import logging.handlers
import sys
from pathlib import Path

LOG_FILE_NAME = "sparkboard.log"

# Third-party loggers capped regardless of the console level (file included).
_LIBRARY_LEVELS = {
    "httpx": logging.WARNING,
    "httpcore": logging.WARNING,
    "asyncio": logging.INFO,
}

_HANDLER_NAMES = ("sparkboard-console", "sparkboard-file")


class _ConsoleNoiseFilter(logging.Filter):
    """
    Keep the console readable while both loops run in one process:
    - pipeline logs pass, except per-recipient delivery lines (WARNING+ only)
    - everything else, captured warnings included, only at ERROR+
    """

    def filter(self, record: logging.LogRecord) -> bool:
        if not record.name.startswith("sparkboard."):
            return record.levelno >= logging.ERROR
        if record.name.startswith("sparkboard.notifications.delivery"):
            return record.levelno >= logging.WARNING
        return True


def _formatter() -> logging.Formatter:
    # threadName: reconciliation runs and store calls execute in worker threads.
    return logging.Formatter(
        fmt="%(asctime)s.%(msecs)03d %(levelname)-7s [%(threadName)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def setup_logging(
    *,
    log_dir: str | Path = ".local/sparkboard",
    console_level: int = logging.INFO,
    file_level: int = logging.DEBUG,
    max_bytes: int = 5 * 1024 * 1024,
    backup_count: int = 3,
) -> Path:
    """
    Install a filtered stderr handler and a size-rotated file handler on the root
    logger. Calling it again replaces the handlers it installed earlier.

    Returns the log file path.
    """
    log_dir = Path(log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / LOG_FILE_NAME

    root = logging.getLogger()
    root.setLevel(min(console_level, file_level))
    for h in list(root.handlers):
        if h.get_name() in _HANDLER_NAMES:
            root.removeHandler(h)
            h.close()

    fmt = _formatter()

    console = logging.StreamHandler(sys.stderr)
    console.set_name(_HANDLER_NAMES[0])
    console.setLevel(console_level)
    console.setFormatter(fmt)
    console.addFilter(_ConsoleNoiseFilter())
    root.addHandler(console)

    rotating = logging.handlers.RotatingFileHandler(
        log_file, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8"
    )
    rotating.set_name(_HANDLER_NAMES[1])
    rotating.setLevel(file_level)
    rotating.setFormatter(fmt)
    root.addHandler(rotating)

    logging.captureWarnings(True)
    for name, level in _LIBRARY_LEVELS.items():
        logging.getLogger(name).setLevel(level)

    return log_file
