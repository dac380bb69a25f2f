"""
Logging setup
--------------
All output goes through loguru.  Libraries that log through the standard
`logging` module (uvicorn, fastapi, httpx, faiss loader) are bridged into
loguru by `_StdlibBridge`, so the server, the CLI and the tests see a single
stream with one format.

Sinks:
  - stderr: coloured, one line per record
  - file:   plain text, rotated at 10 MB, kept 7 days (optional)
"""
from __future__ import annotations

import logging
import sys
from pathlib import Path

from loguru import logger

CONSOLE_FORMAT = (
    "<green>{time:HH:mm:ss.SSS}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{name}</cyan> - <level>{message}</level>"
)
FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {name}:{function}:{line} - {message}"

# Chatty third-party loggers and the level they are capped at
QUIET_LOGGERS = {
    "httpx": "WARNING",
    "httpcore": "WARNING",
    "faiss.loader": "WARNING",
}


class _StdlibBridge(logging.Handler):
    """Re-emit stdlib `logging` records through loguru."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level: str | int = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        # Walk out of the logging module so loguru reports the real caller
        frame, depth = logging.currentframe(), 2
        while frame is not None and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())


def setup_logger(log_level: str = "INFO", log_file: str | None = "logs/ragchat.log") -> None:
    """
    Configure loguru sinks and route stdlib logging into them.

    Safe to call more than once; previous sinks are replaced.
    """
    logger.remove()
    logger.add(sys.stderr, level=log_level, format=CONSOLE_FORMAT, colorize=True)

    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        logger.add(
            log_file,
            level=log_level,
            format=FILE_FORMAT,
            rotation="10 MB",
            retention="7 days",
            compression="zip",
            enqueue=True,
        )

    logging.basicConfig(handlers=[_StdlibBridge()], level=0, force=True)
    for name, level in QUIET_LOGGERS.items():
        logging.getLogger(name).setLevel(level)
    # uvicorn installs its own handlers; hand its records to the root bridge
    for name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        std = logging.getLogger(name)
        std.handlers = []
        std.propagate = True

    logger.debug(f"[Logger] level={log_level} file={log_file or '-'}")
