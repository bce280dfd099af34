"""Process-wide logging: JSON lines on disk, optional stderr echo, crash capture.

Every ``sensorscope.*`` logger feeds the handlers installed here. Structured
fields passed through ``extra=`` (``event``, ``crash_id``, ``category`` ...) are
written as top-level JSON keys, and fields bound with :func:`bind_context`
(the active session id) are stamped on every line.
"""

from __future__ import annotations

import faulthandler
import json
import logging
import logging.handlers
import sys
import threading
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import IO, Any, Callable

from .config import config_root


_LOGGER_NAME = "sensorscope"
_LOG_FILE = "sensorscope.log"
_FAULT_FILE = "fault.log"

# Attributes every LogRecord carries; anything else came in through ``extra=``.
_RECORD_FIELDS = frozenset(vars(logging.LogRecord("", logging.INFO, "", 0, "", (), None))) | {"message", "asctime"}

_context: dict[str, Any] = {}
_fault_file: IO[str] | None = None


def log_dir(directory: Path | None = None) -> Path:
    path = directory or (config_root() / "logs")
    path.mkdir(parents=True, exist_ok=True)
    return path


def log_file(directory: Path | None = None) -> Path:
    return log_dir(directory) / _LOG_FILE


def bind_context(**fields: Any) -> None:
    """Stamp ``fields`` on every following JSON line; a ``None`` value unbinds it."""
    for key, value in fields.items():
        if value is None:
            _context.pop(key, None)
        else:
            _context[key] = value


def parse_level(value: int | str) -> int:
    if isinstance(value, int):
        return value
    level = logging.getLevelName(str(value).upper())
    return level if isinstance(level, int) else logging.INFO


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts_utc": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "thread": record.threadName,
            "msg": record.getMessage(),
        }
        for key, value in record.__dict__.items():
            if key not in _RECORD_FIELDS and not key.startswith("_"):
                payload[key] = value
        for key, value in _context.items():
            payload.setdefault(key, value)
        if record.exc_info:
            payload["exc"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=True, default=str)


def configure_logging(
    keep_files: int = 7,
    console: bool = True,
    level: int | str = logging.INFO,
    directory: Path | None = None,
) -> logging.Logger:
    """Attach the rotating JSON file handler (and stderr echo) once per process."""
    logger = logging.getLogger(_LOGGER_NAME)
    if logger.handlers:
        return logger

    logger.setLevel(parse_level(level))
    path = log_file(directory)
    handler = logging.handlers.TimedRotatingFileHandler(
        filename=str(path),
        when="midnight",
        backupCount=max(2, keep_files),
        encoding="utf-8",
    )
    handler.setFormatter(JsonFormatter())
    logger.addHandler(handler)

    if console:
        # stdout carries snapshot JSON; diagnostics go to stderr.
        stream_handler = logging.StreamHandler(sys.stderr)
        stream_handler.setFormatter(logging.Formatter("%(levelname)s %(name)s %(message)s"))
        logger.addHandler(stream_handler)

    logger.info("logging to %s", path, extra={"event": "logging_configured"})
    return logger


def _uncaught_hook(logger: logging.Logger) -> Callable[..., None]:
    def _hook(exc_type, exc_value, exc_tb) -> None:
        if issubclass(exc_type, KeyboardInterrupt):
            sys.__excepthook__(exc_type, exc_value, exc_tb)
            return
        crash_id = str(uuid.uuid4())
        logger.critical(
            "uncaught exception crash_id=%s",
            crash_id,
            exc_info=(exc_type, exc_value, exc_tb),
            extra={"event": "uncaught_exception", "crash_id": crash_id},
        )

    return _hook


def _thread_hook(logger: logging.Logger) -> Callable[[threading.ExceptHookArgs], None]:
    def _hook(args: threading.ExceptHookArgs) -> None:
        crash_id = str(uuid.uuid4())
        logger.critical(
            "exception in thread %s crash_id=%s",
            args.thread.name if args.thread is not None else "?",
            crash_id,
            exc_info=(args.exc_type, args.exc_value, args.exc_traceback),
            extra={"event": "thread_exception", "crash_id": crash_id},
        )

    return _hook


def install_crash_hooks(directory: Path | None = None) -> None:
    """Log uncaught exceptions with a crash id and dump native faults to ``fault.log``."""
    global _fault_file
    logger = logging.getLogger(_LOGGER_NAME)
    sys.excepthook = _uncaught_hook(logger)
    threading.excepthook = _thread_hook(logger)

    if _fault_file is not None:
        return
    fault_path = log_dir(directory) / _FAULT_FILE
    _fault_file = fault_path.open("a", encoding="utf-8")
    faulthandler.enable(file=_fault_file, all_threads=True)
    logger.info("fault handler writing to %s", fault_path, extra={"event": "fault_handler_enabled"})
