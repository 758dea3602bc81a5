"""
Centralized logging manager for the application.

Every logger gets a console (stdout) handler and an optional message prefix.
Two further sinks are switched on from settings:

- LOG_TO_FILE: a per-worker log file under LOG_DIR (`worker_<pid>.log`).
- LOKI_ENABLED: a LokiLoggerHandler pushing to LOKI_URL with app/env labels.
  If Loki cannot be attached, records go to a JSON-lines buffer file in
  LOG_DIR instead, so nothing is lost while Loki is down. Buffered records are
  NOT resent automatically; ship them with a log shipper if needed.

Usage:
- Use get_logger() to obtain a logger instance.
"""

import json
import logging
import os
import socket
import sys
import threading
import traceback

from loki_logger_handler.loki_logger_handler import LokiLoggerHandler

from facetime_attendance.config import settings

LOKI_TAGS: dict[str, str] = {"app": settings.APP_NAME, "env": settings.ENV}
LOG_LEVEL: str = settings.LOG_LEVEL.upper()
LOG_FORMAT: str = "[%(asctime)s] %(levelname)s in %(name)s: %(message)s"
BUFFER_LOCK = threading.Lock()
DEFAULT_LOGGER_NAME = "FaceTime_Attendance"


def _buffer_file() -> str:
    return os.path.join(settings.LOG_DIR, "loki_buffer.log")


def _ensure_console_handler(logger: logging.Logger, formatter: logging.Formatter) -> bool:
    """
    Ensure logger has a StreamHandler for console output.

    Returns:
        bool: True if a new StreamHandler was added, False if one already existed
    """
    for handler in logger.handlers:
        if isinstance(handler, logging.StreamHandler) and handler.stream is sys.stdout:
            return False

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    console_handler.setLevel(logger.level)
    logger.addHandler(console_handler)
    return True


def _write_to_buffer(record: logging.LogRecord) -> None:
    """
    Append a log record to the buffer file as one JSON line.

    Consecutive identical lines are written once.
    """
    log_dict = {
        "ts": record.created,
        "level": record.levelname,
        "logger": record.name,
        "msg": record.getMessage(),
        "process": record.process,
        "thread": record.thread,
        "filename": record.filename,
        "funcName": record.funcName,
        "lineno": record.lineno,
        "host": socket.gethostname(),
        "app": settings.APP_NAME,
        "env": settings.ENV,
        "exception": None,
        "request_id": getattr(record, "request_id", None),
    }
    if record.exc_info:
        log_dict["exception"] = "".join(traceback.format_exception(*record.exc_info))
    log_line = json.dumps(log_dict, ensure_ascii=False, default=str) + "\n"
    buffer_file = _buffer_file()
    try:
        with BUFFER_LOCK:
            os.makedirs(os.path.dirname(buffer_file), exist_ok=True)
            last_line = None
            if os.path.exists(buffer_file):
                with open(buffer_file, "rb") as f:
                    try:
                        f.seek(-4096, os.SEEK_END)
                    except OSError:
                        f.seek(0)
                    lines = f.readlines()
                    if lines:
                        last_line = lines[-1].decode("utf-8", errors="ignore").rstrip("\n")
            if last_line == log_line.rstrip("\n"):
                return
            with open(buffer_file, "a", encoding="utf-8") as f:
                f.write(log_line)
    except OSError as e:
        logging.getLogger(DEFAULT_LOGGER_NAME).error(
            "[LoggingManager] Failed to write log to buffer file '%s': %s", buffer_file, e, exc_info=True
        )


class BufferHandler(logging.Handler):
    """Handler used in place of Loki when the Loki handler cannot be attached."""

    def emit(self, record: logging.LogRecord) -> None:
        _write_to_buffer(record)


class PrefixFilter(logging.Filter):
    """Prepend a fixed tag such as ``[WebAuthn Registration]`` to every message."""

    def __init__(self, prefix: str):
        super().__init__()
        self.prefix = prefix

    def filter(self, record: logging.LogRecord) -> bool:
        if self.prefix and not getattr(record, "_prefix_applied", False):
            record.msg = f"{self.prefix} {record.msg}"
            record._prefix_applied = True
        return True


def get_worker_log_filename() -> str:
    return os.path.join(settings.LOG_DIR, f"worker_{os.getpid()}.log")


def _attach_file_handler(logger: logging.Logger, formatter: logging.Formatter) -> None:
    log_filename = get_worker_log_filename()
    os.makedirs(os.path.dirname(log_filename), exist_ok=True)
    if not any(
        isinstance(h, logging.FileHandler) and getattr(h, "baseFilename", None) == os.path.abspath(log_filename)
        for h in logger.handlers
    ):
        file_handler = logging.FileHandler(log_filename)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)


def _attach_loki_handler(logger: logging.Logger, name: str) -> None:
    if any(isinstance(h, (LokiLoggerHandler, BufferHandler)) for h in logger.handlers):
        return
    try:
        loki_handler = LokiLoggerHandler(
            url=settings.LOKI_URL,
            labels=LOKI_TAGS,
            auth=None,
            compressed=settings.LOKI_COMPRESS,
        )
        logger.addHandler(loki_handler)
        logger.info(
            "[LoggingManager] LokiLoggerHandler attached to logger '%s' (url=%s, labels=%s)",
            name,
            settings.LOKI_URL,
            LOKI_TAGS,
        )
    except (OSError, ValueError) as e:
        logger.error(
            "[LoggingManager] Failed to attach LokiLoggerHandler: %s. Falling back to file buffer.",
            e,
            exc_info=True,
        )
        logger.addHandler(BufferHandler())


def get_logger(name: str = DEFAULT_LOGGER_NAME, prefix: str = "") -> logging.Logger:
    """
    Return a configured logger.

    Loggers are shared by name, so modules that pass a different prefix for the
    same name get their own child logger (``<name>.<prefix>``) to keep prefixes
    from stacking.
    """
    logger_name = name
    if prefix:
        logger_name = f"{name}.{prefix.strip('[]').replace(' ', '_')}"

    logger = logging.getLogger(logger_name)
    logger.setLevel(getattr(logging, LOG_LEVEL, logging.INFO))
    logger.propagate = False

    formatter = logging.Formatter(LOG_FORMAT)
    _ensure_console_handler(logger, formatter)

    if settings.LOG_TO_FILE:
        _attach_file_handler(logger, formatter)

    if prefix and not any(isinstance(f, PrefixFilter) for f in logger.filters):
        logger.addFilter(PrefixFilter(prefix))

    if settings.LOKI_ENABLED:
        _attach_loki_handler(logger, logger_name)

    return logger
