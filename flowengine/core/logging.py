"""Process logging configuration for the flow engine."""

import logging
import sys
import json
import threading
import traceback
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from typing import Optional, Dict, Any
from pathlib import Path

DEFAULT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - [%(threadName)s] - %(message)s"

# Third-party loggers that are too chatty at INFO
QUIET_LOGGERS = ("sqlalchemy.engine", "sqlalchemy.pool", "urllib3", "asyncio", "uvicorn.access")


class StructuredFormatter(logging.Formatter):
    """Formatter emitting one JSON object per record.

    Execution context fields (``execution_id``, ``flow_id``) set on the
    emitting thread appear as top-level keys.
    """

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "location": f"{record.module}:{record.funcName}:{record.lineno}",
            "thread": record.threadName,
        }
        entry.update(getattr(record, "extra_fields", None) or {})

        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = {
                "type": record.exc_info[0].__name__,
                "message": str(record.exc_info[1]),
                "traceback": traceback.format_exception(*record.exc_info),
            }

        return json.dumps(entry, default=str)


class WorkflowContextFilter(logging.Filter):
    """Filter adding per-thread execution context to log records.

    Each worker thread runs exactly one execution at a time, so context set
    by one run is never visible to records emitted by another.
    """

    def __init__(self):
        super().__init__()
        self._local = threading.local()

    def _context(self) -> Dict[str, Any]:
        context = getattr(self._local, "context", None)
        if context is None:
            context = {}
            self._local.context = context
        return context

    def set_context(self, **kwargs):
        self._context().update(kwargs)

    def clear_context(self):
        self._context().clear()

    def filter(self, record: logging.LogRecord) -> bool:
        fields = dict(self._context())
        fields.update(getattr(record, "extra_fields", None) or {})
        record.extra_fields = fields
        return True


_context_filter = WorkflowContextFilter()


def _build_handler(handler: logging.Handler, formatter: logging.Formatter) -> logging.Handler:
    handler.setFormatter(formatter)
    handler.addFilter(_context_filter)
    return handler


def setup_logging(
    level: str = "INFO",
    log_file: Optional[str] = None,
    log_format: Optional[str] = None,
    structured: bool = False,
    max_size: int = 10 * 1024 * 1024,  # 10MB
    backup_count: int = 5
) -> logging.Logger:
    """
    Configure process logging for the flow engine.

    Replaces any handlers already installed on the root logger, so calling
    it again (for instance once per application startup) is safe.

    Args:
        level: Logging level name, or an enum whose value is one
        log_file: Optional file path; enables a rotating file handler
        log_format: Format string for plain-text output
        structured: Emit JSON records instead of plain text
        max_size: Maximum log file size in bytes before rotation
        backup_count: Number of rotated files to keep

    Returns:
        Root logger instance
    """
    if structured:
        formatter = StructuredFormatter()
    else:
        formatter = logging.Formatter(fmt=log_format or DEFAULT_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")

    level_name = str(getattr(level, "value", level)).upper()
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level_name))

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    root_logger.addHandler(_build_handler(logging.StreamHandler(sys.stdout), formatter))

    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        root_logger.addHandler(_build_handler(
            RotatingFileHandler(log_file, maxBytes=max_size, backupCount=backup_count),
            formatter,
        ))

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    return root_logger


def get_logger(name: str) -> logging.Logger:
    """Get a logger instance for the given name."""
    return logging.getLogger(name)


def set_logging_context(**kwargs):
    """Attach fields such as ``execution_id`` to later records of this thread."""
    _context_filter.set_context(**kwargs)


def clear_logging_context():
    _context_filter.clear_context()


class ErrorRecoveryLogger:
    """Logs the attempts a retry policy makes for one operation."""

    def __init__(self, operation: str):
        self.operation = operation
        self.logger = get_logger(f"flowengine.recovery.{operation}")

    def _log(self, level: int, message: str, **fields):
        self.logger.log(level, message, extra={"extra_fields": {"operation": self.operation, **fields}})

    def attempt_failed(self, error: Exception, attempt: int, max_attempts: int, delay: float):
        self._log(
            logging.WARNING,
            f"{self.operation} failed on attempt {attempt}/{max_attempts}, retrying in {delay:.2f}s: {error}",
            error_type=type(error).__name__,
            attempt=attempt,
        )

    def recovered(self, attempts_used: int):
        self._log(logging.INFO, f"{self.operation} succeeded after {attempts_used} attempts",
                  attempts_used=attempts_used)

    def gave_up(self, error: Exception, attempts_used: int):
        self._log(
            logging.ERROR,
            f"{self.operation} gave up after {attempts_used} attempts: {error}",
            error_type=type(error).__name__,
            attempts_used=attempts_used,
        )
