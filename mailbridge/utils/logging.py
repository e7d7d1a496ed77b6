"""Logging utilities for mailbridge.

Components log through module-level loggers obtained from ``get_logger``;
all of them are children of the ``mailbridge`` logger. A ``LogManager`` is
constructed explicitly at startup and attaches its handlers to that root:

- a Rich console handler bound to stderr (stdout carries the tool protocol)
- a ``LogBuffer`` ring buffer queried by the ``get_logs`` tool
- an optional rotating JSON file handler

Usage Examples
--------------

    >>> manager = LogManager(debug=True, buffer_size=500)
    >>> get_logger(__name__).info("Connected", extra={"data": {"port": 1143}})
    >>> manager.buffer.get_logs(level="info", limit=10)
    >>> manager.close()
"""

import json
import logging
import re
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from functools import wraps
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Deque, Dict, List, Optional

from rich.console import Console
from rich.logging import RichHandler

ROOT_LOGGER_NAME = "mailbridge"

LEVEL_NAMES = {
    logging.DEBUG: "debug",
    logging.INFO: "info",
    logging.WARNING: "warn",
    logging.ERROR: "error",
    logging.CRITICAL: "error",
}


def get_logger(name: Optional[str] = None) -> logging.Logger:
    """Get a component logger below the ``mailbridge`` root."""
    if not name or name == ROOT_LOGGER_NAME:
        return logging.getLogger(ROOT_LOGGER_NAME)
    if name.startswith(ROOT_LOGGER_NAME + "."):
        return logging.getLogger(name)
    return logging.getLogger(f"{ROOT_LOGGER_NAME}.{name}")


def _context_of(record: logging.LogRecord) -> str:
    name = record.name
    if name.startswith(ROOT_LOGGER_NAME + "."):
        name = name[len(ROOT_LOGGER_NAME) + 1 :]
    return name.rsplit(".", 1)[-1] if name else "system"


## Ring Buffer


@dataclass
class LogEntry:
    """A single buffered log record."""

    level: str
    context: str
    message: str
    data: Any = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        entry = {
            "timestamp": self.timestamp.isoformat(),
            "level": self.level,
            "context": self.context,
            "message": self.message,
        }
        if self.data is not None:
            entry["data"] = self.data
        return entry


class LogBuffer(logging.Handler):
    """Bounded in-memory log store; the oldest entries are evicted first."""

    def __init__(self, capacity: int = 1000, level: int = logging.DEBUG):
        super().__init__(level)
        if capacity < 1:
            raise ValueError("Log buffer capacity must be positive")
        self.capacity = capacity
        self._entries: Deque[LogEntry] = deque(maxlen=capacity)

    def emit(self, record: logging.LogRecord) -> None:
        try:
            data = getattr(record, "data", None)
            if data is None and record.exc_info and record.exc_info[1] is not None:
                data = {"error": str(record.exc_info[1])}
            self._entries.append(
                LogEntry(
                    level=LEVEL_NAMES.get(record.levelno, "info"),
                    context=_context_of(record),
                    message=record.getMessage(),
                    data=data,
                    timestamp=datetime.fromtimestamp(record.created, timezone.utc),
                )
            )
        except Exception:
            self.handleError(record)

    def get_logs(self, level: Optional[str] = None, limit: int = 100) -> List[LogEntry]:
        """Return up to ``limit`` most recent entries, optionally filtered by level."""
        entries = list(self._entries)
        if level:
            entries = [entry for entry in entries if entry.level == level]
        if limit <= 0:
            return []
        return entries[-limit:]

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


## Custom JSON Formatter


class JSONFormatter(logging.Formatter):
    """Custom JSON formatter for log records."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "function": record.funcName,
            "line": record.lineno,
            "message": record.getMessage(),
        }

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        data = getattr(record, "data", None)
        if data is not None:
            log_entry["data"] = data

        return json.dumps(log_entry, default=str)


## Log Masking


class SensitiveDataMasker:
    """Utility to mask credentials in log messages."""

    PATTERNS = {
        "password": re.compile(
            r'(password["\']?\s*[:=]\s*["\']?)([^"\'}\s,]+)', re.IGNORECASE
        ),
        "token": re.compile(
            r'(token["\']?\s*[:=]\s*["\']?)([^"\'}\s,]+)', re.IGNORECASE
        ),
        "secret": re.compile(
            r'(secret["\']?\s*[:=]\s*["\']?)([^"\'}\s,]+)', re.IGNORECASE
        ),
        "authorization": re.compile(
            r'(authorization["\']?\s*[:=]\s*["\']?)([^"\'}\s,]+)', re.IGNORECASE
        ),
    }

    SENSITIVE_FIELDS = {
        "password",
        "passwd",
        "pwd",
        "pass",
        "secret",
        "token",
        "authorization",
        "credential",
        "credentials",
    }

    MASK = "[REDACTED]"

    def mask_string(self, text: str) -> str:
        if not text:
            return text

        masked = text
        for pattern in self.PATTERNS.values():
            masked = pattern.sub(lambda m: m.group(1) + self.MASK, masked)
        return masked

    def mask_value(self, data: Any) -> Any:
        if isinstance(data, dict):
            return {
                key: self.MASK
                if isinstance(key, str) and key.lower() in self.SENSITIVE_FIELDS
                else self.mask_value(value)
                for key, value in data.items()
            }
        if isinstance(data, str):
            return self.mask_string(data)
        return data


class SensitiveDataFilter(logging.Filter):
    """Logging filter to mask credentials in log records."""

    def __init__(self):
        super().__init__()
        self.masker = SensitiveDataMasker()

    def filter(self, record: logging.LogRecord) -> bool:
        if isinstance(record.msg, str):
            record.msg = self.masker.mask_string(record.msg)

        data = getattr(record, "data", None)
        if data is not None:
            record.data = self.masker.mask_value(data)

        return True


## Main Log Manager


class LogManager:
    """Owns the handlers attached to the ``mailbridge`` logger."""

    def __init__(
        self,
        debug: bool = False,
        buffer_size: int = 1000,
        log_file: Optional[str] = None,
        console: bool = True,
    ):
        self.level = logging.DEBUG if debug else logging.INFO
        self.root_logger = logging.getLogger(ROOT_LOGGER_NAME)
        self.buffer = LogBuffer(capacity=buffer_size, level=self.level)
        self._filter = SensitiveDataFilter()
        self._handlers: List[logging.Handler] = []
        self._setup_handlers(log_file, console)

    def _setup_handlers(self, log_file: Optional[str], console: bool) -> None:
        from .errors import ConfigurationError

        self.root_logger.setLevel(logging.DEBUG)

        self.buffer.addFilter(self._filter)
        self._handlers.append(self.buffer)

        if console:
            console_handler = RichHandler(
                console=Console(stderr=True),
                show_time=True,
                show_path=False,
                rich_tracebacks=True,
            )
            console_handler.setLevel(self.level)
            console_handler.setFormatter(logging.Formatter("%(message)s", datefmt="[%X]"))
            console_handler.addFilter(self._filter)
            self._handlers.append(console_handler)

        if log_file:
            try:
                path = Path(log_file).expanduser()
                path.parent.mkdir(parents=True, exist_ok=True)
                file_handler = RotatingFileHandler(
                    path, maxBytes=5_242_880, backupCount=5, encoding="utf-8"
                )
            except OSError as e:
                raise ConfigurationError(
                    f"Failed to open log file: {log_file}", details={"error": str(e)}
                ) from e

            file_handler.setLevel(logging.DEBUG)
            file_handler.setFormatter(JSONFormatter())
            file_handler.addFilter(self._filter)
            self._handlers.append(file_handler)

        self.root_logger.addFilter(self._filter)
        for handler in self._handlers:
            self.root_logger.addHandler(handler)

    def set_debug(self, enabled: bool) -> None:
        """Switch debug output on or off at runtime."""
        self.level = logging.DEBUG if enabled else logging.INFO
        for handler in self._handlers:
            if not isinstance(handler, RotatingFileHandler):
                handler.setLevel(self.level)

    def get_logs(self, level: Optional[str] = None, limit: int = 100) -> List[LogEntry]:
        return self.buffer.get_logs(level, limit)

    def close(self) -> None:
        """Detach and close every handler this manager installed."""
        for handler in self._handlers:
            self.root_logger.removeHandler(handler)
            handler.close()
        self.root_logger.removeFilter(self._filter)
        self._handlers.clear()


## Decorators for Logging


def log_call(func):
    """Decorator to log function entry and exit at debug level."""

    @wraps(func)
    def wrapper(*args, **kwargs):
        logger = get_logger(func.__module__)
        func_name = func.__qualname__
        logger.debug(f"-> Entering {func_name}")
        start_time = datetime.now()

        try:
            result = func(*args, **kwargs)
            duration = (datetime.now() - start_time).total_seconds()
            logger.debug(f"<- Exiting {func_name} (Duration: {duration:.3f}s)")
            return result

        except Exception as e:
            duration = (datetime.now() - start_time).total_seconds()
            logger.debug(f"<- Error in {func_name} after {duration:.3f}s: {e}")
            raise

    return wrapper


def async_log_call(func):
    """Async decorator to log coroutine entry and exit at debug level."""

    @wraps(func)
    async def wrapper(*args, **kwargs):
        logger = get_logger(func.__module__)
        func_name = func.__qualname__
        logger.debug(f"-> Entering {func_name} (async)")
        start_time = datetime.now()

        try:
            result = await func(*args, **kwargs)
            duration = (datetime.now() - start_time).total_seconds()
            logger.debug(f"<- Exiting {func_name} (Duration: {duration:.3f}s)")
            return result

        except Exception as e:
            duration = (datetime.now() - start_time).total_seconds()
            logger.debug(f"<- Error in {func_name} after {duration:.3f}s: {e}")
            raise

    return wrapper
