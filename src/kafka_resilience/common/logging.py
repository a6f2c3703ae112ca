"""
Structured logging utilities for kafka_resilience.

Provides:
- get_logger / log_with_context / log_exception helpers
- KafkaLogContext for stamping topic/partition/offset on every record
- JSON and console formatters
- setup_logging() for process-level configuration
"""

import json
import logging
import sys
from contextvars import ContextVar
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Dict, Optional

DEFAULT_MAX_BYTES = 10 * 1024 * 1024  # 10MB
DEFAULT_BACKUP_COUNT = 5

# Noisy loggers to suppress
NOISY_LOGGERS = [
    "aiokafka",
    "kafka",
]

# Attributes every LogRecord has; anything else came in through `extra`
_RESERVED_ATTRS = frozenset(
    logging.LogRecord("", 0, "", 0, "", (), None).__dict__.keys()
) | {"message", "asctime"}

_kafka_context: ContextVar[Dict[str, Any]] = ContextVar(
    "kafka_log_context", default={}
)


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger instance.

    Args:
        name: Logger name (typically __name__)

    Returns:
        Logger instance
    """
    return logging.getLogger(name)


def log_with_context(
    logger: logging.Logger,
    level: int,
    msg: str,
    **kwargs: Any,
) -> None:
    """
    Log with structured context fields.

    Args:
        logger: Logger instance
        level: Log level (logging.INFO, etc.)
        msg: Log message
        **kwargs: Additional context fields (topic, correlation_id, etc.)

    Example:
        log_with_context(
            logger, logging.INFO, "Message published",
            topic="orders",
            partition=0,
            offset=42,
        )
    """
    logger.log(level, msg, extra=kwargs)


def log_exception(
    logger: logging.Logger,
    exc: BaseException,
    msg: str,
    level: int = logging.ERROR,
    include_traceback: bool = True,
    **kwargs: Any,
) -> None:
    """
    Log exception with context and optional traceback.

    Automatically extracts error_category from MessagingError subclasses.

    Args:
        logger: Logger instance
        exc: Exception to log
        msg: Context message
        level: Log level (default: ERROR)
        include_traceback: Include full traceback (default: True)
        **kwargs: Additional context fields
    """
    error_category = kwargs.get("error_category")
    if error_category is None and hasattr(exc, "category"):
        cat = exc.category
        kwargs["error_category"] = cat.value if hasattr(cat, "value") else str(cat)

    error_msg = str(exc)
    if len(error_msg) > 500:
        error_msg = error_msg[:500] + "..."
    kwargs["error_message"] = error_msg
    kwargs.setdefault("error_type", type(exc).__name__)

    if include_traceback:
        logger.log(level, msg, exc_info=exc, extra=kwargs)
    else:
        logger.log(level, msg, extra=kwargs)


def get_kafka_context() -> Dict[str, Any]:
    """Return the Kafka fields currently attached to log records."""
    return dict(_kafka_context.get())


class KafkaLogContext:
    """
    Context manager that attaches Kafka message fields to all log records.

    Fields are kept in a ContextVar, so they follow the asyncio task that
    entered the context and are restored on exit.

    Example:
        with KafkaLogContext(topic=msg.topic, partition=msg.partition, offset=msg.offset):
            logger.info("Processing message")  # includes topic/partition/offset
    """

    def __init__(self, **fields: Any):
        self._fields = {k: v for k, v in fields.items() if v is not None}
        self._token = None

    def __enter__(self) -> "KafkaLogContext":
        merged = {**_kafka_context.get(), **self._fields}
        self._token = _kafka_context.set(merged)
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if self._token is not None:
            _kafka_context.reset(self._token)
            self._token = None


class KafkaContextFilter(logging.Filter):
    """Copy the active KafkaLogContext fields onto each record."""

    def filter(self, record: logging.LogRecord) -> bool:
        for key, value in _kafka_context.get().items():
            if not hasattr(record, key):
                setattr(record, key, value)
        return True


def _extra_fields(record: logging.LogRecord) -> Dict[str, Any]:
    return {
        key: value
        for key, value in record.__dict__.items()
        if key not in _RESERVED_ATTRS and not key.startswith("_")
    }


class JSONFormatter(logging.Formatter):
    """One JSON object per line, including structured extra fields."""

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        entry.update(_extra_fields(record))
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


class ConsoleFormatter(logging.Formatter):
    """Human-readable single line with trailing key=value context."""

    def __init__(self):
        super().__init__("%(asctime)s %(levelname)-7s %(name)s - %(message)s")

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        extras = _extra_fields(record)
        if extras:
            context = " ".join(f"{k}={v}" for k, v in sorted(extras.items()))
            first, sep, rest = line.partition("\n")
            line = f"{first} [{context}]{sep}{rest}"
        return line


def setup_logging(
    name: str = "kafka_resilience",
    verbose: bool = False,
    json_format: bool = False,
    log_file: Optional[Path] = None,
    max_bytes: int = DEFAULT_MAX_BYTES,
    backup_count: int = DEFAULT_BACKUP_COUNT,
    suppress_noisy: bool = True,
) -> logging.Logger:
    """
    Configure root logging with a console handler and optional rotating file.

    Args:
        name: Logger name to return
        verbose: DEBUG on the console instead of INFO
        json_format: Use JSON lines on the console instead of plain text
        log_file: Optional path for a rotating JSON log file
        max_bytes: Max size per log file before rotation
        backup_count: Number of backup files to keep
        suppress_noisy: Quiet down the Kafka client loggers

    Returns:
        Configured logger instance
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)  # Capture all, handlers filter
    root_logger.handlers.clear()

    context_filter = KafkaContextFilter()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(logging.DEBUG if verbose else logging.INFO)
    console_handler.setFormatter(JSONFormatter() if json_format else ConsoleFormatter())
    console_handler.addFilter(context_filter)
    root_logger.addHandler(console_handler)

    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            log_file,
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding="utf-8",
        )
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(JSONFormatter())
        file_handler.addFilter(context_filter)
        root_logger.addHandler(file_handler)

    if suppress_noisy:
        for logger_name in NOISY_LOGGERS:
            logging.getLogger(logger_name).setLevel(logging.WARNING)

    logger = logging.getLogger(name)
    logger.debug(
        "Logging initialized",
        extra={"verbose": verbose, "json_format": json_format, "log_file": str(log_file)},
    )
    return logger
