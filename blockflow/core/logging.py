"""Structured logging configuration for the workflow engine.

Provides:
- JSON structured logs for files and non-debug consoles
- Colored console output while DEBUG is enabled
- Rotating file handler (10MB max, 5 backups)
- Redaction of credentials in free-text messages
- Scoped structured context via ``LogContext``
- A block-facing logger adapter that tags records with the run they
  belong to and masks the run's secret values

Structured fields are passed through ``extra={"context": {...}}`` and end
up under the ``context`` key of JSON records.
"""

from __future__ import annotations

import json
import logging
import re
import sys
from collections.abc import Iterable, Mapping, MutableMapping
from datetime import UTC, datetime
from enum import Enum
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, ClassVar

from blockflow.core.config import settings

REDACTED = "[REDACTED]"


class LogLevel(str, Enum):
    """Log level enumeration for type-safe log level configuration."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"

    def __str__(self) -> str:
        """Return the string value for serialization."""
        return self.value


class SensitiveDataFilter(logging.Filter):
    """Redact credentials that leak into log messages.

    Matches ``key: value`` and ``key=value`` fragments whose key looks like a
    password, token or secret and replaces the value.

    Examples:
        >>> logger = logging.getLogger("blockflow")
        >>> logger.addFilter(SensitiveDataFilter())
        >>> logger.info("api_key=abc123")
        # Logs: "api_key: [REDACTED]"
    """

    SENSITIVE_PATTERNS: ClassVar[list[str]] = [
        "password",
        "passwd",
        "secret",
        "token",
        "api_key",
        "apikey",
        "authorization",
        "bearer",
        "credential",
    ]

    def __init__(self) -> None:
        """Compile one regex per sensitive key."""
        super().__init__()
        self._patterns = [
            (
                pattern,
                re.compile(rf"{pattern}[:=]\s*[\"']?[^\s\"',]+", re.IGNORECASE),
            )
            for pattern in self.SENSITIVE_PATTERNS
        ]

    def filter(self, record: logging.LogRecord) -> bool:
        """Redact the message and string args; never drops the record.

        Args:
            record: Log record to filter

        Returns:
            Always True
        """
        record.msg = self.redact(str(record.msg))
        if record.args and isinstance(record.args, tuple):
            record.args = tuple(
                self.redact(arg) if isinstance(arg, str) else arg
                for arg in record.args
            )
        return True

    def redact(self, text: str) -> str:
        """Return ``text`` with sensitive values replaced."""
        for name, regex in self._patterns:
            text = regex.sub(f"{name}: {REDACTED}", text)
        return text


class JSONFormatter(logging.Formatter):
    """JSON formatter for structured logging.

    Format:
        {
            "timestamp": "2025-01-12T10:30:45.123Z",
            "level": "INFO",
            "logger": "blockflow.services.workflow.orchestrator",
            "message": "Workflow run completed",
            "service": "Blockflow Workflow Engine",
            "context": {"execution_id": "exec_...", "status": "completed"}
        }
    """

    def __init__(
        self,
        service_name: str = "blockflow",
        service_version: str = settings.VERSION,
    ) -> None:
        """Initialize JSON formatter.

        Args:
            service_name: Name of the service
            service_version: Version of the service
        """
        super().__init__()
        self.service_name = service_name
        self.service_version = service_version

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON.

        Args:
            record: Log record to format

        Returns:
            JSON-formatted log string
        """
        log_entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=UTC)
            .isoformat()
            .replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "service": self.service_name,
            "version": self.service_version,
        }

        context = getattr(record, "context", None)
        if context:
            log_entry["context"] = context

        if record.exc_info:
            log_entry["exception"] = {
                "type": record.exc_info[0].__name__ if record.exc_info[0] else None,
                "message": str(record.exc_info[1]) if record.exc_info[1] else None,
                "traceback": self.formatException(record.exc_info),
            }

        if record.levelno >= logging.ERROR:
            log_entry["source"] = {
                "function": record.funcName,
                "line": record.lineno,
                "file": record.pathname,
                "process": record.process,
            }

        return json.dumps(log_entry, default=str, ensure_ascii=False)


class ColoredConsoleFormatter(logging.Formatter):
    """Human-readable colored formatter used while DEBUG is on."""

    COLORS: ClassVar[dict[str, str]] = {
        "DEBUG": "\033[36m",  # Cyan
        "INFO": "\033[32m",  # Green
        "WARNING": "\033[33m",  # Yellow
        "ERROR": "\033[31m",  # Red
        "CRITICAL": "\033[41m",  # Red background
    }
    RESET: ClassVar[str] = "\033[0m"

    def __init__(self) -> None:
        """Initialize colored console formatter."""
        super().__init__(
            fmt="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

    def format(self, record: logging.LogRecord) -> str:
        """Format log record with colors and inline context.

        The record is copied first so other handlers see the original.
        """
        record = logging.makeLogRecord(record.__dict__)
        color = self.COLORS.get(record.levelname, self.RESET)
        record.levelname = f"{color}{record.levelname}{self.RESET}"

        context = getattr(record, "context", None)
        if context:
            record.msg = f"{record.msg} | Context: {json.dumps(context, default=str)}"

        return super().format(record)


def setup_logging(
    log_level: str | None = None,
    log_file: str | None = None,
    service_name: str = "blockflow",
    enable_json: bool = True,
    enable_console: bool = True,
    enable_file: bool = True,
) -> logging.Logger:
    """Configure the root logger with file and console handlers.

    Args:
        log_level: Logging level name. Defaults to settings.LOG_LEVEL
        log_file: Path to log file. Defaults to logs/blockflow.log
        service_name: Name of the service for log metadata
        enable_json: Use JSON formatting for the file handler
        enable_console: Attach a stdout handler
        enable_file: Attach the rotating file handler

    Returns:
        Configured root logger instance

    Examples:
        >>> logger = setup_logging(log_level="INFO", enable_file=False)
        >>> logger.info("Engine started", extra={"context": {"port": 8000}})
    """
    if log_level is None:
        log_level = settings.LOG_LEVEL
    level = getattr(logging, log_level.upper(), logging.INFO)

    logger = logging.getLogger()
    logger.setLevel(level)
    logger.handlers.clear()

    sensitive_filter = SensitiveDataFilter() if settings.LOG_SENSITIVE_FILTER else None
    log_file_path: Path | None = None

    if enable_file:
        log_file_path = Path(log_file) if log_file else Path("logs") / "blockflow.log"
        log_file_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = RotatingFileHandler(
            filename=str(log_file_path),
            maxBytes=10 * 1024 * 1024,  # 10MB
            backupCount=5,
            encoding="utf-8",
        )
        file_handler.setLevel(logging.DEBUG)
        if enable_json:
            file_handler.setFormatter(JSONFormatter(service_name=service_name))
        else:
            file_handler.setFormatter(
                logging.Formatter(
                    "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
                    datefmt="%Y-%m-%d %H:%M:%S",
                )
            )
        if sensitive_filter:
            file_handler.addFilter(sensitive_filter)
        logger.addHandler(file_handler)

    if enable_console:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(level)
        if settings.DEBUG:
            console_handler.setFormatter(ColoredConsoleFormatter())
        else:
            console_handler.setFormatter(JSONFormatter(service_name=service_name))
        if sensitive_filter:
            console_handler.addFilter(sensitive_filter)
        logger.addHandler(console_handler)

    logger.info(
        f"Logging initialized - Level: {log_level}",
        extra={
            "context": {
                "log_level": log_level,
                "log_file": str(log_file_path) if log_file_path else None,
                "service": service_name,
            }
        },
    )

    return logger


def get_logger(name: str) -> logging.Logger:
    """Get a logger instance with the specified name.

    Args:
        name: Logger name (typically __name__ of the module)

    Returns:
        Logger instance
    """
    return logging.getLogger(name)


def mask_secrets(value: Any, secrets: Iterable[str]) -> Any:
    """Replace every occurrence of a secret value inside ``value``.

    Walks dicts, lists and tuples; other non-string values are returned as-is.

    Args:
        value: Arbitrary log payload
        secrets: Secret string values to hide

    Returns:
        A copy of ``value`` with secret substrings replaced by ``[REDACTED]``
    """
    secret_values = [s for s in secrets if isinstance(s, str) and s]
    if not secret_values:
        return value

    def _mask(item: Any) -> Any:
        if isinstance(item, str):
            for secret in secret_values:
                item = item.replace(secret, REDACTED)
            return item
        if isinstance(item, Mapping):
            return {key: _mask(val) for key, val in item.items()}
        if isinstance(item, (list, tuple)):
            return type(item)(_mask(val) for val in item)
        return item

    return _mask(value)


class ExecutionLoggerAdapter(logging.LoggerAdapter):
    """Logger handed to blocks during a workflow run.

    Every record carries the run identifiers under ``context``; secret values
    registered for the run are masked in both the message and the context.

    Examples:
        >>> adapter = ExecutionLoggerAdapter(
        ...     get_logger("blockflow.blocks"),
        ...     {"workflow_id": "wf", "execution_id": "exec_1"},
        ...     secrets=["s3cr3t"],
        ... )
        >>> adapter.info("calling api with s3cr3t")
        # Logs: "calling api with [REDACTED]"
    """

    def __init__(
        self,
        logger: logging.Logger,
        extra: Mapping[str, Any] | None = None,
        secrets: Iterable[str] = (),
    ) -> None:
        super().__init__(logger, dict(extra or {}))
        self._secrets = tuple(secrets)

    def process(
        self, msg: Any, kwargs: MutableMapping[str, Any]
    ) -> tuple[Any, MutableMapping[str, Any]]:
        """Merge run context into ``extra`` and mask secret values."""
        extra = dict(kwargs.get("extra") or {})
        context = {**(self.extra or {}), **(extra.pop("context", None) or {})}
        extra["context"] = mask_secrets(context, self._secrets)
        kwargs["extra"] = extra
        return mask_secrets(str(msg), self._secrets), kwargs

    def node(self, node_id: str, message: str, **data: Any) -> None:
        """Log a node-scoped info message."""
        self.info(message, extra={"context": {"node_id": node_id, **data}})


class _ContextFilter(logging.Filter):
    """Merge a fixed context dict into each record's ``context``."""

    def __init__(self, context: Mapping[str, Any]) -> None:
        super().__init__()
        self.context = dict(context)

    def filter(self, record: logging.LogRecord) -> bool:
        existing = getattr(record, "context", None) or {}
        record.context = {**self.context, **existing}
        return True


class LogContext:
    """Add structured context to records logged on ``logger`` inside a block.

    Record-level ``extra={"context": ...}`` keys win over the scoped ones.

    Examples:
        >>> logger = get_logger(__name__)
        >>> with LogContext(logger, execution_id="exec_1"):
        ...     logger.info("Processing node")
    """

    def __init__(self, logger: logging.Logger, **context: Any) -> None:
        """Initialize log context.

        Args:
            logger: Logger instance to add context to
            **context: Key-value pairs to add to log context
        """
        self.logger = logger
        self.context = context
        self._filter = _ContextFilter(context)

    def __enter__(self) -> LogContext:
        """Attach the context filter."""
        self.logger.addFilter(self._filter)
        return self

    def __exit__(self, *args: Any) -> None:
        """Detach the context filter."""
        self.logger.removeFilter(self._filter)


__all__ = [
    "REDACTED",
    "ColoredConsoleFormatter",
    "ExecutionLoggerAdapter",
    "JSONFormatter",
    "LogContext",
    "LogLevel",
    "SensitiveDataFilter",
    "get_logger",
    "mask_secrets",
    "setup_logging",
]
