"""Logging configuration for KV Bridge using structlog.

This module configures structured logging with JSON output for log files
and human-readable console output, and provides ``MigrationLogger``, the
domain logger handed to the migration components.
"""

import json
import logging
import re
from collections.abc import Mapping
from pathlib import Path
from typing import TYPE_CHECKING, Any

import structlog
from rich.console import Console
from rich.logging import RichHandler
from structlog.typing import EventDict, WrappedLogger

from kv_migration import __version__

if TYPE_CHECKING:
    from kv_migration.reporting.monitor import MigrationStats

APP_NAME = "kv-bridge"

_ANSI_PATTERN = re.compile(r"\x1b\[[0-9;]*m")


def add_app_context(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    """Add application context to log entries.

    Args:
        logger: The wrapped logger instance
        method_name: The name of the logger method called
        event_dict: The event dictionary to be logged

    Returns:
        EventDict: Modified event dictionary with app context
    """
    event_dict["app"] = APP_NAME
    event_dict["version"] = __version__
    return event_dict


class JSONFileFormatter(logging.Formatter):
    """Formatter that writes one JSON object per line to the log file.

    structlog renders the event for the console first; this formatter strips
    ANSI escape codes from that rendering and wraps it as JSON.
    """

    def format(self, record: logging.LogRecord) -> str:
        """Format the log record as JSON."""
        log_entry = {
            "timestamp": self.formatTime(record, "%Y-%m-%dT%H:%M:%S"),
            "level": record.levelname.lower(),
            "logger": record.name,
            "event": _ANSI_PATTERN.sub("", record.getMessage()),
            "app": APP_NAME,
            "version": __version__,
        }

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_entry)


def configure_logging(
    level: str = "WARNING",
    log_format: str = "json",
    log_file: str | None = None,
    file_level: str | None = None,
) -> None:
    """Configure structured logging for the application.

    Args:
        level: Console log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_format: File output format ('json' or 'console')
        log_file: Optional path to log file
        file_level: File log level (defaults to DEBUG)

    Note:
        Console output is always human-readable. The file handler, when
        enabled, receives every record at ``file_level`` or above.
    """
    console_level = getattr(logging, level.upper(), logging.WARNING)
    file_log_level = getattr(logging, (file_level or "DEBUG").upper(), logging.DEBUG)

    console = Console(stderr=True)
    rich_handler = RichHandler(
        console=console,
        show_time=False,
        show_path=False,
        markup=False,
        rich_tracebacks=True,
    )
    rich_handler.setLevel(console_level)

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    root_logger.addHandler(rich_handler)

    processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        add_app_context,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
        structlog.dev.ConsoleRenderer(colors=False),
    ]

    # The filtering level is the lower of the two so file logs keep DEBUG detail
    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(min(console_level, file_log_level)),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(file_log_level)
        if log_format == "json":
            file_handler.setFormatter(JSONFileFormatter())
        else:
            file_handler.setFormatter(logging.Formatter("%(message)s"))

        root_logger.addHandler(file_handler)


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Get a configured logger instance.

    Args:
        name: Optional logger name (typically __name__)

    Returns:
        structlog.stdlib.BoundLogger: Configured logger instance
    """
    return structlog.get_logger(name)


def _format_duration(seconds: float) -> str:
    return f"{seconds:.3f}s"


def _percent(part: float, whole: float) -> str:
    value = part / whole * 100 if whole > 0 else 0.0
    return f"{value:.2f}%"


class MigrationLogger:
    """Structured logger for migration events.

    Wraps a structlog logger. ``with_field`` and ``with_fields`` return a new
    ``MigrationLogger`` carrying the extra context; the receiver is left
    unchanged, so a logger can be specialised per key or per worker and
    shared freely.
    """

    def __init__(self, logger: Any = None):
        self._logger = logger if logger is not None else get_logger("kv_migration")

    @property
    def bound(self) -> Any:
        """Underlying structlog logger."""
        return self._logger

    def with_field(self, key: str, value: Any) -> "MigrationLogger":
        return MigrationLogger(self._logger.bind(**{key: value}))

    def with_fields(self, fields: Mapping[str, Any]) -> "MigrationLogger":
        return MigrationLogger(self._logger.bind(**dict(fields)))

    def debug(self, event: str, **kw: Any) -> None:
        self._logger.debug(event, **kw)

    def info(self, event: str, **kw: Any) -> None:
        self._logger.info(event, **kw)

    def warning(self, event: str, **kw: Any) -> None:
        self._logger.warning(event, **kw)

    def error(self, event: str, **kw: Any) -> None:
        self._logger.error(event, **kw)

    def log_connection(
        self,
        operation: str,
        host: str,
        port: int,
        database: int,
        success: bool,
        duration: float,
    ) -> None:
        """Log a connect or disconnect against a store."""
        fields = {
            "operation": operation,
            "host": host,
            "port": port,
            "database": database,
            "success": success,
            "duration": _format_duration(duration),
        }
        if success:
            self._logger.info("connection_operation_completed", **fields)
        else:
            self._logger.error("connection_operation_failed", **fields)

    def log_key_transfer(
        self,
        key: str,
        data_type: str,
        size: int,
        success: bool,
        duration: float,
        error: str = "",
    ) -> None:
        """Log the outcome of copying one key."""
        fields: dict[str, Any] = {
            "key": key,
            "data_type": data_type,
            "size": size,
            "success": success,
            "duration": _format_duration(duration),
        }
        if error:
            fields["error"] = error

        if success:
            self._logger.info("key_transfer_completed", **fields)
        else:
            self._logger.error("key_transfer_failed", **fields)

    def log_progress(
        self,
        total_keys: int,
        processed_keys: int,
        failed_keys: int,
        throughput: float,
    ) -> None:
        """Log a periodic progress update."""
        self._logger.info(
            "migration_progress",
            total_keys=total_keys,
            processed_keys=processed_keys,
            failed_keys=failed_keys,
            remaining_keys=total_keys - processed_keys,
            throughput=f"{throughput:.2f} keys/sec",
            progress_pct=_percent(processed_keys, total_keys),
        )

    def log_error(
        self,
        operation: str,
        key: str,
        error_message: str,
        stack_trace: str = "",
        retry_attempt: int = 0,
    ) -> None:
        """Log a failed operation with its context."""
        fields: dict[str, Any] = {
            "operation": operation,
            "error_message": error_message,
            "retry_attempt": retry_attempt,
        }
        if key:
            fields["key"] = key
        if stack_trace:
            fields["stack_trace"] = stack_trace

        self._logger.error("operation_error", **fields)

    def log_summary(self, stats: "MigrationStats") -> None:
        """Log final migration statistics."""
        self._logger.info(
            "migration_summary",
            total_keys=stats.total_keys,
            successful_keys=stats.successful_keys,
            failed_keys=stats.failed_keys,
            bytes_transferred=stats.bytes_transferred,
            duration=_format_duration(stats.duration),
            throughput=f"{stats.throughput:.2f} keys/sec",
            success_rate=_percent(stats.successful_keys, stats.total_keys),
        )

