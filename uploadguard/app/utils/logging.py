"""
Structured logging for uploadguard.

This module provides:
- Structured logging via structlog with correlation IDs
- Console-friendly rich output for development, JSON for production
- Per-request correlation IDs that follow asyncio tasks
- Performance timing for pipeline stages
- Security event logging for throttled clients and rejected uploads
"""

import logging
import sys
import time
import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

import structlog
from rich.console import Console
from rich.logging import RichHandler


_correlation_id: ContextVar[Optional[str]] = ContextVar("correlation_id", default=None)

console = Console()


class CorrelationIDProcessor:
    """Structlog processor to add correlation IDs to log records."""

    def __call__(self, logger, method_name, event_dict):
        correlation_id = get_correlation_id()
        if correlation_id:
            event_dict.setdefault("correlation_id", correlation_id)
        return event_dict


class TimestampProcessor:
    """Structlog processor to add ISO timestamps to log records."""

    def __call__(self, logger, method_name, event_dict):
        event_dict["timestamp"] = datetime.now(timezone.utc).isoformat()
        return event_dict


class UploadGuardLogFormatter:
    """
    Console renderer with rich markup.

    Produces a single line per event: timestamp, level, logger, short
    correlation ID, message and the remaining key/value context.
    """

    level_colors = {
        "DEBUG": "dim white",
        "INFO": "blue",
        "WARNING": "yellow",
        "ERROR": "red",
        "CRITICAL": "bold red"
    }

    def __call__(self, _, __, event_dict):
        return self._format_console_output(event_dict)

    def _format_console_output(self, event_dict: Dict[str, Any]) -> str:
        timestamp = event_dict.get("timestamp", "")
        level = event_dict.get("level", "info").upper()
        logger_name = event_dict.get("logger", "")
        correlation_id = event_dict.get("correlation_id", "")
        event = event_dict.get("event", "")

        parts = []
        if timestamp:
            parts.append(f"[dim]{timestamp[:19]}[/dim]")

        level_color = self.level_colors.get(level, "white")
        parts.append(f"[{level_color}]{level:8}[/{level_color}]")

        if logger_name:
            parts.append(f"[cyan]{logger_name}[/cyan]")
        if correlation_id:
            parts.append(f"[magenta]{correlation_id[:8]}[/magenta]")

        parts.append(f"[white]{event}[/white]")

        context_fields = {
            k: v for k, v in event_dict.items()
            if k not in {"timestamp", "level", "logger", "correlation_id", "event"}
        }
        if context_fields:
            context_str = " ".join(f"{k}={v}" for k, v in context_fields.items())
            parts.append(f"[dim]{context_str}[/dim]")

        return " ".join(parts)


def setup_logging(
    level: str = "INFO",
    use_json: bool = False,
    log_file: Optional[Path] = None,
    enable_correlation_ids: bool = True
) -> None:
    """
    Setup structured logging for the application.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        use_json: Output structured JSON logs
        log_file: Optional file path for log output
        enable_correlation_ids: Enable correlation ID tracking
    """
    numeric_level = getattr(logging, level.upper())

    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.processors.add_log_level,
        TimestampProcessor(),
    ]
    if enable_correlation_ids:
        processors.append(CorrelationIDProcessor())

    if use_json:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(UploadGuardLogFormatter())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        logger_factory=structlog.stdlib.LoggerFactory(),
        context_class=dict,
        cache_logger_on_first_use=True,
    )

    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)
    root_logger.handlers.clear()

    if not use_json:
        rich_handler = RichHandler(
            console=console,
            show_time=False,  # timestamp comes from structlog
            show_path=False,
            rich_tracebacks=True,
            markup=True
        )
        rich_handler.setLevel(numeric_level)
        root_logger.addHandler(rich_handler)
    else:
        handler = logging.StreamHandler(sys.stdout)
        handler.setLevel(numeric_level)
        root_logger.addHandler(handler)

    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(numeric_level)
        file_handler.setFormatter(logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
        ))
        root_logger.addHandler(file_handler)


def initialize_logging_from_settings(settings: Any) -> None:
    """Configure logging from the ``logging`` section of the settings."""
    log_settings = settings.logging
    setup_logging(
        level=log_settings.level,
        use_json=log_settings.format.lower() == "json",
        log_file=log_settings.log_file,
        enable_correlation_ids=log_settings.enable_correlation_ids,
    )


def get_logger(name: str) -> structlog.BoundLogger:
    """
    Get a structured logger instance.

    Args:
        name: Logger name (typically __name__)

    Returns:
        Configured structlog bound logger
    """
    return structlog.get_logger(name)


def set_correlation_id(correlation_id: Optional[str] = None) -> str:
    """
    Set correlation ID for the current request context.

    Args:
        correlation_id: Optional correlation ID, generates UUID if None

    Returns:
        The correlation ID that was set
    """
    if correlation_id is None:
        correlation_id = str(uuid.uuid4())
    _correlation_id.set(correlation_id)
    return correlation_id


def get_correlation_id() -> Optional[str]:
    """Get the correlation ID for the current request context."""
    return _correlation_id.get()


def clear_correlation_id() -> None:
    """Clear the correlation ID for the current request context."""
    _correlation_id.set(None)


@contextmanager
def correlation_context(correlation_id: Optional[str] = None):
    """
    Context manager for correlation ID scoping.

    Usage:
        with correlation_context("req-123"):
            logger.info("This log will have correlation_id=req-123")
    """
    token = _correlation_id.set(correlation_id or str(uuid.uuid4()))
    try:
        yield _correlation_id.get()
    finally:
        _correlation_id.reset(token)


@contextmanager
def performance_context(operation: str, **context: Any):
    """
    Context manager for timing a pipeline stage.

    Logs completion (debug) or failure (warning) with the elapsed time and
    re-raises any exception.

    Usage:
        with performance_context("multipart_ingest", files=3):
            ...
    """
    start_time = time.perf_counter()
    logger = get_logger("performance")
    try:
        yield context
    except Exception as e:
        logger.warning(
            "Operation failed",
            operation=operation,
            duration_ms=round((time.perf_counter() - start_time) * 1000, 2),
            error=str(e),
            **context
        )
        raise
    else:
        logger.debug(
            "Operation completed",
            operation=operation,
            duration_ms=round((time.perf_counter() - start_time) * 1000, 2),
            **context
        )


def log_security_event(
    event_type: str,
    client_ip: Optional[str] = None,
    severity: str = "warning",
    **details: Any
) -> None:
    """
    Log a security-relevant event (throttling, rejected uploads).

    Args:
        event_type: Short event name, e.g. "rate_limit_exceeded"
        client_ip: Client identity the event concerns
        severity: Log level name
        **details: Additional event context
    """
    logger = get_logger("security")
    getattr(logger, severity.lower(), logger.warning)(
        "Security event",
        event_type=event_type,
        client_ip=client_ip,
        **details
    )


__all__ = [
    "setup_logging",
    "initialize_logging_from_settings",
    "get_logger",
    "set_correlation_id",
    "get_correlation_id",
    "clear_correlation_id",
    "correlation_context",
    "performance_context",
    "log_security_event",
]
