"""
Structured logging system for the caseflow case pipeline service.

This module provides:
- Structured logging through structlog with key/value context
- Rich console output for development, JSON output for deployments
- Correlation IDs scoped to the current request
- Performance timing for service and repository operations
- Database and business-event helper loggers
"""

import json
import logging
import sys
import time
import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import structlog
from rich.console import Console
from rich.logging import RichHandler

from caseflow.config.settings import get_settings


_correlation_id: ContextVar[Optional[str]] = ContextVar("correlation_id", default=None)

# Rich console for enhanced output
console = Console()


class CorrelationIDProcessor:
    """Structlog processor to add correlation IDs to log records."""

    def __call__(self, logger, method_name, event_dict):
        correlation_id = get_correlation_id()
        if correlation_id:
            event_dict["correlation_id"] = correlation_id
        return event_dict


class TimestampProcessor:
    """Structlog processor to add ISO timestamps to log records."""

    def __call__(self, logger, method_name, event_dict):
        event_dict["timestamp"] = datetime.now(timezone.utc).isoformat()
        return event_dict


class CaseflowLogFormatter:
    """
    Console renderer producing one coloured line per event.

    Standard fields come first; every other key is appended as ``key=value``.
    """

    LEVEL_COLORS = {
        "DEBUG": "dim white",
        "INFO": "blue",
        "WARNING": "yellow",
        "ERROR": "red",
        "CRITICAL": "bold red",
    }

    def __call__(self, _, __, event_dict):
        timestamp = event_dict.get("timestamp", "")
        level = event_dict.get("level", "INFO").upper()
        logger_name = event_dict.get("logger", "")
        correlation_id = event_dict.get("correlation_id", "")
        event = event_dict.get("event", "")

        parts = []
        if timestamp:
            parts.append(f"[dim]{timestamp[:19]}[/dim]")

        level_color = self.LEVEL_COLORS.get(level, "white")
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


class RichPrintLogger:
    """structlog logger that hands rendered lines to the rich console."""

    def msg(self, message: str) -> None:
        console.print(message, markup=True, highlight=False)

    log = debug = info = warn = warning = error = critical = exception = msg


def setup_logging(
    level: str = "INFO",
    use_json: bool = False,
    enable_correlation_ids: bool = True
) -> None:
    """
    Setup structured logging for the application.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        use_json: Output structured JSON logs
        enable_correlation_ids: Enable correlation ID tracking
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)

    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        TimestampProcessor(),
    ]
    if enable_correlation_ids:
        processors.append(CorrelationIDProcessor())

    if use_json:
        processors.append(structlog.processors.JSONRenderer(serializer=_json_dumps))
        logger_factory = structlog.PrintLoggerFactory(file=sys.stdout)
    else:
        processors.append(CaseflowLogFormatter())
        logger_factory = lambda *args: RichPrintLogger()

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        logger_factory=logger_factory,
        context_class=dict,
        cache_logger_on_first_use=True,
    )

    # Route third-party stdlib loggers (uvicorn, pymongo) through the same console
    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)
    root_logger.handlers.clear()
    if use_json:
        handler: logging.Handler = logging.StreamHandler(sys.stdout)
    else:
        handler = RichHandler(
            console=console,
            show_time=False,
            show_path=False,
            rich_tracebacks=True,
            markup=False
        )
    handler.setLevel(numeric_level)
    root_logger.addHandler(handler)


def _json_dumps(obj: Any, **kwargs: Any) -> str:
    return json.dumps(obj, default=str, **kwargs)


def get_logger(name: str) -> structlog.typing.FilteringBoundLogger:
    """
    Get a structured logger instance.

    Args:
        name: Logger name (typically __name__)

    Returns:
        Configured structlog bound logger
    """
    return structlog.get_logger(name).bind(logger=name)


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
    Context manager for performance monitoring.

    Args:
        operation: Name of the operation being measured
        **context: Additional context to include in logs

    Usage:
        with performance_context("pipeline_move_stage", case_id="123"):
            ...
    """
    start_time = time.perf_counter()
    logger = get_logger("performance")
    perf_context = {"operation": operation, **context}

    logger.debug("Operation started", **perf_context)

    try:
        yield perf_context
    except Exception as e:
        logger.warning(
            "Operation failed",
            duration_ms=round((time.perf_counter() - start_time) * 1000, 2),
            error=str(e),
            error_type=type(e).__name__,
            **perf_context
        )
        raise
    else:
        logger.debug(
            "Operation completed",
            duration_ms=round((time.perf_counter() - start_time) * 1000, 2),
            **perf_context
        )


class DatabaseLogger:
    """Specialized logger for database operations."""

    def __init__(self):
        self.logger = get_logger("database")

    def query_executed(
        self,
        database_type: str,
        operation: str,
        collection: Optional[str] = None,
        duration: Optional[float] = None,
        result_count: Optional[int] = None
    ):
        """Log database query execution."""
        self.logger.debug(
            "Database query executed",
            database_type=database_type,
            operation=operation,
            collection=collection,
            duration=duration,
            result_count=result_count,
            event_type="query_executed"
        )

    def connection_established(self, database_type: str, database_name: str):
        """Log database connection establishment."""
        self.logger.info(
            "Database connection established",
            database_type=database_type,
            database_name=database_name,
            event_type="connection_established"
        )

    def connection_failed(self, database_type: str, error: str):
        """Log database connection failures."""
        self.logger.error(
            "Database connection failed",
            database_type=database_type,
            error=error,
            event_type="connection_failed"
        )


database_logger = DatabaseLogger()


def initialize_logging_from_settings() -> None:
    """Initialize logging using application settings."""
    settings = get_settings()

    setup_logging(
        level=settings.logging.level,
        use_json=settings.logging.format.lower() == "json",
        enable_correlation_ids=settings.logging.enable_correlation_ids
    )

    get_logger(__name__).info(
        "Logging system initialized",
        level=settings.logging.level,
        format=settings.logging.format,
        correlation_ids_enabled=settings.logging.enable_correlation_ids
    )


def log_business_event(
    event_type: str,
    user_id: Optional[str] = None,
    case_id: Optional[str] = None,
    **context: Any
) -> None:
    """
    Log a business event such as a stage change or a case ending.

    Args:
        event_type: Type of business event (e.g. "case_stage_changed")
        user_id: User who triggered the event
        case_id: Case the event belongs to
        **context: Additional context data for the event
    """
    event_data: Dict[str, Any] = {"event_type": event_type}
    if user_id:
        event_data["user_id"] = user_id
    if case_id:
        event_data["case_id"] = case_id
    event_data.update(context)

    get_logger("business_events").info(f"Business event: {event_type}", **event_data)
