"""Centralized logging configuration with JSON structured logging support."""
from __future__ import annotations

import json
import logging
import re
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional


# Default format for text logs
TEXT_LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Record attributes copied to the top level of JSON output when present
CONTEXT_FIELDS = ("request_id", "pin", "source", "job_id")

_KEY_PARAM_RE = re.compile(r"([?&]key=)[^&]+")


class JSONFormatter(logging.Formatter):
    """
    JSON formatter for structured logging.

    Scraper runs attach ``pin`` and ``source`` context so a single PIN can be
    followed across all four county sites.
    """

    def format(self, record: logging.LogRecord) -> str:
        """Format a log record as JSON."""
        log_data: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        if hasattr(record, "extra_data"):
            log_data["extra"] = record.extra_data

        for field in CONTEXT_FIELDS:
            if hasattr(record, field):
                log_data[field] = getattr(record, field)

        return json.dumps(log_data, default=str)


class ContextLogger(logging.LoggerAdapter):
    """
    Logger adapter that allows adding context to log messages.

    Usage:
        logger = get_context_logger(__name__, pin="17-04-421-035-0000")
        logger.info("Submitting search")  # Will include pin in output
    """

    def process(self, msg: str, kwargs: Dict[str, Any]) -> tuple[str, Dict[str, Any]]:
        """Add context to log record."""
        extra = kwargs.get("extra", {})
        extra.update(self.extra)
        kwargs["extra"] = extra
        return msg, kwargs


def setup_logging(
    level: str = "INFO",
    log_file: Optional[str] = None,
    json_format: bool = False,
) -> None:
    """
    Configure logging for the application.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        log_file: Optional path to a log file.
        json_format: If True, use JSON structured logging.
    """
    formatter: logging.Formatter
    if json_format:
        formatter = JSONFormatter()
    else:
        formatter = logging.Formatter(TEXT_LOG_FORMAT, DATE_FORMAT)

    handlers: list[logging.Handler] = []
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    handlers.append(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(formatter)
        handlers.append(file_handler)

    logging.basicConfig(
        level=level,
        handlers=handlers,
        force=True,
    )

    # Quiet third-party loggers; upstream calls are logged by log_external_call
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger instance with the specified name.

    Args:
        name: Name of the logger (usually __name__).

    Returns:
        Configured logger instance.
    """
    return logging.getLogger(name)


def get_context_logger(name: str, **context: Any) -> ContextLogger:
    """
    Get a logger with context that will be included in all log messages.

    Args:
        name: Name of the logger (usually __name__).
        **context: Context key-value pairs to include in logs.

    Returns:
        ContextLogger adapter.
    """
    base_logger = logging.getLogger(name)
    return ContextLogger(base_logger, context)


def redact_url(url: str) -> str:
    """Strip API keys from a URL before it is logged."""
    return _KEY_PARAM_RE.sub(r"\1***", url)


def log_external_call(
    logger: logging.Logger | logging.LoggerAdapter,
    service: str,
    operation: str,
    success: bool,
    duration_ms: float,
    **extra: Any,
) -> None:
    """
    Log an upstream call with standard fields.

    Args:
        logger: Logger instance to use.
        service: Name of the upstream site (e.g., "tax-portal", "recorder").
        operation: Operation performed (e.g., "load_search_page", "submit_pin").
        success: Whether the call succeeded.
        duration_ms: Duration of the call in milliseconds.
        **extra: Additional context to log.
    """
    if "url" in extra and isinstance(extra["url"], str):
        extra["url"] = redact_url(extra["url"])

    log_data = {
        "service": service,
        "operation": operation,
        "success": success,
        "duration_ms": round(duration_ms, 2),
        **extra,
    }

    if success:
        logger.info(
            f"External call: {service}.{operation} completed in {duration_ms:.2f}ms",
            extra={"extra_data": log_data},
        )
    else:
        logger.warning(
            f"External call: {service}.{operation} failed after {duration_ms:.2f}ms",
            extra={"extra_data": log_data},
        )


__all__ = [
    "setup_logging",
    "get_logger",
    "get_context_logger",
    "log_external_call",
    "redact_url",
    "JSONFormatter",
    "ContextLogger",
]
