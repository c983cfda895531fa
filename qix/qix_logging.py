"""Logging and observability utilities for qix.

This module provides structured logging, performance monitoring,
and storage event hooks for the qix storage core.
"""

from __future__ import annotations

import json
import time
from collections import deque
import logging as std_logging
from contextlib import contextmanager
from datetime import datetime, timezone
from functools import wraps
from pathlib import Path
from typing import Any, Callable, Deque, Dict, List, Optional, Union

LOGGER_NAME = "qix"
MAX_METRIC_SAMPLES = 1000

_LEVELS = {
    "debug": std_logging.DEBUG,
    "info": std_logging.INFO,
    "warn": std_logging.WARNING,
    "warning": std_logging.WARNING,
    "error": std_logging.ERROR,
}


def parse_level(value: Union[str, int]) -> int:
    """Map a configured level name to a ``logging`` level, defaulting to INFO."""
    if isinstance(value, int):
        return value
    return _LEVELS.get(str(value).strip().lower(), std_logging.INFO)


def setup_logging(log_level: Union[str, int] = std_logging.INFO, log_file: Optional[Path] = None) -> std_logging.Logger:
    """Setup structured logging for qix."""

    level = parse_level(log_level)
    logger = std_logging.getLogger(LOGGER_NAME)
    logger.setLevel(level)

    # Clear existing handlers
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    detailed_formatter = std_logging.Formatter(
        fmt="%(asctime)s - %(name)s - %(levelname)s - %(module)s:%(funcName)s:%(lineno)d - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S"
    )

    console_handler = std_logging.StreamHandler()
    console_handler.setLevel(level)
    console_handler.setFormatter(detailed_formatter)
    logger.addHandler(console_handler)

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(mode=0o700, parents=True, exist_ok=True)
        file_handler = std_logging.FileHandler(log_path, encoding="utf-8")
        file_handler.setLevel(std_logging.DEBUG)
        file_handler.setFormatter(JsonFormatter())
        logger.addHandler(file_handler)

    logger.debug("qix logging initialized")
    return logger


class JsonFormatter(std_logging.Formatter):
    """JSON formatter for structured logging."""

    def format(self, record: std_logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_entry = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
            "message": record.getMessage(),
        }

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        if hasattr(record, "extra_fields"):
            log_entry.update(record.extra_fields)

        return json.dumps(log_entry, default=str)


class PerformanceMonitor:
    """Collect duration metrics for storage operations."""

    def __init__(self, max_samples: int = MAX_METRIC_SAMPLES):
        self.max_samples = max_samples
        self.metrics: Dict[str, Deque[Dict[str, Any]]] = {}

    def record_metric(self, name: str, value: Any, tags: Optional[Dict[str, str]] = None) -> None:
        """Record a performance metric."""
        metric = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "name": name,
            "value": value,
            "tags": tags or {}
        }
        self.metrics.setdefault(name, deque(maxlen=self.max_samples)).append(metric)

        logger = std_logging.getLogger("qix.performance")
        logger.debug(f"Metric recorded: {name}={value}", extra={"extra_fields": metric})

    def get_metrics(self, name: Optional[str] = None) -> Dict[str, List[Dict[str, Any]]]:
        """Get recorded metrics."""
        if name:
            return {name: list(self.metrics.get(name, ()))}
        return {key: list(samples) for key, samples in self.metrics.items()}

    def reset(self) -> None:
        self.metrics.clear()


performance_monitor = PerformanceMonitor()


def log_performance(operation_name: str):
    """Decorator to log performance metrics for operations."""
    def decorator(func):
        @wraps(func)
        def wrapper(*args, **kwargs):
            start_time = time.perf_counter()
            logger = std_logging.getLogger("qix.performance")

            try:
                result = func(*args, **kwargs)
            except Exception as e:
                duration = time.perf_counter() - start_time
                performance_monitor.record_metric(
                    f"{operation_name}_duration",
                    duration,
                    {"status": "error", "error_type": type(e).__name__}
                )
                logger.debug(
                    f"Failed operation: {operation_name} after {duration:.3f}s - {e}",
                    extra={"extra_fields": {
                        "operation": operation_name,
                        "duration": duration,
                        "status": "error",
                        "error_type": type(e).__name__,
                    }}
                )
                raise

            duration = time.perf_counter() - start_time
            performance_monitor.record_metric(
                f"{operation_name}_duration",
                duration,
                {"status": "success"}
            )
            logger.debug(
                f"Completed operation: {operation_name} in {duration:.3f}s",
                extra={"extra_fields": {
                    "operation": operation_name,
                    "duration": duration,
                    "status": "success"
                }}
            )
            return result

        return wrapper
    return decorator


@contextmanager
def log_operation(operation_name: str, **extra_fields):
    """Context manager to log operations with custom fields."""
    logger = std_logging.getLogger("qix.operations")
    start_time = time.perf_counter()

    logger.debug(f"Starting operation: {operation_name}", extra={"extra_fields": {
        "operation": operation_name,
        "status": "started",
        **extra_fields
    }})

    try:
        yield
    except Exception as e:
        duration = time.perf_counter() - start_time
        logger.warning(f"Failed operation: {operation_name} after {duration:.3f}s - {e}", extra={"extra_fields": {
            "operation": operation_name,
            "status": "failed",
            "duration": duration,
            "error_type": type(e).__name__,
            "error_message": str(e),
            **extra_fields
        }})
        raise

    duration = time.perf_counter() - start_time
    logger.debug(f"Completed operation: {operation_name} in {duration:.3f}s", extra={"extra_fields": {
        "operation": operation_name,
        "status": "completed",
        "duration": duration,
        **extra_fields
    }})


class StorageEvents:
    """Callbacks fired on storage events (saves, deletes, index rebuilds, tracking)."""

    def __init__(self):
        self.hooks: Dict[str, List[Callable[..., None]]] = {}
        self.logger = std_logging.getLogger("qix.events")

    def register_hook(self, event_type: str, callback: Callable[..., None]) -> None:
        """Register a callback for a specific event type."""
        self.hooks.setdefault(event_type, []).append(callback)
        self.logger.debug(f"Registered hook for event: {event_type}")

    def unregister_hook(self, event_type: str, callback: Callable[..., None]) -> None:
        callbacks = self.hooks.get(event_type, [])
        if callback in callbacks:
            callbacks.remove(callback)

    def trigger_hooks(self, event_type: str, **data) -> None:
        """Trigger all callbacks for a specific event type."""
        for hook in list(self.hooks.get(event_type, [])):
            try:
                hook(**data)
            except Exception as e:
                self.logger.error(f"Hook failed for event {event_type}: {e}")

    def emit(self, event_type: str, **data) -> None:
        """Log a storage event and trigger hooks."""
        event_data = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "event_type": event_type,
            **data
        }
        self.logger.debug(f"Storage event: {event_type}", extra={"extra_fields": event_data})

        hook_data = {k: v for k, v in event_data.items() if k != "event_type"}
        self.trigger_hooks(event_type, **hook_data)


def log_error_with_context(error: Exception, context: Dict[str, Any], **extra_fields) -> None:
    """Log an error with rich context information."""
    logger = std_logging.getLogger("qix.errors")

    error_data = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "error_type": type(error).__name__,
        "error_message": str(error),
        "context": context,
        **extra_fields
    }

    logger.error(
        f"Error in {context.get('operation', 'unknown operation')}: {error}",
        extra={"extra_fields": error_data},
    )
