"""Structured logging with correlation IDs for quota checks."""

import logging
import sys
import time
import uuid
from contextvars import ContextVar
from functools import wraps
from typing import Any, Dict, Optional

import structlog
from structlog.types import FilteringBoundLogger

from ..config import get_config

# Context variables for correlation IDs
correlation_id: ContextVar[str] = ContextVar('correlation_id', default='')
check_id: ContextVar[str] = ContextVar('check_id', default='')
region: ContextVar[str] = ContextVar('region', default='')


class CorrelationIDProcessor:
    """Processor to add correlation IDs to log records."""

    def __call__(self, logger: FilteringBoundLogger, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
        """Add correlation context to log events."""
        event_dict['correlation_id'] = correlation_id.get() or self._generate_correlation_id()
        if check_id.get():
            event_dict['check_id'] = check_id.get()
        if region.get():
            event_dict['region'] = region.get()

        if 'timestamp' not in event_dict:
            event_dict['timestamp'] = time.time()

        return event_dict

    def _generate_correlation_id(self) -> str:
        """Generate a new correlation ID."""
        new_id = str(uuid.uuid4())
        correlation_id.set(new_id)
        return new_id


class SensitiveDataFilter:
    """Filter credentials from log records."""

    SENSITIVE_KEYS = {
        'password', 'token', 'secret', 'credential', 'access_key',
        'secret_key', 'session_token', 'authorization',
    }

    def __call__(self, logger: FilteringBoundLogger, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
        """Filter sensitive data from log events."""
        return self._filter_dict(event_dict)

    def _filter_dict(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """Recursively filter sensitive data from dictionaries."""
        filtered = {}

        for key, value in data.items():
            if isinstance(key, str) and any(sensitive in key.lower() for sensitive in self.SENSITIVE_KEYS):
                filtered[key] = '[REDACTED]'
            elif isinstance(value, dict):
                filtered[key] = self._filter_dict(value)
            elif isinstance(value, list):
                filtered[key] = [self._filter_dict(item) if isinstance(item, dict) else item for item in value]
            else:
                filtered[key] = value

        return filtered


class StructuredLogger:
    """Structured logger configured from the logging section of the config."""

    def __init__(self):
        self.config = get_config()
        self._configure_structlog()

    def _configure_structlog(self):
        """Configure structlog with processors and formatters."""
        processors = [
            CorrelationIDProcessor(),
            SensitiveDataFilter(),
            structlog.processors.TimeStamper(fmt="ISO"),
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
        ]

        if self.config.logging.format == "json":
            processors.append(structlog.processors.JSONRenderer())
        else:
            processors.append(structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty()))

        structlog.configure(
            processors=processors,
            wrapper_class=structlog.make_filtering_bound_logger(
                getattr(logging, self.config.logging.level)
            ),
            logger_factory=structlog.WriteLoggerFactory(file=sys.stderr),
            cache_logger_on_first_use=True,
        )

    def get_logger(self, name: str = None) -> FilteringBoundLogger:
        """Get a configured structured logger."""
        return structlog.get_logger(name)


class LoggingContext:
    """Context manager for setting correlation IDs and check context."""

    _VARS = {
        'correlation_id': correlation_id,
        'check_id': check_id,
        'region': region,
    }

    def __init__(self, **context_data):
        unknown = set(context_data) - set(self._VARS)
        if unknown:
            raise TypeError(f"Unknown logging context keys: {sorted(unknown)}")
        self.context_data = context_data
        self.tokens = {}

    def __enter__(self):
        for key, value in self.context_data.items():
            self.tokens[key] = self._VARS[key].set(str(value))
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        for key, token in self.tokens.items():
            self._VARS[key].reset(token)
        self.tokens = {}


def with_correlation_id(func):
    """Decorator to automatically generate correlation IDs for functions."""
    @wraps(func)
    async def async_wrapper(*args, **kwargs):
        with LoggingContext(correlation_id=str(uuid.uuid4())):
            return await func(*args, **kwargs)

    @wraps(func)
    def sync_wrapper(*args, **kwargs):
        with LoggingContext(correlation_id=str(uuid.uuid4())):
            return func(*args, **kwargs)

    import asyncio
    if asyncio.iscoroutinefunction(func):
        return async_wrapper
    return sync_wrapper


# Global instance
_structured_logger: Optional[StructuredLogger] = None


def get_structured_logger() -> StructuredLogger:
    """Get the global structured logger instance."""
    global _structured_logger
    if _structured_logger is None:
        _structured_logger = StructuredLogger()
    return _structured_logger


def setup_structured_logging():
    """Initialize structured and standard library logging for the application."""
    structured_logger = get_structured_logger()

    logging.basicConfig(
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stderr,
        level=getattr(logging, structured_logger.config.logging.level),
    )

    logger = structlog.get_logger("aws_quota_monitor")
    logger.debug("Structured logging initialized", component="logging")
