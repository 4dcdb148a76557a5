"""Structured Logging Configuration.

This module configures structlog for JSON output and context binding.
Outputs JSON format for production log aggregation (CloudWatch, Datadog, Splunk).

Configuration:
- JSON output format (for production log aggregation)
- Context binding support via contextvars (request IDs, job names, etc.)
- Log levels: DEBUG, INFO, WARNING, ERROR, CRITICAL
"""

import logging
import sys

import structlog

from reela.config import get_log_level

_configured = False


def configure_logging(level: str | None = None) -> None:
    """Install JSON rendering for structlog and the stdlib root logger.

    Safe to call more than once; only the first call has an effect.

    Args:
        level: Log level name. Defaults to the LOG_LEVEL environment variable.
    """
    global _configured
    if _configured:
        return

    level_name = level or get_log_level()
    numeric_level = logging.getLevelName(level_name)
    if not isinstance(numeric_level, int):
        numeric_level = logging.INFO

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=numeric_level)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        logger_factory=structlog.PrintLoggerFactory(file=sys.stdout),
        cache_logger_on_first_use=True,
    )
    _configured = True


def bind_request_context(**context: object) -> None:
    """Bind per-request context to every log line emitted in this task."""
    structlog.contextvars.bind_contextvars(**context)


def clear_request_context() -> None:
    """Drop context bound by :func:`bind_request_context`."""
    structlog.contextvars.clear_contextvars()
