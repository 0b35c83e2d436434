"""Centralized logging configuration for the notebook host and sandbox.

Both sides run in one process, so logging is configured once at startup by
the entry point (the CLI, or a test harness) via ``configure_logging``.

Example:
    >>> from libs.common.logging.config import configure_logging
    >>> logger = configure_logging(service_name="duckdb-notebook", log_level="INFO")
    >>> logger.info("notebook_started", extra={"file": "sales.csv"})
"""

import logging
import sys
from typing import Optional

from libs.common.logging.context import get_session_id
from libs.common.logging.formatter import JSONFormatter

_TEXT_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


class SessionIDFilter(logging.Filter):
    """Logging filter that stamps the current notebook session ID on records."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.session_id = get_session_id()
        return True


def configure_logging(
    service_name: str,
    log_level: str = "INFO",
    include_context: bool = True,
    json_output: bool = True,
) -> logging.Logger:
    """Configure root logging for the notebook process.

    Sets up a single stdout handler with either the JSON formatter or a
    plain text format, and the session ID filter. Existing root handlers are
    removed so repeated calls do not duplicate output.

    Args:
        service_name: Name stamped on JSON records
        log_level: Minimum log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        include_context: Whether JSON output includes ``extra`` context
        json_output: Emit JSON (True) or human-readable text (False)

    Returns:
        Configured root logger instance

    Raises:
        ValueError: If log_level is invalid
    """
    numeric_level = getattr(logging, log_level.upper(), None)
    if not isinstance(numeric_level, int):
        raise ValueError(f"Invalid log level: {log_level}")

    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)
    root_logger.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(numeric_level)
    if json_output:
        handler.setFormatter(
            JSONFormatter(service_name=service_name, include_context=include_context)
        )
    else:
        handler.setFormatter(logging.Formatter(_TEXT_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
    handler.addFilter(SessionIDFilter())

    root_logger.addHandler(handler)
    return root_logger


def get_logger(name: Optional[str] = None) -> logging.Logger:
    """Get a logger instance (typically ``get_logger(__name__)``)."""
    return logging.getLogger(name)


def log_with_context(
    logger: logging.Logger,
    level: str,
    message: str,
    **context_fields: object,
) -> None:
    """Log a message with context fields grouped under ``context``.

    Example:
        >>> log_with_context(logger, "INFO", "chunk_written", name="out.csv", size=1024)
    """
    log_method = getattr(logger, level.lower())
    log_method(message, extra={"context": context_fields})
