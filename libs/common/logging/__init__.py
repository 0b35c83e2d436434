"""Structured logging for the DuckDB notebook.

Usage:
    # At process startup
    from libs.common.logging import configure_logging
    configure_logging(service_name="duckdb-notebook", log_level="INFO")

    # Within a notebook session
    from libs.common.logging import LogContext
    with LogContext(session_id):
        ...
"""

from libs.common.logging.config import (
    SessionIDFilter,
    configure_logging,
    get_logger,
    log_with_context,
)
from libs.common.logging.context import (
    LogContext,
    clear_session_id,
    generate_session_id,
    get_session_id,
    set_session_id,
)
from libs.common.logging.formatter import JSONFormatter

__all__ = [
    # Configuration
    "configure_logging",
    "get_logger",
    "log_with_context",
    "SessionIDFilter",
    # Session ID management
    "generate_session_id",
    "get_session_id",
    "set_session_id",
    "clear_session_id",
    "LogContext",
    # Formatter
    "JSONFormatter",
]
