"""
Exception hierarchy for the DuckDB notebook.

Errors are grouped by the layer that raises them so callers can decide
whether a failure belongs to one cell, to the whole session, or to a
best-effort side effect such as an export.
"""


class NotebookError(Exception):
    """
    Base exception for all notebook errors.

    Example:
        >>> try:
        ...     await scheduler.run(cell_id)
        ... except NotebookError as e:
        ...     logger.error(f"Notebook error: {e}")
    """

    pass


class EngineError(NotebookError):
    """
    Raised when the query engine rejects or fails a statement.

    The message is the engine's own text and is shown to the user verbatim
    as the cell's error.
    """

    pass


class EngineTerminatedError(EngineError):
    """Raised when a call reaches an engine whose worker was torn down."""

    def __init__(self, message: str = "Database not connected") -> None:
        super().__init__(message)


class SessionNotReadyError(NotebookError):
    """
    Raised when a cell is run while no live engine connection exists.

    This happens before the first ``loadData`` payload arrives and while a
    cancelled session is being rebuilt.
    """

    def __init__(self, message: str = "Database not connected") -> None:
        super().__init__(message)


class BootstrapError(NotebookError):
    """
    Raised when the session cannot be initialized from its load payload.

    Bootstrap failures are fatal to the whole session and are never retried
    automatically.
    """

    pass


class FileAccessDeniedError(NotebookError):
    """
    Raised when the host refuses to hand over an external file.

    Covers both an explicit user denial and a host-side read failure.

    Attributes:
        file_path: Absolute path that was requested
        reason: Denial reason reported by the host
    """

    def __init__(self, file_path: str, reason: str) -> None:
        super().__init__(reason)
        self.file_path = file_path
        self.reason = reason


class TransferError(NotebookError):
    """Raised when a result buffer cannot be moved to durable storage."""

    pass


class ExportError(TransferError):
    """Raised when a direct (single message) export of a cell fails."""

    pass


class ProtocolError(NotebookError):
    """Raised when a message crossing the sandbox boundary is malformed."""

    pass


class ConfigurationError(NotebookError):
    """
    Raised when host configuration cannot be read or persisted.

    Example:
        >>> if not isinstance(raw, dict):
        ...     raise ConfigurationError(f"{path} does not contain a JSON object")
    """

    pass
