"""Common utilities and exceptions."""

from libs.common.exceptions import (
    BootstrapError,
    ConfigurationError,
    EngineError,
    EngineTerminatedError,
    ExportError,
    FileAccessDeniedError,
    NotebookError,
    ProtocolError,
    SessionNotReadyError,
    TransferError,
)

__all__ = [
    "NotebookError",
    "EngineError",
    "EngineTerminatedError",
    "SessionNotReadyError",
    "BootstrapError",
    "FileAccessDeniedError",
    "TransferError",
    "ExportError",
    "ProtocolError",
    "ConfigurationError",
]
