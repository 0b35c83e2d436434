"""Sandbox side of the DuckDB notebook: cells, scheduler, session and transfer."""

from libs.notebook.broker import FileAccessBroker
from libs.notebook.diagnostics import DiagnosticEvent, DiagnosticsChannel
from libs.notebook.engine import DuckDBEngine, Engine, QueryResult
from libs.notebook.models import CANCELLED_MESSAGE, Cell, CellStatus, FileInfo
from libs.notebook.notebook import Notebook
from libs.notebook.scheduler import CellScheduler
from libs.notebook.session import NotebookSession, canonical_cells
from libs.notebook.transfer import CHUNK_SIZE, TransferProtocol
from libs.notebook.transport import ChannelEndpoint, MessageChannel

__all__ = [
    "CANCELLED_MESSAGE",
    "CHUNK_SIZE",
    "Cell",
    "CellScheduler",
    "CellStatus",
    "ChannelEndpoint",
    "DiagnosticEvent",
    "DiagnosticsChannel",
    "DuckDBEngine",
    "Engine",
    "FileAccessBroker",
    "FileInfo",
    "MessageChannel",
    "Notebook",
    "NotebookSession",
    "QueryResult",
    "TransferProtocol",
    "canonical_cells",
]
