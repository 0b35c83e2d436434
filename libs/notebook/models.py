"""Cell and file models shared by the scheduler and the session lifecycle."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any
from uuid import uuid4

CANCELLED_MESSAGE = "Execution cancelled"


class CellStatus(StrEnum):
    """Execution status of a cell."""

    IDLE = "idle"
    RUNNING = "running"
    SUCCESS = "success"
    ERROR = "error"


def new_cell_id() -> str:
    """Return an opaque, unique cell identifier."""
    return f"cell-{uuid4().hex[:12]}"


@dataclass
class Cell:
    """One query plus its latest execution outcome.

    ``columns`` and ``column_types`` are parallel lists and every row dict
    has exactly the keys in ``columns``. Only the scheduler mutates the
    status and result fields; ``query`` belongs to the editing surface.
    """

    id: str = field(default_factory=new_cell_id)
    query: str = ""
    status: CellStatus = CellStatus.IDLE
    error: str | None = None
    columns: list[str] = field(default_factory=list)
    column_types: list[str] = field(default_factory=list)
    rows: list[dict[str, Any]] = field(default_factory=list)
    execution_time_ms: float | None = None

    @property
    def is_running(self) -> bool:
        return self.status is CellStatus.RUNNING

    def clear_results(self) -> None:
        self.columns = []
        self.column_types = []
        self.rows = []
        self.execution_time_ms = None


@dataclass(frozen=True)
class FileInfo:
    """Name and extension of the file a session was loaded from."""

    file_name: str
    extension: str
