"""
Cell execution scheduler.

Owns the ordered cell list and every status/result mutation on it. A run:

1. waits for the session run lock, so one connection never executes two
   statements at once (later runs queue in order);
2. executes the cell's query; if the engine reports a missing file at an
   absolute path, asks the broker for it, registers the granted bytes and
   retries exactly once;
3. on success, if the query was a ``COPY ... TO '<name>'``, reads the artifact
   back and streams it to the host. Export problems go to the diagnostics
   channel and never change the cell's outcome.

Stopping a cell is optimistic: the cell turns Idle immediately and its
in-flight run is disowned (each run holds a token; results from a run whose
token is no longer current are dropped). The session then tries a
cooperative interrupt and, failing that, is torn down and rebuilt from its
load payload. Rebuilding re-runs the bootstrap cells in place and leaves
every other cell's last results untouched.
"""

from __future__ import annotations

import asyncio
import itertools
import json
import logging
import time
from typing import Any

import polars as pl

from config.settings import Settings, get_settings
from libs.common.exceptions import (
    BootstrapError,
    EngineError,
    ExportError,
    FileAccessDeniedError,
    NotebookError,
    SessionNotReadyError,
)
from libs.notebook.broker import FileAccessBroker
from libs.notebook.diagnostics import DiagnosticsChannel
from libs.notebook.engine import QueryResult
from libs.notebook.models import CANCELLED_MESSAGE, Cell, CellStatus
from libs.notebook.patterns import find_copy_target, find_missing_file
from libs.notebook.protocol import (
    CopyToClipboardMessage,
    LoadDataMessage,
    OpenUrlMessage,
    UpdateConfigurationMessage,
)
from libs.notebook.session import NotebookSession, canonical_cells
from libs.notebook.transfer import ExportFormat, TransferProtocol
from libs.notebook.transport import ChannelEndpoint

logger = logging.getLogger(__name__)

_EXPORT_FORMATS = ("csv", "parquet")


def rows_to_csv(columns: list[str], rows: list[dict[str, Any]]) -> str:
    """Render result rows as CSV text (header line first, no trailing newline).

    Struct and list values are written as JSON, since CSV has no nested types.
    """
    data = {
        column: [
            json.dumps(value, default=str) if isinstance(value, dict | list) else value
            for value in (row.get(column) for row in rows)
        ]
        for column in columns
    }
    df = pl.DataFrame(data, strict=False)
    return df.write_csv().removesuffix("\n")


class CellScheduler:
    """Sequences cell execution against one notebook session."""

    def __init__(
        self,
        session: NotebookSession,
        broker: FileAccessBroker,
        transfer: TransferProtocol,
        diagnostics: DiagnosticsChannel,
        endpoint: ChannelEndpoint,
        settings: Settings | None = None,
    ) -> None:
        self._session = session
        self._broker = broker
        self._transfer = transfer
        self._diagnostics = diagnostics
        self._endpoint = endpoint
        self._settings = settings or get_settings()
        self._cells: list[Cell] = []
        self._focus_id: str | None = None
        self._tokens = itertools.count(1)
        self._run_tokens: dict[str, int] = {}
        self._bootstrap_ids: list[str] = []
        self._setup_query: str | None = None
        self._bootstrapped = asyncio.Event()

    # ------------------------------------------------------------------
    # Cell list
    # ------------------------------------------------------------------

    @property
    def cells(self) -> list[Cell]:
        return list(self._cells)

    @property
    def focus_id(self) -> str | None:
        return self._focus_id

    @property
    def bootstrap_ids(self) -> list[str]:
        return list(self._bootstrap_ids)

    def get(self, cell_id: str) -> Cell:
        for cell in self._cells:
            if cell.id == cell_id:
                return cell
        raise KeyError(f"Unknown cell: {cell_id}")

    def add_cell(self, index: int | None = None, query: str = "") -> Cell:
        cell = Cell(query=query)
        if index is None:
            self._cells.append(cell)
        else:
            self._cells.insert(index, cell)
        self._focus_id = cell.id
        return cell

    def remove_cell(self, cell_id: str) -> None:
        cell = self.get(cell_id)
        self._cells.remove(cell)
        self._run_tokens.pop(cell_id, None)
        if self._focus_id == cell_id:
            self._focus_id = None

    def update_query(self, cell_id: str, query: str) -> Cell:
        cell = self.get(cell_id)
        cell.query = query
        return cell

    def move_cell(self, active_id: str, over_id: str) -> None:
        """Move ``active_id`` to the position currently held by ``over_id``."""
        cell = self.get(active_id)
        target_index = self._index(over_id)
        self._cells.remove(cell)
        self._cells.insert(target_index, cell)

    def _index(self, cell_id: str) -> int:
        for index, cell in enumerate(self._cells):
            if cell.id == cell_id:
                return index
        raise KeyError(f"Unknown cell: {cell_id}")

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    async def run(self, cell_id: str) -> Cell:
        """Execute a cell's query and record the outcome on the cell.

        Raises:
            KeyError: If the cell does not exist
            SessionNotReadyError: If no live engine connection exists
        """
        cell = self.get(cell_id)
        if not self._session.ready:
            raise SessionNotReadyError()

        query = cell.query
        if not query.strip():
            cell.status = CellStatus.IDLE
            return cell

        token = next(self._tokens)
        self._run_tokens[cell_id] = token
        cell.status = CellStatus.RUNNING
        cell.error = None

        export: tuple[str, bytes] | None = None
        async with self._session.run_lock:
            await self._session.wait_settled()
            if not self._is_current(cell_id, token):
                return cell
            try:
                result = await self._execute_with_access_retry(cell_id, query)
            except (EngineError, FileAccessDeniedError, SessionNotReadyError) as exc:
                self._fail(cell, token, str(exc))
                return cell
            except Exception as exc:
                logger.exception("cell_run_crashed", extra={"cell_id": cell_id})
                self._fail(cell, token, f"Unexpected error: {exc}")
                return cell

            if not self._is_current(cell_id, token):
                logger.info("cell_result_discarded", extra={"cell_id": cell_id})
                return cell

            self._run_tokens.pop(cell_id, None)
            self._apply_result(cell, result)
            logger.info(
                "cell_run_succeeded",
                extra={
                    "cell_id": cell_id,
                    "row_count": len(cell.rows),
                    "execution_ms": round(result.execution_ms, 3),
                },
            )

            target = find_copy_target(query)
            if target is not None:
                buffer = await self._read_back(target)
                if buffer is not None:
                    export = (target, buffer)

        if export is not None:
            await self._send_export(*export)
        return cell

    async def run_and_advance(self, cell_id: str) -> str:
        """Run a cell, then focus the next one (appending an empty cell at the end).

        Returns:
            The id of the newly focused cell
        """
        await self.run(cell_id)
        index = self._index(cell_id)
        if index == len(self._cells) - 1:
            self.add_cell()
        else:
            self._focus_id = self._cells[index + 1].id
        assert self._focus_id is not None
        return self._focus_id

    async def _execute_with_access_retry(self, cell_id: str, query: str) -> QueryResult:
        try:
            return await self._session.execute(query)
        except EngineError as exc:
            file_path = find_missing_file(str(exc))
            if file_path is None:
                raise
            logger.info("cell_missing_external_file", extra={"file_path": file_path})

        data = await self._broker.request_access(file_path, owner=cell_id)
        await self._session.register_file(file_path, data)
        return await self._session.execute(query)

    def _fail(self, cell: Cell, token: int, error: str) -> None:
        if not self._is_current(cell.id, token):
            return
        self._run_tokens.pop(cell.id, None)
        cell.status = CellStatus.ERROR
        cell.error = error
        logger.info("cell_run_failed", extra={"cell_id": cell.id, "error": error})

    def _apply_result(self, cell: Cell, result: QueryResult) -> None:
        cell.columns = list(result.columns)
        cell.column_types = list(result.column_types)
        cell.rows = result.to_rows()
        cell.execution_time_ms = result.execution_ms
        cell.error = None
        cell.status = CellStatus.SUCCESS

    def _is_current(self, cell_id: str, token: int) -> bool:
        return self._run_tokens.get(cell_id) == token

    async def _read_back(self, target: str) -> bytes | None:
        try:
            buffer = await self._session.copy_file_to_buffer(target)
            await self._session.drop_file(target)
        except NotebookError as exc:
            self._diagnostics.report(
                "export", "Failed to read back COPY target", target=target, error=str(exc)
            )
            return None
        return buffer

    async def _send_export(self, target: str, buffer: bytes) -> None:
        try:
            await self._transfer.send_chunked(target, buffer)
        except Exception as exc:
            self._diagnostics.report(
                "export", "Failed to stream COPY target", target=target, error=str(exc)
            )

    # ------------------------------------------------------------------
    # Cancellation
    # ------------------------------------------------------------------

    async def stop(self, cell_id: str) -> bool:
        """Cancel a running cell.

        Returns:
            False if the cell was not running, True otherwise
        """
        cell = self.get(cell_id)
        if not cell.is_running:
            return False

        self._cancel(cell)
        logger.info("cell_stop_requested", extra={"cell_id": cell_id})

        # Nothing is executing while the run waits on the host for a file.
        if self._broker.cancel(cell_id, CANCELLED_MESSAGE):
            return True

        if not self._session.ready:
            return True

        self._session.mark_not_ready()
        if await self._session.interrupt(self._settings.interrupt_timeout_seconds):
            self._session.mark_ready()
            logger.info("cell_stop_interrupted", extra={"cell_id": cell_id})
            return True

        for other in self._cells:
            if other.is_running:
                self._cancel(other)
        self._broker.reject_all("Session restarted")
        await self._session.teardown()
        await asyncio.sleep(self._settings.rebuild_grace_seconds)
        await self.replay_bootstrap()
        return True

    def _cancel(self, cell: Cell) -> None:
        self._run_tokens.pop(cell.id, None)
        cell.status = CellStatus.IDLE
        cell.error = CANCELLED_MESSAGE

    # ------------------------------------------------------------------
    # Bootstrap
    # ------------------------------------------------------------------

    async def bootstrap(self, payload: LoadDataMessage) -> None:
        """Connect a fresh engine, replace the cells with the canonical ones and run them."""
        self._bootstrapped.clear()
        try:
            try:
                await self._session.connect(payload)
            except BootstrapError:
                return

            cells = canonical_cells(payload, self._settings)
            self._cells = cells
            self._run_tokens.clear()
            self._bootstrap_ids = [cell.id for cell in cells if cell.query]
            self._setup_query = cells[0].query
            self._focus_id = cells[-1].id
            await self._run_bootstrap_chain()
        finally:
            self._bootstrapped.set()

    async def replay_bootstrap(self) -> None:
        """Reconnect from the stored payload and re-run the bootstrap cells in place."""
        payload = self._session.payload
        if payload is None:
            return
        self._bootstrapped.clear()
        try:
            try:
                await self._session.connect(payload)
            except BootstrapError:
                return
            logger.info("session_replaying_bootstrap", extra={"cells": len(self._bootstrap_ids)})
            await self._run_bootstrap_chain()
        finally:
            self._bootstrapped.set()

    async def wait_bootstrapped(self) -> None:
        await self._bootstrapped.wait()

    async def _run_bootstrap_chain(self) -> None:
        if not self._bootstrap_ids or self._setup_query is None:
            return
        setup_id, *rest = self._bootstrap_ids
        present = {cell.id for cell in self._cells}

        if setup_id in present:
            setup_ok = (await self.run(setup_id)).status is CellStatus.SUCCESS
        else:
            try:
                await self._session.execute(self._setup_query)
                setup_ok = True
            except NotebookError as exc:
                logger.warning("bootstrap_setup_failed", extra={"error": str(exc)})
                setup_ok = False

        if not setup_ok:
            return

        for cell_id in rest:
            if cell_id in {cell.id for cell in self._cells}:
                await self.run(cell_id)

    # ------------------------------------------------------------------
    # Host actions
    # ------------------------------------------------------------------

    async def export_cell(self, cell_id: str, file_format: ExportFormat = "csv") -> int:
        """Export a cell's full result to the host as one message.

        Returns:
            Size in bytes of the exported buffer

        Raises:
            ExportError: If the export query or read-back fails
        """
        if file_format not in _EXPORT_FORMATS:
            raise ValueError(f"Unsupported export format: {file_format}")
        cell = self.get(cell_id)
        if not self._session.ready:
            raise SessionNotReadyError()

        cleaned = cell.query.strip()
        if cleaned.endswith(";"):
            cleaned = cleaned[:-1]
        file_name = f"export_{time.time_ns() // 1_000_000}.{file_format}"
        copy_sql = f"COPY ({cleaned}) TO '{file_name}' (FORMAT {file_format.upper()})"

        try:
            async with self._session.run_lock:
                await self._session.wait_settled()
                await self._session.execute(copy_sql)
                buffer = await self._session.copy_file_to_buffer(file_name)
                await self._session.drop_file(file_name)
        except NotebookError as exc:
            self._diagnostics.report(
                "export", "Direct export failed", cell_id=cell_id, error=str(exc)
            )
            raise ExportError(f"Export failed: {exc}") from exc

        self._transfer.send_direct(buffer, file_format, f"result.{file_format}")
        return len(buffer)

    def copy_cell(self, cell_id: str) -> str | None:
        """Send the cell's rows to the host clipboard as CSV; returns the text."""
        cell = self.get(cell_id)
        if not cell.columns:
            return None
        text = rows_to_csv(cell.columns, cell.rows)
        self._endpoint.post(CopyToClipboardMessage(value=text))
        return text

    def open_url(self, url: str) -> None:
        self._endpoint.post(OpenUrlMessage(url=url))

    def update_configuration(self, key: str, value: Any) -> None:
        self._endpoint.post(UpdateConfigurationMessage(key=key, value=value))
