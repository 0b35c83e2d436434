"""
Session lifecycle: engine bootstrap, canonical cells, teardown.

A session is bound to one ``loadData`` payload. ``connect`` instantiates an
engine and registers the source bytes under the file's original path, so the
canonical setup statement can read it by that path. The payload is kept so
the session can be torn down and rebuilt without another round trip to the
host.

Bootstrap failures are fatal: the session records the error, stays
not-ready, and is never retried automatically.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable

from config.settings import Settings, get_settings
from libs.common.exceptions import BootstrapError, SessionNotReadyError
from libs.notebook.engine import DuckDBEngine, Engine, QueryResult
from libs.notebook.models import Cell, FileInfo
from libs.notebook.protocol import LoadDataMessage

logger = logging.getLogger(__name__)

TABLE_NAME = "data"

EngineFactory = Callable[[Settings], Awaitable[Engine]]


def build_read_command(file_path: str, extension: str) -> str:
    """Return the table function that reads the loaded file."""
    if extension.lower() == ".parquet":
        return f"read_parquet('{file_path}')"
    return f"read_csv_auto('{file_path}', allow_quoted_nulls=false, header=true)"


def canonical_cells(payload: LoadDataMessage, settings: Settings) -> list[Cell]:
    """Build the bootstrap cells for a load payload.

    Setup, optional describe, preview, and a trailing empty cell. For the same
    payload and settings the query texts are identical; only ids differ.
    """
    read_command = build_read_command(payload.file_path, payload.extension)
    setup_query = "\n".join(
        [
            f"CREATE OR REPLACE TABLE {TABLE_NAME} AS SELECT * FROM {read_command};",
            f"-- COPY {TABLE_NAME} TO '{payload.file_name}_backup.parquet';",
        ]
    )

    cells = [Cell(query=setup_query)]
    if settings.show_describe:
        cells.append(Cell(query=f"DESCRIBE {TABLE_NAME};"))
    cells.append(Cell(query=f"SELECT * FROM {TABLE_NAME} LIMIT {settings.preview_limit};"))
    cells.append(Cell())
    return cells


class NotebookSession:
    """
    Owns the engine connection and its readiness.

    The run lock and in-flight tracking belong to one connection: ``connect``
    and ``teardown`` replace them, so a call abandoned on a dead connection
    can never hold up the rebuilt one.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        engine_factory: EngineFactory | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._engine_factory = engine_factory or DuckDBEngine.instantiate
        self._engine: Engine | None = None
        self._ready = False
        self._generation = 0
        self._in_flight = 0
        self._idle = asyncio.Event()
        self._idle.set()
        self._settled = asyncio.Event()
        self._settled.set()
        self._run_lock = asyncio.Lock()
        self.payload: LoadDataMessage | None = None
        self.file_info: FileInfo | None = None
        self.error: str | None = None

    @property
    def ready(self) -> bool:
        return self._ready and self._engine is not None

    @property
    def run_lock(self) -> asyncio.Lock:
        return self._run_lock

    @property
    def generation(self) -> int:
        return self._generation

    def mark_ready(self) -> None:
        if self._engine is not None:
            self._ready = True
        self._settled.set()

    def mark_not_ready(self) -> None:
        """Hold queued runs until ``mark_ready``, ``teardown`` or ``connect``."""
        self._ready = False
        self._settled.clear()

    async def wait_settled(self) -> None:
        """Wait out a pending interrupt; returns at once when none is pending."""
        await self._settled.wait()

    async def connect(self, payload: LoadDataMessage) -> None:
        """Instantiate a fresh engine for ``payload`` and register its bytes.

        Raises:
            BootstrapError: If the engine cannot be created or the file cannot
                be registered
        """
        if self._engine is not None:
            await self.teardown()

        self.payload = payload
        self.file_info = FileInfo(file_name=payload.file_name, extension=payload.extension)
        self.error = None

        engine: Engine | None = None
        try:
            engine = await self._engine_factory(self._settings)
            await engine.register_file_buffer(payload.file_path, payload.data)
        except Exception as exc:
            self.error = str(exc) or type(exc).__name__
            self._ready = False
            self._settled.set()
            logger.exception(
                "session_bootstrap_failed",
                extra={"file_path": payload.file_path, "error": self.error},
            )
            if engine is not None:
                await engine.terminate()
            raise BootstrapError(self.error) from exc

        self._engine = engine
        self._generation += 1
        self._in_flight = 0
        self._idle.set()
        self._run_lock = asyncio.Lock()
        self._ready = True
        self._settled.set()
        logger.info(
            "session_connected",
            extra={
                "file_path": payload.file_path,
                "size": len(payload.data),
                "generation": self._generation,
            },
        )

    async def execute(self, sql: str) -> QueryResult:
        engine = self._require_engine()
        generation = self._generation
        self._in_flight += 1
        self._idle.clear()
        try:
            return await engine.query(sql)
        finally:
            if generation == self._generation:
                self._in_flight -= 1
                if self._in_flight == 0:
                    self._idle.set()

    async def register_file(self, path: str, data: bytes) -> None:
        await self._require_engine().register_file_buffer(path, data)

    async def copy_file_to_buffer(self, name: str) -> bytes:
        return await self._require_engine().copy_file_to_buffer(name)

    async def drop_file(self, name: str) -> None:
        await self._require_engine().drop_file(name)

    async def interrupt(self, timeout: float) -> bool:
        """Ask the engine to abort the running statement.

        Returns:
            True if no statement is running or the running one returned within
            ``timeout`` seconds; False if the engine did not cooperate
        """
        engine = self._engine
        if engine is None or self._idle.is_set():
            return True
        engine.interrupt()
        try:
            await asyncio.wait_for(self._idle.wait(), timeout)
        except TimeoutError:
            logger.warning("session_interrupt_timed_out", extra={"timeout": timeout})
            return False
        return True

    async def teardown(self) -> None:
        """Terminate the engine worker and connection; the session becomes not-ready."""
        self._ready = False
        engine, self._engine = self._engine, None
        self._generation += 1
        self._in_flight = 0
        self._idle.set()
        self._settled.set()
        self._run_lock = asyncio.Lock()
        if engine is not None:
            await engine.terminate()
            logger.info("session_torn_down", extra={"generation": self._generation})

    def _require_engine(self) -> Engine:
        if not self._ready or self._engine is None:
            raise SessionNotReadyError()
        return self._engine
