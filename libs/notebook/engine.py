"""
DuckDB engine wrapper for the notebook sandbox.

The engine is an external collaborator: the scheduler only needs a small,
awaitable surface (query, file registration, file read-back, interrupt,
terminate). ``DuckDBEngine`` provides it on top of an in-memory DuckDB
connection with three properties the coordination core relies on:

**Dedicated worker.** Every call runs on a single-thread executor that owns
the connection, so the event loop never blocks on a query and calls are
executed in submission order.

**Private filesystem.** The engine sees host files only through buffers the
sandbox registered (the loaded dataset, files granted by the broker) and
writes COPY targets into its own scratch directory. Single-quoted literals
that name a registered file or a COPY target are rewritten to the scratch
location before execution, and scratch locations are rewritten back in error
text, so users only ever see their own names. With ``engine_sandboxed`` on,
DuckDB external access is disabled outside the scratch directory, which is
what makes "a file the sandbox cannot see" surface as an engine error.

**Destructive teardown.** ``interrupt`` asks DuckDB to abort the running
statement; ``terminate`` additionally retires the worker and connection.
Calls made after termination fail with ``EngineTerminatedError``.
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
import re
import shutil
import tempfile
import time
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path, PurePath
from typing import Any, Protocol, TypeVar, runtime_checkable

import duckdb
import polars as pl
import pyarrow as pa
import sqlglot
from sqlglot import exp

from config.settings import Settings, get_settings
from libs.common.exceptions import EngineError, EngineTerminatedError
from libs.notebook.patterns import find_copy_targets

logger = logging.getLogger(__name__)

_T = TypeVar("_T")

_QUOTED_LITERAL = re.compile(r"'((?:[^']|'')*)'")

# Raised when a result holds types polars cannot represent (INTERVAL, UNION).
_CONVERSION_ERRORS = (pl.exceptions.PolarsError, pa.ArrowException)


@dataclass(frozen=True)
class QueryResult:
    """Materialized result of one statement (or the last of a batch)."""

    frame: pl.DataFrame
    columns: list[str]
    column_types: list[str]
    execution_ms: float

    @property
    def row_count(self) -> int:
        return self.frame.height

    def to_rows(self) -> list[dict[str, Any]]:
        return self.frame.to_dicts()


@runtime_checkable
class Engine(Protocol):
    """Awaitable engine surface consumed by the session and scheduler."""

    async def query(self, sql: str) -> QueryResult: ...

    async def register_file_buffer(self, path: str, data: bytes) -> None: ...

    async def copy_file_to_buffer(self, name: str) -> bytes: ...

    async def drop_file(self, name: str) -> None: ...

    def interrupt(self) -> None: ...

    async def terminate(self) -> None: ...


def fingerprint_query(sql: str) -> str:
    """Normalize a query by replacing literals with placeholders."""

    try:
        statements = [stmt for stmt in sqlglot.parse(sql, read="duckdb") if stmt is not None]
        for statement in statements:
            for literal in statement.find_all(exp.Literal):
                literal.replace(exp.Placeholder())
        return "; ".join(statement.sql(dialect="duckdb") for statement in statements)
    except Exception:
        return "<unparseable query>"


def unique_column_names(names: list[str]) -> list[str]:
    """Suffix repeated names (``a, a`` -> ``a, a_1``) the way polars frames expect."""
    taken: set[str] = set()
    unique: list[str] = []
    for name in names:
        candidate, suffix = name, 0
        while candidate in taken:
            suffix += 1
            candidate = f"{name}_{suffix}"
        taken.add(candidate)
        unique.append(candidate)
    return unique


class DuckDBEngine:
    """
    In-memory DuckDB connection owned by a single worker thread.

    Use :meth:`instantiate` rather than the constructor; it opens and hardens
    the connection on the worker thread.

    Examples:
        >>> engine = await DuckDBEngine.instantiate()
        >>> await engine.register_file_buffer("/data/sales.csv", raw)
        >>> result = await engine.query("SELECT count(*) FROM read_csv_auto('/data/sales.csv')")
        >>> await engine.terminate()
    """

    def __init__(self, settings: Settings | None = None) -> None:
        self._settings = settings or get_settings()
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="duckdb-engine")
        self._root = Path(tempfile.mkdtemp(prefix="duckdb-notebook-")).resolve()
        self._files_dir = self._root / "files"
        self._spill_dir = self._root / "spill"
        self._files_dir.mkdir()
        self._spill_dir.mkdir()
        self._files: dict[str, Path] = {}
        self._conn: duckdb.DuckDBPyConnection | None = None
        self._terminated = False

    @classmethod
    async def instantiate(cls, settings: Settings | None = None) -> DuckDBEngine:
        """Create an engine and open its connection on the worker thread."""
        engine = cls(settings)
        try:
            await engine._submit(engine._connect)
        except Exception:
            await engine.terminate()
            raise
        logger.info(
            "duckdb_engine_started",
            extra={"scratch_dir": str(engine._root), "sandboxed": engine._settings.engine_sandboxed},
        )
        return engine

    @property
    def scratch_dir(self) -> Path:
        return self._root

    @property
    def is_terminated(self) -> bool:
        return self._terminated

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def query(self, sql: str) -> QueryResult:
        result = await self._submit(self._run_query, sql)
        logger.debug(
            "duckdb_query_completed",
            extra={
                "query_fingerprint": fingerprint_query(sql),
                "row_count": result.row_count,
                "execution_ms": round(result.execution_ms, 3),
            },
        )
        return result

    async def register_file_buffer(self, path: str, data: bytes) -> None:
        await self._submit(self._write_file, path, data)
        logger.info("duckdb_file_registered", extra={"path": path, "size": len(data)})

    async def copy_file_to_buffer(self, name: str) -> bytes:
        return await self._submit(self._read_file, name)

    async def drop_file(self, name: str) -> None:
        await self._submit(self._remove_file, name)

    def interrupt(self) -> None:
        conn = self._conn
        if conn is None:
            return
        try:
            conn.interrupt()
        except duckdb.Error:
            logger.warning("duckdb_interrupt_failed", exc_info=True)

    async def terminate(self) -> None:
        """Abort the running statement and retire the worker and connection.

        Does not wait for a statement that ignores the interrupt; its thread
        finishes in the background and the connection is closed after it.
        """
        if self._terminated:
            return
        self._terminated = True
        self.interrupt()
        self._executor.submit(self._close)
        self._executor.shutdown(wait=False)
        logger.info("duckdb_engine_terminated", extra={"scratch_dir": str(self._root)})

    # ------------------------------------------------------------------
    # Worker-thread helpers
    # ------------------------------------------------------------------

    async def _submit(self, fn: Callable[..., _T], *args: Any) -> _T:
        if self._terminated:
            raise EngineTerminatedError()
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(self._executor, fn, *args)
        except RuntimeError as exc:
            if self._terminated:
                raise EngineTerminatedError() from exc
            raise

    def _connect(self) -> None:
        root = self._root.as_posix()
        if "'" in root:
            raise EngineError(f"Unsafe characters in scratch directory: {root}")

        conn = duckdb.connect(":memory:")
        try:
            conn.execute("SET autoinstall_known_extensions = false")
            conn.execute("SET autoload_known_extensions = false")
            conn.execute(f"SET max_memory = '{int(self._settings.engine_max_memory_mb)}MB'")
            if self._settings.engine_threads is not None:
                conn.execute(f"SET threads = {int(self._settings.engine_threads)}")
            conn.execute(f"SET temp_directory = '{self._spill_dir.as_posix()}'")
            if self._settings.engine_sandboxed:
                conn.execute(f"SET allowed_directories = ['{root}']")
                conn.execute("SET enable_external_access = false")
        except duckdb.Error as exc:
            conn.close()
            raise EngineError(str(exc)) from exc
        self._conn = conn

    def _require_conn(self) -> duckdb.DuckDBPyConnection:
        if self._terminated or self._conn is None:
            raise EngineTerminatedError()
        return self._conn

    def _run_query(self, sql: str) -> QueryResult:
        conn = self._require_conn()
        rewritten = self._rewrite_paths(sql)
        start = time.perf_counter()
        try:
            relation = conn.sql(rewritten)
            if relation is None:
                frame = pl.DataFrame()
                columns: list[str] = []
                column_types: list[str] = []
            else:
                column_types = [str(column_type) for column_type in relation.types]
                try:
                    frame = relation.pl()
                except _CONVERSION_ERRORS as exc:
                    logger.info("duckdb_result_stringified", extra={"reason": str(exc)})
                    frame = self._stringified_frame(relation)
                columns = list(frame.columns)
        except duckdb.Error as exc:
            raise EngineError(self._restore_names(str(exc))) from exc
        except _CONVERSION_ERRORS as exc:
            raise EngineError(f"Unsupported result type: {exc}") from exc
        elapsed_ms = (time.perf_counter() - start) * 1000
        return QueryResult(
            frame=frame, columns=columns, column_types=column_types, execution_ms=elapsed_ms
        )

    @staticmethod
    def _stringified_frame(relation: duckdb.DuckDBPyRelation) -> pl.DataFrame:
        names = unique_column_names(list(relation.columns))
        records = relation.fetchall()
        return pl.DataFrame(
            {
                name: [None if record[index] is None else str(record[index]) for record in records]
                for index, name in enumerate(names)
            },
            schema={name: pl.String for name in names},
        )

    def _scratch_path(self, name: str) -> Path:
        mapped = self._files.get(name)
        if mapped is None:
            digest = hashlib.sha256(name.encode("utf-8")).hexdigest()[:16]
            basename = PurePath(name).name or "file"
            mapped = self._files_dir / digest / basename
            mapped.parent.mkdir(parents=True, exist_ok=True)
            self._files[name] = mapped
        return mapped

    def _rewrite_paths(self, sql: str) -> str:
        for target in find_copy_targets(sql):
            self._scratch_path(target)
        if not self._files:
            return sql

        def _swap(match: re.Match[str]) -> str:
            value = match.group(1).replace("''", "'")
            mapped = self._files.get(value)
            if mapped is None:
                return match.group(0)
            return f"'{mapped.as_posix()}'"

        return _QUOTED_LITERAL.sub(_swap, sql)

    def _restore_names(self, text: str) -> str:
        for name, mapped in self._files.items():
            text = text.replace(mapped.as_posix(), name)
        return text

    def _write_file(self, name: str, data: bytes) -> None:
        self._require_conn()
        try:
            self._scratch_path(name).write_bytes(data)
        except OSError as exc:
            raise EngineError(f"Failed to register file '{name}': {exc}") from exc

    def _read_file(self, name: str) -> bytes:
        self._require_conn()
        mapped = self._files.get(name)
        if mapped is None or not mapped.is_file():
            raise EngineError(f"No file named '{name}' in the engine filesystem")
        try:
            return mapped.read_bytes()
        except OSError as exc:
            raise EngineError(f"Failed to read file '{name}': {exc}") from exc

    def _remove_file(self, name: str) -> None:
        self._require_conn()
        mapped = self._files.pop(name, None)
        if mapped is None:
            return
        mapped.unlink(missing_ok=True)
        try:
            mapped.parent.rmdir()
        except OSError:
            logger.debug("duckdb_scratch_dir_not_empty", extra={"path": str(mapped.parent)})

    def _close(self) -> None:
        conn, self._conn = self._conn, None
        if conn is not None:
            try:
                conn.close()
            except duckdb.Error:
                logger.warning("duckdb_close_failed", exc_info=True)
        shutil.rmtree(self._root, ignore_errors=True)
