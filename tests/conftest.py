"""
Shared fixtures for notebook tests.

Provides:
1. ``settings``: fast settings (no chunk pacing, short interrupt timeout)
2. ``FakeEngine`` / ``engine_factory``: scriptable in-process engine
3. ``ScriptedPrompter``: host prompter answering from queued decisions
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any

import polars as pl
import pytest

from apps.notebook_host.prompts import AccessDecision
from config.settings import Settings
from libs.common.exceptions import EngineError, EngineTerminatedError
from libs.notebook.engine import QueryResult
from libs.notebook.patterns import find_copy_targets

DEFAULT_ROWS = [{"id": 1, "name": "alpha"}, {"id": 2, "name": "beta"}]


class FakeEngine:
    """In-process stand-in for DuckDBEngine.

    - SELECT/DESCRIBE statements return ``rows`` (others return no columns)
    - a statement mentioning a path in ``require_files`` fails with DuckDB's
      missing-file message until that path has been registered
    - a statement containing ``fail_on`` fails with a parser error
    - a statement containing ``crash_on`` raises a non-engine ``ValueError``
    - a statement containing ``hang_on`` blocks until interrupted
      (``cooperative=True``) or until the engine is terminated
    - COPY ... TO targets become engine-resident files holding ``copy_bytes``
    """

    def __init__(
        self,
        rows: list[dict[str, Any]] | None = None,
        require_files: tuple[str, ...] = (),
        fail_on: str | None = None,
        crash_on: str | None = None,
        hang_on: str | None = None,
        cooperative: bool = True,
        copy_bytes: bytes = b"id,name\n1,alpha\n",
        fail_register: bool = False,
    ) -> None:
        self.rows = DEFAULT_ROWS if rows is None else rows
        self.require_files = require_files
        self.fail_on = fail_on
        self.crash_on = crash_on
        self.hang_on = hang_on
        self.cooperative = cooperative
        self.copy_bytes = copy_bytes
        self.fail_register = fail_register
        self.files: dict[str, bytes] = {}
        self.queries: list[str] = []
        self.interrupts = 0
        self.terminated = False
        self.hanging = asyncio.Event()
        self._interrupted = asyncio.Event()
        self._released = asyncio.Event()

    async def query(self, sql: str) -> QueryResult:
        if self.terminated:
            raise EngineTerminatedError()
        self.queries.append(sql)
        await asyncio.sleep(0)

        for path in self.require_files:
            if path in sql and path not in self.files:
                raise EngineError(f'IO Error: No files found that match the pattern "{path}"')
        if self.fail_on is not None and self.fail_on in sql:
            raise EngineError(f'Parser Error: syntax error at or near "{self.fail_on}"')
        if self.crash_on is not None and self.crash_on in sql:
            raise ValueError("cannot convert result column")
        if self.hang_on is not None and self.hang_on in sql:
            await self._hang()

        for target in find_copy_targets(sql):
            self.files[target] = self.copy_bytes

        head = sql.lstrip().split(None, 1)[0].upper() if sql.strip() else ""
        if head in ("SELECT", "DESCRIBE", "WITH", "FROM"):
            frame = pl.DataFrame(self.rows)
            return QueryResult(
                frame=frame,
                columns=list(frame.columns),
                column_types=[str(dtype) for dtype in frame.dtypes],
                execution_ms=0.5,
            )
        return QueryResult(frame=pl.DataFrame(), columns=[], column_types=[], execution_ms=0.1)

    async def _hang(self) -> None:
        self.hanging.set()
        if self.cooperative:
            await self._interrupted.wait()
            self._interrupted.clear()
            raise EngineError("INTERRUPT Error: Interrupted!")
        await self._released.wait()
        raise EngineTerminatedError()

    async def register_file_buffer(self, path: str, data: bytes) -> None:
        if self.terminated:
            raise EngineTerminatedError()
        if self.fail_register:
            raise EngineError(f"Failed to register file '{path}'")
        self.files[path] = data

    async def copy_file_to_buffer(self, name: str) -> bytes:
        if name not in self.files:
            raise EngineError(f"No file named '{name}' in the engine filesystem")
        return self.files[name]

    async def drop_file(self, name: str) -> None:
        self.files.pop(name, None)

    def interrupt(self) -> None:
        self.interrupts += 1
        if self.cooperative:
            self._interrupted.set()

    async def terminate(self) -> None:
        self.terminated = True
        self._released.set()


class FakeEngineFactory:
    """Engine factory recording every engine it creates."""

    def __init__(self, fail: bool = False, **engine_kwargs: Any) -> None:
        self.fail = fail
        self.engine_kwargs = engine_kwargs
        self.engines: list[FakeEngine] = []

    async def __call__(self, settings: Settings) -> FakeEngine:
        if self.fail:
            raise EngineError("Failed to open database")
        engine = FakeEngine(**self.engine_kwargs)
        self.engines.append(engine)
        return engine

    @property
    def current(self) -> FakeEngine:
        return self.engines[-1]


class ScriptedPrompter:
    """Host prompter that answers from queued decisions and records output."""

    def __init__(
        self,
        decisions: list[AccessDecision | Exception] | None = None,
        save_paths: list[str | None] | None = None,
    ) -> None:
        self.decisions = list(decisions or [])
        self.save_paths = list(save_paths or [])
        self.access_prompts: list[str] = []
        self.save_prompts: list[str] = []
        self.infos: list[str] = []
        self.errors: list[str] = []
        self.clipboard: list[str] = []
        self.urls: list[str] = []

    async def ask_file_access(self, file_path: str) -> AccessDecision:
        self.access_prompts.append(file_path)
        decision = self.decisions.pop(0) if self.decisions else AccessDecision.DENY
        if isinstance(decision, Exception):
            raise decision
        return decision

    async def ask_save_path(self, default_name: str) -> str | None:
        self.save_prompts.append(default_name)
        return self.save_paths.pop(0) if self.save_paths else None

    async def show_info(self, message: str) -> None:
        self.infos.append(message)

    async def show_error(self, message: str) -> None:
        self.errors.append(message)

    async def write_clipboard(self, text: str) -> None:
        self.clipboard.append(text)

    async def open_external(self, url: str) -> None:
        self.urls.append(url)


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(
        _env_file=None,
        chunk_pacing_seconds=0.0,
        interrupt_timeout_seconds=0.05,
        rebuild_grace_seconds=0.0,
        config_path=tmp_path / "config" / "settings.json",
        log_json=False,
    )


@pytest.fixture
def engine_factory() -> FakeEngineFactory:
    return FakeEngineFactory()


@pytest.fixture
def make_engine_factory():
    return FakeEngineFactory


@pytest.fixture
def make_prompter():
    return ScriptedPrompter
