"""Tests for canonical cells and the session lifecycle."""

import pytest

from config.settings import Settings
from libs.common.exceptions import BootstrapError, SessionNotReadyError
from libs.notebook.protocol import LoadDataMessage
from libs.notebook.session import NotebookSession, build_read_command, canonical_cells


def _payload(extension: str = ".csv") -> LoadDataMessage:
    return LoadDataMessage(
        file_name="sales_2024",
        file_path=f"/data/sales 2024{extension}",
        extension=extension,
        data=b"a,b\n1,2\n",
    )


class TestCanonicalCells:
    def test_csv_cells(self, settings: Settings) -> None:
        cells = canonical_cells(_payload(), settings)

        assert [cell.query for cell in cells] == [
            "CREATE OR REPLACE TABLE data AS SELECT * FROM "
            "read_csv_auto('/data/sales 2024.csv', allow_quoted_nulls=false, header=true);\n"
            "-- COPY data TO 'sales_2024_backup.parquet';",
            "DESCRIBE data;",
            "SELECT * FROM data LIMIT 5;",
            "",
        ]

    def test_parquet_reader(self) -> None:
        assert build_read_command("/d/x.parquet", ".PARQUET") == "read_parquet('/d/x.parquet')"

    def test_describe_and_limit_follow_settings(self, settings: Settings) -> None:
        custom = settings.model_copy(update={"show_describe": False, "preview_limit": 20})

        queries = [cell.query for cell in canonical_cells(_payload(".parquet"), custom)]

        assert "DESCRIBE data;" not in queries
        assert queries[1] == "SELECT * FROM data LIMIT 20;"
        assert len(queries) == 3

    def test_idempotent_texts_fresh_ids(self, settings: Settings) -> None:
        first = canonical_cells(_payload(), settings)
        second = canonical_cells(_payload(), settings)

        assert [cell.query for cell in first] == [cell.query for cell in second]
        assert {cell.id for cell in first}.isdisjoint({cell.id for cell in second})


class TestNotebookSession:
    @pytest.mark.asyncio
    async def test_connect_registers_source(self, settings: Settings, engine_factory) -> None:
        session = NotebookSession(settings, engine_factory)

        await session.connect(_payload())

        assert session.ready
        assert session.generation == 1
        assert engine_factory.current.files == {"/data/sales 2024.csv": b"a,b\n1,2\n"}
        assert session.file_info is not None
        assert session.file_info.file_name == "sales_2024"

    @pytest.mark.asyncio
    async def test_not_ready_before_connect(self, settings: Settings, engine_factory) -> None:
        session = NotebookSession(settings, engine_factory)

        with pytest.raises(SessionNotReadyError, match="Database not connected"):
            await session.execute("SELECT 1")

    @pytest.mark.asyncio
    async def test_engine_failure_is_fatal(self, settings: Settings, make_engine_factory) -> None:
        session = NotebookSession(settings, make_engine_factory(fail=True))

        with pytest.raises(BootstrapError, match="Failed to open database"):
            await session.connect(_payload())

        assert not session.ready
        assert session.error == "Failed to open database"

    @pytest.mark.asyncio
    async def test_register_failure_terminates_engine(
        self, settings: Settings, make_engine_factory
    ) -> None:
        factory = make_engine_factory(fail_register=True)
        session = NotebookSession(settings, factory)

        with pytest.raises(BootstrapError):
            await session.connect(_payload())

        assert factory.current.terminated
        assert not session.ready

    @pytest.mark.asyncio
    async def test_teardown_replaces_lock_and_engine(self, settings: Settings, engine_factory) -> None:
        session = NotebookSession(settings, engine_factory)
        await session.connect(_payload())
        old_lock = session.run_lock

        await session.teardown()

        assert not session.ready
        assert engine_factory.current.terminated
        assert session.run_lock is not old_lock
        with pytest.raises(SessionNotReadyError):
            await session.execute("SELECT 1")

    @pytest.mark.asyncio
    async def test_reconnect_from_stored_payload(self, settings: Settings, engine_factory) -> None:
        session = NotebookSession(settings, engine_factory)
        await session.connect(_payload())
        await session.teardown()

        assert session.payload is not None
        await session.connect(session.payload)

        assert session.ready
        assert len(engine_factory.engines) == 2

    @pytest.mark.asyncio
    async def test_interrupt_when_idle_is_immediate(self, settings: Settings, engine_factory) -> None:
        session = NotebookSession(settings, engine_factory)
        await session.connect(_payload())

        assert await session.interrupt(0.01) is True
        assert engine_factory.current.interrupts == 0
