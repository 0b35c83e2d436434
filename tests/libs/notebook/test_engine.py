"""Tests for the DuckDB engine wrapper (real DuckDB)."""

from collections.abc import AsyncIterator

import pytest
import pytest_asyncio

from config.settings import Settings
from libs.common.exceptions import EngineError, EngineTerminatedError
from libs.notebook.engine import DuckDBEngine, Engine, fingerprint_query, unique_column_names
from libs.notebook.patterns import find_missing_file

pytestmark = pytest.mark.integration

SALES_CSV = b"region,amount\nnorth,10\nsouth,32\n"


@pytest_asyncio.fixture
async def engine(settings: Settings) -> AsyncIterator[DuckDBEngine]:
    engine = await DuckDBEngine.instantiate(settings)
    yield engine
    await engine.terminate()


class TestDuckDBEngine:
    @pytest.mark.asyncio
    async def test_satisfies_engine_protocol(self, engine: DuckDBEngine) -> None:
        assert isinstance(engine, Engine)

    @pytest.mark.asyncio
    async def test_select_materializes_rows(self, engine: DuckDBEngine) -> None:
        result = await engine.query("SELECT 42 AS answer, 'x' AS label")

        assert result.columns == ["answer", "label"]
        assert result.column_types == ["INTEGER", "VARCHAR"]
        assert result.to_rows() == [{"answer": 42, "label": "x"}]
        assert result.execution_ms >= 0

    @pytest.mark.asyncio
    async def test_statement_without_result(self, engine: DuckDBEngine) -> None:
        result = await engine.query("CREATE TABLE t AS SELECT 1 AS a")

        assert result.columns == []
        assert result.row_count == 0

    @pytest.mark.asyncio
    async def test_registered_file_readable_by_original_path(self, engine: DuckDBEngine) -> None:
        await engine.register_file_buffer("/data/sales.csv", SALES_CSV)

        result = await engine.query(
            "SELECT sum(amount) AS total FROM read_csv_auto('/data/sales.csv', header=true)"
        )

        assert result.to_rows() == [{"total": 42}]

    @pytest.mark.asyncio
    async def test_copy_target_read_back_and_drop(self, engine: DuckDBEngine) -> None:
        await engine.query("COPY (SELECT 1 AS a) TO 'out.csv' (HEADER)")

        assert await engine.copy_file_to_buffer("out.csv") == b"a\n1\n"

        await engine.drop_file("out.csv")
        with pytest.raises(EngineError, match="No file named 'out.csv'"):
            await engine.copy_file_to_buffer("out.csv")

    @pytest.mark.asyncio
    async def test_errors_name_registered_paths(self, engine: DuckDBEngine) -> None:
        await engine.register_file_buffer("/data/sales.csv", SALES_CSV)

        with pytest.raises(EngineError) as exc_info:
            await engine.query("SELECT * FROM read_parquet('/data/sales.csv')")

        assert "/data/sales.csv" in str(exc_info.value)
        assert str(engine.scratch_dir) not in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_syntax_error(self, engine: DuckDBEngine) -> None:
        with pytest.raises(EngineError, match="syntax error"):
            await engine.query("SELEC 1")

    @pytest.mark.asyncio
    async def test_terminated_engine_rejects_calls(self, settings: Settings) -> None:
        engine = await DuckDBEngine.instantiate(settings)
        await engine.terminate()

        assert engine.is_terminated
        with pytest.raises(EngineTerminatedError, match="Database not connected"):
            await engine.query("SELECT 1")

    @pytest.mark.asyncio
    async def test_missing_file_signature(self, settings: Settings) -> None:
        engine = await DuckDBEngine.instantiate(settings.model_copy(update={"engine_sandboxed": False}))
        try:
            with pytest.raises(EngineError) as exc_info:
                await engine.query("SELECT * FROM read_csv_auto('/nonexistent/dir/other.csv')")
        finally:
            await engine.terminate()

        assert find_missing_file(str(exc_info.value)) == "/nonexistent/dir/other.csv"

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "sql",
        ["SELECT INTERVAL 1 DAY AS v", "SELECT union_value(num := 2) AS v"],
    )
    async def test_types_without_polars_equivalent(self, engine: DuckDBEngine, sql: str) -> None:
        result = await engine.query(sql)

        assert result.columns == ["v"]
        assert len(result.column_types) == 1
        (row,) = result.to_rows()
        assert list(row) == ["v"]
        assert row["v"] is not None

    @pytest.mark.asyncio
    async def test_duplicate_column_names(self, engine: DuckDBEngine) -> None:
        result = await engine.query("SELECT 1 AS a, 2 AS a")

        assert len(result.columns) == 2
        assert len(set(result.columns)) == 2
        assert result.columns[0] == "a"
        assert result.column_types == ["INTEGER", "INTEGER"]
        (row,) = result.to_rows()
        assert list(row) == result.columns
        assert [row[column] for column in result.columns] == [1, 2]


def test_unique_column_names() -> None:
    assert unique_column_names(["a", "b", "a", "a", "a_1"]) == ["a", "b", "a_1", "a_2", "a_1_1"]


class TestFingerprint:
    def test_literals_replaced(self) -> None:
        fingerprint = fingerprint_query("SELECT * FROM data WHERE region = 'north' AND amount > 10")

        assert "north" not in fingerprint
        assert "10" not in fingerprint
        assert fingerprint.startswith("SELECT * FROM data WHERE")

    def test_same_shape_same_fingerprint(self) -> None:
        assert fingerprint_query("SELECT 1 AS a") == fingerprint_query("SELECT 2 AS a")
