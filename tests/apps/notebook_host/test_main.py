"""Tests for the duckdb-notebook CLI (real DuckDB)."""

import logging
from pathlib import Path

import pytest
from click.testing import CliRunner

from apps.notebook_host.main import cli

pytestmark = pytest.mark.integration


@pytest.fixture(autouse=True)
def _cli_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("DUCKDB_NOTEBOOK_CONFIG_PATH", str(tmp_path / "config" / "settings.json"))
    monkeypatch.setenv("DUCKDB_NOTEBOOK_CHUNK_PACING_SECONDS", "0")
    monkeypatch.setenv("DUCKDB_NOTEBOOK_LOG_JSON", "false")
    root_logger = logging.getLogger()
    handlers, level = list(root_logger.handlers), root_logger.level
    yield
    root_logger.handlers[:] = handlers
    root_logger.setLevel(level)


@pytest.fixture
def document(tmp_path: Path) -> Path:
    path = tmp_path / "sales.csv"
    path.write_bytes(b"region,amount\nnorth,10\nsouth,32\n")
    return path


def _invoke(*args: str):
    return CliRunner().invoke(cli, ["open", *args, "--log-level", "ERROR"])


class TestOpenCommand:
    def test_bootstrap_and_query(self, document: Path) -> None:
        result = _invoke(str(document), "-q", "SELECT sum(amount) AS total FROM data")

        assert result.exit_code == 0, result.output
        assert "CREATE OR REPLACE TABLE data" in result.output
        assert "SELECT sum(amount) AS total FROM data" in result.output
        assert "42" in result.output

    def test_failing_query_exits_non_zero(self, document: Path) -> None:
        result = _invoke(str(document), "-q", "SELEC 1")

        assert result.exit_code == 1
        assert "Error:" in result.output

    def test_copy_writes_to_workspace(self, document: Path, tmp_path: Path) -> None:
        workspace = tmp_path / "out"

        result = _invoke(
            str(document), "-q", "COPY data TO 'copy.csv' (HEADER)", "--workspace", str(workspace)
        )

        assert result.exit_code == 0, result.output
        assert (workspace / "copy.csv").read_text() == "region,amount\nnorth,10\nsouth,32\n"
        assert "Saved copy.csv to project root." in result.output

    def test_missing_document(self, tmp_path: Path) -> None:
        result = _invoke(str(tmp_path / "nope.csv"))

        assert result.exit_code == 2
