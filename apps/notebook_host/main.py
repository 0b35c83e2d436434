"""
DuckDB notebook command-line entry point.

Usage:
    duckdb-notebook open sales.csv
    duckdb-notebook open sales.parquet -q "SELECT region, sum(amount) FROM data GROUP BY 1"
    duckdb-notebook open sales.csv -q "COPY data TO 'sales_copy.parquet'" --workspace out/
"""

from __future__ import annotations

import asyncio
import sys
from pathlib import Path

import click
import polars as pl

from apps.notebook_host.filesystem import LocalFileSystem
from apps.notebook_host.host import NotebookHost
from apps.notebook_host.permission_store import ConfigurationStore
from apps.notebook_host.prompts import ConsolePrompter
from config.settings import Settings, get_settings
from libs.common.logging import configure_logging
from libs.notebook import Cell, CellStatus, MessageChannel, Notebook

SERVICE_NAME = "duckdb-notebook"


def echo_cell(cell: Cell) -> None:
    """Print a cell's query and outcome."""
    click.secho(cell.query, bold=True)
    if cell.status is CellStatus.ERROR:
        click.secho(f"Error: {cell.error}", fg="red")
    elif cell.status is CellStatus.SUCCESS:
        if cell.columns:
            with pl.Config(tbl_rows=50):
                frame = pl.DataFrame(cell.rows) if cell.rows else pl.DataFrame(schema=cell.columns)
                click.echo(frame)
        elapsed = cell.execution_time_ms or 0.0
        click.echo(f"{len(cell.rows)} row(s) in {elapsed:.1f} ms")
    else:
        click.echo(f"[{cell.status.value}]")
    click.echo()


async def run_notebook(
    document: Path,
    queries: tuple[str, ...],
    settings: Settings,
    workspace: Path | None,
    allow_external: bool,
) -> int:
    channel = MessageChannel()
    notebook = Notebook(channel.sandbox, settings)
    host = NotebookHost(
        channel.host,
        ConsolePrompter(assume_allow=allow_external),
        ConfigurationStore(settings.config_path),
        LocalFileSystem(workspace or settings.workspace_root or document.parent),
        document=document,
        diagnostics=notebook.diagnostics,
    )

    sandbox_task = asyncio.create_task(notebook.serve())
    host_task = asyncio.create_task(host.serve())
    try:
        await notebook.wait_bootstrapped()
        if notebook.session.error is not None:
            click.secho(f"Failed to load {document}: {notebook.session.error}", fg="red", err=True)
            return 1

        for cell in notebook.scheduler.cells:
            if cell.query:
                echo_cell(cell)

        for query in queries:
            cell_id = notebook.scheduler.focus_id
            if cell_id is None:
                cell_id = notebook.scheduler.add_cell().id
            notebook.scheduler.update_query(cell_id, query)
            await notebook.scheduler.run_and_advance(cell_id)
            echo_cell(notebook.scheduler.get(cell_id))

        failed = any(cell.status is CellStatus.ERROR for cell in notebook.scheduler.cells)
        return 1 if failed else 0
    finally:
        channel.sandbox.close()
        await host_task
        await host.drain()
        channel.host.close()
        await sandbox_task
        await notebook.close()


@click.group()
def cli() -> None:
    """DuckDB notebook: run SQL cells against a CSV or Parquet file."""


@cli.command("open")
@click.argument("document", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--query", "-q", "queries", multiple=True, help="SQL to run after the bootstrap cells")
@click.option(
    "--workspace",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Directory that receives exported files (default: next to DOCUMENT)",
)
@click.option(
    "--allow-external/--ask-external",
    default=False,
    help="Grant reads of files outside the sandbox without prompting",
)
@click.option("--log-level", default=None, help="Override DUCKDB_NOTEBOOK_LOG_LEVEL")
def open_document(
    document: Path,
    queries: tuple[str, ...],
    workspace: Path | None,
    allow_external: bool,
    log_level: str | None,
) -> None:
    """Load DOCUMENT into a notebook and run its cells."""
    settings = get_settings()
    configure_logging(
        service_name=SERVICE_NAME,
        log_level=log_level or settings.log_level,
        json_output=settings.log_json,
    )
    exit_code = asyncio.run(
        run_notebook(document.resolve(), queries, settings, workspace, allow_external)
    )
    sys.exit(exit_code)


if __name__ == "__main__":
    cli()
