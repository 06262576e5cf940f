"""Command line interface: split a SQL query into cost-bounded subqueries."""

import json
import time
from pathlib import Path
from typing import List, Optional

import click
import duckdb
import pyarrow as pa

from ..config import Config, load_config
from ..executor import DuckDBPlanRunner
from ..plan.subquery import OptimizationResult
from ..processor import OptimizationRequest, QueryOptimizer
from ..utils.logging import setup_logging


class ResultPrinter:
    """Formats Arrow tables for CLI display."""

    def __init__(self, emit):
        self.emit = emit

    def display(self, table: pa.Table, elapsed_ms: float) -> None:
        headers = list(table.schema.names)
        rows = self._build_rows(table)
        for line in self._format_table(headers, rows):
            self.emit(line)
        self.emit(f"{table.num_rows} rows in {elapsed_ms:.2f} ms")

    def _build_rows(self, table: pa.Table) -> List[List[str]]:
        columns = [table.column(index).to_pylist() for index in range(table.num_columns)]
        rows = []
        for row_index in range(table.num_rows):
            rows.append([self._stringify_cell(column[row_index]) for column in columns])
        return rows

    def _format_table(self, headers: List[str], rows: List[List[str]]) -> List[str]:
        widths = [len(header) for header in headers]
        for row in rows:
            for index, text in enumerate(row):
                widths[index] = max(widths[index], len(text))
        border = "+" + "+".join("-" * (width + 2) for width in widths) + "+"
        lines = [border, self._format_row(headers, widths), border]
        for row in rows:
            lines.append(self._format_row(row, widths))
        lines.append(border)
        return lines

    def _format_row(self, values: List[str], widths: List[int]) -> str:
        cells = [f" {value.ljust(width)} " for value, width in zip(values, widths)]
        return "|" + "|".join(cells) + "|"

    def _stringify_cell(self, value: object) -> str:
        if value is None:
            return "NULL"
        return str(value)


def _read_sql(sql: Optional[str], sql_file: Optional[str]) -> str:
    if sql and sql_file:
        raise click.UsageError("Use either --sql or --sql-file, not both")
    if sql_file:
        return Path(sql_file).read_text()
    if sql:
        return sql
    raise click.UsageError("One of --sql or --sql-file is required")


def _read_optional(path: Optional[str]) -> Optional[str]:
    if path is None:
        return None
    return Path(path).read_text()


def _load_settings(config_path: Optional[str]) -> Config:
    if config_path:
        return load_config(config_path)
    return Config()


def _emit_result(result: OptimizationResult, output: Optional[str]) -> None:
    text = json.dumps(result.to_dict(), indent=2)
    if output:
        Path(output).write_text(text + "\n")
        click.echo(f"Result written to {output}", err=True)
    else:
        click.echo(text)


def _run_on_duckdb(result: OptimizationResult, database: str, dialect: str) -> None:
    printer = ResultPrinter(click.echo)
    start = time.time()
    with DuckDBPlanRunner(database, dialect=dialect) as runner:
        table = runner.run(result)
    printer.display(table, (time.time() - start) * 1000)


@click.command()
@click.option("-s", "--sql", "sql", help="SQL query text.")
@click.option(
    "-f",
    "--sql-file",
    "sql_file",
    type=click.Path(exists=True, dir_okay=False, readable=True),
    help="File containing the SQL query.",
)
@click.option(
    "-m",
    "--metadata",
    "metadata_path",
    required=True,
    type=click.Path(exists=True, dir_okay=False, readable=True),
    help="JSON file describing tables and columns.",
)
@click.option(
    "-t",
    "--statistics",
    "statistics_path",
    type=click.Path(exists=True, dir_okay=False, readable=True),
    help="JSON file with row counts and column statistics.",
)
@click.option(
    "-c",
    "--threshold",
    "threshold",
    type=float,
    help="Cost threshold for materializing subtrees (default from config, 1000.0).",
)
@click.option(
    "-o",
    "--output",
    "output",
    type=click.Path(dir_okay=False, writable=True),
    help="Write the result JSON here instead of stdout.",
)
@click.option(
    "--config",
    "config_path",
    type=click.Path(exists=True, dir_okay=False, readable=True),
    help="Path to YAML config file.",
)
@click.option("--log-level", "log_level", help="Override the configured log level.")
@click.option(
    "--run-on",
    "run_on",
    type=click.Path(dir_okay=False),
    help="Execute the subqueries on this DuckDB database and print the result.",
)
def cli(
    sql: Optional[str],
    sql_file: Optional[str],
    metadata_path: str,
    statistics_path: Optional[str],
    threshold: Optional[float],
    output: Optional[str],
    config_path: Optional[str],
    log_level: Optional[str],
    run_on: Optional[str],
) -> None:
    """Split a SQL query into subqueries whose cost stays under a threshold."""
    query = _read_sql(sql, sql_file)
    config = _load_settings(config_path)
    setup_logging(
        level=log_level or config.logging.level,
        structured=config.logging.structured,
        log_file=config.logging.log_file,
    )

    if threshold is None:
        threshold = config.partitioner.cost_threshold
    request = OptimizationRequest(
        sql_query=query,
        metadata=Path(metadata_path).read_text(),
        statistics=_read_optional(statistics_path),
        cost_threshold=threshold,
    )
    result = QueryOptimizer(config).optimize(request)
    _emit_result(result, output)

    if not result.success:
        click.echo(f"error: {result.error_message}", err=True)
        raise SystemExit(1)

    if run_on:
        try:
            _run_on_duckdb(result, run_on, config.renderer.dialect)
        except duckdb.Error as exc:
            click.echo(f"error: {exc}", err=True)
            raise SystemExit(1)


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
