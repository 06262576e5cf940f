"""Run a partitioned query on DuckDB, one subquery at a time."""

import logging
from typing import List, Optional

import duckdb
import pyarrow as pa
import sqlglot

from ..plan.subquery import OptimizationResult, SubqueryPlan

logger = logging.getLogger(__name__)


class DuckDBPlanRunner:
    """Executes the subqueries of an OptimizationResult in order.

    Temporary units become DuckDB temp tables, the final unit's rows are
    returned as an Arrow table, and the temp tables are dropped afterwards.
    """

    def __init__(
        self,
        path: str = ":memory:",
        read_only: bool = False,
        dialect: str = "postgres",
        connection: Optional[duckdb.DuckDBPyConnection] = None,
    ):
        """Initialize runner.

        Args:
            path: DuckDB database file, or :memory:
            read_only: Open the database read-only (temp tables still work)
            dialect: Dialect the subquery SQL was rendered in
            connection: Existing connection to use instead of opening one
        """
        self.path = path
        self.read_only = read_only
        self.dialect = dialect
        self.connection = connection
        self._owns_connection = connection is None

    def connect(self) -> None:
        if self.connection is not None:
            return
        logger.info(f"Connecting to DuckDB at '{self.path}'")
        self.connection = duckdb.connect(self.path, read_only=self.read_only)
        self._owns_connection = True

    def disconnect(self) -> None:
        if self.connection is not None and self._owns_connection:
            self.connection.close()
            logger.info(f"Disconnected from DuckDB at '{self.path}'")
            self.connection = None

    def __enter__(self) -> "DuckDBPlanRunner":
        self.connect()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.disconnect()

    def run(self, result: OptimizationResult) -> pa.Table:
        """Execute every subquery and return the final result.

        Raises:
            ValueError: If the result is not a successful optimization
        """
        if not result.success or not result.sub_queries:
            raise ValueError(
                f"Cannot run a failed optimization: {result.error_message}"
            )
        final = result.final_subquery()
        if final is None:
            raise ValueError("Optimization result has no final subquery")

        self.connect()
        created: List[str] = []
        try:
            for unit in result.sub_queries:
                if not unit.is_temporary:
                    continue
                self._materialize(unit)
                created.append(unit.temporary_table_name)
            logger.info(f"Running final subquery {final.id}")
            return self.connection.execute(self._to_duckdb(final.sql)).fetch_arrow_table()
        finally:
            self._drop_temporary_tables(created)

    def run_sql(self, sql: str) -> pa.Table:
        """Execute one statement and return its rows."""
        self.connect()
        return self.connection.execute(self._to_duckdb(sql)).fetch_arrow_table()

    def _materialize(self, unit: SubqueryPlan) -> None:
        logger.debug(f"Materializing {unit.id} as {unit.temporary_table_name}")
        self.connection.execute(
            f"CREATE OR REPLACE TEMP TABLE {unit.temporary_table_name} AS "
            f"{self._to_duckdb(unit.sql)}"
        )

    def _drop_temporary_tables(self, names: List[str]) -> None:
        for name in reversed(names):
            self.connection.execute(f"DROP TABLE IF EXISTS {name}")

    def _to_duckdb(self, sql: str) -> str:
        if self.dialect == "duckdb":
            return sql
        return sqlglot.transpile(sql, read=self.dialect, write="duckdb")[0]

    def __repr__(self) -> str:
        return f"DuckDBPlanRunner(path={self.path})"
