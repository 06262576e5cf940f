"""Execution of partitioned plans."""

from .duckdb_runner import DuckDBPlanRunner

__all__ = ["DuckDBPlanRunner"]
