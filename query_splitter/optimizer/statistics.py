"""Table and column statistics feeding the cost model."""

import json
import logging
import math
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Union

from ..errors import EstimationError

logger = logging.getLogger(__name__)


@dataclass
class ColumnStatistics:
    """Statistics about a column."""

    num_distinct: int
    null_count: int = 0
    null_fraction: float = 0.0


@dataclass
class TableStatistics:
    """Statistics about a table."""

    row_count: int
    column_stats: Dict[str, ColumnStatistics] = field(default_factory=dict)

    def get_column(self, name: str) -> Optional[ColumnStatistics]:
        """Get column statistics by name (case-insensitive)."""
        return self.column_stats.get(name.lower())


class StatisticsCollector:
    """Holds the statistics supplied for one optimize call."""

    def __init__(
        self,
        tables: Optional[Dict[str, TableStatistics]] = None,
        provided: Optional[bool] = None,
    ):
        """Initialize statistics collector.

        Args:
            tables: Statistics keyed by table name
            provided: Whether a statistics document was supplied at all;
                defaults to True when any table statistics are given
        """
        self.tables: Dict[str, TableStatistics] = {}
        for name, stats in (tables or {}).items():
            self.tables[name.lower()] = stats
        if provided is None:
            provided = bool(self.tables)
        self.provided = provided

    def get_table_statistics(self, table: str) -> Optional[TableStatistics]:
        """Get statistics for a table.

        Args:
            table: Table name

        Returns:
            Table statistics if available, None otherwise
        """
        return self.tables.get(table.lower())

    def __repr__(self) -> str:
        return f"StatisticsCollector(tables={len(self.tables)}, provided={self.provided})"


class StatisticsLoader:
    """Builds a StatisticsCollector from a statistics document.

    Two layouts are accepted::

        {"orders": {"rowCount": 1000, "columnStats": [{"name": "id", "distinctValues": 1000, "nullCount": 0}]}}

        {"tables": [{"name": "orders", "rowCount": 1000, "columnStats": [...]}]}
    """

    def load(self, statistics: Union[None, str, Dict[str, Any]]) -> StatisticsCollector:
        """Load statistics.

        Args:
            statistics: Decoded document, JSON text, or None when absent

        Returns:
            Statistics collector (empty when nothing was supplied)

        Raises:
            EstimationError: If the document is malformed
        """
        if statistics is None or statistics == "":
            return StatisticsCollector(provided=False)
        document = self._decode(statistics)
        tables: Dict[str, TableStatistics] = {}
        for table_name, entry in self._iter_tables(document):
            tables[table_name] = self._build_table_statistics(table_name, entry)
            logger.debug(
                f"Loaded statistics for table {table_name}: "
                f"{tables[table_name].row_count} rows"
            )
        logger.info(f"Statistics loaded for {len(tables)} tables")
        return StatisticsCollector(tables, provided=True)

    def _decode(self, statistics: Union[str, Dict[str, Any]]) -> Dict[str, Any]:
        if isinstance(statistics, str):
            try:
                statistics = json.loads(statistics)
            except json.JSONDecodeError as exc:
                raise EstimationError(f"Statistics are not valid JSON: {exc}") from exc
        if not isinstance(statistics, dict):
            raise EstimationError("Statistics must be a JSON object")
        return statistics

    def _iter_tables(self, document: Dict[str, Any]):
        tables = document.get("tables")
        if isinstance(tables, list):
            for entry in tables:
                if not isinstance(entry, dict) or "name" not in entry:
                    raise EstimationError("Every statistics entry needs a 'name'")
                yield str(entry["name"]), entry
            return
        for table_name, entry in document.items():
            yield str(table_name), entry

    def _build_table_statistics(self, table_name: str, entry: Any) -> TableStatistics:
        if not isinstance(entry, dict):
            raise EstimationError(f"Statistics for table {table_name} must be an object")
        if "rowCount" not in entry:
            raise EstimationError(f"Statistics for table {table_name} lack 'rowCount'")
        row_count = self._read_count(entry["rowCount"], f"{table_name}.rowCount")
        column_stats: Dict[str, ColumnStatistics] = {}
        for column_entry in entry.get("columnStats", []) or []:
            if not isinstance(column_entry, dict) or not column_entry.get("name"):
                raise EstimationError(
                    f"Column statistics of table {table_name} need a 'name'"
                )
            name = str(column_entry["name"])
            column_stats[name.lower()] = self._build_column_statistics(
                f"{table_name}.{name}", column_entry, row_count
            )
        return TableStatistics(row_count=row_count, column_stats=column_stats)

    def _build_column_statistics(
        self, label: str, entry: Dict[str, Any], row_count: int
    ) -> ColumnStatistics:
        num_distinct = self._read_count(entry.get("distinctValues", 0), f"{label}.distinctValues")
        null_count = self._read_count(entry.get("nullCount", 0), f"{label}.nullCount")
        null_fraction = 0.0
        if row_count > 0:
            null_fraction = min(1.0, null_count / row_count)
        return ColumnStatistics(
            num_distinct=num_distinct,
            null_count=null_count,
            null_fraction=null_fraction,
        )

    def _read_count(self, value: Any, label: str) -> int:
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise EstimationError(f"Statistic {label} must be a number, got {value!r}")
        if math.isnan(value) or math.isinf(value) or value < 0:
            raise EstimationError(f"Statistic {label} must be a non-negative number")
        return int(value)
