"""Catalog built from a metadata description."""

import json
import logging
from typing import Any, Dict, List, Optional, Union

from .schema import Table, Column
from ..errors import MetadataError, SchemaResolutionError
from ..plan.expressions import DataType

logger = logging.getLogger(__name__)


_TYPE_ALIASES = {
    "integer": DataType.INTEGER,
    "int": DataType.INTEGER,
    "bigint": DataType.BIGINT,
    "long": DataType.BIGINT,
    "double": DataType.DOUBLE,
    "float": DataType.DOUBLE,
    "decimal": DataType.DECIMAL,
    "boolean": DataType.BOOLEAN,
    "bool": DataType.BOOLEAN,
    "date": DataType.DATE,
    "timestamp": DataType.TIMESTAMP,
    "varchar": DataType.VARCHAR,
    "string": DataType.VARCHAR,
    "text": DataType.VARCHAR,
}


class Catalog:
    """Tables known to one optimize call."""

    def __init__(self):
        """Initialize catalog."""
        self.tables: Dict[str, Table] = {}

    def add_table(self, table: Table) -> None:
        """Register a table, replacing any table with the same name."""
        self.tables[table.name.lower()] = table

    def get_table(self, name: str) -> Optional[Table]:
        """Get table by name (case-insensitive).

        Args:
            name: Table name

        Returns:
            Table if found, None otherwise
        """
        return self.tables.get(name.lower())

    def require_table(self, name: str) -> Table:
        """Get table by name or raise SchemaResolutionError."""
        table = self.get_table(name)
        if table is None:
            raise SchemaResolutionError(f"Table not found in metadata: {name}")
        return table

    def table_names(self) -> List[str]:
        """Return registered table names in registration order."""
        return [table.name for table in self.tables.values()]

    def __repr__(self) -> str:
        return f"Catalog(tables={len(self.tables)})"


def map_type(type_name: Optional[str]) -> DataType:
    """Map a metadata type string to DataType.

    Args:
        type_name: Type string from the metadata document

    Returns:
        Mapped DataType; unrecognized names map to VARCHAR
    """
    if not type_name:
        return DataType.VARCHAR
    return _TYPE_ALIASES.get(str(type_name).strip().lower(), DataType.VARCHAR)


class MetadataLoader:
    """Builds a Catalog from a metadata document.

    Two layouts are accepted::

        {"orders": [{"name": "id", "type": "integer"}, ...], ...}

        {"tables": [{"name": "orders", "columns": [{"name": "id", "type": "integer"}]}]}
    """

    def load(self, metadata: Union[str, Dict[str, Any]]) -> Catalog:
        """Create a catalog from metadata.

        Args:
            metadata: Decoded metadata dict or JSON text

        Returns:
            Catalog with one Table per described table

        Raises:
            MetadataError: If the document is malformed
        """
        document = self._decode(metadata)
        catalog = Catalog()
        for table_name, columns in self._iter_tables(document):
            table = Table(name=table_name, columns=self._build_columns(table_name, columns))
            catalog.add_table(table)
            logger.debug(f"Registered table {table_name} with {len(table.columns)} columns")
        logger.info(f"Catalog created with {len(catalog.tables)} tables")
        return catalog

    def _decode(self, metadata: Union[str, Dict[str, Any]]) -> Dict[str, Any]:
        if isinstance(metadata, str):
            try:
                metadata = json.loads(metadata)
            except json.JSONDecodeError as exc:
                raise MetadataError(f"Metadata is not valid JSON: {exc}") from exc
        if not isinstance(metadata, dict):
            raise MetadataError("Metadata must be a JSON object")
        return metadata

    def _iter_tables(self, document: Dict[str, Any]):
        tables = document.get("tables")
        if self._is_table_list(tables):
            for entry in tables:
                if "name" not in entry:
                    raise MetadataError("Every table entry needs a 'name'")
                yield str(entry["name"]), entry["columns"]
            return
        if tables == [] and len(document) == 1:
            return
        for table_name, columns in document.items():
            yield str(table_name), columns

    def _is_table_list(self, tables: Any) -> bool:
        """Tell the document layout apart from a table literally named 'tables'."""
        if not isinstance(tables, list) or not tables:
            return False
        for entry in tables:
            if not isinstance(entry, dict) or "columns" not in entry:
                return False
        return True

    def _build_columns(self, table_name: str, columns: Any) -> List[Column]:
        if not isinstance(columns, list):
            raise MetadataError(f"Columns of table {table_name} must be a list")
        result = []
        for entry in columns:
            if not isinstance(entry, dict) or not entry.get("name"):
                raise MetadataError(f"Column entry of table {table_name} needs a 'name'")
            result.append(
                Column(
                    name=str(entry["name"]),
                    data_type=map_type(entry.get("type")),
                    nullable=bool(entry.get("nullable", True)),
                )
            )
        return result
