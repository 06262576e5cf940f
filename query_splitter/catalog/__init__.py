"""Catalog built from table metadata."""

from .catalog import Catalog, MetadataLoader, map_type
from .schema import Table, Column

__all__ = ["Catalog", "MetadataLoader", "map_type", "Table", "Column"]
