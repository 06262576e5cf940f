"""Schema metadata classes."""

from dataclasses import dataclass
from typing import List, Optional
from ..plan.expressions import DataType


@dataclass
class Column:
    """Column metadata."""

    name: str
    data_type: DataType
    nullable: bool = True
    table: Optional["Table"] = None

    def fully_qualified_name(self) -> str:
        """Get fully qualified column name."""
        if self.table:
            return f"{self.table.name}.{self.name}"
        return self.name

    def __repr__(self) -> str:
        return f"Column({self.name}, {self.data_type.value})"


@dataclass
class Table:
    """Table metadata."""

    name: str
    columns: List[Column] = None

    def __post_init__(self):
        if self.columns is None:
            self.columns = []
        # Set back-reference to table
        for col in self.columns:
            col.table = self

    def get_column(self, name: str) -> Optional[Column]:
        """Get column by name."""
        for col in self.columns:
            if col.name.lower() == name.lower():
                return col
        return None

    def column_names(self) -> List[str]:
        """Return column names in declaration order."""
        return [col.name for col in self.columns]

    def __repr__(self) -> str:
        return f"Table({self.name}, cols={len(self.columns)})"
