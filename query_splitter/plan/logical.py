"""Logical plan nodes.

The plan is a closed set of operator variants. Each node is an immutable
dataclass tagged with a ``NodeKind``; policy decisions that depend on the
operator (such as whether a node may become a cut point) switch on the tag
rather than on the Python class.
"""

from abc import ABC, abstractmethod
from collections import Counter
from dataclasses import dataclass
from typing import List, Optional, Tuple
from enum import Enum

from .expressions import Expression, ColumnRef


class NodeKind(Enum):
    """Operator tag carried by every logical plan node."""

    SCAN = "SCAN"
    FILTER = "FILTER"
    PROJECT = "PROJECT"
    JOIN = "JOIN"
    AGGREGATE = "AGGREGATE"
    SORT = "SORT"
    SET_OP = "SET_OP"


class JoinType(Enum):
    """Join types."""

    INNER = "INNER"
    LEFT = "LEFT"
    RIGHT = "RIGHT"
    FULL = "FULL"
    CROSS = "CROSS"


class SetOpKind(Enum):
    """Set operation types."""

    UNION = "UNION"
    INTERSECT = "INTERSECT"
    EXCEPT = "EXCEPT"


@dataclass(frozen=True)
class OutputColumn:
    """A column produced by a plan node, as seen by its parent."""

    qualifier: Optional[str]
    name: str

    def __repr__(self) -> str:
        if self.qualifier:
            return f"{self.qualifier}.{self.name}"
        return self.name


class LogicalPlanNode(ABC):
    """Base class for logical plan nodes."""

    @property
    @abstractmethod
    def kind(self) -> NodeKind:
        """Return the operator tag."""
        pass

    @abstractmethod
    def children(self) -> List["LogicalPlanNode"]:
        """Return child nodes."""
        pass

    @abstractmethod
    def with_children(self, children: List["LogicalPlanNode"]) -> "LogicalPlanNode":
        """Create a new node with different children (immutable)."""
        pass

    @abstractmethod
    def output_columns(self) -> List[OutputColumn]:
        """Return output columns."""
        pass

    def __repr__(self) -> str:
        return self.__class__.__name__


def _check_arity(node_name: str, children: List[LogicalPlanNode], expected: int) -> None:
    if len(children) != expected:
        raise ValueError(
            f"{node_name} expects {expected} children, got {len(children)}"
        )


@dataclass(frozen=True)
class Scan(LogicalPlanNode):
    """Scan a table.

    Scans created by the partitioner for temporary tables carry the row
    estimate of the subtree they replace in ``estimated_rows`` and the
    columns of that subtree in ``materialized_from`` (parallel to
    ``columns``), so parents keep resolving their original references.
    """

    table_name: str
    columns: List[str]
    alias: Optional[str] = None
    estimated_rows: Optional[float] = None
    materialized_from: Optional[Tuple[OutputColumn, ...]] = None

    @property
    def kind(self) -> NodeKind:
        return NodeKind.SCAN

    @property
    def reference_name(self) -> str:
        """Name other nodes use to qualify this scan's columns."""
        return self.alias or self.table_name

    @property
    def is_materialized(self) -> bool:
        return self.materialized_from is not None

    def children(self) -> List[LogicalPlanNode]:
        return []

    def with_children(self, children: List[LogicalPlanNode]) -> "Scan":
        _check_arity("Scan", children, 0)
        return self

    def output_columns(self) -> List[OutputColumn]:
        if self.materialized_from is not None:
            return list(self.materialized_from)
        qualifier = self.reference_name
        return [OutputColumn(qualifier, column) for column in self.columns]

    def __repr__(self) -> str:
        alias_str = ""
        if self.alias and self.alias != self.table_name:
            alias_str = f" AS {self.alias}"
        rows_str = ""
        if self.estimated_rows is not None:
            rows_str = f", rows={self.estimated_rows:g}"
        return f"Scan({self.table_name}{alias_str}, cols={len(self.columns)}{rows_str})"


@dataclass(frozen=True)
class Project(LogicalPlanNode):
    """Project (select) specific expressions.

    A projection with a ``relation_alias`` is a derived table or an inlined
    CTE: its columns are qualified by the alias and nothing beneath it is
    visible to its parents.
    """

    input: LogicalPlanNode
    expressions: List[Expression]
    aliases: List[str]  # Output column names
    distinct: bool = False
    relation_alias: Optional[str] = None

    @property
    def kind(self) -> NodeKind:
        return NodeKind.PROJECT

    @property
    def is_derived_table(self) -> bool:
        return self.relation_alias is not None

    def children(self) -> List[LogicalPlanNode]:
        return [self.input]

    def with_children(self, children: List[LogicalPlanNode]) -> "Project":
        _check_arity("Project", children, 1)
        return Project(
            children[0],
            self.expressions,
            self.aliases,
            self.distinct,
            self.relation_alias,
        )

    def output_columns(self) -> List[OutputColumn]:
        columns: List[OutputColumn] = []
        for expr, alias in zip(self.expressions, self.aliases):
            if isinstance(expr, ColumnRef) and expr.column == "*":
                columns.extend(_star_columns(self.input, expr.table))
            else:
                columns.append(OutputColumn(None, alias))
        if self.relation_alias is not None:
            columns = [OutputColumn(self.relation_alias, c.name) for c in columns]
        return columns

    def __repr__(self) -> str:
        prefix = "Distinct " if self.distinct else ""
        suffix = f" AS {self.relation_alias}" if self.relation_alias else ""
        return f"{prefix}Project({', '.join(self.aliases)}){suffix}"


def _star_columns(node: LogicalPlanNode, qualifier: Optional[str]) -> List[OutputColumn]:
    columns = []
    for column in node.output_columns():
        if qualifier is None or column.qualifier == qualifier:
            columns.append(OutputColumn(None, column.name))
    return columns


@dataclass(frozen=True)
class Filter(LogicalPlanNode):
    """Filter rows based on a predicate."""

    input: LogicalPlanNode
    predicate: Expression

    @property
    def kind(self) -> NodeKind:
        return NodeKind.FILTER

    def children(self) -> List[LogicalPlanNode]:
        return [self.input]

    def with_children(self, children: List[LogicalPlanNode]) -> "Filter":
        _check_arity("Filter", children, 1)
        return Filter(children[0], self.predicate)

    def output_columns(self) -> List[OutputColumn]:
        return self.input.output_columns()

    def __repr__(self) -> str:
        return f"Filter({self.predicate.to_sql()})"


@dataclass(frozen=True)
class Join(LogicalPlanNode):
    """Join two inputs."""

    left: LogicalPlanNode
    right: LogicalPlanNode
    join_type: JoinType
    condition: Optional[Expression]  # None for cross join

    @property
    def kind(self) -> NodeKind:
        return NodeKind.JOIN

    def children(self) -> List[LogicalPlanNode]:
        return [self.left, self.right]

    def with_children(self, children: List[LogicalPlanNode]) -> "Join":
        _check_arity("Join", children, 2)
        return Join(children[0], children[1], self.join_type, self.condition)

    def output_columns(self) -> List[OutputColumn]:
        return self.left.output_columns() + self.right.output_columns()

    def __repr__(self) -> str:
        condition = self.condition.to_sql() if self.condition else "TRUE"
        return f"Join({self.join_type.value}, {condition})"


@dataclass(frozen=True)
class Aggregate(LogicalPlanNode):
    """Aggregate with grouping."""

    input: LogicalPlanNode
    group_by: List[Expression]  # Grouping expressions
    aggregates: List[Expression]  # Output expressions (group keys and aggregates)
    output_names: List[str]  # Output column names

    @property
    def kind(self) -> NodeKind:
        return NodeKind.AGGREGATE

    def children(self) -> List[LogicalPlanNode]:
        return [self.input]

    def with_children(self, children: List[LogicalPlanNode]) -> "Aggregate":
        _check_arity("Aggregate", children, 1)
        return Aggregate(children[0], self.group_by, self.aggregates, self.output_names)

    def output_columns(self) -> List[OutputColumn]:
        return [OutputColumn(None, name) for name in self.output_names]

    def __repr__(self) -> str:
        return f"Aggregate(groups={len(self.group_by)}, aggs={len(self.aggregates)})"


@dataclass(frozen=True)
class Sort(LogicalPlanNode):
    """Sort rows, optionally keeping only a window of them.

    A LIMIT without ORDER BY is a Sort with no keys.
    """

    input: LogicalPlanNode
    sort_keys: List[Expression]
    ascending: List[bool]  # One per sort key
    nulls_order: Optional[List[Optional[str]]] = None  # NULLS FIRST/LAST for each key
    limit: Optional[int] = None
    offset: int = 0

    @property
    def kind(self) -> NodeKind:
        return NodeKind.SORT

    def children(self) -> List[LogicalPlanNode]:
        return [self.input]

    def with_children(self, children: List[LogicalPlanNode]) -> "Sort":
        _check_arity("Sort", children, 1)
        return Sort(
            children[0],
            self.sort_keys,
            self.ascending,
            self.nulls_order,
            self.limit,
            self.offset,
        )

    def output_columns(self) -> List[OutputColumn]:
        return self.input.output_columns()

    def __repr__(self) -> str:
        limit_str = ""
        if self.limit is not None:
            limit_str = f", limit={self.limit}, offset={self.offset}"
        return f"Sort({len(self.sort_keys)} keys{limit_str})"


@dataclass(frozen=True)
class SetOp(LogicalPlanNode):
    """UNION / INTERSECT / EXCEPT over two or more inputs."""

    set_kind: SetOpKind
    inputs: List[LogicalPlanNode]
    distinct: bool  # False for the ALL variant

    def __post_init__(self):
        if len(self.inputs) < 2:
            raise ValueError(f"SetOp expects at least 2 inputs, got {len(self.inputs)}")

    @property
    def kind(self) -> NodeKind:
        return NodeKind.SET_OP

    def children(self) -> List[LogicalPlanNode]:
        return list(self.inputs)

    def with_children(self, children: List[LogicalPlanNode]) -> "SetOp":
        _check_arity("SetOp", children, len(self.inputs))
        return SetOp(self.set_kind, list(children), self.distinct)

    def output_columns(self) -> List[OutputColumn]:
        return [OutputColumn(None, column.name) for column in self.inputs[0].output_columns()]

    def __repr__(self) -> str:
        suffix = "" if self.distinct else " ALL"
        return f"{self.set_kind.value}{suffix}({len(self.inputs)} inputs)"


def is_splittable(node: LogicalPlanNode) -> bool:
    """Return True if the node's children may be materialized separately."""
    kind = node.kind
    if kind in (NodeKind.JOIN, NodeKind.PROJECT, NodeKind.FILTER, NodeKind.AGGREGATE):
        return True
    if kind in (NodeKind.SCAN, NodeKind.SORT, NodeKind.SET_OP):
        return False
    raise ValueError(f"Unknown plan node kind: {kind}")


def exposed_column_names(columns: List[OutputColumn]) -> List[str]:
    """Pick unique column names for a materialized relation.

    Names are kept as-is unless two columns share one; clashing columns are
    prefixed with their qualifier, and a numeric suffix settles anything left.
    """
    counts = Counter(column.name for column in columns)
    used = set()
    names = []
    for column in columns:
        candidate = column.name
        if counts[column.name] > 1 and column.qualifier:
            candidate = f"{column.qualifier}_{column.name}"
        unique = candidate
        suffix = 2
        while unique in used:
            unique = f"{candidate}_{suffix}"
            suffix += 1
        used.add(unique)
        names.append(unique)
    return names


def format_plan_tree(node: LogicalPlanNode, depth: int = 0) -> str:
    """Render a plan as an indented tree, one node per line."""
    lines = ["  " * depth + repr(node)]
    for child in node.children():
        lines.append(format_plan_tree(child, depth + 1))
    return "\n".join(lines)
