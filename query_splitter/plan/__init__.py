"""Logical plan representation."""

from .logical import (
    LogicalPlanNode,
    NodeKind,
    OutputColumn,
    Scan,
    Filter,
    Project,
    Join,
    JoinType,
    Aggregate,
    Sort,
    SetOp,
    SetOpKind,
    is_splittable,
    exposed_column_names,
    format_plan_tree,
)
from .subquery import SubqueryPlan, OptimizationResult

__all__ = [
    "LogicalPlanNode",
    "NodeKind",
    "OutputColumn",
    "Scan",
    "Filter",
    "Project",
    "Join",
    "JoinType",
    "Aggregate",
    "Sort",
    "SetOp",
    "SetOpKind",
    "is_splittable",
    "exposed_column_names",
    "format_plan_tree",
    "SubqueryPlan",
    "OptimizationResult",
]
