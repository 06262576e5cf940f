"""Output records of the partitioning pipeline."""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple


@dataclass(frozen=True)
class SubqueryPlan:
    """One materialized step of a partitioned query.

    ``cost`` is the unit's own incremental cost: materialized children are
    counted as scans over their temporary tables, never as the subtrees
    they replaced.
    """

    id: str
    sql: str
    cost: float
    dependencies: Tuple[str, ...] = ()
    is_temporary: bool = False
    temporary_table_name: Optional[str] = None
    description: str = ""

    def __post_init__(self):
        if self.is_temporary and not self.temporary_table_name:
            raise ValueError(f"Temporary subquery {self.id} needs a table name")
        if not self.is_temporary and self.temporary_table_name:
            raise ValueError(f"Final subquery {self.id} cannot have a table name")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "sql": self.sql,
            "cost": self.cost,
            "dependencies": list(self.dependencies),
            "isTemporary": self.is_temporary,
            "temporaryTableName": self.temporary_table_name,
            "description": self.description,
        }


@dataclass(frozen=True)
class OptimizationResult:
    """Result of the optimize operation.

    A successful result carries the ordered subqueries, their total cost and
    the textual plan; a failed one carries only the error message.
    """

    original_query: str
    sub_queries: Optional[List[SubqueryPlan]] = None
    total_cost: Optional[float] = None
    optimization_plan: Optional[str] = None
    success: bool = False
    error_message: Optional[str] = None

    @classmethod
    def succeeded(
        cls,
        original_query: str,
        sub_queries: List[SubqueryPlan],
        total_cost: float,
        optimization_plan: str,
    ) -> "OptimizationResult":
        return cls(
            original_query=original_query,
            sub_queries=list(sub_queries),
            total_cost=total_cost,
            optimization_plan=optimization_plan,
            success=True,
        )

    @classmethod
    def failed(cls, original_query: str, error_message: str) -> "OptimizationResult":
        if not error_message:
            error_message = "Optimization failed"
        return cls(
            original_query=original_query,
            success=False,
            error_message=error_message,
        )

    def final_subquery(self) -> Optional[SubqueryPlan]:
        """Return the unit producing the query's result."""
        if not self.sub_queries:
            return None
        for unit in self.sub_queries:
            if not unit.is_temporary:
                return unit
        return None

    def to_dict(self) -> Dict[str, Any]:
        sub_queries = None
        if self.sub_queries is not None:
            sub_queries = [unit.to_dict() for unit in self.sub_queries]
        return {
            "originalQuery": self.original_query,
            "subQueries": sub_queries,
            "totalCost": self.total_cost,
            "optimizationPlan": self.optimization_plan,
            "success": self.success,
            "errorMessage": self.error_message,
        }
