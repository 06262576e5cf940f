"""Assemble optimization results and their textual plan."""

from typing import List, Optional

from ..plan.logical import LogicalPlanNode, format_plan_tree
from ..plan.subquery import OptimizationResult, SubqueryPlan


class OptimizationReportBuilder:
    """Builds OptimizationResult values.

    The plan text is for people; nothing reads it back.
    """

    def build(
        self,
        original_query: str,
        units: List[SubqueryPlan],
        total_cost: float,
        plan: Optional[LogicalPlanNode] = None,
    ) -> OptimizationResult:
        """Build a successful result.

        Args:
            original_query: Query text as received
            units: Subqueries in execution order
            total_cost: Sum of the units' costs
            plan: Logical plan the units were cut from, for the report

        Returns:
            Successful optimization result
        """
        plan_text = self.describe(units, total_cost, plan)
        return OptimizationResult.succeeded(
            original_query=original_query,
            sub_queries=units,
            total_cost=total_cost,
            optimization_plan=plan_text,
        )

    def build_error(self, original_query: str, message: str) -> OptimizationResult:
        """Build a failed result carrying only the error message."""
        return OptimizationResult.failed(original_query, message)

    def describe(
        self,
        units: List[SubqueryPlan],
        total_cost: float,
        plan: Optional[LogicalPlanNode] = None,
    ) -> str:
        lines = ["=== OPTIMIZATION PLAN ==="]
        if plan is not None:
            lines.append("Logical plan:")
            lines.append(format_plan_tree(plan, depth=1))
            lines.append("")

        lines.append(f"Subqueries ({len(units)}), total cost {total_cost:.2f}:")
        for index, unit in enumerate(units, start=1):
            lines.append(f"Subquery {index} (ID: {unit.id}):")
            lines.append(f"  Cost: {unit.cost:.2f}")
            lines.append(f"  SQL: {unit.sql}")
            if unit.is_temporary:
                lines.append(f"  Temporary table: {unit.temporary_table_name}")
            dependencies = ", ".join(unit.dependencies) if unit.dependencies else "none"
            lines.append(f"  Dependencies: {dependencies}")

        return "\n".join(lines)
