"""Capabilities the partitioner consumes."""

from typing import Protocol

from ..plan.logical import LogicalPlanNode


class CostEstimator(Protocol):
    """Estimates output size and cumulative cost of plan subtrees."""

    def estimate_row_count(self, plan: LogicalPlanNode) -> float:
        """Return the estimated number of rows the node produces."""
        ...

    def cumulative_cost(self, plan: LogicalPlanNode) -> float:
        """Return the cost of computing the node's whole subtree."""
        ...


class PlanRenderer(Protocol):
    """Turns a plan subtree into executable SQL."""

    def render(self, plan: LogicalPlanNode) -> str:
        """Return SQL text for the subtree alone."""
        ...
