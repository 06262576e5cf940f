"""Total cost of a partitioned query."""

from typing import Iterable

from ..plan.subquery import SubqueryPlan


def total_cost(units: Iterable[SubqueryPlan]) -> float:
    """Sum the incremental costs of all subqueries.

    Each unit's cost already treats materialized children as scans of their
    temporary tables, so the sum never counts a subtree twice.
    """
    return float(sum(unit.cost for unit in units))
