"""Cost-threshold plan partitioner.

Walks a logical plan post-order and cuts it into separately executable
units. Below a splittable operator, every non-scan child whose cumulative
cost exceeds the threshold is materialized as its own temporary-table unit
and replaced in the parent by a scan of that table.
"""

import logging
import math
from typing import Dict, List, Optional, Tuple

from ..errors import PartitionError
from ..plan.logical import (
    LogicalPlanNode,
    Scan,
    exposed_column_names,
    is_splittable,
)
from ..plan.subquery import SubqueryPlan
from .interfaces import CostEstimator, PlanRenderer

logger = logging.getLogger(__name__)


class PlanPartitioner:
    """Splits a plan into subqueries bounded by a cost threshold."""

    def __init__(self, estimator: CostEstimator, renderer: PlanRenderer):
        """Initialize partitioner.

        Args:
            estimator: Supplies row estimates and cumulative costs
            renderer: Renders plan subtrees to SQL
        """
        self.estimator = estimator
        self.renderer = renderer

    def partition(self, root: LogicalPlanNode, threshold: float) -> List[SubqueryPlan]:
        """Partition a plan into dependency-ordered subqueries.

        Args:
            root: Root of the logical plan
            threshold: Children of splittable nodes whose cumulative cost
                exceeds this are materialized separately

        Returns:
            Subqueries in execution order; the last one is the only
            non-temporary unit

        Raises:
            ValueError: If threshold is negative or not finite
            PartitionError: If estimating or rendering any subtree fails
        """
        if isinstance(threshold, bool) or not isinstance(threshold, (int, float)):
            raise ValueError(f"Cost threshold must be a number, got {threshold!r}")
        if math.isnan(threshold) or math.isinf(threshold) or threshold < 0:
            raise ValueError(f"Cost threshold must be finite and >= 0, got {threshold}")

        run = _PartitionRun(self.estimator, self.renderer, float(threshold))
        units = run.execute(root)
        logger.info(
            f"Partitioned plan into {len(units)} subqueries "
            f"(threshold={threshold}, temporary={len(units) - 1})"
        )
        return units

    def __repr__(self) -> str:
        return f"PlanPartitioner(estimator={self.estimator!r}, renderer={self.renderer!r})"


class _PartitionRun:
    """State of one partition call: counters, memo tables and emitted units."""

    def __init__(self, estimator: CostEstimator, renderer: PlanRenderer, threshold: float):
        self.estimator = estimator
        self.renderer = renderer
        self.threshold = threshold
        self.units: List[SubqueryPlan] = []
        self.unit_counter = 0
        self.temp_counter = 0
        self._cost_memo: Dict[int, float] = {}
        self._rows_memo: Dict[int, float] = {}
        self._sql_memo: Dict[int, str] = {}
        # Memo keys are object ids; keep the nodes alive so ids are not reused.
        self._pinned: List[LogicalPlanNode] = []

    def execute(self, root: LogicalPlanNode) -> List[SubqueryPlan]:
        rewritten, dependencies = self._resolve(root, "root")
        self._emit(rewritten, dependencies, "root", temporary_name=None)
        return self.units

    def _resolve(
        self, node: LogicalPlanNode, position: str
    ) -> Tuple[LogicalPlanNode, List[str]]:
        """Materialize expensive children of node.

        Returns:
            The node with materialized children replaced by temp-table scans,
            and the ids of the units created directly beneath it
        """
        if not self._is_splittable(node, position):
            return node, []

        children = node.children()
        new_children: List[LogicalPlanNode] = []
        dependencies: List[str] = []
        changed = False
        for index, child in enumerate(children):
            child_position = f"{position}/{index}"
            if isinstance(child, Scan):
                new_children.append(child)
                continue

            cost = self._cumulative_cost(child, child_position)
            if cost > self.threshold:
                logger.debug(
                    f"Materializing {child!r} at {child_position}: "
                    f"cost {cost:.2f} > threshold {self.threshold:.2f}"
                )
                temp_scan, unit_id = self._materialize(child, child_position)
                new_children.append(temp_scan)
                dependencies.append(unit_id)
                changed = True
            else:
                logger.debug(
                    f"Inlining {child!r} at {child_position}: "
                    f"cost {cost:.2f} <= threshold {self.threshold:.2f}"
                )
                new_children.append(child)

        if not changed:
            return node, dependencies
        return node.with_children(new_children), dependencies

    def _materialize(
        self, child: LogicalPlanNode, position: str
    ) -> Tuple[Scan, str]:
        """Emit child as a temporary unit and return the scan replacing it."""
        rows = self._row_count(child, position)
        rewritten, dependencies = self._resolve(child, position)

        self.temp_counter += 1
        temp_name = f"temp_{self.temp_counter}"
        unit = self._emit(rewritten, dependencies, position, temporary_name=temp_name)

        output_columns = child.output_columns()
        temp_scan = Scan(
            table_name=temp_name,
            columns=exposed_column_names(output_columns),
            alias=temp_name,
            estimated_rows=rows,
            materialized_from=tuple(output_columns),
        )
        return temp_scan, unit.id

    def _emit(
        self,
        node: LogicalPlanNode,
        dependencies: List[str],
        position: str,
        temporary_name: Optional[str],
    ) -> SubqueryPlan:
        sql = self._render(node, position)
        cost = self._cumulative_cost(node, position)

        self.unit_counter += 1
        unit_id = f"Q{self.unit_counter}"
        description = f"Subquery {unit_id} with cost {cost:.2f}"
        if temporary_name:
            description += f", materialized as {temporary_name}"

        unit = SubqueryPlan(
            id=unit_id,
            sql=sql,
            cost=cost,
            dependencies=tuple(dependencies),
            is_temporary=temporary_name is not None,
            temporary_table_name=temporary_name,
            description=description,
        )
        self.units.append(unit)
        logger.debug(f"Emitted {unit_id} at {position} (cost={cost:.2f}, deps={dependencies})")
        return unit

    def _is_splittable(self, node: LogicalPlanNode, position: str) -> bool:
        try:
            return is_splittable(node)
        except ValueError as exc:
            raise PartitionError(str(exc), position, node) from exc

    def _cumulative_cost(self, node: LogicalPlanNode, position: str) -> float:
        key = id(node)
        if key not in self._cost_memo:
            try:
                cost = float(self.estimator.cumulative_cost(node))
            except Exception as exc:
                raise PartitionError(
                    f"Cost estimation failed: {exc}", position, node
                ) from exc
            self._check_estimate(cost, "cost", node, position)
            self._pinned.append(node)
            self._cost_memo[key] = cost
        return self._cost_memo[key]

    def _row_count(self, node: LogicalPlanNode, position: str) -> float:
        key = id(node)
        if key not in self._rows_memo:
            try:
                rows = float(self.estimator.estimate_row_count(node))
            except Exception as exc:
                raise PartitionError(
                    f"Row estimation failed: {exc}", position, node
                ) from exc
            self._check_estimate(rows, "row count", node, position)
            self._pinned.append(node)
            self._rows_memo[key] = rows
        return self._rows_memo[key]

    def _render(self, node: LogicalPlanNode, position: str) -> str:
        key = id(node)
        if key not in self._sql_memo:
            try:
                sql = self.renderer.render(node)
            except Exception as exc:
                raise PartitionError(f"Rendering failed: {exc}", position, node) from exc
            if not sql:
                raise PartitionError("Renderer returned empty SQL", position, node)
            self._pinned.append(node)
            self._sql_memo[key] = sql
        return self._sql_memo[key]

    def _check_estimate(
        self, value: float, what: str, node: LogicalPlanNode, position: str
    ) -> None:
        if math.isnan(value) or math.isinf(value) or value < 0:
            raise PartitionError(f"Invalid {what} estimate {value}", position, node)
