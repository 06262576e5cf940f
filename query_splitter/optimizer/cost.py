"""Cost model for query partitioning.

Cost is measured in rows processed: a node's own cost is its estimated
output cardinality, and its cumulative cost adds the cumulative cost of
every input. A scan over a temporary table costs the row estimate stored on
the synthetic scan, which is what keeps materialized subtrees from being
counted twice.
"""

import logging
from typing import Dict, List, Optional, Tuple

from ..config.config import CostConfig
from ..errors import EstimationError
from ..plan.logical import (
    LogicalPlanNode,
    Scan,
    Project,
    Filter,
    Join,
    Aggregate,
    Sort,
    SetOp,
    JoinType,
    SetOpKind,
)
from ..plan.expressions import (
    Expression,
    BinaryOp,
    UnaryOp,
    ColumnRef,
    InList,
    BetweenExpression,
    BinaryOpType,
    UnaryOpType,
)
from .statistics import ColumnStatistics, StatisticsCollector, TableStatistics

logger = logging.getLogger(__name__)


class CostModel:
    """Cost model for estimating cardinality and cumulative cost."""

    def __init__(
        self,
        config: Optional[CostConfig] = None,
        stats_collector: Optional[StatisticsCollector] = None
    ):
        """Initialize cost model.

        Args:
            config: Cost model configuration
            stats_collector: Statistics collector for cardinality info
        """
        self.config = config or CostConfig()
        self.stats_collector = stats_collector

    def estimate_row_count(self, plan: LogicalPlanNode) -> float:
        """Estimate output cardinality of a plan.

        Args:
            plan: Logical plan node

        Returns:
            Estimated number of output rows, at least 1
        """
        return self._estimate(plan)[0]

    def cumulative_cost(self, plan: LogicalPlanNode) -> float:
        """Estimate the cost of computing the plan's whole subtree.

        Args:
            plan: Logical plan node

        Returns:
            Own row count plus the cumulative cost of every input
        """
        return self._estimate(plan)[1]

    def _estimate(self, plan: LogicalPlanNode) -> Tuple[float, float]:
        """Return (rows, cumulative cost) for a plan."""
        child_rows: List[float] = []
        children_cost = 0.0
        for child in plan.children():
            rows, cost = self._estimate(child)
            child_rows.append(rows)
            children_cost += cost
        rows = max(1.0, self._estimate_cardinality(plan, child_rows))
        return rows, rows + children_cost

    def _estimate_cardinality(
        self, plan: LogicalPlanNode, child_rows: List[float]
    ) -> float:
        if isinstance(plan, Scan):
            return self._estimate_scan_cardinality(plan)
        if isinstance(plan, Filter):
            return self._estimate_filter_cardinality(plan, child_rows[0])
        if isinstance(plan, Project):
            return child_rows[0]
        if isinstance(plan, Join):
            return self._estimate_join_cardinality(plan, child_rows[0], child_rows[1])
        if isinstance(plan, Aggregate):
            return self._estimate_aggregate_cardinality(plan, child_rows[0])
        if isinstance(plan, Sort):
            return self._estimate_sort_cardinality(plan, child_rows[0])
        if isinstance(plan, SetOp):
            return self._estimate_set_op_cardinality(plan, child_rows)

        raise EstimationError(f"Cannot estimate plan node {plan!r}")

    def _estimate_scan_cardinality(self, scan: Scan) -> float:
        """Estimate cardinality of a scan node."""
        if scan.estimated_rows is not None:
            return float(scan.estimated_rows)

        stats = self._table_statistics(scan.table_name)
        if stats is None:
            if self.stats_collector is not None and self.stats_collector.provided:
                raise EstimationError(f"No statistics for table {scan.table_name}")
            return self.config.default_row_count

        return float(stats.row_count)

    def _estimate_filter_cardinality(self, filter_node: Filter, input_card: float) -> float:
        """Estimate cardinality after filtering."""
        selectivity = self.estimate_selectivity(filter_node.predicate, filter_node.input)
        return input_card * selectivity

    def _estimate_join_cardinality(
        self, join: Join, left_card: float, right_card: float
    ) -> float:
        """Estimate cardinality of a join."""
        if join.join_type == JoinType.CROSS or join.condition is None:
            return left_card * right_card

        selectivity = self.estimate_selectivity(join.condition, join)
        inner = left_card * right_card * selectivity

        if join.join_type == JoinType.LEFT:
            return max(left_card, inner)
        if join.join_type == JoinType.RIGHT:
            return max(right_card, inner)
        if join.join_type == JoinType.FULL:
            return max(left_card, right_card, left_card + right_card - inner)

        return inner

    def _estimate_aggregate_cardinality(self, agg: Aggregate, input_card: float) -> float:
        """Estimate cardinality after aggregation."""
        if not agg.group_by:
            return 1.0

        groups = 1.0
        for key in agg.group_by:
            col_stats = None
            if isinstance(key, ColumnRef):
                col_stats = self._column_statistics(key, agg.input)
            if col_stats is None or col_stats.num_distinct == 0:
                return min(input_card, input_card * self.config.default_group_ratio)
            groups *= col_stats.num_distinct

        return min(input_card, groups)

    def _estimate_sort_cardinality(self, sort: Sort, input_card: float) -> float:
        """Estimate cardinality of a sort, honouring LIMIT/OFFSET."""
        if sort.limit is None:
            return max(0.0, input_card - sort.offset)
        return min(float(sort.limit), max(0.0, input_card - sort.offset))

    def _estimate_set_op_cardinality(self, set_op: SetOp, child_rows: List[float]) -> float:
        """Estimate cardinality of a set operation."""
        if set_op.set_kind == SetOpKind.UNION:
            return sum(child_rows)
        if set_op.set_kind == SetOpKind.INTERSECT:
            return min(child_rows)
        return child_rows[0]

    def estimate_selectivity(
        self,
        predicate: Expression,
        scope: Optional[LogicalPlanNode] = None
    ) -> float:
        """Estimate selectivity of a predicate.

        Args:
            predicate: Filter or join predicate expression
            scope: Plan whose scans provide column statistics

        Returns:
            Estimated selectivity (0.0 to 1.0)
        """
        if isinstance(predicate, BinaryOp):
            return self._estimate_binary_op_selectivity(predicate, scope)
        if isinstance(predicate, UnaryOp):
            return self._estimate_unary_op_selectivity(predicate, scope)
        if isinstance(predicate, InList):
            return self._estimate_in_list_selectivity(predicate, scope)
        if isinstance(predicate, BetweenExpression):
            return self.config.range_selectivity * self.config.range_selectivity

        return self.config.default_selectivity

    def _estimate_binary_op_selectivity(
        self,
        binop: BinaryOp,
        scope: Optional[LogicalPlanNode]
    ) -> float:
        """Estimate selectivity for binary operations."""
        if binop.op == BinaryOpType.AND:
            left_sel = self.estimate_selectivity(binop.left, scope)
            right_sel = self.estimate_selectivity(binop.right, scope)
            return left_sel * right_sel
        if binop.op == BinaryOpType.OR:
            left_sel = self.estimate_selectivity(binop.left, scope)
            right_sel = self.estimate_selectivity(binop.right, scope)
            return 1.0 - ((1.0 - left_sel) * (1.0 - right_sel))
        if binop.op == BinaryOpType.EQ:
            return self._estimate_equality_selectivity(binop, scope)
        if binop.op in (BinaryOpType.LT, BinaryOpType.LTE, BinaryOpType.GT, BinaryOpType.GTE):
            return self.config.range_selectivity
        if binop.op == BinaryOpType.NEQ:
            eq_sel = self._estimate_equality_selectivity(binop, scope)
            return 1.0 - eq_sel

        return self.config.default_selectivity

    def _estimate_equality_selectivity(
        self,
        binop: BinaryOp,
        scope: Optional[LogicalPlanNode]
    ) -> float:
        """Estimate selectivity for equality: 1 / max(distinct values)."""
        distinct_counts = []
        for side in (binop.left, binop.right):
            if not isinstance(side, ColumnRef):
                continue
            col_stats = self._column_statistics(side, scope)
            if col_stats is not None and col_stats.num_distinct > 0:
                distinct_counts.append(col_stats.num_distinct)

        if not distinct_counts:
            return self.config.default_selectivity

        return min(1.0, 1.0 / max(distinct_counts))

    def _estimate_in_list_selectivity(
        self,
        in_list: InList,
        scope: Optional[LogicalPlanNode]
    ) -> float:
        """Estimate selectivity for IN lists as a sum of equalities."""
        if isinstance(in_list.value, ColumnRef):
            col_stats = self._column_statistics(in_list.value, scope)
            if col_stats is not None and col_stats.num_distinct > 0:
                return min(1.0, len(in_list.options) / col_stats.num_distinct)
        return min(1.0, len(in_list.options) * self.config.default_selectivity)

    def _estimate_unary_op_selectivity(
        self,
        unop: UnaryOp,
        scope: Optional[LogicalPlanNode]
    ) -> float:
        """Estimate selectivity for unary operations."""
        if unop.op == UnaryOpType.NOT:
            inner_sel = self.estimate_selectivity(unop.operand, scope)
            return 1.0 - inner_sel
        if unop.op == UnaryOpType.IS_NULL:
            return self._estimate_is_null_selectivity(unop, scope)
        if unop.op == UnaryOpType.IS_NOT_NULL:
            null_sel = self._estimate_is_null_selectivity(unop, scope)
            return 1.0 - null_sel

        return self.config.default_selectivity

    def _estimate_is_null_selectivity(
        self,
        unop: UnaryOp,
        scope: Optional[LogicalPlanNode]
    ) -> float:
        """Estimate selectivity for IS NULL."""
        if not isinstance(unop.operand, ColumnRef):
            return 0.05

        col_stats = self._column_statistics(unop.operand, scope)
        if col_stats is None:
            return 0.05

        return col_stats.null_fraction

    def _table_statistics(self, table_name: str) -> Optional[TableStatistics]:
        if self.stats_collector is None:
            return None
        return self.stats_collector.get_table_statistics(table_name)

    def _column_statistics(
        self,
        col_ref: ColumnRef,
        scope: Optional[LogicalPlanNode]
    ) -> Optional[ColumnStatistics]:
        """Find statistics for a column among the scans under scope."""
        if scope is None:
            return None

        for table_name in self._candidate_tables(col_ref, scope):
            stats = self._table_statistics(table_name)
            if stats is None:
                continue
            col_stats = stats.get_column(col_ref.column)
            if col_stats is not None:
                return col_stats

        return None

    def _candidate_tables(self, col_ref: ColumnRef, scope: LogicalPlanNode) -> List[str]:
        aliases = self._scan_aliases(scope)
        if col_ref.table:
            table_name = aliases.get(col_ref.table.lower())
            return [table_name] if table_name else []
        return list(aliases.values())

    def _scan_aliases(self, plan: LogicalPlanNode) -> Dict[str, str]:
        """Map scan reference names to base tables, skipping temporary tables."""
        if isinstance(plan, Scan):
            if plan.is_materialized:
                return {}
            return {plan.reference_name.lower(): plan.table_name}
        # Aggregates and projections hide the columns of their inputs.
        if isinstance(plan, (Aggregate, Project, SetOp)):
            return {}
        aliases: Dict[str, str] = {}
        for child in plan.children():
            aliases.update(self._scan_aliases(child))
        return aliases

    def __repr__(self) -> str:
        return "CostModel()"
