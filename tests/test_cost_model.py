"""Tests for cost model and cardinality estimation."""

import pytest

from query_splitter.config.config import CostConfig
from query_splitter.errors import EstimationError
from query_splitter.optimizer.cost import CostModel
from query_splitter.optimizer.statistics import (
    ColumnStatistics,
    StatisticsCollector,
    TableStatistics,
)
from query_splitter.plan.expressions import (
    BetweenExpression,
    BinaryOp,
    BinaryOpType,
    ColumnRef,
    DataType,
    InList,
    Literal,
    UnaryOp,
    UnaryOpType,
)
from query_splitter.plan.logical import (
    Aggregate,
    Filter,
    Join,
    JoinType,
    OutputColumn,
    Project,
    Scan,
    SetOp,
    SetOpKind,
    Sort,
)


@pytest.fixture
def stats_collector():
    """Statistics for orders and customers."""
    return StatisticsCollector(
        {
            "orders": TableStatistics(
                row_count=1000,
                column_stats={
                    "id": ColumnStatistics(num_distinct=1000),
                    "customer_id": ColumnStatistics(num_distinct=100),
                    "amount": ColumnStatistics(
                        num_distinct=300, null_count=200, null_fraction=0.2
                    ),
                },
            ),
            "customers": TableStatistics(
                row_count=200,
                column_stats={"id": ColumnStatistics(num_distinct=200)},
            ),
        }
    )


@pytest.fixture
def cost_model(stats_collector):
    """Cost model over the sample statistics."""
    return CostModel(CostConfig(), stats_collector)


def orders():
    return Scan("orders", ["id", "customer_id", "amount"], alias="o")


def customers():
    return Scan("customers", ["id", "name"], alias="c")


def compare(op, column, value):
    return BinaryOp(op, ColumnRef(None, column), Literal(value, DataType.INTEGER))


def test_scan_uses_row_count(cost_model):
    """Test scan cardinality from table statistics."""
    assert cost_model.estimate_row_count(orders()) == 1000.0
    assert cost_model.cumulative_cost(orders()) == 1000.0


def test_scan_without_statistics_uses_default():
    """Test scan falls back to the configured default when no stats were supplied."""
    model = CostModel(CostConfig(default_row_count=100.0), StatisticsCollector())

    assert model.estimate_row_count(orders()) == 100.0


def test_scan_missing_from_supplied_statistics(cost_model):
    """Test a table absent from supplied statistics is an estimation error."""
    with pytest.raises(EstimationError, match="products"):
        cost_model.estimate_row_count(Scan("products", ["id"]))


def test_temporary_scan_uses_stored_estimate(cost_model):
    """Test a materialized scan costs its stored row estimate."""
    temp = Scan(
        "temp_1",
        ["id"],
        alias="temp_1",
        estimated_rows=42.0,
        materialized_from=(OutputColumn("o", "id"),),
    )

    assert cost_model.estimate_row_count(temp) == 42.0
    assert cost_model.cumulative_cost(temp) == 42.0


def test_equality_filter_uses_distinct_values(cost_model):
    """Test equality selectivity is 1 / distinct values."""
    plan = Filter(orders(), compare(BinaryOpType.EQ, "customer_id", 7))

    assert cost_model.estimate_row_count(plan) == pytest.approx(10.0)
    assert cost_model.cumulative_cost(plan) == pytest.approx(1010.0)


def test_range_filter_selectivity(cost_model):
    """Test range predicates use the configured range selectivity."""
    plan = Filter(orders(), compare(BinaryOpType.GT, "amount", 100))

    assert cost_model.estimate_row_count(plan) == pytest.approx(330.0)


def test_conjunction_and_disjunction(cost_model):
    """Test AND multiplies and OR combines selectivities."""
    eq = compare(BinaryOpType.EQ, "customer_id", 7)
    rng = compare(BinaryOpType.LT, "amount", 50)

    both = cost_model.estimate_selectivity(BinaryOp(BinaryOpType.AND, eq, rng), orders())
    either = cost_model.estimate_selectivity(BinaryOp(BinaryOpType.OR, eq, rng), orders())

    assert both == pytest.approx(0.01 * 0.33)
    assert either == pytest.approx(1 - (0.99 * 0.67))


def test_null_checks_use_null_fraction(cost_model):
    """Test IS NULL uses the column null fraction."""
    is_null = UnaryOp(UnaryOpType.IS_NULL, ColumnRef("o", "amount"))
    is_not_null = UnaryOp(UnaryOpType.IS_NOT_NULL, ColumnRef("o", "amount"))

    assert cost_model.estimate_selectivity(is_null, orders()) == pytest.approx(0.2)
    assert cost_model.estimate_selectivity(is_not_null, orders()) == pytest.approx(0.8)


def test_in_list_and_between(cost_model):
    """Test IN lists and BETWEEN."""
    in_list = InList(
        ColumnRef(None, "customer_id"),
        [Literal(1, DataType.INTEGER), Literal(2, DataType.INTEGER)],
    )
    between = BetweenExpression(
        ColumnRef(None, "amount"),
        Literal(1, DataType.INTEGER),
        Literal(10, DataType.INTEGER),
    )

    assert cost_model.estimate_selectivity(in_list, orders()) == pytest.approx(0.02)
    assert cost_model.estimate_selectivity(between, orders()) == pytest.approx(0.33 * 0.33)


def test_unknown_column_uses_default_selectivity(cost_model):
    """Test columns without statistics fall back to the default."""
    predicate = BinaryOp(
        BinaryOpType.EQ, ColumnRef("c", "name"), Literal("x", DataType.VARCHAR)
    )

    assert cost_model.estimate_selectivity(predicate, customers()) == pytest.approx(0.1)


def test_equi_join_cardinality(cost_model):
    """Test join cardinality divides by the larger distinct count."""
    condition = BinaryOp(
        BinaryOpType.EQ, ColumnRef("o", "customer_id"), ColumnRef("c", "id")
    )
    plan = Join(orders(), customers(), JoinType.INNER, condition)

    assert cost_model.estimate_row_count(plan) == pytest.approx(1000.0)
    assert cost_model.cumulative_cost(plan) == pytest.approx(2200.0)


def test_cross_join_cardinality(cost_model):
    """Test cross join is the product of its inputs."""
    plan = Join(orders(), customers(), JoinType.CROSS, None)

    assert cost_model.estimate_row_count(plan) == 200000.0


def test_left_join_keeps_left_rows(cost_model):
    """Test outer joins never estimate fewer rows than the preserved side."""
    condition = compare(BinaryOpType.GT, "amount", 1)
    plan = Join(orders(), customers(), JoinType.LEFT, condition)

    assert cost_model.estimate_row_count(plan) >= 1000.0


def test_aggregate_cardinality(cost_model):
    """Test aggregate cardinality from group key statistics."""
    grouped = Aggregate(
        orders(),
        [ColumnRef("o", "customer_id")],
        [ColumnRef("o", "customer_id")],
        ["customer_id"],
    )
    scalar = Aggregate(
        orders(),
        [],
        [ColumnRef(None, "*")],
        ["count"],
    )

    assert cost_model.estimate_row_count(grouped) == 100.0
    assert cost_model.estimate_row_count(scalar) == 1.0


def test_aggregate_without_key_statistics(cost_model):
    """Test unknown group keys use the default group ratio."""
    plan = Aggregate(
        customers(), [ColumnRef("c", "name")], [ColumnRef("c", "name")], ["name"]
    )

    assert cost_model.estimate_row_count(plan) == pytest.approx(20.0)


def test_sort_with_limit_and_offset(cost_model):
    """Test LIMIT and OFFSET bound sort cardinality."""
    limited = Sort(orders(), [], [], limit=10)
    offset = Sort(orders(), [ColumnRef("o", "id")], [True], offset=995)

    assert cost_model.estimate_row_count(limited) == 10.0
    assert cost_model.estimate_row_count(offset) == 5.0


def test_set_operation_cardinality(cost_model):
    """Test UNION adds, INTERSECT takes the minimum, EXCEPT keeps the first input."""
    inputs = [orders(), customers()]

    union = SetOp(SetOpKind.UNION, inputs, distinct=False)
    intersect = SetOp(SetOpKind.INTERSECT, inputs, distinct=True)
    except_ = SetOp(SetOpKind.EXCEPT, inputs, distinct=True)

    assert cost_model.estimate_row_count(union) == 1200.0
    assert cost_model.estimate_row_count(intersect) == 200.0
    assert cost_model.estimate_row_count(except_) == 1000.0


def test_row_count_is_at_least_one(cost_model):
    """Test very selective predicates still estimate one row."""
    plan = Filter(customers(), BinaryOp(
        BinaryOpType.AND,
        compare(BinaryOpType.EQ, "id", 1),
        compare(BinaryOpType.EQ, "id", 2),
    ))

    assert cost_model.estimate_row_count(plan) == 1.0


def test_cumulative_cost_adds_children(cost_model):
    """Test cumulative cost is own rows plus every input's cumulative cost."""
    plan = Project(
        Filter(orders(), compare(BinaryOpType.EQ, "customer_id", 7)),
        [ColumnRef("o", "id")],
        ["id"],
    )

    # project 10 + filter 10 + scan 1000
    assert cost_model.cumulative_cost(plan) == pytest.approx(1020.0)


def test_materialized_subtree_not_counted_twice(cost_model):
    """Test replacing a subtree with its temp scan drops the subtree's cost."""
    condition = BinaryOp(
        BinaryOpType.EQ, ColumnRef("o", "customer_id"), ColumnRef("c", "id")
    )
    original = Join(
        Filter(orders(), compare(BinaryOpType.GT, "amount", 1)),
        customers(),
        JoinType.INNER,
        condition,
    )
    filter_rows = cost_model.estimate_row_count(original.left)
    temp = Scan(
        "temp_1",
        ["id", "customer_id", "amount"],
        alias="temp_1",
        estimated_rows=filter_rows,
        materialized_from=tuple(original.left.output_columns()),
    )
    rewritten = original.with_children([temp, original.right])

    saved = cost_model.cumulative_cost(original) - cost_model.cumulative_cost(rewritten)
    assert saved == pytest.approx(1000.0)
