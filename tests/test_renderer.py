"""Tests for rendering plan subtrees to SQL."""

import pytest
import sqlglot

from query_splitter.catalog import MetadataLoader
from query_splitter.config import RendererConfig
from query_splitter.errors import RenderError
from query_splitter.parser import Binder, Parser
from query_splitter.plan.expressions import (
    BinaryOp,
    BinaryOpType,
    ColumnRef,
    DataType,
    Literal,
)
from query_splitter.plan.logical import (
    Filter,
    Join,
    JoinType,
    OutputColumn,
    Project,
    Scan,
    Sort,
)
from query_splitter.renderer import SqlRenderer


@pytest.fixture
def plan_for(metadata):
    parser = Parser()
    binder = Binder(MetadataLoader().load(metadata))

    def build(sql):
        return binder.bind(parser.parse_to_logical_plan(sql))

    return build


@pytest.fixture
def render(plan_for):
    renderer = SqlRenderer()

    def run(sql):
        return renderer.render(plan_for(sql))

    return run


def orders_scan():
    return Scan("orders", ["id", "customer_id", "amount"], alias="orders")


def temp_join_scan():
    """Temp table holding orders o JOIN customers c."""
    return Scan(
        "temp_1",
        ["o_id", "customer_id", "amount", "c_id", "name"],
        alias="temp_1",
        estimated_rows=10.0,
        materialized_from=(
            OutputColumn("o", "id"),
            OutputColumn("o", "customer_id"),
            OutputColumn("o", "amount"),
            OutputColumn("c", "id"),
            OutputColumn("c", "name"),
        ),
    )


def test_render_star_expands_columns(render):
    """SELECT * lists the scanned columns explicitly."""
    sql = render("SELECT * FROM orders")

    assert sql == "SELECT orders.id, orders.customer_id, orders.amount FROM orders"


def test_render_filter_with_alias(render):
    """Aliased tables keep their alias in FROM and in references."""
    sql = render("SELECT o.id, o.amount FROM orders o WHERE o.amount > 100")

    assert sql.startswith("SELECT o.id, o.amount ")
    assert "FROM orders AS o" in sql
    assert "WHERE o.amount > 100" in sql


def test_render_joins(render):
    """Inner, left and cross joins."""
    inner = render(
        "SELECT o.id, c.name FROM orders o JOIN customers c ON o.customer_id = c.id"
    )
    left = render(
        "SELECT o.id, c.name FROM orders o LEFT JOIN customers c ON o.customer_id = c.id"
    )
    cross = render("SELECT orders.id FROM orders, customers")

    assert "FROM orders AS o JOIN customers AS c ON o.customer_id = c.id" in inner
    assert "LEFT JOIN customers AS c ON o.customer_id = c.id" in left
    assert "CROSS JOIN customers" in cross


def test_render_join_disambiguates_duplicate_names(plan_for):
    """A join rendered on its own exposes clashing names with their qualifier."""
    project = plan_for(
        "SELECT o.id FROM orders o JOIN customers c ON o.customer_id = c.id"
    )

    sql = SqlRenderer().render(project.input)

    assert "o.id AS o_id" in sql
    assert "c.id AS c_id" in sql
    assert "c.name" in sql


def test_render_aggregate_with_having(render):
    """HAVING references are expanded back to the aggregate expression."""
    sql = render(
        "SELECT customer_id, SUM(amount) AS total FROM orders "
        "GROUP BY customer_id HAVING SUM(amount) > 100"
    )

    assert "SUM(orders.amount) AS total" in sql
    assert "GROUP BY orders.customer_id" in sql
    assert "HAVING SUM(orders.amount) > 100" in sql


def test_render_count_star(render):
    """COUNT(*) stays COUNT(*)."""
    sql = render("SELECT COUNT(*) AS n FROM orders")

    assert sql == "SELECT COUNT(*) AS n FROM orders"


def test_render_order_by_limit(render):
    """Sort keys use output names; default null ordering is left implicit."""
    sql = render("SELECT id FROM orders ORDER BY id DESC LIMIT 5")

    assert "ORDER BY id DESC LIMIT 5" in sql
    assert "NULLS" not in sql


def test_render_explicit_nulls_first(render):
    """Non-default null ordering is kept."""
    sql = render("SELECT id, amount FROM orders ORDER BY amount NULLS FIRST")

    assert "ORDER BY amount NULLS FIRST" in sql


def test_render_union_all(render):
    """Set operations keep ALL."""
    sql = render("SELECT id FROM orders UNION ALL SELECT id FROM customers")

    assert sql == "SELECT orders.id FROM orders UNION ALL SELECT customers.id FROM customers"


def test_render_sorted_union_wraps(render):
    """Ordering a set operation wraps it as a derived table."""
    sql = render("SELECT id FROM orders UNION SELECT id FROM customers ORDER BY id")

    assert ") AS _d1" in sql
    assert sql.endswith("ORDER BY _d1.id")


def test_render_expressions(render):
    """CASE, IN and IS NOT NULL render within the select."""
    sql = render(
        "SELECT CASE WHEN amount > 10 THEN 'big' ELSE 'small' END AS size FROM orders "
        "WHERE customer_id IN (1, 2) AND id IS NOT NULL"
    )

    assert "CASE WHEN orders.amount > 10 THEN 'big' ELSE 'small' END AS size" in sql
    assert "orders.customer_id IN (1, 2)" in sql
    assert "NULL" in sql


def test_render_negated_predicates(render):
    """IS NOT NULL and NOT LIKE keep their negation."""
    sql = render(
        "SELECT id FROM customers WHERE region IS NOT NULL AND name NOT LIKE 'a%'"
    )

    where = sql.split(" WHERE ")[1]
    assert where.count("NOT") == 2
    assert "customers.region IS" in where
    assert "LIKE 'a%'" in where


def test_render_function_arguments(render):
    """EXTRACT keeps its field and other functions keep every argument."""
    sql = render("SELECT EXTRACT(YEAR FROM amount) AS y, ROUND(amount, 1) AS r FROM orders")

    assert "EXTRACT(YEAR FROM orders.amount) AS y" in sql
    assert "ROUND(orders.amount, 1) AS r" in sql


def test_render_derived_table(render):
    """A subquery in FROM keeps its SELECT list and is read through the wrapper alias."""
    sql = render(
        "SELECT x.region, x.total FROM (SELECT c.region, SUM(o.amount) AS total "
        "FROM orders o JOIN customers c ON o.customer_id = c.id GROUP BY c.region) x "
        "WHERE x.total > 100"
    )

    assert sql == (
        "SELECT _d1.region, _d1.total FROM (SELECT c.region, SUM(o.amount) AS total "
        "FROM orders AS o JOIN customers AS c ON o.customer_id = c.id "
        "GROUP BY c.region) AS _d1 WHERE _d1.total > 100"
    )


def test_render_cte_joined_with_itself(render):
    """Each reference to a WITH query becomes its own derived table."""
    sql = render(
        "WITH big AS (SELECT id, amount FROM orders WHERE amount > 100) "
        "SELECT b.id, c.amount FROM big b JOIN big c ON b.id = c.id"
    )

    inner = "SELECT orders.id, orders.amount FROM orders WHERE orders.amount > 100"
    assert sql == (
        f"SELECT _d1.id, _d2.amount FROM ({inner}) AS _d1 "
        f"JOIN ({inner}) AS _d2 ON _d1.id = _d2.id"
    )


def test_render_temp_table_scan():
    """References into a materialized subtree resolve to the temp table's columns."""
    predicate = BinaryOp(
        BinaryOpType.EQ, ColumnRef("c", "id"), Literal(5, DataType.INTEGER)
    )
    plan = Project(
        Filter(temp_join_scan(), predicate),
        [ColumnRef("o", "id"), ColumnRef("c", "name")],
        ["id", "name"],
    )

    sql = SqlRenderer().render(plan)

    assert sql == "SELECT temp_1.o_id AS id, temp_1.name FROM temp_1 WHERE temp_1.c_id = 5"


def test_render_wraps_limited_input():
    """Filtering a limited input needs a derived table."""
    sort = Sort(orders_scan(), [], [], limit=10)
    predicate = BinaryOp(
        BinaryOpType.GT, ColumnRef("orders", "amount"), Literal(5, DataType.INTEGER)
    )

    sql = SqlRenderer().render(Filter(sort, predicate))

    assert "FROM orders LIMIT 10) AS _d1" in sql
    assert sql.endswith("WHERE _d1.amount > 5")


def test_render_unknown_qualifier_fails():
    """References to an unknown table cannot be rendered."""
    predicate = BinaryOp(
        BinaryOpType.EQ, ColumnRef("x", "id"), Literal(1, DataType.INTEGER)
    )

    with pytest.raises(RenderError, match="x.id"):
        SqlRenderer().render(Filter(orders_scan(), predicate))


def test_render_pretty():
    """Pretty printing spreads the statement over lines."""
    renderer = SqlRenderer(RendererConfig(pretty=True))

    sql = renderer.render(Project(orders_scan(), [ColumnRef(None, "id")], ["id"]))

    assert "\n" in sql


@pytest.mark.parametrize(
    "query",
    [
        "SELECT * FROM orders",
        "SELECT o.id, c.name FROM orders o JOIN customers c ON o.customer_id = c.id "
        "WHERE c.region = 'EU' AND o.amount > 10",
        "SELECT DISTINCT customer_id, COUNT(*) AS n FROM orders GROUP BY customer_id",
        "SELECT region, COUNT(*) FROM customers GROUP BY region HAVING COUNT(*) > 1 "
        "ORDER BY region LIMIT 3",
        "SELECT id FROM orders INTERSECT SELECT id FROM customers",
        "SELECT -amount AS neg, amount * 2 + 1 AS calc FROM orders "
        "WHERE amount BETWEEN 1 AND 10 OR NOT (id = 3)",
    ],
)
def test_rendered_sql_parses(render, query):
    """Rendered SQL is valid for the target dialect."""
    sql = render(query)

    assert sqlglot.parse_one(sql, read="postgres") is not None
