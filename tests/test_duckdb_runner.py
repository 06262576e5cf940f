"""Tests for running partitioned queries on DuckDB."""

import duckdb
import pytest

from query_splitter import OptimizationRequest, QueryOptimizer
from query_splitter.executor import DuckDBPlanRunner
from query_splitter.plan.subquery import OptimizationResult


JOIN_QUERY = (
    "SELECT o.id, c.name FROM orders o JOIN customers c ON o.customer_id = c.id "
    "WHERE o.amount > 100"
)

REGION_QUERY = (
    "SELECT c.region, SUM(o.amount) AS total FROM orders o "
    "JOIN customers c ON o.customer_id = c.id "
    "GROUP BY c.region HAVING SUM(o.amount) > 150"
)


@pytest.fixture
def connection():
    """In-memory DuckDB with sample orders and customers."""
    conn = duckdb.connect(":memory:")
    conn.execute("CREATE TABLE orders (id INTEGER, customer_id INTEGER, amount DOUBLE)")
    conn.execute(
        "CREATE TABLE customers (id INTEGER, name VARCHAR, region VARCHAR)"
    )
    conn.execute(
        """
        INSERT INTO orders VALUES
        (1, 1, 50), (2, 1, 150), (3, 2, 200), (4, 3, 120),
        (5, 3, 80), (6, 4, 300), (7, 2, 90), (8, 5, 101)
        """
    )
    conn.execute(
        """
        INSERT INTO customers VALUES
        (1, 'alice', 'EU'), (2, 'bob', 'US'), (3, 'carol', 'EU'),
        (4, 'dave', 'APAC'), (5, 'erin', 'US'), (6, 'frank', NULL)
        """
    )
    yield conn
    conn.close()


def rows_of(table):
    return sorted(tuple(row.values()) for row in table.to_pylist())


def optimize(sql, metadata, threshold, statistics=None):
    request = OptimizationRequest(sql, metadata, statistics, cost_threshold=threshold)
    result = QueryOptimizer().optimize(request)
    assert result.success, result.error_message
    return result


@pytest.mark.parametrize("sql", [JOIN_QUERY, REGION_QUERY])
def test_split_matches_unsplit(connection, metadata, statistics, sql):
    """Executing the chained subqueries gives the original query's rows."""
    split = optimize(sql, metadata, 0.0, statistics)
    whole = optimize(sql, metadata, 1e9, statistics)
    assert len(split.sub_queries) == 3
    assert len(whole.sub_queries) == 1

    expected = rows_of(connection.execute(sql).fetch_arrow_table())
    with DuckDBPlanRunner(connection=connection) as runner:
        split_rows = rows_of(runner.run(split))
        whole_rows = rows_of(runner.run(whole))

    assert split_rows == expected
    assert whole_rows == expected
    assert expected


@pytest.mark.parametrize(
    "sql",
    [
        "SELECT id FROM customers WHERE region IS NOT NULL",
        "SELECT id FROM customers WHERE name NOT LIKE 'a%'",
        "SELECT o.id, c.name FROM orders o JOIN customers c ON o.customer_id = c.id "
        "WHERE c.region IS NOT NULL AND c.name NOT LIKE 'b%' AND o.id NOT IN (2, 3)",
        "SELECT id, ROUND(amount * 0.37, 1) AS share FROM orders WHERE amount NOT BETWEEN 90 AND 150",
    ],
)
def test_negations_and_functions_match_direct(connection, metadata, sql):
    """Negated predicates and multi-argument functions return the query's own rows."""
    expected = rows_of(connection.execute(sql).fetch_arrow_table())

    for threshold in (0.0, 1e9):
        result = optimize(sql, metadata, threshold)
        assert rows_of(DuckDBPlanRunner(connection=connection).run(result)) == expected
    assert expected


def test_is_not_null_keeps_non_null_rows(connection, metadata):
    """Only the customer without a region is dropped."""
    result = optimize("SELECT id FROM customers WHERE region IS NOT NULL", metadata, 1000.0)

    table = DuckDBPlanRunner(connection=connection).run(result)

    assert sorted(table.column(0).to_pylist()) == [1, 2, 3, 4, 5]


DERIVED_QUERY = (
    "SELECT x.region, x.total FROM (SELECT c.region, SUM(o.amount) AS total "
    "FROM orders o JOIN customers c ON o.customer_id = c.id GROUP BY c.region) x "
    "WHERE x.total > 350"
)

CTE_QUERY = (
    "WITH big AS (SELECT id, customer_id, amount FROM orders WHERE amount > 100), "
    "spenders AS (SELECT customer_id, COUNT(*) AS n FROM big GROUP BY customer_id) "
    "SELECT c.name, s.n, b.amount FROM spenders s "
    "JOIN customers c ON c.id = s.customer_id "
    "JOIN big b ON b.customer_id = s.customer_id"
)

JOINED_DERIVED_QUERY = (
    "SELECT c.name, t.n FROM customers c "
    "LEFT JOIN (SELECT customer_id, COUNT(*) AS n FROM orders GROUP BY customer_id) t "
    "ON t.customer_id = c.id"
)


@pytest.mark.parametrize("sql", [DERIVED_QUERY, CTE_QUERY, JOINED_DERIVED_QUERY])
def test_derived_tables_split_matches_direct(connection, metadata, statistics, sql):
    """Subqueries in FROM and WITH queries survive being cut into temp tables."""
    split = optimize(sql, metadata, 0.0, statistics)
    whole = optimize(sql, metadata, 1e9, statistics)
    assert len(split.sub_queries) > 1
    assert len(whole.sub_queries) == 1

    expected = rows_of(connection.execute(sql).fetch_arrow_table())
    with DuckDBPlanRunner(connection=connection) as runner:
        assert rows_of(runner.run(split)) == expected
        assert rows_of(runner.run(whole)) == expected
    assert expected


def test_result_columns_keep_names(connection, metadata):
    """The final unit exposes the original select-list names."""
    result = optimize(JOIN_QUERY, metadata, 0.0)

    table = DuckDBPlanRunner(connection=connection).run(result)

    assert table.schema.names == ["id", "name"]


def test_temporary_tables_dropped(connection, metadata):
    """Temp tables only live for the duration of a run."""
    result = optimize(JOIN_QUERY, metadata, 0.0)

    DuckDBPlanRunner(connection=connection).run(result)

    remaining = connection.execute(
        "SELECT count(*) FROM duckdb_tables() WHERE temporary"
    ).fetchone()[0]
    assert remaining == 0


def test_shared_connection_stays_open(connection, metadata):
    """A runner does not close a connection it was given."""
    result = optimize("SELECT * FROM orders", metadata, 1000.0)

    with DuckDBPlanRunner(connection=connection) as runner:
        assert runner.run(result).num_rows == 8

    assert connection.execute("SELECT 1").fetchone()[0] == 1


def test_run_sql(connection):
    """Single statements are transpiled and executed."""
    runner = DuckDBPlanRunner(connection=connection)

    table = runner.run_sql("SELECT name FROM customers WHERE region = 'US' ORDER BY name")

    assert table.column(0).to_pylist() == ["bob", "erin"]


def test_failed_result_is_rejected(connection):
    """Failed optimizations cannot be run."""
    runner = DuckDBPlanRunner(connection=connection)

    with pytest.raises(ValueError):
        runner.run(OptimizationResult.failed("SELECT", "Table not found"))


def test_file_database(tmp_path, metadata):
    """The runner opens and closes its own connection for a database file."""
    path = str(tmp_path / "sample.duckdb")
    setup = duckdb.connect(path)
    setup.execute("CREATE TABLE orders (id INTEGER, customer_id INTEGER, amount DOUBLE)")
    setup.execute("INSERT INTO orders VALUES (1, 1, 10), (2, 1, 20)")
    setup.close()

    runner = DuckDBPlanRunner(path)
    with runner:
        table = runner.run(optimize("SELECT * FROM orders", metadata, 1000.0))

    assert table.num_rows == 2
    assert runner.connection is None
