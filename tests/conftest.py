"""Shared fixtures: deterministic estimator/renderer fakes and sample documents."""

import logging

import pytest

from query_splitter.errors import EstimationError
from query_splitter.plan.logical import Filter, Join, Scan, SetOp


TABLE_ROWS = {
    "orders": 1000,
    "customers": 100,
    "products": 50,
}


class FakeEstimator:
    """Row counts from a fixed table; filters halve, joins keep the larger side."""

    def __init__(self, table_rows, fail_on=None, invalid=None):
        self.table_rows = table_rows
        self.fail_on = fail_on
        self.invalid = invalid
        self.cost_calls = 0
        self.row_calls = 0

    def estimate_row_count(self, plan):
        self.row_calls += 1
        return self._rows(plan)

    def cumulative_cost(self, plan):
        self.cost_calls += 1
        if self.invalid is not None:
            return self.invalid
        return self._cost(plan)

    def _rows(self, plan):
        if isinstance(plan, Scan):
            if plan.table_name == self.fail_on:
                raise EstimationError(f"No statistics for table {plan.table_name}")
            if plan.estimated_rows is not None:
                return plan.estimated_rows
            return float(self.table_rows[plan.table_name])
        child_rows = [self._rows(child) for child in plan.children()]
        if isinstance(plan, Filter):
            return child_rows[0] / 2
        if isinstance(plan, Join):
            return max(child_rows)
        if isinstance(plan, SetOp):
            return sum(child_rows)
        return child_rows[0]

    def _cost(self, plan):
        return self._rows(plan) + sum(self._cost(child) for child in plan.children())


def describe_plan(plan):
    if isinstance(plan, Scan):
        return f"Scan({plan.table_name})"
    inner = ", ".join(describe_plan(child) for child in plan.children())
    return f"{plan.kind.value}({inner})"


class FakeRenderer:
    """Renders a structural description and records every subtree it sees."""

    def __init__(self, fail=False, empty=False):
        self.fail = fail
        self.empty = empty
        self.calls = []

    def render(self, plan):
        self.calls.append(plan)
        if self.fail:
            raise ValueError("renderer exploded")
        if self.empty:
            return ""
        return describe_plan(plan)


@pytest.fixture
def estimator():
    """Estimator over the sample table sizes."""
    return FakeEstimator(TABLE_ROWS)


@pytest.fixture
def make_estimator():
    """Factory for estimators with custom behaviour."""

    def factory(table_rows=None, **kwargs):
        return FakeEstimator(table_rows or TABLE_ROWS, **kwargs)

    return factory


@pytest.fixture
def renderer():
    """Renderer producing structural descriptions."""
    return FakeRenderer()


@pytest.fixture
def make_renderer():
    """Factory for renderers that fail or return nothing."""
    return FakeRenderer


@pytest.fixture
def metadata():
    """Metadata document for the sample tables."""
    return {
        "orders": [
            {"name": "id", "type": "integer"},
            {"name": "customer_id", "type": "integer"},
            {"name": "amount", "type": "double"},
        ],
        "customers": [
            {"name": "id", "type": "integer"},
            {"name": "name", "type": "varchar"},
            {"name": "region", "type": "varchar"},
        ],
    }


@pytest.fixture
def statistics():
    """Statistics document for the sample tables."""
    return {
        "orders": {
            "rowCount": 10000,
            "columnStats": [
                {"name": "id", "distinctValues": 10000, "nullCount": 0},
                {"name": "customer_id", "distinctValues": 500, "nullCount": 0},
                {"name": "amount", "distinctValues": 2000, "nullCount": 100},
            ],
        },
        "customers": {
            "rowCount": 500,
            "columnStats": [
                {"name": "id", "distinctValues": 500, "nullCount": 0},
                {"name": "region", "distinctValues": 5, "nullCount": 0},
            ],
        },
    }


@pytest.fixture
def restore_root_logger():
    """Undo setup_logging so later tests keep pytest's handlers."""
    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    yield
    for handler in root.handlers:
        if handler not in handlers:
            handler.close()
    root.handlers = handlers
    root.setLevel(level)
