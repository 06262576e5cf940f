"""QueryOptimizer runs the whole pipeline for one request."""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Union

from sqlglot.errors import ParseError

from ..catalog import Catalog, MetadataLoader
from ..config import Config, DEFAULT_COST_THRESHOLD
from ..errors import QuerySplitterError
from ..optimizer import (
    CostModel,
    OptimizationReportBuilder,
    PlanPartitioner,
    StatisticsCollector,
    StatisticsLoader,
    total_cost,
)
from ..parser import Binder, Parser
from ..plan.logical import LogicalPlanNode
from ..plan.subquery import OptimizationResult, SubqueryPlan
from ..renderer import SqlRenderer
from ..utils.logging import get_contextual_logger

logger = logging.getLogger(__name__)

Document = Union[str, Dict[str, Any]]


@dataclass(frozen=True)
class OptimizationRequest:
    """Input of the optimize operation.

    ``metadata`` and ``statistics`` are JSON text or already-decoded
    documents.
    """

    sql_query: str
    metadata: Document
    statistics: Optional[Document] = None
    cost_threshold: float = DEFAULT_COST_THRESHOLD


class QueryOptimizer:
    """Coordinates loading, parsing, binding, partitioning and reporting.

    Every call builds its own catalog, statistics, cost model, renderer and
    partitioner, so one instance can serve concurrent callers.
    """

    def __init__(self, config: Optional[Config] = None):
        """Initialize optimizer.

        Args:
            config: Configuration for the cost model and renderer
        """
        self.config = config or Config()
        self.report_builder = OptimizationReportBuilder()

    def optimize(self, request: OptimizationRequest) -> OptimizationResult:
        """Split a query into cost-bounded subqueries.

        Never raises: every failure becomes a result with success=False.
        """
        log = get_contextual_logger(__name__, {"cost_threshold": request.cost_threshold})
        try:
            log.info(f"Optimizing query with threshold {request.cost_threshold}")
            return self._run(request, log)
        except (QuerySplitterError, ValueError, ParseError) as exc:
            message = self._error_message(exc)
            log.error(f"Optimization failed: {message}")
            return self.report_builder.build_error(request.sql_query, message)
        except Exception as exc:
            log.exception("Unexpected optimization failure")
            return self.report_builder.build_error(
                request.sql_query, f"Internal error: {self._error_message(exc)}"
            )

    def _run(self, request: OptimizationRequest, log) -> OptimizationResult:
        catalog = self._load_catalog(request.metadata)
        statistics = self._load_statistics(request.statistics)
        plan = self._bind_plan(self._parse_query(request.sql_query), catalog)

        units = self._partition(plan, statistics, request.cost_threshold)
        cost = total_cost(units)
        log.info(f"Produced {len(units)} subqueries, total cost {cost:.2f}")
        return self.report_builder.build(request.sql_query, units, cost, plan)

    def _load_catalog(self, metadata: Document) -> Catalog:
        catalog = MetadataLoader().load(metadata)
        logger.debug(f"Loaded metadata for {len(catalog.table_names())} tables")
        return catalog

    def _load_statistics(self, statistics: Optional[Document]) -> StatisticsCollector:
        return StatisticsLoader().load(statistics)

    def _parse_query(self, sql: str) -> LogicalPlanNode:
        return Parser(dialect=self.config.renderer.dialect).parse_to_logical_plan(sql)

    def _bind_plan(self, plan: LogicalPlanNode, catalog: Catalog) -> LogicalPlanNode:
        return Binder(catalog).bind(plan)

    def _partition(
        self,
        plan: LogicalPlanNode,
        statistics: StatisticsCollector,
        threshold: float,
    ) -> List[SubqueryPlan]:
        cost_model = CostModel(self.config.cost, statistics)
        renderer = SqlRenderer(self.config.renderer)
        return PlanPartitioner(cost_model, renderer).partition(plan, threshold)

    def _error_message(self, exc: Exception) -> str:
        message = str(exc).strip()
        if not message:
            return type(exc).__name__
        return message

    def __repr__(self) -> str:
        return f"QueryOptimizer(dialect={self.config.renderer.dialect})"
