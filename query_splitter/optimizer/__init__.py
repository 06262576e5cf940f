"""Cost estimation and plan partitioning."""

from .statistics import (
    ColumnStatistics,
    TableStatistics,
    StatisticsCollector,
    StatisticsLoader,
)
from .cost import CostModel
from .interfaces import CostEstimator, PlanRenderer
from .partitioner import PlanPartitioner
from .aggregation import total_cost
from .report import OptimizationReportBuilder

__all__ = [
    "ColumnStatistics",
    "TableStatistics",
    "StatisticsCollector",
    "StatisticsLoader",
    "CostModel",
    "CostEstimator",
    "PlanRenderer",
    "PlanPartitioner",
    "total_cost",
    "OptimizationReportBuilder",
]
