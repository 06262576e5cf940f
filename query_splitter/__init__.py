"""Split SQL queries into cost-bounded, materializable subqueries."""

from .errors import (
    QuerySplitterError,
    SchemaResolutionError,
    MetadataError,
    EstimationError,
    RenderError,
    PartitionError,
)
from .plan.subquery import SubqueryPlan, OptimizationResult
from .processor import OptimizationRequest, QueryOptimizer

__version__ = "0.1.0"

__all__ = [
    "QuerySplitterError",
    "SchemaResolutionError",
    "MetadataError",
    "EstimationError",
    "RenderError",
    "PartitionError",
    "SubqueryPlan",
    "OptimizationResult",
    "OptimizationRequest",
    "QueryOptimizer",
]
