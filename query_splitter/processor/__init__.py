"""The optimize operation: from request to result."""

from .query_optimizer import OptimizationRequest, QueryOptimizer

__all__ = ["OptimizationRequest", "QueryOptimizer"]
