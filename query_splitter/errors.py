"""Error types raised while splitting a query into subqueries."""

from typing import Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from .plan.logical import LogicalPlanNode


class QuerySplitterError(Exception):
    """Base class for all query splitter errors."""

    pass


class SchemaResolutionError(QuerySplitterError):
    """A referenced table or column is absent from the metadata."""

    pass


class MetadataError(SchemaResolutionError):
    """The metadata document itself is malformed."""

    pass


class EstimationError(QuerySplitterError):
    """Statistics are malformed or missing for a required table."""

    pass


class RenderError(QuerySplitterError):
    """A plan subtree cannot be rendered back to SQL."""

    pass


class PartitionError(QuerySplitterError):
    """Failure while partitioning, tagged with the failing subtree position."""

    def __init__(
        self,
        message: str,
        position: str,
        node: Optional["LogicalPlanNode"] = None,
    ):
        """Initialize partition error.

        Args:
            message: Description of the underlying failure
            position: Path of the failing subtree, e.g. "root/0/1"
            node: The failing subtree, when known
        """
        super().__init__(f"{message} (at {position})")
        self.message = message
        self.position = position
        self.node = node
