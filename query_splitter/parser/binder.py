"""Binder resolves references against the catalog."""

from dataclasses import replace
from typing import Dict, Optional, Set

from ..catalog.catalog import Catalog
from ..catalog.schema import Table
from ..errors import SchemaResolutionError
from ..plan.logical import (
    LogicalPlanNode,
    Scan,
    Project,
    Filter,
    Sort,
    Join,
    Aggregate,
    SetOp,
)
from ..plan.expressions import (
    Expression,
    ColumnRef,
    BinaryOp,
    UnaryOp,
    FunctionCall,
    InList,
    BetweenExpression,
    CaseExpr,
)


class Binder:
    """Binder resolves table and column references."""

    def __init__(self, catalog: Catalog):
        """Initialize binder.

        Args:
            catalog: Catalog with metadata
        """
        self.catalog = catalog

    def bind(self, plan: LogicalPlanNode) -> LogicalPlanNode:
        """Bind a logical plan.

        Scans get their full column lists, and column references get the
        data type of the column they resolve to.

        Args:
            plan: Unbound logical plan

        Returns:
            Bound logical plan

        Raises:
            SchemaResolutionError: If a table or column is not in the catalog
        """
        children = [self.bind(child) for child in plan.children()]
        if children:
            plan = plan.with_children(children)

        if isinstance(plan, Scan):
            return self._bind_scan(plan)
        if isinstance(plan, SetOp):
            return self._bind_set_op(plan)

        scope = self._scope(plan)
        names = self._known_names(plan)
        if isinstance(plan, Filter):
            return replace(plan, predicate=self._bind_expression(plan.predicate, scope, names))
        if isinstance(plan, Project):
            expressions = [self._bind_expression(e, scope, names) for e in plan.expressions]
            return replace(plan, expressions=expressions)
        if isinstance(plan, Join):
            if plan.condition is None:
                return plan
            return replace(plan, condition=self._bind_expression(plan.condition, scope, names))
        if isinstance(plan, Aggregate):
            group_by = [self._bind_expression(e, scope, names) for e in plan.group_by]
            aggregates = [self._bind_expression(e, scope, names) for e in plan.aggregates]
            return replace(plan, group_by=group_by, aggregates=aggregates)
        if isinstance(plan, Sort):
            sort_keys = [self._bind_expression(e, scope, names) for e in plan.sort_keys]
            return replace(plan, sort_keys=sort_keys)

        raise SchemaResolutionError(f"Unsupported plan node type: {type(plan).__name__}")

    def _bind_scan(self, scan: Scan) -> Scan:
        if scan.is_materialized:
            return scan
        table = self.catalog.require_table(scan.table_name)
        if "*" in scan.columns:
            return replace(scan, columns=table.column_names())

        for column_name in scan.columns:
            if table.get_column(column_name) is None:
                raise SchemaResolutionError(
                    f"Column '{column_name}' not found in table '{scan.table_name}'"
                )
        return scan

    def _bind_set_op(self, set_op: SetOp) -> SetOp:
        widths = {len(child.output_columns()) for child in set_op.inputs}
        if len(widths) > 1:
            raise SchemaResolutionError(
                f"{set_op.set_kind.value} inputs have different column counts"
            )
        return set_op

    def _scope(self, plan: LogicalPlanNode) -> Dict[str, Optional[Table]]:
        """Map each scan reference name under plan to its catalog table."""
        scope: Dict[str, Optional[Table]] = {}
        for child in plan.children():
            if isinstance(child, Scan):
                if child.is_materialized:
                    # Temp tables answer to the qualifiers of the subtree they replace.
                    for column in child.materialized_from:
                        if column.qualifier:
                            scope.setdefault(column.qualifier.lower(), None)
                    scope[child.reference_name.lower()] = None
                else:
                    scope[child.reference_name.lower()] = self.catalog.get_table(
                        child.table_name
                    )
            elif isinstance(child, Project) and child.is_derived_table:
                scope[child.relation_alias.lower()] = None
            elif not isinstance(child, SetOp):
                scope.update(self._scope(child))
        return scope

    def _known_names(self, plan: LogicalPlanNode) -> Set[str]:
        """Names of every column visible under plan."""
        names: Set[str] = set()
        for child in plan.children():
            for column in child.output_columns():
                names.add(column.name.lower())
            if isinstance(child, SetOp):
                continue
            if isinstance(child, Project) and child.is_derived_table:
                continue
            names.update(self._known_names(child))
        return names

    def _bind_expression(
        self,
        expr: Expression,
        scope: Dict[str, Optional[Table]],
        names: Set[str],
    ) -> Expression:
        if isinstance(expr, ColumnRef):
            return self._bind_column_ref(expr, scope, names)
        if isinstance(expr, BinaryOp):
            return replace(
                expr,
                left=self._bind_expression(expr.left, scope, names),
                right=self._bind_expression(expr.right, scope, names),
            )
        if isinstance(expr, UnaryOp):
            return replace(expr, operand=self._bind_expression(expr.operand, scope, names))
        if isinstance(expr, FunctionCall):
            args = [self._bind_expression(arg, scope, names) for arg in expr.args]
            return replace(expr, args=args)
        if isinstance(expr, InList):
            options = [self._bind_expression(o, scope, names) for o in expr.options]
            return replace(
                expr, value=self._bind_expression(expr.value, scope, names), options=options
            )
        if isinstance(expr, BetweenExpression):
            return replace(
                expr,
                value=self._bind_expression(expr.value, scope, names),
                lower=self._bind_expression(expr.lower, scope, names),
                upper=self._bind_expression(expr.upper, scope, names),
            )
        if isinstance(expr, CaseExpr):
            when_clauses = [
                (
                    self._bind_expression(condition, scope, names),
                    self._bind_expression(result, scope, names),
                )
                for condition, result in expr.when_clauses
            ]
            else_result = None
            if expr.else_result is not None:
                else_result = self._bind_expression(expr.else_result, scope, names)
            return replace(expr, when_clauses=when_clauses, else_result=else_result)
        return expr

    def _bind_column_ref(
        self,
        col_ref: ColumnRef,
        scope: Dict[str, Optional[Table]],
        names: Set[str],
    ) -> ColumnRef:
        if col_ref.table:
            key = col_ref.table.lower()
            if key not in scope:
                raise SchemaResolutionError(
                    f"Unknown table or alias '{col_ref.table}' in {col_ref.to_sql()}"
                )
            table = scope[key]
            if col_ref.column == "*" or table is None:
                return col_ref
            column = table.get_column(col_ref.column)
            if column is None:
                raise SchemaResolutionError(
                    f"Column '{col_ref.column}' not found in table '{table.name}'"
                )
            return replace(col_ref, data_type=column.data_type)

        if col_ref.column == "*":
            return col_ref
        for table in scope.values():
            if table is None:
                continue
            column = table.get_column(col_ref.column)
            if column is not None:
                return replace(col_ref, data_type=column.data_type)
        if col_ref.column.lower() in names:
            return col_ref
        raise SchemaResolutionError(f"Column '{col_ref.column}' not found in any table")

    def __repr__(self) -> str:
        return f"Binder(catalog={self.catalog!r})"
