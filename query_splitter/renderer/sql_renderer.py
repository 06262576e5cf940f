"""Render logical plan subtrees back to SQL with sqlglot.

A subtree is folded bottom-up into one SELECT. Scans, joins and filters
merge into the same block; once a block is projected, aggregated, ordered
or is a set operation, anything placed on top of it wraps it as a derived
table. Column references are resolved through the columns each block
exposes, which is how references into a materialized child end up pointing
at its temporary table.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from sqlglot import exp
from sqlglot import errors as sqlglot_errors

from ..config.config import RendererConfig
from ..errors import RenderError
from ..plan.logical import (
    LogicalPlanNode,
    OutputColumn,
    Scan,
    Project,
    Filter,
    Join,
    Aggregate,
    Sort,
    SetOp,
    JoinType,
    SetOpKind,
    exposed_column_names,
)
from ..plan.expressions import (
    Expression,
    ColumnRef,
    Literal,
    BinaryOp,
    BinaryOpType,
    UnaryOp,
    UnaryOpType,
    FunctionCall,
    InList,
    BetweenExpression,
    CaseExpr,
    DataType,
)

logger = logging.getLogger(__name__)


_BINARY_OPS = {
    BinaryOpType.ADD: exp.Add,
    BinaryOpType.SUBTRACT: exp.Sub,
    BinaryOpType.MULTIPLY: exp.Mul,
    BinaryOpType.DIVIDE: exp.Div,
    BinaryOpType.MODULO: exp.Mod,
    BinaryOpType.EQ: exp.EQ,
    BinaryOpType.NEQ: exp.NEQ,
    BinaryOpType.LT: exp.LT,
    BinaryOpType.LTE: exp.LTE,
    BinaryOpType.GT: exp.GT,
    BinaryOpType.GTE: exp.GTE,
    BinaryOpType.AND: exp.And,
    BinaryOpType.OR: exp.Or,
    BinaryOpType.CONCAT: exp.DPipe,
    BinaryOpType.LIKE: exp.Like,
}

_AGGREGATES = {
    "COUNT": exp.Count,
    "SUM": exp.Sum,
    "AVG": exp.Avg,
    "MIN": exp.Min,
    "MAX": exp.Max,
}

_SET_OPS = {
    SetOpKind.UNION: exp.Union,
    SetOpKind.INTERSECT: exp.Intersect,
    SetOpKind.EXCEPT: exp.Except,
}

_NUMERIC_TYPES = (DataType.INTEGER, DataType.BIGINT, DataType.DOUBLE, DataType.DECIMAL)

# Translation modes for column references
_PLAIN = "plain"
_HAVING = "having"
_ORDER = "order"

ColumnKey = Tuple[Optional[str], str]


def _column_key(qualifier: Optional[str], name: str) -> ColumnKey:
    return (qualifier.lower() if qualifier else None, name.lower())


@dataclass
class _Block:
    """One SELECT under construction.

    ``refs`` holds, parallel to ``outputs``, the expression each output
    column is read with while the block has no SELECT list of its own. A
    sealed block is a finished query renamed as a derived table; anything
    placed on top of it wraps it.
    """

    source: exp.Expression
    columns: Dict[ColumnKey, exp.Expression]
    outputs: List[OutputColumn]
    refs: List[exp.Expression]
    joins: List[exp.Join] = field(default_factory=list)
    where: Optional[exp.Expression] = None
    projections: Optional[List[exp.Expression]] = None
    output_exprs: Dict[str, exp.Expression] = field(default_factory=dict)
    group: Optional[List[exp.Expression]] = None
    having: Optional[exp.Expression] = None
    distinct: bool = False
    order: Optional[List[exp.Expression]] = None
    limit: Optional[int] = None
    offset: int = 0
    set_query: Optional[exp.Expression] = None
    sealed: bool = False

    @property
    def is_aggregate(self) -> bool:
        return self.group is not None

    @property
    def is_ordered(self) -> bool:
        return self.order is not None or self.limit is not None or self.offset > 0

    def is_closed(self) -> bool:
        """True once the block has a SELECT list, is a set operation or is sealed."""
        return (
            self.projections is not None
            or self.set_query is not None
            or self.is_ordered
            or self.sealed
        )


class _RenderContext:
    """Per-render state: derived table naming."""

    def __init__(self):
        self.derived_count = 0

    def next_alias(self) -> str:
        self.derived_count += 1
        return f"_d{self.derived_count}"


class SqlRenderer:
    """Renders plan subtrees to SQL text."""

    def __init__(self, config: Optional[RendererConfig] = None):
        """Initialize renderer.

        Args:
            config: Renderer configuration (dialect, pretty printing)
        """
        self.config = config or RendererConfig()
        self.dialect = self.config.dialect

    def render(self, plan: LogicalPlanNode) -> str:
        """Render a plan subtree as one SQL statement.

        Args:
            plan: Logical plan subtree

        Returns:
            SQL text

        Raises:
            RenderError: If the subtree cannot be expressed as SQL
        """
        try:
            query = self.to_expression(plan)
            return query.sql(dialect=self.dialect, pretty=self.config.pretty)
        except sqlglot_errors.SqlglotError as exc:
            raise RenderError(f"Cannot render {plan!r}: {exc}") from exc

    def to_expression(self, plan: LogicalPlanNode) -> exp.Expression:
        """Build the sqlglot query for a plan subtree."""
        context = _RenderContext()
        block = self._build(plan, context)
        return self._to_query(block)

    def _build(self, plan: LogicalPlanNode, context: _RenderContext) -> _Block:
        if isinstance(plan, Scan):
            return self._build_scan(plan)
        if isinstance(plan, Filter):
            return self._build_filter(plan, context)
        if isinstance(plan, Project):
            return self._build_project(plan, context)
        if isinstance(plan, Join):
            return self._build_join(plan, context)
        if isinstance(plan, Aggregate):
            return self._build_aggregate(plan, context)
        if isinstance(plan, Sort):
            return self._build_sort(plan, context)
        if isinstance(plan, SetOp):
            return self._build_set_op(plan, context)
        raise RenderError(f"Unsupported plan node: {plan!r}")

    def _build_scan(self, scan: Scan) -> _Block:
        """Start a block reading one table."""
        table = exp.to_table(scan.table_name)
        reference = scan.reference_name
        if scan.alias and scan.alias != scan.table_name:
            table = exp.alias_(table, scan.alias, table=True)

        columns: Dict[ColumnKey, exp.Expression] = {}
        refs: List[exp.Expression] = []
        outputs = scan.output_columns()
        for name, original in zip(scan.columns, outputs):
            reference_expr = self._column_expr(name, reference)
            refs.append(reference_expr)
            columns.setdefault(_column_key(original.qualifier, original.name), reference_expr)
            columns.setdefault(_column_key(reference, name), reference_expr)
        return _Block(source=table, columns=columns, outputs=outputs, refs=refs)

    def _build_filter(self, filter_node: Filter, context: _RenderContext) -> _Block:
        """Attach a predicate as WHERE, or as HAVING over an aggregate."""
        block = self._build(filter_node.input, context)
        if (
            block.is_aggregate
            and not block.is_ordered
            and not block.distinct
            and not block.sealed
        ):
            predicate = self._translate(filter_node.predicate, block, _HAVING)
            block.having = self._conjoin(block.having, predicate)
            return block

        if block.is_closed():
            block = self._wrap(block, context)
        predicate = self._translate(filter_node.predicate, block)
        block.where = self._conjoin(block.where, predicate)
        return block

    def _build_project(self, project: Project, context: _RenderContext) -> _Block:
        """Set the SELECT list; stars are expanded to explicit columns."""
        block = self._build(project.input, context)
        if self._is_rename(project, block):
            block.outputs = project.output_columns()
            block.sealed = True
            return block
        if block.is_closed():
            block = self._wrap(block, context)

        outputs = project.output_columns()
        names = exposed_column_names(outputs)
        projections: List[exp.Expression] = []
        output_exprs: Dict[str, exp.Expression] = {}
        position = 0
        for expr, alias in zip(project.expressions, project.aliases):
            if isinstance(expr, ColumnRef) and expr.column == "*":
                translated = self._expand_star(expr, block)
            else:
                translated = [self._translate(expr, block)]
            for item in translated:
                name = names[position] if position < len(names) else alias
                projections.append(self._aliased(item, name))
                output_exprs[name.lower()] = item
                position += 1

        block.projections = projections
        block.output_exprs = output_exprs
        block.distinct = project.distinct
        block.outputs = outputs
        return block

    def _is_rename(self, project: Project, block: _Block) -> bool:
        """True when a derived table only renames a finished query's columns.

        The query then keeps its own SELECT list, which is only possible
        while its output names stay unique under the new alias.
        """
        if not project.is_derived_table or not block.is_closed():
            return False
        if project.aliases != ["*"] or project.distinct:
            return False
        names = [column.name for column in block.outputs]
        return len(set(names)) == len(names)

    def _expand_star(self, ref: ColumnRef, block: _Block) -> List[exp.Expression]:
        qualifier = ref.table.lower() if ref.table else None
        expanded = []
        for output, reference in zip(block.outputs, block.refs):
            output_qualifier = output.qualifier.lower() if output.qualifier else None
            if qualifier is None or output_qualifier == qualifier:
                expanded.append(reference.copy())
        if not expanded:
            raise RenderError(f"No columns match {ref.to_sql()}")
        return expanded

    def _build_aggregate(self, aggregate: Aggregate, context: _RenderContext) -> _Block:
        """Set GROUP BY and the aggregated SELECT list."""
        block = self._build(aggregate.input, context)
        if block.is_closed():
            block = self._wrap(block, context)

        group = [self._translate(key, block) for key in aggregate.group_by]
        outputs = aggregate.output_columns()
        names = exposed_column_names(outputs)
        projections: List[exp.Expression] = []
        output_exprs: Dict[str, exp.Expression] = {}
        for expr, name in zip(aggregate.aggregates, names):
            translated = self._translate(expr, block)
            projections.append(self._aliased(translated, name))
            output_exprs[name.lower()] = translated

        block.group = group
        block.projections = projections
        block.output_exprs = output_exprs
        block.outputs = outputs
        return block

    def _build_join(self, join: Join, context: _RenderContext) -> _Block:
        """Merge two blocks into one FROM ... JOIN ... clause."""
        left = self._build(join.left, context)
        if not self._can_join_left(left, join.join_type):
            left = self._wrap(left, context)
        right = self._build(join.right, context)
        if not self._can_join_right(right, join.join_type):
            right = self._wrap(right, context)

        for key, value in right.columns.items():
            left.columns.setdefault(key, value)
        left.outputs = left.outputs + right.outputs
        left.refs = left.refs + right.refs

        join_expr = exp.Join(this=right.source)
        if join.join_type == JoinType.CROSS:
            join_expr.set("kind", "CROSS")
        elif join.join_type in (JoinType.LEFT, JoinType.RIGHT, JoinType.FULL):
            join_expr.set("side", join.join_type.value)
        if join.condition is not None:
            join_expr.set("on", self._translate(join.condition, left))
        elif join.join_type != JoinType.CROSS:
            join_expr.set("on", exp.true())

        left.joins.append(join_expr)
        if right.where is not None:
            left.where = self._conjoin(left.where, right.where)
        return left

    def _can_join_left(self, block: _Block, join_type: JoinType) -> bool:
        if block.is_closed():
            return False
        if block.where is None:
            return True
        return join_type in (JoinType.INNER, JoinType.LEFT, JoinType.CROSS)

    def _can_join_right(self, block: _Block, join_type: JoinType) -> bool:
        if block.is_closed() or block.joins:
            return False
        if block.where is None:
            return True
        return join_type in (JoinType.INNER, JoinType.RIGHT, JoinType.CROSS)

    def _build_sort(self, sort: Sort, context: _RenderContext) -> _Block:
        """Attach ORDER BY / LIMIT / OFFSET."""
        block = self._build(sort.input, context)
        if block.is_ordered or block.set_query is not None or block.sealed:
            block = self._wrap(block, context)

        ordered = []
        for index, key in enumerate(sort.sort_keys):
            ascending = sort.ascending[index] if index < len(sort.ascending) else True
            ordered.append(
                exp.Ordered(
                    this=self._translate(key, block, _ORDER),
                    desc=True if not ascending else None,
                    nulls_first=self._nulls_first(sort, index, ascending),
                )
            )

        block.order = ordered if ordered else None
        block.limit = sort.limit
        block.offset = sort.offset
        return block

    def _nulls_first(self, sort: Sort, index: int, ascending: bool) -> bool:
        # Unspecified means the Postgres default: NULLs sort as the largest value.
        if sort.nulls_order and index < len(sort.nulls_order):
            nulls = sort.nulls_order[index]
            if nulls is not None:
                return nulls.upper() == "FIRST"
        return not ascending

    def _build_set_op(self, set_op: SetOp, context: _RenderContext) -> _Block:
        """Combine input queries with UNION / INTERSECT / EXCEPT."""
        queries = []
        for child in set_op.inputs:
            query = self._to_query(self._build(child, context))
            if self._needs_parentheses(query):
                query = exp.Subquery(this=query)
            queries.append(query)

        combined = queries[0]
        set_class = _SET_OPS[set_op.set_kind]
        for query in queries[1:]:
            combined = set_class(this=combined, expression=query, distinct=set_op.distinct)

        outputs = set_op.output_columns()
        return _Block(source=combined, columns={}, outputs=outputs, refs=[], set_query=combined)

    def _needs_parentheses(self, query: exp.Expression) -> bool:
        if isinstance(query, tuple(_SET_OPS.values())):
            return True
        args = query.args
        return bool(args.get("order") or args.get("limit") or args.get("offset"))

    def _wrap(self, block: _Block, context: _RenderContext) -> _Block:
        """Turn a finished block into a derived table of a new block."""
        alias = context.next_alias()
        query = self._to_query(block)
        subquery = exp.Subquery(
            this=query, alias=exp.TableAlias(this=exp.to_identifier(alias))
        )
        columns: Dict[ColumnKey, exp.Expression] = {}
        refs: List[exp.Expression] = []
        names = exposed_column_names(block.outputs)
        for output, name in zip(block.outputs, names):
            reference = self._column_expr(name, alias)
            refs.append(reference)
            columns.setdefault(_column_key(output.qualifier, output.name), reference)
            columns.setdefault(_column_key(alias, name), reference)
            columns.setdefault(_column_key(None, name), reference)
        return _Block(source=subquery, columns=columns, outputs=list(block.outputs), refs=refs)

    def _to_query(self, block: _Block) -> exp.Expression:
        """Assemble the sqlglot query for a block."""
        if block.set_query is not None:
            return block.set_query

        projections = block.projections
        if projections is None:
            projections = self._plain_select_list(block)

        select = exp.Select().select(*projections, copy=False)
        select = select.from_(block.source, copy=False)
        for join_expr in block.joins:
            select = select.join(join_expr, copy=False)
        if block.where is not None:
            select = select.where(block.where, copy=False)
        if block.group:
            select = select.group_by(*block.group, copy=False)
        if block.having is not None:
            select = select.having(block.having, copy=False)
        if block.distinct:
            select = select.distinct(copy=False)
        if block.order:
            select = select.order_by(*block.order, copy=False)
        if block.limit is not None:
            select = select.limit(block.limit, copy=False)
        if block.offset:
            select = select.offset(block.offset, copy=False)
        return select

    def _plain_select_list(self, block: _Block) -> List[exp.Expression]:
        """SELECT list exposing every output column under a unique name."""
        if not block.outputs:
            return [exp.Star()]
        names = exposed_column_names(block.outputs)
        projections: List[exp.Expression] = []
        for reference, name in zip(block.refs, names):
            projections.append(self._aliased(reference.copy(), name))
        return projections

    def _translate(
        self, expr: Expression, block: _Block, mode: str = _PLAIN
    ) -> exp.Expression:
        """Convert a plan expression into a sqlglot expression within a block."""
        if isinstance(expr, ColumnRef):
            return self._translate_column(expr, block, mode)
        if isinstance(expr, Literal):
            return self._translate_literal(expr)
        if isinstance(expr, BinaryOp):
            left = self._parenthesize(self._translate(expr.left, block, mode))
            right = self._parenthesize(self._translate(expr.right, block, mode))
            return _BINARY_OPS[expr.op](this=left, expression=right)
        if isinstance(expr, UnaryOp):
            return self._translate_unary(expr, block, mode)
        if isinstance(expr, FunctionCall):
            return self._translate_function(expr, block, mode)
        if isinstance(expr, InList):
            options = [self._translate(option, block, mode) for option in expr.options]
            return exp.In(
                this=self._parenthesize(self._translate(expr.value, block, mode)),
                expressions=options,
            )
        if isinstance(expr, BetweenExpression):
            return exp.Between(
                this=self._parenthesize(self._translate(expr.value, block, mode)),
                low=self._translate(expr.lower, block, mode),
                high=self._translate(expr.upper, block, mode),
            )
        if isinstance(expr, CaseExpr):
            ifs = []
            for condition, result in expr.when_clauses:
                ifs.append(
                    exp.If(
                        this=self._translate(condition, block, mode),
                        true=self._translate(result, block, mode),
                    )
                )
            default = None
            if expr.else_result is not None:
                default = self._translate(expr.else_result, block, mode)
            return exp.Case(ifs=ifs, default=default)
        raise RenderError(f"Unsupported expression: {expr!r}")

    def _translate_column(
        self, ref: ColumnRef, block: _Block, mode: str
    ) -> exp.Expression:
        if ref.column == "*":
            return self._translate_star(ref, block)
        if ref.table is None and mode != _PLAIN:
            output_expr = block.output_exprs.get(ref.column.lower())
            if output_expr is not None:
                if mode == _HAVING:
                    return output_expr.copy()
                return exp.column(ref.column)
        reference = self._lookup(block, ref.table, ref.column)
        if reference is not None:
            return reference.copy()
        if ref.table:
            raise RenderError(f"Cannot resolve column reference {ref.to_sql()}")
        return exp.column(ref.column)

    def _translate_star(self, ref: ColumnRef, block: _Block) -> exp.Expression:
        if ref.table is None:
            return exp.Star()
        for (qualifier, _), reference in block.columns.items():
            if qualifier == ref.table.lower() and isinstance(reference, exp.Column):
                return exp.Column(this=exp.Star(), table=reference.args.get("table").copy())
        return exp.Column(this=exp.Star(), table=exp.to_identifier(ref.table))

    def _translate_literal(self, literal: Literal) -> exp.Expression:
        if literal.value is None:
            return exp.Null()
        if literal.data_type == DataType.BOOLEAN:
            return exp.Boolean(this=bool(literal.value))
        if literal.data_type in _NUMERIC_TYPES:
            return exp.Literal.number(literal.value)
        return exp.Literal.string(str(literal.value))

    def _translate_unary(
        self, unop: UnaryOp, block: _Block, mode: str
    ) -> exp.Expression:
        operand = self._parenthesize(self._translate(unop.operand, block, mode))
        if unop.op == UnaryOpType.NOT:
            return exp.Not(this=operand)
        if unop.op == UnaryOpType.NEGATE:
            return exp.Neg(this=operand)
        is_null = exp.Is(this=operand, expression=exp.Null())
        if unop.op == UnaryOpType.IS_NULL:
            return is_null
        return exp.Not(this=is_null)

    def _translate_function(
        self, func: FunctionCall, block: _Block, mode: str
    ) -> exp.Expression:
        args = [self._translate(arg, block, mode) for arg in func.args]
        name = func.function_name.upper()
        if name == "EXTRACT" and len(args) == 2 and isinstance(func.args[0], Literal):
            field_name = exp.var(str(func.args[0].value))
            return exp.Extract(this=field_name, expression=args[1])
        if func.is_aggregate and name in _AGGREGATES:
            if func.distinct:
                value = exp.Distinct(expressions=args)
            elif args:
                value = args[0]
            else:
                value = exp.Star()
            return _AGGREGATES[name](this=value)
        if func.distinct:
            args = [exp.Distinct(expressions=args)]
        return exp.Anonymous(this=func.function_name, expressions=args)

    def _lookup(
        self, block: _Block, qualifier: Optional[str], name: str
    ) -> Optional[exp.Expression]:
        """Find how a column is referenced inside a block."""
        if qualifier:
            return block.columns.get(_column_key(qualifier, name))
        exact = block.columns.get(_column_key(None, name))
        if exact is not None:
            return exact
        wanted = name.lower()
        for (_, column_name), reference in block.columns.items():
            if column_name == wanted:
                return reference
        return None

    def _column_expr(self, name: str, table: str) -> exp.Expression:
        if name == "*":
            return exp.Column(this=exp.Star(), table=exp.to_identifier(table))
        return exp.column(name, table=table)

    def _aliased(self, expr: exp.Expression, name: str) -> exp.Expression:
        if isinstance(expr, exp.Column) and (expr.name == name or name == "*"):
            return expr
        return exp.alias_(expr, name)

    def _parenthesize(self, expr: exp.Expression) -> exp.Expression:
        if isinstance(expr, (exp.Binary, exp.Not, exp.Between, exp.In)):
            return exp.Paren(this=expr)
        return expr

    def _conjoin(
        self, existing: Optional[exp.Expression], predicate: exp.Expression
    ) -> exp.Expression:
        if existing is None:
            return predicate
        return exp.And(
            this=self._parenthesize(existing), expression=self._parenthesize(predicate)
        )

    def __repr__(self) -> str:
        return f"SqlRenderer(dialect={self.dialect})"
