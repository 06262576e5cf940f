"""SQL parser using sqlglot."""

from dataclasses import dataclass
from typing import Dict, List, Optional

import sqlglot
from sqlglot import exp

from ..plan.logical import (
    LogicalPlanNode,
    Scan,
    Project,
    Filter,
    Join,
    JoinType,
    Aggregate,
    Sort,
    SetOp,
    SetOpKind,
)
from ..plan.expressions import (
    Expression,
    ColumnRef,
    Literal,
    BinaryOp,
    BinaryOpType,
    UnaryOp,
    UnaryOpType,
    DataType,
    FunctionCall,
    InList,
    BetweenExpression,
    CaseExpr,
)


_BINARY_OPS = {
    exp.Add: BinaryOpType.ADD,
    exp.Sub: BinaryOpType.SUBTRACT,
    exp.Mul: BinaryOpType.MULTIPLY,
    exp.Div: BinaryOpType.DIVIDE,
    exp.Mod: BinaryOpType.MODULO,
    exp.EQ: BinaryOpType.EQ,
    exp.NEQ: BinaryOpType.NEQ,
    exp.LT: BinaryOpType.LT,
    exp.LTE: BinaryOpType.LTE,
    exp.GT: BinaryOpType.GT,
    exp.GTE: BinaryOpType.GTE,
    exp.And: BinaryOpType.AND,
    exp.Or: BinaryOpType.OR,
    exp.DPipe: BinaryOpType.CONCAT,
    exp.Like: BinaryOpType.LIKE,
}

_SET_OPS = {
    exp.Union: SetOpKind.UNION,
    exp.Intersect: SetOpKind.INTERSECT,
    exp.Except: SetOpKind.EXCEPT,
}


@dataclass
class _CommonTableExpression:
    """A WITH definition and the definitions its body can see."""

    query: exp.Expression
    visible: Dict[str, "_CommonTableExpression"]


class Parser:
    """SQL parser that converts SQL to logical plan."""

    def __init__(self, dialect: str = "postgres"):
        """Initialize parser.

        Args:
            dialect: sqlglot dialect used to read queries
        """
        self.dialect = dialect

    def parse(self, sql: str) -> exp.Expression:
        """Parse SQL string to sqlglot AST.

        Raises:
            ValueError: If the text is empty
            sqlglot.errors.ParseError: If the text is not valid SQL
        """
        if not sql or not sql.strip():
            raise ValueError("SQL query is empty")
        return sqlglot.parse_one(sql, dialect=self.dialect)

    def parse_to_logical_plan(self, sql: str) -> LogicalPlanNode:
        """Parse SQL directly to logical plan.

        Args:
            sql: SQL query string

        Returns:
            Logical plan root node
        """
        ast = self.parse(sql)
        return self.ast_to_logical_plan(ast)

    def ast_to_logical_plan(
        self,
        ast: exp.Expression,
        ctes: Optional[Dict[str, _CommonTableExpression]] = None,
    ) -> LogicalPlanNode:
        """Convert sqlglot AST to logical plan.

        Args:
            ast: sqlglot expression tree
            ctes: WITH definitions visible to this query, keyed by lowercase name

        Returns:
            Logical plan root node
        """
        ctes = self._register_ctes(ast, ctes or {})
        if isinstance(ast, exp.Select):
            return self._convert_select(ast, ctes)
        if isinstance(ast, tuple(_SET_OPS)):
            return self._convert_set_operation(ast, ctes)
        if isinstance(ast, exp.Subquery):
            return self.ast_to_logical_plan(ast.this, ctes)
        raise ValueError(f"Unsupported statement: {type(ast).__name__}")

    def _register_ctes(
        self, ast: exp.Expression, ctes: Dict[str, _CommonTableExpression]
    ) -> Dict[str, _CommonTableExpression]:
        """Add the query's WITH definitions to the visible ones.

        Each definition sees the ones declared before it; they are inlined
        wherever they are referenced.
        """
        with_clause = ast.args.get("with") or ast.args.get("with_")
        if not with_clause:
            return ctes
        if with_clause.args.get("recursive"):
            raise ValueError("WITH RECURSIVE is not supported")

        visible = dict(ctes)
        for cte in with_clause.expressions:
            self._reject_column_aliases(cte.args.get("alias"), cte.alias)
            visible[cte.alias.lower()] = _CommonTableExpression(cte.this, dict(visible))
        return visible

    def _convert_select(
        self, select: exp.Select, ctes: Dict[str, _CommonTableExpression]
    ) -> LogicalPlanNode:
        """Convert SELECT statement to logical plan."""
        plan = self._build_from_clause(select, ctes)
        plan = self._build_where_clause(select, plan)
        plan = self._build_group_by_clause(select, plan)
        plan = self._build_having_clause(select, plan)
        plan = self._build_select_clause(select, plan)
        plan = self._build_order_by_clause(select, plan)
        return plan

    def _convert_set_operation(
        self, set_expr: exp.Expression, ctes: Dict[str, _CommonTableExpression]
    ) -> LogicalPlanNode:
        """Convert UNION / INTERSECT / EXCEPT, flattening chains of the same kind."""
        kind = _SET_OPS[type(set_expr)]
        distinct = bool(set_expr.args.get("distinct", True))

        inputs: List[LogicalPlanNode] = []
        for side in (set_expr.this, set_expr.expression):
            if self._is_same_set_operation(side, type(set_expr), distinct):
                inputs.extend(self._convert_set_operation(side, ctes).inputs)
            else:
                inputs.append(self.ast_to_logical_plan(side, ctes))

        plan: LogicalPlanNode = SetOp(set_kind=kind, inputs=inputs, distinct=distinct)
        return self._build_order_by_clause(set_expr, plan)

    def _is_same_set_operation(
        self, node: exp.Expression, set_class: type, distinct: bool
    ) -> bool:
        if type(node) is not set_class:
            return False
        if node.args.get("order") or node.args.get("limit") or node.args.get("offset"):
            return False
        if node.args.get("with") or node.args.get("with_"):
            return False
        return bool(node.args.get("distinct", True)) == distinct

    def _build_from_clause(
        self, select: exp.Select, ctes: Dict[str, _CommonTableExpression]
    ) -> LogicalPlanNode:
        """Build scans and joins from FROM and JOIN clauses."""
        from_clause = select.args.get("from") or select.args.get("from_")
        if not from_clause:
            raise ValueError("SELECT must have FROM clause")

        current_plan = self._build_relation(from_clause.this, ctes)
        for join_clause in select.args.get("joins") or []:
            right_plan = self._build_relation(join_clause.this, ctes)
            join_type = self._extract_join_type(join_clause)
            join_condition = None
            if join_clause.args.get("on"):
                join_condition = self._convert_expression(join_clause.args["on"])
            elif join_clause.args.get("using"):
                raise ValueError("JOIN ... USING is not supported")
            elif join_type != JoinType.CROSS and join_clause.args.get("kind") is None:
                # FROM a, b
                join_type = JoinType.CROSS

            current_plan = Join(
                left=current_plan,
                right=right_plan,
                join_type=join_type,
                condition=join_condition,
            )

        return current_plan

    def _build_relation(
        self, table_expr: exp.Expression, ctes: Dict[str, _CommonTableExpression]
    ) -> LogicalPlanNode:
        """Build the plan for one FROM item: a table, a CTE or a derived table."""
        if isinstance(table_expr, exp.Subquery):
            alias = table_expr.alias or None
            self._reject_column_aliases(table_expr.args.get("alias"), alias)
            inner = self.ast_to_logical_plan(table_expr.this, ctes)
            return self._derived_table(inner, alias)
        if not isinstance(table_expr, exp.Table):
            raise ValueError(
                f"Only tables and subqueries are supported in FROM, got {type(table_expr).__name__}"
            )

        cte = None
        if not table_expr.db:
            cte = ctes.get(table_expr.name.lower())
        if cte is not None:
            self._reject_column_aliases(table_expr.args.get("alias"), table_expr.alias)
            inner = self.ast_to_logical_plan(cte.query, cte.visible)
            return self._derived_table(inner, table_expr.alias_or_name)
        return self._build_scan(table_expr)

    def _derived_table(
        self, inner: LogicalPlanNode, alias: Optional[str]
    ) -> LogicalPlanNode:
        """Wrap a subquery's plan so its columns answer to the alias."""
        if alias is None:
            return inner
        return Project(
            input=inner,
            expressions=[ColumnRef(table=None, column="*")],
            aliases=["*"],
            relation_alias=alias,
        )

    def _reject_column_aliases(
        self, table_alias: Optional[exp.Expression], name: Optional[str]
    ) -> None:
        if table_alias is not None and table_alias.args.get("columns"):
            raise ValueError(f"Column alias lists are not supported ({name})")

    def _build_scan(self, table_expr: exp.Table) -> Scan:
        """Build a scan over a base table.

        Scans read every column; the binder expands ``*`` from the catalog.
        """
        table_name = table_expr.name
        alias = table_expr.alias or table_name
        return Scan(table_name=table_name, columns=["*"], alias=alias)

    def _extract_join_type(self, join_clause: exp.Join) -> JoinType:
        """Extract join type from JOIN clause."""
        kind = join_clause.args.get("kind")
        side = join_clause.args.get("side")

        if side:
            side_upper = side.upper()
            if side_upper == "LEFT":
                return JoinType.LEFT
            if side_upper == "RIGHT":
                return JoinType.RIGHT
            if side_upper == "FULL":
                return JoinType.FULL

        if kind:
            kind_upper = kind.upper()
            if kind_upper == "CROSS":
                return JoinType.CROSS
            if kind_upper in ("SEMI", "ANTI"):
                raise ValueError(f"{kind_upper} joins are not supported")

        return JoinType.INNER

    def _build_where_clause(
        self, select: exp.Select, input_plan: LogicalPlanNode
    ) -> LogicalPlanNode:
        where = select.args.get("where")
        if not where:
            return input_plan

        predicate = self._convert_expression(where.this)
        return Filter(input=input_plan, predicate=predicate)

    def _build_group_by_clause(
        self, select: exp.Select, input_plan: LogicalPlanNode
    ) -> LogicalPlanNode:
        """Build aggregate node from GROUP BY or aggregate functions."""
        group = select.args.get("group")
        if not group and not self._has_aggregate_functions(select):
            return input_plan

        group_by_exprs: List[Expression] = []
        if group:
            for expr in group.expressions:
                group_by_exprs.append(self._convert_expression(expr))

        aggregates = []
        for expr in select.expressions:
            if isinstance(expr, exp.Star):
                raise ValueError("SELECT * cannot be combined with aggregation")
            aggregates.append(self._convert_expression(expr))

        return Aggregate(
            input=input_plan,
            group_by=group_by_exprs,
            aggregates=aggregates,
            output_names=self._extract_output_names(select),
        )

    def _has_aggregate_functions(self, select: exp.Select) -> bool:
        for expr in select.expressions:
            if self._contains_aggregate_function(expr):
                return True
        having = select.args.get("having")
        return bool(having) and self._contains_aggregate_function(having.this)

    def _contains_aggregate_function(self, expr: exp.Expression) -> bool:
        if self._is_aggregate_function(expr):
            return True
        for child in expr.iter_expressions():
            if self._contains_aggregate_function(child):
                return True
        return False

    def _is_aggregate_function(self, expr: exp.Expression) -> bool:
        return isinstance(expr, exp.AggFunc)

    def _extract_output_names(self, select: exp.Select) -> List[str]:
        names = []
        for index, expr in enumerate(select.expressions):
            names.append(self._get_alias(expr, index))
        return names

    def _get_alias(self, expr: exp.Expression, index: int) -> str:
        """Output column name of a select expression."""
        if isinstance(expr, exp.Alias):
            return expr.alias
        if isinstance(expr, exp.Column):
            return expr.name
        if isinstance(expr, exp.Star):
            return "*"
        if isinstance(expr, exp.AggFunc):
            return expr.key
        return f"_col{index}"

    def _build_having_clause(
        self, select: exp.Select, input_plan: LogicalPlanNode
    ) -> LogicalPlanNode:
        """Build filter node from HAVING clause.

        Aggregates that also appear in the select list are rewritten to
        reference the aggregate's output column.
        """
        having = select.args.get("having")
        if not having:
            return input_plan
        if not isinstance(input_plan, Aggregate):
            raise ValueError("HAVING requires GROUP BY or aggregate functions")

        predicate = self._convert_expression(having.this)
        predicate = self._rewrite_having_predicate(predicate, input_plan)
        return Filter(input=input_plan, predicate=predicate)

    def _build_select_clause(
        self, select: exp.Select, input_plan: LogicalPlanNode
    ) -> LogicalPlanNode:
        """Build projection node from SELECT clause."""
        has_distinct = bool(select.args.get("distinct"))
        if self._is_aggregated(input_plan):
            if not has_distinct:
                return input_plan
            names = [column.name for column in input_plan.output_columns()]
            return Project(
                input=input_plan,
                expressions=[ColumnRef(table=None, column=name) for name in names],
                aliases=names,
                distinct=True,
            )

        expressions = []
        aliases = []
        for index, select_expr in enumerate(select.expressions):
            expressions.append(self._convert_expression(select_expr))
            aliases.append(self._get_alias(select_expr, index))

        return Project(
            input=input_plan,
            expressions=expressions,
            aliases=aliases,
            distinct=has_distinct,
        )

    def _is_aggregated(self, plan: LogicalPlanNode) -> bool:
        if isinstance(plan, Aggregate):
            return True
        return isinstance(plan, Filter) and isinstance(plan.input, Aggregate)

    def _build_order_by_clause(
        self, query: exp.Expression, input_plan: LogicalPlanNode
    ) -> LogicalPlanNode:
        """Build one Sort node from ORDER BY, LIMIT and OFFSET."""
        order = query.args.get("order")
        limit = self._extract_count(query.args.get("limit"), "LIMIT")
        offset = self._extract_count(query.args.get("offset"), "OFFSET") or 0
        if not order and limit is None and not offset:
            return input_plan

        sort_keys = []
        ascending = []
        nulls_order: List[Optional[str]] = []
        for ordered in order.expressions if order else []:
            sort_keys.append(self._convert_expression(ordered.this))
            ascending.append(not ordered.args.get("desc", False))

            nulls_first = ordered.args.get("nulls_first")
            if nulls_first is None:
                nulls_order.append(None)
            else:
                nulls_order.append("FIRST" if nulls_first else "LAST")

        return Sort(
            input=input_plan,
            sort_keys=sort_keys,
            ascending=ascending,
            nulls_order=nulls_order,
            limit=limit,
            offset=offset,
        )

    def _extract_count(self, clause: Optional[exp.Expression], name: str) -> Optional[int]:
        if clause is None:
            return None
        value = clause.args.get("expression")
        if value is None:
            value = clause.this
        if not isinstance(value, exp.Literal) or value.is_string:
            raise ValueError(f"{name} must be an integer literal")
        count = int(value.this)
        if count < 0:
            raise ValueError(f"{name} must not be negative")
        return count

    def _convert_expression(self, expr: exp.Expression) -> Expression:
        """Convert sqlglot expression to our Expression."""
        if isinstance(expr, exp.In):
            return self._negated(expr, self._convert_in_expression(expr))
        if isinstance(expr, exp.Between):
            return self._negated(expr, self._convert_between_expression(expr))
        if isinstance(expr, exp.Column):
            return self._convert_column(expr)
        if isinstance(expr, exp.Is):
            return self._convert_is_expression(expr)
        if isinstance(expr, exp.Literal):
            return self._convert_literal(expr)
        if isinstance(expr, exp.Boolean):
            return Literal(value=bool(expr.this), data_type=DataType.BOOLEAN)
        if isinstance(expr, exp.Null):
            return Literal(value=None, data_type=DataType.NULL)
        if isinstance(expr, exp.Paren):
            return self._convert_expression(expr.this)
        if isinstance(expr, exp.Not):
            return self._convert_not(expr)
        if isinstance(expr, exp.Neg):
            return UnaryOp(op=UnaryOpType.NEGATE, operand=self._convert_expression(expr.this))
        if isinstance(expr, exp.Binary):
            return self._negated(expr, self._convert_binary(expr))
        if isinstance(expr, exp.Alias):
            return self._convert_expression(expr.this)
        if isinstance(expr, exp.Star):
            return ColumnRef(table=None, column="*")
        if isinstance(expr, exp.Case):
            return self._convert_case_expression(expr)
        if isinstance(expr, exp.Extract):
            return self._convert_extract(expr)
        if self._is_aggregate_function(expr):
            return self._convert_aggregate_function(expr)
        if isinstance(expr, exp.Func):
            return self._convert_function_call(expr)

        raise ValueError(f"Unsupported expression type: {type(expr).__name__}")

    def _convert_in_expression(self, expr: exp.In) -> Expression:
        if expr.args.get("query"):
            raise ValueError("IN subqueries are not supported")
        value_expr = self._convert_expression(expr.this)
        options = [self._convert_expression(option) for option in expr.expressions]
        return InList(value=value_expr, options=options)

    def _convert_between_expression(self, expr: exp.Between) -> Expression:
        value_expr = self._convert_expression(expr.this)
        low_expr = self._convert_expression(expr.args["low"])
        high_expr = self._convert_expression(expr.args["high"])
        return BetweenExpression(value=value_expr, lower=low_expr, upper=high_expr)

    def _negated(self, expr: exp.Expression, converted: Expression) -> Expression:
        """Apply a NOT that sqlglot folded into the predicate (NOT LIKE, NOT IN)."""
        if expr.args.get("negate"):
            return UnaryOp(op=UnaryOpType.NOT, operand=converted)
        return converted

    def _convert_is_expression(self, expr: exp.Is) -> Expression:
        """Convert IS NULL / IS NOT NULL."""
        operand = self._convert_expression(expr.this)
        comparison = expr.expression
        if isinstance(comparison, exp.Null):
            if expr.args.get("negate"):
                return UnaryOp(op=UnaryOpType.IS_NOT_NULL, operand=operand)
            return UnaryOp(op=UnaryOpType.IS_NULL, operand=operand)
        if isinstance(comparison, exp.Not) and isinstance(comparison.this, exp.Null):
            return UnaryOp(op=UnaryOpType.IS_NOT_NULL, operand=operand)
        raise ValueError("IS comparison supports only NULL and NOT NULL")

    def _convert_not(self, expr: exp.Not) -> Expression:
        inner = expr.this
        # older sqlglot reads "x IS NOT NULL" as NOT (x IS NULL)
        if (
            isinstance(inner, exp.Is)
            and isinstance(inner.expression, exp.Null)
            and not inner.args.get("negate")
        ):
            return UnaryOp(
                op=UnaryOpType.IS_NOT_NULL, operand=self._convert_expression(inner.this)
            )
        return UnaryOp(op=UnaryOpType.NOT, operand=self._convert_expression(inner))

    def _convert_case_expression(self, expr: exp.Case) -> Expression:
        if expr.this is not None:
            raise ValueError("Simple CASE is not supported; use CASE WHEN")
        when_clauses = []
        for if_clause in expr.args.get("ifs") or []:
            condition = self._convert_expression(if_clause.this)
            result_expr = if_clause.args.get("true")
            if result_expr is None:
                result = Literal(value=None, data_type=DataType.NULL)
            else:
                result = self._convert_expression(result_expr)
            when_clauses.append((condition, result))
        else_expr = None
        default_expr = expr.args.get("default")
        if default_expr is not None:
            else_expr = self._convert_expression(default_expr)
        return CaseExpr(when_clauses=when_clauses, else_result=else_expr)

    def _convert_column(self, col: exp.Column) -> ColumnRef:
        if isinstance(col.this, exp.Star):
            return ColumnRef(table=col.table or None, column="*")
        table = col.table if col.table else None
        return ColumnRef(table=table, column=col.name)

    def _convert_literal(self, lit: exp.Literal) -> Literal:
        value_str = lit.this
        if lit.is_string:
            return Literal(value=value_str, data_type=DataType.VARCHAR)
        if value_str.lstrip("-").isdigit():
            value = int(value_str)
            data_type = DataType.INTEGER if abs(value) < 2 ** 31 else DataType.BIGINT
            return Literal(value=value, data_type=data_type)
        return Literal(value=float(value_str), data_type=DataType.DOUBLE)

    def _convert_binary(self, binary: exp.Binary) -> BinaryOp:
        op = _BINARY_OPS.get(type(binary))
        if op is None:
            raise ValueError(f"Unsupported operator: {type(binary).__name__}")
        left = self._convert_expression(binary.left)
        right = self._convert_expression(binary.right)
        return BinaryOp(op=op, left=left, right=right)

    def _convert_aggregate_function(self, func: exp.AggFunc) -> FunctionCall:
        func_name = func.sql_name().upper()
        distinct = isinstance(func.this, exp.Distinct)
        args = []
        value = func.this
        if isinstance(value, exp.Distinct):
            for child in value.expressions or []:
                args.append(self._convert_expression(child))
        elif value is not None:
            args.append(self._convert_expression(value))
        elif isinstance(func, exp.Count):
            args.append(ColumnRef(table=None, column="*"))
        return FunctionCall(
            function_name=func_name,
            args=args,
            is_aggregate=True,
            distinct=distinct,
        )

    def _convert_function_call(self, func: exp.Func) -> FunctionCall:
        """Convert a scalar function, keeping its arguments in declaration order."""
        if isinstance(func, exp.Anonymous):
            name = func.name.upper()
            children = list(func.expressions or [])
        else:
            name = func.sql_name().upper()
            children = []
            for key in func.arg_types:
                value = func.args.get(key)
                values = value if isinstance(value, list) else [value]
                # flags such as is_nvl are plain values
                children.extend(v for v in values if isinstance(v, exp.Expression))
        args = [self._convert_expression(child) for child in children]
        return FunctionCall(function_name=name, args=args, is_aggregate=False)

    def _convert_extract(self, expr: exp.Extract) -> FunctionCall:
        """EXTRACT(field FROM value) keeps the field name as a string argument."""
        field_name = expr.this.name.upper()
        return FunctionCall(
            function_name="EXTRACT",
            args=[
                Literal(value=field_name, data_type=DataType.VARCHAR),
                self._convert_expression(expr.expression),
            ],
            is_aggregate=False,
        )

    def _rewrite_having_predicate(
        self, predicate: Expression, aggregate: Aggregate
    ) -> Expression:
        agg_map = self._build_aggregate_mapping(aggregate)
        return self._rewrite_expression(predicate, agg_map)

    def _build_aggregate_mapping(self, aggregate: Aggregate) -> Dict[str, str]:
        """Map aggregate expressions in the select list to their output names."""
        mapping = {}
        for agg_expr, output_name in zip(aggregate.aggregates, aggregate.output_names):
            if isinstance(agg_expr, FunctionCall) and agg_expr.is_aggregate:
                mapping.setdefault(agg_expr.to_sql().upper(), output_name)
        return mapping

    def _rewrite_expression(
        self, expr: Expression, agg_map: Dict[str, str]
    ) -> Expression:
        if isinstance(expr, FunctionCall) and expr.is_aggregate:
            col_name = agg_map.get(expr.to_sql().upper())
            if col_name is not None:
                return ColumnRef(table=None, column=col_name)
            return expr
        if isinstance(expr, BinaryOp):
            left = self._rewrite_expression(expr.left, agg_map)
            right = self._rewrite_expression(expr.right, agg_map)
            return BinaryOp(op=expr.op, left=left, right=right)
        if isinstance(expr, UnaryOp):
            return UnaryOp(op=expr.op, operand=self._rewrite_expression(expr.operand, agg_map))
        if isinstance(expr, BetweenExpression):
            return BetweenExpression(
                value=self._rewrite_expression(expr.value, agg_map),
                lower=self._rewrite_expression(expr.lower, agg_map),
                upper=self._rewrite_expression(expr.upper, agg_map),
            )
        if isinstance(expr, InList):
            return InList(
                value=self._rewrite_expression(expr.value, agg_map), options=expr.options
            )
        return expr

    def __repr__(self) -> str:
        return f"Parser(dialect={self.dialect})"
