"""Expression nodes for query plans."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, List, Optional, Tuple
from enum import Enum


class DataType(Enum):
    """SQL data types understood by the catalog."""

    INTEGER = "INTEGER"
    BIGINT = "BIGINT"
    DOUBLE = "DOUBLE"
    DECIMAL = "DECIMAL"
    BOOLEAN = "BOOLEAN"
    DATE = "DATE"
    TIMESTAMP = "TIMESTAMP"
    VARCHAR = "VARCHAR"
    NULL = "NULL"


class Expression(ABC):
    """Base class for all expressions."""

    @abstractmethod
    def children(self) -> List["Expression"]:
        """Return nested expressions."""
        pass

    @abstractmethod
    def to_sql(self) -> str:
        """Convert expression to SQL string."""
        pass


@dataclass(frozen=True)
class ColumnRef(Expression):
    """Column reference expression."""

    table: Optional[str]  # Can be None for unqualified references
    column: str
    data_type: Optional[DataType] = None  # Set during binding

    def children(self) -> List[Expression]:
        return []

    def to_sql(self) -> str:
        if self.table:
            return f"{self.table}.{self.column}"
        return self.column

    def __repr__(self) -> str:
        return f"ColumnRef({self.table}.{self.column})" if self.table else f"ColumnRef({self.column})"


@dataclass(frozen=True)
class Literal(Expression):
    """Literal value expression."""

    value: Any
    data_type: DataType

    def children(self) -> List[Expression]:
        return []

    def to_sql(self) -> str:
        if self.value is None:
            return "NULL"
        if self.data_type == DataType.VARCHAR:
            escaped = str(self.value).replace("'", "''")
            return f"'{escaped}'"
        if self.data_type == DataType.BOOLEAN:
            return "TRUE" if self.value else "FALSE"
        return str(self.value)

    def __repr__(self) -> str:
        return f"Literal({self.value})"


class BinaryOpType(Enum):
    """Binary operator types."""

    # Arithmetic
    ADD = "+"
    SUBTRACT = "-"
    MULTIPLY = "*"
    DIVIDE = "/"
    MODULO = "%"

    # Comparison
    EQ = "="
    NEQ = "!="
    LT = "<"
    LTE = "<="
    GT = ">"
    GTE = ">="

    # Logical
    AND = "AND"
    OR = "OR"

    # String
    CONCAT = "||"
    LIKE = "LIKE"


@dataclass(frozen=True)
class BinaryOp(Expression):
    """Binary operation expression."""

    op: BinaryOpType
    left: Expression
    right: Expression

    def children(self) -> List[Expression]:
        return [self.left, self.right]

    def to_sql(self) -> str:
        return f"({self.left.to_sql()} {self.op.value} {self.right.to_sql()})"

    def __repr__(self) -> str:
        return f"BinaryOp({self.op.value}, {self.left}, {self.right})"


class UnaryOpType(Enum):
    """Unary operator types."""

    NOT = "NOT"
    NEGATE = "-"
    IS_NULL = "IS NULL"
    IS_NOT_NULL = "IS NOT NULL"


@dataclass(frozen=True)
class UnaryOp(Expression):
    """Unary operation expression."""

    op: UnaryOpType
    operand: Expression

    def children(self) -> List[Expression]:
        return [self.operand]

    def to_sql(self) -> str:
        if self.op in (UnaryOpType.IS_NULL, UnaryOpType.IS_NOT_NULL):
            return f"({self.operand.to_sql()} {self.op.value})"
        return f"({self.op.value} {self.operand.to_sql()})"

    def __repr__(self) -> str:
        return f"UnaryOp({self.op.value}, {self.operand})"


@dataclass(frozen=True)
class FunctionCall(Expression):
    """Function call expression."""

    function_name: str
    args: List[Expression]
    is_aggregate: bool = False
    distinct: bool = False

    def children(self) -> List[Expression]:
        return list(self.args)

    def to_sql(self) -> str:
        args_sql = ", ".join(arg.to_sql() for arg in self.args)
        if self.distinct:
            args_sql = f"DISTINCT {args_sql}"
        return f"{self.function_name}({args_sql})"

    def __repr__(self) -> str:
        return f"FunctionCall({self.function_name}, {self.args})"


@dataclass(frozen=True)
class InList(Expression):
    """value IN (option, ...) expression."""

    value: Expression
    options: List[Expression]

    def children(self) -> List[Expression]:
        return [self.value] + list(self.options)

    def to_sql(self) -> str:
        options_sql = ", ".join(option.to_sql() for option in self.options)
        return f"({self.value.to_sql()} IN ({options_sql}))"

    def __repr__(self) -> str:
        return f"InList({self.value}, options={len(self.options)})"


@dataclass(frozen=True)
class BetweenExpression(Expression):
    """value BETWEEN lower AND upper expression."""

    value: Expression
    lower: Expression
    upper: Expression

    def children(self) -> List[Expression]:
        return [self.value, self.lower, self.upper]

    def to_sql(self) -> str:
        return (
            f"({self.value.to_sql()} BETWEEN {self.lower.to_sql()} "
            f"AND {self.upper.to_sql()})"
        )

    def __repr__(self) -> str:
        return f"Between({self.value}, {self.lower}, {self.upper})"


@dataclass(frozen=True)
class CaseExpr(Expression):
    """CASE expression."""

    when_clauses: List[Tuple[Expression, Expression]]  # (condition, result)
    else_result: Optional[Expression]

    def children(self) -> List[Expression]:
        nested: List[Expression] = []
        for condition, result in self.when_clauses:
            nested.append(condition)
            nested.append(result)
        if self.else_result is not None:
            nested.append(self.else_result)
        return nested

    def to_sql(self) -> str:
        sql = "CASE"
        for condition, result in self.when_clauses:
            sql += f" WHEN {condition.to_sql()} THEN {result.to_sql()}"
        if self.else_result:
            sql += f" ELSE {self.else_result.to_sql()}"
        sql += " END"
        return sql

    def __repr__(self) -> str:
        return f"CaseExpr(when_count={len(self.when_clauses)})"
