from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Iterator, Optional, Tuple, Union

# DSL name -> physical column of the submissions table
PSEUDO_COLUMNS = {
    "submission_id": "id",
    "submitted_by": "submitted_by",
    "submitted_at": "created_at",
}


@dataclass(frozen=True)
class ColumnRef:
    name: str
    position: int = 0
    pseudo: bool = False


@dataclass(frozen=True)
class AggregateCall:
    """``function`` is one of COUNT/SUM/AVG/MIN/MAX/MEDIAN; no argument means ``COUNT(*)``."""

    function: str
    argument: Optional[ColumnRef] = None
    position: int = 0


@dataclass(frozen=True)
class SelectItem:
    expr: Union[ColumnRef, AggregateCall]
    alias: Optional[str] = None


@dataclass(frozen=True)
class SelectClause:
    items: Tuple[SelectItem, ...] = ()
    star: bool = False

    @property
    def columns(self) -> Tuple[ColumnRef, ...]:
        return tuple(item.expr for item in self.items if isinstance(item.expr, ColumnRef))

    @property
    def aggregates(self) -> Tuple[AggregateCall, ...]:
        return tuple(item.expr for item in self.items if isinstance(item.expr, AggregateCall))

    @property
    def grouped(self) -> bool:
        return bool(self.aggregates) and bool(self.columns)


@dataclass(frozen=True)
class TableRef:
    name: str
    position: int = 0


@dataclass(frozen=True)
class LiteralExpr:
    value: Union[str, int, float, Decimal]
    position: int = 0
    # number literals keep the digits exactly as the user typed them
    raw: Optional[str] = None

    @property
    def is_number(self) -> bool:
        return isinstance(self.value, (int, float, Decimal))

    @property
    def text(self) -> str:
        if self.raw is not None:
            return self.raw
        return str(self.value)


@dataclass(frozen=True)
class Condition:
    column: ColumnRef
    operator: str
    value: LiteralExpr


@dataclass(frozen=True)
class WhereClause:
    conditions: Tuple[Condition, ...]
    connectors: Tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if len(self.connectors) != max(len(self.conditions) - 1, 0):
            raise ValueError("WHERE clause needs exactly one connector between consecutive conditions")


@dataclass(frozen=True)
class ParsedQuery:
    select: SelectClause
    from_: TableRef
    where: Optional[WhereClause] = None


@dataclass(frozen=True)
class FieldExpr:
    column: ColumnRef


@dataclass(frozen=True)
class FunctionCall:
    name: str
    args: Tuple["ValueExpr", ...] = field(default_factory=tuple)
    position: int = 0


ValueExpr = Union[LiteralExpr, FieldExpr, FunctionCall]


@dataclass(frozen=True)
class UpdateQuery:
    table: TableRef
    target: ColumnRef
    value: ValueExpr
    row_id: LiteralExpr


Query = Union[ParsedQuery, UpdateQuery]


def _value_refs(expr: ValueExpr) -> Iterator[ColumnRef]:
    if isinstance(expr, FieldExpr):
        yield expr.column
    elif isinstance(expr, FunctionCall):
        for arg in expr.args:
            yield from _value_refs(arg)


def iter_column_refs(query: Query) -> Iterator[ColumnRef]:
    """Yield every column reference of ``query`` in source order."""

    if isinstance(query, UpdateQuery):
        yield query.target
        yield from _value_refs(query.value)
        return

    for item in query.select.items:
        if isinstance(item.expr, ColumnRef):
            yield item.expr
        elif item.expr.argument is not None:
            yield item.expr.argument
    if query.where is not None:
        for condition in query.where.conditions:
            yield condition.column


def table_of(query: Query) -> TableRef:
    return query.table if isinstance(query, UpdateQuery) else query.from_


__all__ = [
    "PSEUDO_COLUMNS",
    "ColumnRef",
    "AggregateCall",
    "SelectItem",
    "SelectClause",
    "TableRef",
    "LiteralExpr",
    "Condition",
    "WhereClause",
    "ParsedQuery",
    "FieldExpr",
    "FunctionCall",
    "ValueExpr",
    "UpdateQuery",
    "Query",
    "iter_column_refs",
    "table_of",
]
