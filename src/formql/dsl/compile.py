"""Translate a validated query AST into PostgreSQL over the submissions table.

Every logical form is a partition of one physical table; field values live
as keys of a JSONB document column and are read with ``->>`` (always text),
so arithmetic aggregates and numeric comparisons cast explicitly.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Mapping, Optional, Union

from .ast import (
    PSEUDO_COLUMNS,
    AggregateCall,
    ColumnRef,
    Condition,
    FieldExpr,
    FunctionCall,
    LiteralExpr,
    ParsedQuery,
    Query,
    SelectItem,
    UpdateQuery,
    ValueExpr,
    WhereClause,
)
from .diagnostics import Diagnostics
from .functions import lookup as lookup_function
from .parser import parse_query
from .schema_registry import SchemaSnapshot
from .validate import validate_query

logger = logging.getLogger(__name__)

CAST_AGGREGATES = frozenset({"SUM", "AVG", "MIN", "MAX", "MEDIAN"})

# document text that casts to numeric; anything else (blank answers, "n/a") reads as NULL
NUMERIC_TEXT_PATTERN = r"^-?[0-9]+(\.[0-9]+)?$"


@dataclass(frozen=True)
class StorageLayout:
    table: str = "form_submissions"
    document_column: str = "submission_data"
    partition_column: str = "form_id"
    pseudo_columns: Mapping[str, str] = field(default_factory=lambda: dict(PSEUDO_COLUMNS))

    @property
    def row_id_column(self) -> str:
        return self.pseudo_columns["submission_id"]

    def physical(self, pseudo: str) -> str:
        return self.pseudo_columns[pseudo]


DEFAULT_LAYOUT = StorageLayout()


def quote_literal(value: str) -> str:
    return "'" + value.replace("'", "''") + "'"


def quote_ident(name: str) -> str:
    return '"' + name.replace('"', '""') + '"'


def _literal(value: LiteralExpr) -> str:
    if value.is_number:
        return value.text
    return quote_literal(str(value.value))


def _extract(key: str, layout: StorageLayout) -> str:
    return f"{layout.document_column} ->> {quote_literal(key)}"


def _numeric(expr: str) -> str:
    return f"CASE WHEN ({expr}) ~ {quote_literal(NUMERIC_TEXT_PATTERN)} THEN ({expr})::numeric END"


def _column_sql(ref: ColumnRef, layout: StorageLayout) -> str:
    if ref.pseudo:
        return layout.physical(ref.name)
    return _extract(ref.name, layout)


def output_name(item: SelectItem) -> str:
    """Result column name of a select item: alias, identifier, or synthesized aggregate name."""

    if item.alias:
        return item.alias
    expr = item.expr
    if isinstance(expr, ColumnRef):
        return expr.name
    if expr.argument is None:
        return "count"
    return f"{expr.function.lower()}_{expr.argument.name}"


def _aggregate_sql(agg: AggregateCall, layout: StorageLayout) -> str:
    if agg.argument is None:
        return "COUNT(*)"
    arg = _column_sql(agg.argument, layout)
    if agg.function in CAST_AGGREGATES and not agg.argument.pseudo:
        arg = _numeric(arg)
    if agg.function == "MEDIAN":
        return f"percentile_cont(0.5) WITHIN GROUP (ORDER BY {arg})"
    return f"{agg.function}({arg})"


def _select_item_sql(item: SelectItem, layout: StorageLayout) -> str:
    name = output_name(item)
    expr = item.expr
    if isinstance(expr, AggregateCall):
        return f"{_aggregate_sql(expr, layout)} AS {quote_ident(name)}"
    column = _column_sql(expr, layout)
    if expr.pseudo and column == name:
        return column
    return f"{column} AS {quote_ident(name)}"


def _star_sql(layout: StorageLayout) -> List[str]:
    parts: List[str] = []
    for pseudo, physical in layout.pseudo_columns.items():
        parts.append(physical if pseudo == physical else f"{physical} AS {quote_ident(pseudo)}")
    parts.append(layout.document_column)
    return parts


def _condition_sql(condition: Condition, layout: StorageLayout) -> str:
    column = _column_sql(condition.column, layout)
    if condition.value.is_number and not condition.column.pseudo:
        column = _numeric(column)
    return f"{column} {condition.operator} {_literal(condition.value)}"


def _where_sql(where: WhereClause, layout: StorageLayout) -> str:
    # explicit nesting keeps evaluation strictly left-to-right regardless of AND/OR precedence
    sql = _condition_sql(where.conditions[0], layout)
    for connector, condition in zip(where.connectors, where.conditions[1:]):
        sql = f"({sql} {connector} {_condition_sql(condition, layout)})"
    return sql


def _partition_sql(table: str, layout: StorageLayout) -> str:
    return f"{layout.partition_column} = {quote_literal(table)}"


def _select_to_sql(query: ParsedQuery, layout: StorageLayout) -> str:
    if query.select.star:
        select_parts = _star_sql(layout)
    else:
        select_parts = [_select_item_sql(item, layout) for item in query.select.items]

    conditions = [_partition_sql(query.from_.name, layout)]
    if query.where is not None:
        conditions.append(_where_sql(query.where, layout))

    sql_parts = [
        "SELECT",
        ", ".join(select_parts),
        "FROM",
        layout.table,
        "WHERE",
        " AND ".join(conditions),
    ]
    if query.select.grouped:
        group_cols = [_column_sql(col, layout) for col in query.select.columns]
        sql_parts.append(f"GROUP BY {', '.join(group_cols)}")
    return " ".join(sql_parts)


def value_sql(expr: ValueExpr, layout: StorageLayout = DEFAULT_LAYOUT) -> str:
    if isinstance(expr, LiteralExpr):
        return _literal(expr)
    if isinstance(expr, FieldExpr):
        return f"({_column_sql(expr.column, layout)})"
    if isinstance(expr, FunctionCall):
        spec = lookup_function(expr.name)
        if spec is None:
            raise ValueError(f"Unsupported function: {expr.name}")
        return spec.render_sql([value_sql(arg, layout) for arg in expr.args])
    raise TypeError(f"Unsupported value expression: {type(expr).__name__}")


def _update_to_sql(query: UpdateQuery, layout: StorageLayout) -> str:
    doc = layout.document_column
    if isinstance(query.value, LiteralExpr):
        # stored verbatim: `= 007` keeps its leading zeros
        new_value = quote_literal(query.value.text)
    else:
        new_value = f"({value_sql(query.value, layout)})::text"
    patch = f"jsonb_build_object({quote_literal(query.target.name)}, {new_value})"
    return (
        f"UPDATE {layout.table} "
        f"SET {doc} = COALESCE({doc}, '{{}}'::jsonb) || {patch} "
        f"WHERE {_partition_sql(query.table.name, layout)} "
        f"AND {layout.row_id_column} = {quote_literal(query.row_id.text)}"
    )


def ast_to_sql(query: Query, layout: StorageLayout = DEFAULT_LAYOUT) -> str:
    """Emit SQL for a validated ``query``."""

    if isinstance(query, ParsedQuery):
        return _select_to_sql(query, layout)
    if isinstance(query, UpdateQuery):
        return _update_to_sql(query, layout)
    raise TypeError(f"Expected ParsedQuery or UpdateQuery, got {type(query).__name__}")


@dataclass
class CompileResult:
    query: Optional[Query]
    sql: Optional[str]
    diagnostics: Diagnostics

    @property
    def ok(self) -> bool:
        return self.sql is not None and not self.diagnostics.has_errors()

    @property
    def errors(self):
        return self.diagnostics.errors()


def compile_query(
    src: Union[str, Query],
    schema: SchemaSnapshot,
    layout: StorageLayout = DEFAULT_LAYOUT,
) -> CompileResult:
    """Run lexer, parser, validator and code generator over ``src``.

    Stops at the first failing stage; ``sql`` is set only when no stage
    reported an error.
    """

    if isinstance(src, (ParsedQuery, UpdateQuery)):
        query: Optional[Query] = src
        diagnostics = Diagnostics()
    else:
        query, diagnostics = parse_query(src)
    if query is None:
        return CompileResult(query=None, sql=None, diagnostics=diagnostics)

    semantic = validate_query(query, schema)
    if semantic.has_errors():
        logger.debug("Query failed validation with %d error(s)", len(semantic.messages))
        diagnostics.extend(semantic)
        return CompileResult(query=query, sql=None, diagnostics=diagnostics)

    sql = ast_to_sql(query, layout)
    logger.debug("Compiled query: %s", sql)
    return CompileResult(query=query, sql=sql, diagnostics=diagnostics)


__all__ = [
    "StorageLayout",
    "DEFAULT_LAYOUT",
    "CompileResult",
    "quote_literal",
    "quote_ident",
    "output_name",
    "value_sql",
    "ast_to_sql",
    "compile_query",
]
