from __future__ import annotations

from typing import List

from .ast import AggregateCall, ColumnRef, ParsedQuery, Query, UpdateQuery, iter_column_refs, table_of
from .diagnostics import Diagnostics, ErrorKind, ParseError
from .schema_registry import SchemaSnapshot

# aggregates that need a numeric argument; pseudo-columns are ids, users and timestamps
NUMERIC_ONLY_AGGREGATES = frozenset({"SUM", "AVG", "MEDIAN"})


def _check_column(ref: ColumnRef, table: str, schema: SchemaSnapshot, diagnostics: Diagnostics) -> None:
    if ref.pseudo or schema.has_column(table, ref.name):
        return
    diagnostics.add(
        ErrorKind.UNKNOWN_COLUMN,
        f"Unknown field {ref.name!r} in form {table!r}",
        ref.position,
    )


def _check_aggregates(query: ParsedQuery, diagnostics: Diagnostics) -> None:
    for item in query.select.items:
        agg = item.expr
        if not isinstance(agg, AggregateCall) or agg.argument is None:
            continue
        if agg.argument.pseudo and agg.function in NUMERIC_ONLY_AGGREGATES:
            diagnostics.add(
                ErrorKind.UNSUPPORTED,
                f"{agg.function} is not supported on system column {agg.argument.name!r}",
                agg.position,
            )


def validate_query(query: Query, schema: SchemaSnapshot) -> Diagnostics:
    """Check table and column references of ``query`` against ``schema``.

    An unknown table short-circuits with a single error; otherwise every
    unknown column is reported. The query is never modified.
    """

    diagnostics = Diagnostics()
    table = table_of(query)
    if not schema.has_table(table.name):
        diagnostics.add(ErrorKind.UNKNOWN_TABLE, f"Unknown form {table.name!r}", table.position)
        return diagnostics

    for ref in iter_column_refs(query):
        _check_column(ref, table.name, schema, diagnostics)

    if isinstance(query, UpdateQuery):
        if query.target.pseudo:
            diagnostics.add(
                ErrorKind.UNSUPPORTED,
                f"System column {query.target.name!r} cannot be updated",
                query.target.position,
            )
    else:
        _check_aggregates(query, diagnostics)
    return diagnostics


def validate(query: Query, schema: SchemaSnapshot) -> List[ParseError]:
    return validate_query(query, schema).errors()


__all__ = ["validate", "validate_query", "NUMERIC_ONLY_AGGREGATES"]
