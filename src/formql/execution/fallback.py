"""Client-side evaluation of compiled queries over a fetched sample.

Used when the database cannot run generated query text. Mirrors the
generated SQL: document values are read as text, numeric aggregates and
numeric comparisons coerce that text to numbers, WHERE conditions fold
strictly left to right, and mixing plain columns with aggregates groups by
the plain columns.
"""

from __future__ import annotations

import json
import operator
import re
from decimal import Decimal
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

import pandas as pd

from ..dsl.ast import (
    AggregateCall,
    ColumnRef,
    Condition,
    FieldExpr,
    FunctionCall,
    LiteralExpr,
    ParsedQuery,
    UpdateQuery,
    ValueExpr,
    WhereClause,
)
from ..dsl.compile import DEFAULT_LAYOUT, NUMERIC_TEXT_PATTERN, StorageLayout, output_name
from ..dsl.functions import lookup as lookup_function

_NUMERIC_TEXT_RE = re.compile(NUMERIC_TEXT_PATTERN)

_COMPARATORS: Dict[str, Callable[[Any, Any], bool]] = {
    "=": operator.eq,
    "!=": operator.ne,
    "<>": operator.ne,
    "<": operator.lt,
    ">": operator.gt,
    "<=": operator.le,
    ">=": operator.ge,
}


def _py(value: Any) -> Any:
    """Convert pandas/numpy scalars to plain Python values (NaN -> None)."""

    if value is None:
        return None
    if isinstance(value, float) and value != value:
        return None
    if isinstance(value, (str, int, float, bool)):
        return value
    try:
        if pd.isna(value):
            return None
    except (TypeError, ValueError):
        pass
    item = getattr(value, "item", None)
    if callable(item):
        return item()
    return value


def document_text(value: Any) -> Optional[str]:
    """Render a document value the way ``->>`` does: text, or None for JSON null."""

    if value is None:
        return None
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    return json.dumps(value, ensure_ascii=False)


def numeric_value(value: Any) -> Optional[Decimal]:
    """Number held by a cell, or None where the SQL cast guard would yield NULL."""

    value = _py(value)
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float, Decimal)):
        return Decimal(str(value))
    text = str(value)
    return Decimal(text) if _NUMERIC_TEXT_RE.match(text) else None


def submissions_frame(records: Sequence[Mapping[str, Any]], layout: StorageLayout = DEFAULT_LAYOUT) -> pd.DataFrame:
    columns = [layout.partition_column, *dict.fromkeys(layout.pseudo_columns.values()), layout.document_column]
    return pd.DataFrame.from_records(list(records), columns=columns)


def column_series(frame: pd.DataFrame, ref: ColumnRef, layout: StorageLayout = DEFAULT_LAYOUT) -> pd.Series:
    if ref.pseudo:
        return frame[layout.physical(ref.name)].astype(object)
    docs = frame[layout.document_column]
    values = [document_text(doc.get(ref.name)) if isinstance(doc, Mapping) else None for doc in docs]
    return pd.Series(values, index=frame.index, dtype=object)


def _like_pattern(pattern: str, ignore_case: bool) -> "re.Pattern[str]":
    parts = []
    for ch in pattern:
        if ch == "%":
            parts.append(".*")
        elif ch == "_":
            parts.append(".")
        else:
            parts.append(re.escape(ch))
    return re.compile("".join(parts), re.IGNORECASE | re.DOTALL if ignore_case else re.DOTALL)


def condition_mask(frame: pd.DataFrame, condition: Condition, layout: StorageLayout = DEFAULT_LAYOUT) -> pd.Series:
    series = column_series(frame, condition.column, layout)
    op = condition.operator
    value = condition.value.value

    if op in ("LIKE", "ILIKE"):
        regex = _like_pattern(str(value), ignore_case=op == "ILIKE")
        mask = series.map(lambda v: v is not None and bool(regex.fullmatch(str(v))))
        return mask.astype(bool)

    compare = _COMPARATORS.get(op)
    if compare is None:
        raise ValueError(f"Unsupported comparison operator: {op}")

    if condition.value.is_number:
        left = series.map(numeric_value)
        right: Any = Decimal(condition.value.text)
    else:
        left = series.map(lambda v: None if _py(v) is None else str(v))
        right = str(value)

    def _matches(v: Any) -> bool:
        return _py(v) is not None and bool(compare(v, right))

    return left.map(_matches).astype(bool)


def where_mask(frame: pd.DataFrame, where: WhereClause, layout: StorageLayout = DEFAULT_LAYOUT) -> pd.Series:
    mask = condition_mask(frame, where.conditions[0], layout)
    for connector, condition in zip(where.connectors, where.conditions[1:]):
        other = condition_mask(frame, condition, layout)
        mask = (mask & other) if connector == "AND" else (mask | other)
    return mask


def aggregate_value(frame: pd.DataFrame, agg: AggregateCall, layout: StorageLayout = DEFAULT_LAYOUT) -> Any:
    if agg.argument is None:
        return len(frame)
    series = column_series(frame, agg.argument, layout)
    present = series[series.map(lambda v: _py(v) is not None).astype(bool)]
    if agg.function == "COUNT":
        return int(len(present))
    if agg.argument.pseudo:
        if present.empty:
            return None
        return _py(present.min() if agg.function == "MIN" else present.max())

    numbers = present.map(numeric_value).dropna().map(float)
    if numbers.empty:
        return None
    if agg.function == "SUM":
        return _py(numbers.sum())
    if agg.function == "AVG":
        return _py(numbers.mean())
    if agg.function == "MIN":
        return _py(numbers.min())
    if agg.function == "MAX":
        return _py(numbers.max())
    if agg.function == "MEDIAN":
        return _py(numbers.median())
    raise ValueError(f"Unsupported aggregate: {agg.function}")


def _star(frame: pd.DataFrame, layout: StorageLayout) -> Tuple[List[str], List[List[Any]]]:
    columns = list(layout.pseudo_columns)
    physical = [layout.physical(name) for name in columns]
    columns.append(layout.document_column)
    rows: List[List[Any]] = []
    for record in frame.to_dict(orient="records"):
        row = [_py(record[col]) for col in physical]
        doc = record[layout.document_column]
        row.append(json.dumps(doc, ensure_ascii=False) if isinstance(doc, Mapping) else None)
        rows.append(row)
    return columns, rows


def evaluate_select(
    query: ParsedQuery,
    records: Sequence[Mapping[str, Any]],
    layout: StorageLayout = DEFAULT_LAYOUT,
) -> Tuple[List[str], List[List[Any]]]:
    """Evaluate ``query`` over partition ``records``; returns (columns, rows)."""

    frame = submissions_frame(records, layout)
    if query.where is not None and not frame.empty:
        frame = frame[where_mask(frame, query.where, layout)]

    if query.select.star:
        return _star(frame, layout)

    items = query.select.items
    columns = [output_name(item) for item in items]

    if not query.select.aggregates:
        series = [column_series(frame, item.expr, layout) for item in items]  # type: ignore[arg-type]
        rows = [[_py(v) for v in values] for values in zip(*(s.tolist() for s in series))]
        return columns, rows

    if not query.select.grouped:
        return columns, [[aggregate_value(frame, item.expr, layout) for item in items]]  # type: ignore[arg-type]

    keys = [column_series(frame, col, layout) for col in query.select.columns]
    rows = []
    if frame.empty:
        return columns, rows
    for key, group in frame.groupby(keys, dropna=False, sort=False):
        key_values = key if isinstance(key, tuple) else (key,)
        key_iter = iter(key_values)
        row: List[Any] = []
        for item in items:
            if isinstance(item.expr, ColumnRef):
                row.append(_py(next(key_iter)))
            else:
                row.append(aggregate_value(group, item.expr, layout))
        rows.append(row)
    return columns, rows


def evaluate_value(expr: ValueExpr, record: Mapping[str, Any], layout: StorageLayout = DEFAULT_LAYOUT) -> Any:
    if isinstance(expr, LiteralExpr):
        return expr.value
    if isinstance(expr, FieldExpr):
        ref = expr.column
        if ref.pseudo:
            return record.get(layout.physical(ref.name))
        doc = record.get(layout.document_column) or {}
        return document_text(doc.get(ref.name))
    if isinstance(expr, FunctionCall):
        spec = lookup_function(expr.name)
        if spec is None:
            raise ValueError(f"Unsupported function: {expr.name}")
        return spec.evaluate(*(evaluate_value(arg, record, layout) for arg in expr.args))
    raise TypeError(f"Unsupported value expression: {type(expr).__name__}")


def evaluate_update(
    query: UpdateQuery,
    record: Mapping[str, Any],
    layout: StorageLayout = DEFAULT_LAYOUT,
) -> Dict[str, Optional[str]]:
    """Return the single-key document patch ``query`` applies to ``record``."""

    if isinstance(query.value, LiteralExpr):
        return {query.target.name: query.value.text}
    value = evaluate_value(query.value, record, layout)
    return {query.target.name: None if value is None else str(value)}


__all__ = [
    "document_text",
    "numeric_value",
    "submissions_frame",
    "column_series",
    "condition_mask",
    "where_mask",
    "aggregate_value",
    "evaluate_select",
    "evaluate_value",
    "evaluate_update",
]
