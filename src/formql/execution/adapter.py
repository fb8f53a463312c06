"""Execution adapter: compile a query, run it, fall back to client-side evaluation.

State transitions per request::

    received -> lexing -> parsed | syntax_error
    parsed -> validated | semantic_error
    validated -> generated -> executed | execution_error

A query never reports success unless one of the execution paths produced a
result; when both fail the result carries empty columns and rows.
"""

from __future__ import annotations

import logging
from typing import Any, List, Optional, Union

from ..dsl.ast import ParsedQuery, Query, UpdateQuery
from ..dsl.compile import DEFAULT_LAYOUT, CompileResult, StorageLayout, compile_query
from ..dsl.diagnostics import Diagnostics
from ..dsl.schema_registry import SchemaCache, SchemaSnapshot
from ..models import QueryError, QueryResult
from .backends import ExecutionUnavailable, QueryBackend
from .fallback import evaluate_select, evaluate_update

logger = logging.getLogger(__name__)

UPDATE_SUCCESS_MESSAGE = "Field updated successfully"
UPDATE_COLUMNS = ["message", "updated_rows"]


def _transition(state: str, detail: str = "", *, sql: Optional[str] = None) -> None:
    extra = {"query_state": state}
    if sql is not None:
        extra["sql"] = sql
    logger.debug("query %s%s", state, f" ({detail})" if detail else "", extra=extra)


def _errors_from(diagnostics: Diagnostics) -> List[QueryError]:
    return [
        QueryError(kind=err.kind.value, message=err.message, position=err.position)
        for err in diagnostics.errors()
    ]


class QueryEngine:
    """Runs DSL queries against a backend with a pandas fallback."""

    def __init__(
        self,
        schema: SchemaCache,
        backend: QueryBackend,
        *,
        layout: StorageLayout = DEFAULT_LAYOUT,
        fallback_enabled: bool = True,
        fallback_row_limit: int = 1000,
        label_columns: bool = False,
    ):
        if fallback_row_limit <= 0:
            raise ValueError("fallback_row_limit must be positive")
        self.schema = schema
        self.backend = backend
        self.layout = layout
        self.fallback_enabled = fallback_enabled
        self.fallback_row_limit = fallback_row_limit
        self.label_columns = label_columns

    @classmethod
    def from_settings(cls, settings, schema: SchemaCache, backend: QueryBackend) -> "QueryEngine":
        return cls(
            schema,
            backend,
            layout=settings.storage.layout(),
            fallback_enabled=settings.execution.fallback_enabled,
            fallback_row_limit=settings.execution.fallback_row_limit,
            label_columns=settings.execution.label_columns,
        )

    def compile(self, src: Union[str, Query]) -> CompileResult:
        return compile_query(src, self.schema.snapshot(), self.layout)

    def execute(self, src: Union[str, Query]) -> QueryResult:
        _transition("received")
        try:
            snapshot = self.schema.snapshot()
        except Exception as exc:
            logger.error("Schema load failed: %s", exc)
            return QueryResult.failure("execution", f"Failed to load form schema: {exc}")

        _transition("lexing", repr(src) if isinstance(src, str) else type(src).__name__)
        compiled = compile_query(src, snapshot, self.layout)
        if compiled.query is None:
            _transition("syntax_error")
            return QueryResult(errors=_errors_from(compiled.diagnostics))
        _transition("parsed")
        if compiled.sql is None:
            _transition("semantic_error", f"{len(compiled.errors)} error(s)")
            return QueryResult(errors=_errors_from(compiled.diagnostics))
        _transition("validated")
        _transition("generated", compiled.sql, sql=compiled.sql)

        result = self._run(compiled.query, compiled.sql)
        if result.ok:
            via = " via fallback" if result.fallback else ""
            _transition("executed", f"{len(result.rows)} row(s){via}", sql=compiled.sql)
            if self.label_columns and isinstance(compiled.query, ParsedQuery):
                result.columns = self._labelled(result.columns, compiled.query, snapshot)
        else:
            _transition("execution_error", sql=compiled.sql)
        return result

    # --- execution paths ---
    def _run(self, query: Query, sql: str) -> QueryResult:
        try:
            columns, rows = self.backend.execute_sql(sql)
        except ExecutionUnavailable as exc:
            if not self.fallback_enabled:
                return QueryResult.failure("execution", str(exc), sql=sql)
            logger.warning("Remote execution unavailable (%s); evaluating client-side", exc)
            return self._fallback(query, sql)
        except Exception as exc:
            logger.error("Query execution failed: %s", exc)
            return QueryResult.failure("execution", str(exc), sql=sql)

        if isinstance(query, UpdateQuery):
            return self._update_result(_updated_rows(rows), sql=sql)
        return QueryResult(columns=columns, rows=rows, sql=sql)

    def _fallback(self, query: Query, sql: str) -> QueryResult:
        try:
            if isinstance(query, UpdateQuery):
                return self._fallback_update(query, sql)
            return self._fallback_select(query, sql)
        except Exception as exc:
            logger.error("Client-side evaluation failed: %s", exc)
            return QueryResult.failure("execution", str(exc), sql=sql)

    def _fallback_select(self, query: ParsedQuery, sql: str) -> QueryResult:
        limit = self.fallback_row_limit
        records = self.backend.fetch_submissions(query.from_.name, limit)
        columns, rows = evaluate_select(query, records, self.layout)
        notes = [
            "Remote query execution is unavailable; "
            f"result computed client-side over at most {limit} submissions"
        ]
        if len(records) >= limit:
            notes.append(f"Submission sample was truncated at {limit} rows; aggregates may be incomplete")
        return QueryResult(columns=columns, rows=rows, notes=notes, fallback=True, sql=sql)

    def _fallback_update(self, query: UpdateQuery, sql: str) -> QueryResult:
        form_id = query.table.name
        row_id = query.row_id.text
        record = self.backend.fetch_submission(form_id, row_id)
        if record is None:
            return QueryResult.failure("execution", "Submission not found", sql=sql)
        patch = evaluate_update(query, record, self.layout)
        updated = self.backend.merge_submission_data(form_id, row_id, patch)
        result = self._update_result(updated, sql=sql)
        result.fallback = True
        result.notes.append("Remote query execution is unavailable; update applied client-side")
        return result

    def _update_result(self, updated: int, *, sql: str) -> QueryResult:
        if updated <= 0:
            return QueryResult.failure("execution", "Submission not found", sql=sql)
        return QueryResult(columns=list(UPDATE_COLUMNS), rows=[[UPDATE_SUCCESS_MESSAGE, updated]], sql=sql)

    def _labelled(self, columns: List[str], query: ParsedQuery, snapshot: SchemaSnapshot) -> List[str]:
        table = query.from_.name
        known = snapshot.columns(table)
        return [snapshot.field_label(table, col) if col in known else col for col in columns]


def _updated_rows(rows: List[List[Any]]) -> int:
    if not rows or not rows[0]:
        return 0
    value = rows[0][0]
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


__all__ = ["QueryEngine", "UPDATE_SUCCESS_MESSAGE", "UPDATE_COLUMNS"]
