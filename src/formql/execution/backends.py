"""Execution targets for compiled queries."""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Mapping, Optional, Protocol, Tuple

from ..dsl.compile import DEFAULT_LAYOUT, StorageLayout

logger = logging.getLogger(__name__)


class ExecutionUnavailable(RuntimeError):
    """The backend cannot run raw query text; callers may fall back to row fetches."""


class QueryBackend(Protocol):
    """Database collaborator reached by the execution adapter.

    ``execute_sql`` runs generated query text. The remaining methods are the
    narrow row-level access used by the client-side fallback; records are
    dicts keyed by physical column name with the document column decoded to
    a dict.
    """

    def execute_sql(self, sql: str) -> Tuple[List[str], List[List[Any]]]: ...

    def fetch_submissions(self, form_id: str, limit: int) -> List[Dict[str, Any]]: ...

    def fetch_submission(self, form_id: str, row_id: str) -> Optional[Dict[str, Any]]: ...

    def merge_submission_data(self, form_id: str, row_id: str, patch: Mapping[str, Any]) -> int: ...


def decode_document(value: Any) -> Dict[str, Any]:
    if value is None:
        return {}
    if isinstance(value, (str, bytes)):
        decoded = json.loads(value)
        return decoded if isinstance(decoded, dict) else {}
    if isinstance(value, Mapping):
        return dict(value)
    raise TypeError(f"Unsupported document value of type {type(value).__name__}")


class DbApiBackend:
    """Backend over an existing DB-API 2.0 connection.

    Row-level methods bind parameters with ``placeholder`` (``?`` for
    ``paramstyle="qmark"`` drivers such as SQLite, ``%s`` for psycopg).
    Generated query text targets PostgreSQL; pass ``raw_sql=False`` for
    connections that cannot run it, which makes ``execute_sql`` raise
    :class:`ExecutionUnavailable`.
    """

    def __init__(
        self,
        connection,
        layout: StorageLayout = DEFAULT_LAYOUT,
        *,
        raw_sql: bool = True,
        placeholder: str = "?",
    ):
        self.connection = connection
        self.layout = layout
        self.raw_sql = raw_sql
        self.placeholder = placeholder

    # --- helper methods ---
    def _record_columns(self) -> List[str]:
        columns = [self.layout.partition_column]
        for physical in self.layout.pseudo_columns.values():
            if physical not in columns:
                columns.append(physical)
        columns.append(self.layout.document_column)
        return columns

    def _to_record(self, columns: List[str], row) -> Dict[str, Any]:
        record = dict(zip(columns, row))
        doc = self.layout.document_column
        record[doc] = decode_document(record.get(doc))
        return record

    # --- QueryBackend API ---
    def execute_sql(self, sql: str) -> Tuple[List[str], List[List[Any]]]:
        if not self.raw_sql:
            raise ExecutionUnavailable("Raw query execution is not available on this connection")
        cursor = self.connection.cursor()
        cursor.execute(sql)
        if cursor.description is None:
            self.connection.commit()
            return ["updated_rows"], [[cursor.rowcount]]
        columns = [desc[0] for desc in cursor.description]
        rows = [list(row) for row in cursor.fetchall()]
        return columns, rows

    def fetch_submissions(self, form_id: str, limit: int) -> List[Dict[str, Any]]:
        columns = self._record_columns()
        p = self.placeholder
        sql = (
            f"SELECT {', '.join(columns)} FROM {self.layout.table} "
            f"WHERE {self.layout.partition_column} = {p} LIMIT {int(limit)}"
        )
        cursor = self.connection.cursor()
        cursor.execute(sql, (form_id,))
        return [self._to_record(columns, row) for row in cursor.fetchall()]

    def fetch_submission(self, form_id: str, row_id: str) -> Optional[Dict[str, Any]]:
        columns = self._record_columns()
        p = self.placeholder
        sql = (
            f"SELECT {', '.join(columns)} FROM {self.layout.table} "
            f"WHERE {self.layout.partition_column} = {p} AND {self.layout.row_id_column} = {p}"
        )
        cursor = self.connection.cursor()
        cursor.execute(sql, (form_id, row_id))
        row = cursor.fetchone()
        return self._to_record(columns, row) if row is not None else None

    def merge_submission_data(self, form_id: str, row_id: str, patch: Mapping[str, Any]) -> int:
        current = self.fetch_submission(form_id, row_id)
        if current is None:
            return 0
        doc = self.layout.document_column
        merged = {**current[doc], **patch}
        p = self.placeholder
        sql = (
            f"UPDATE {self.layout.table} SET {doc} = {p} "
            f"WHERE {self.layout.partition_column} = {p} AND {self.layout.row_id_column} = {p}"
        )
        cursor = self.connection.cursor()
        cursor.execute(sql, (json.dumps(merged), form_id, row_id))
        self.connection.commit()
        logger.debug("Merged %d key(s) into submission %s", len(patch), row_id)
        return cursor.rowcount


__all__ = ["ExecutionUnavailable", "QueryBackend", "DbApiBackend", "decode_document"]
