from __future__ import annotations

import json
import sqlite3

import pytest

from formql.execution.backends import DbApiBackend, ExecutionUnavailable, decode_document


def _connection() -> sqlite3.Connection:
    conn = sqlite3.connect(":memory:")
    conn.execute(
        """
        CREATE TABLE form_submissions (
            id TEXT PRIMARY KEY,
            form_id TEXT,
            submitted_by TEXT,
            created_at TEXT,
            submission_data TEXT
        )
        """
    )
    conn.executemany(
        "INSERT INTO form_submissions (id, form_id, submitted_by, created_at, submission_data) VALUES (?, ?, ?, ?, ?)",
        [
            ("r1", "f1", "u1", "2024-01-01", json.dumps({"c1": "a"})),
            ("r2", "f1", "u2", "2024-01-02", None),
            ("r3", "f2", "u1", "2024-01-03", json.dumps({"c1": "z"})),
        ],
    )
    conn.commit()
    return conn


def test_decode_document():
    assert decode_document(None) == {}
    assert decode_document('{"a": 1}') == {"a": 1}
    assert decode_document("[1, 2]") == {}
    assert decode_document({"a": 1}) == {"a": 1}
    with pytest.raises(TypeError):
        decode_document(42)


def test_execute_sql_unavailable_without_raw_sql():
    backend = DbApiBackend(_connection(), raw_sql=False)
    with pytest.raises(ExecutionUnavailable):
        backend.execute_sql("SELECT 1")


def test_execute_sql_returns_columns_and_rows():
    backend = DbApiBackend(_connection())
    columns, rows = backend.execute_sql("SELECT id, submitted_by FROM form_submissions WHERE form_id = 'f1' ORDER BY id")
    assert columns == ["id", "submitted_by"]
    assert rows == [["r1", "u1"], ["r2", "u2"]]


def test_execute_sql_reports_updated_rows():
    backend = DbApiBackend(_connection())
    columns, rows = backend.execute_sql("UPDATE form_submissions SET submitted_by = 'x' WHERE form_id = 'f1'")
    assert columns == ["updated_rows"]
    assert rows == [[2]]


def test_fetch_submissions_is_partitioned_and_limited():
    backend = DbApiBackend(_connection())
    records = backend.fetch_submissions("f1", limit=10)
    assert sorted(r["id"] for r in records) == ["r1", "r2"]
    assert {r["form_id"] for r in records} == {"f1"}
    by_id = {r["id"]: r for r in records}
    assert by_id["r1"]["submission_data"] == {"c1": "a"}
    assert by_id["r2"]["submission_data"] == {}
    assert len(backend.fetch_submissions("f1", limit=1)) == 1


def test_fetch_submission_respects_partition():
    backend = DbApiBackend(_connection())
    assert backend.fetch_submission("f1", "r1")["created_at"] == "2024-01-01"
    assert backend.fetch_submission("f1", "r3") is None


def test_merge_submission_data_sets_one_key():
    conn = _connection()
    backend = DbApiBackend(conn)
    assert backend.merge_submission_data("f1", "r1", {"c2": "b"}) == 1
    stored = conn.execute("SELECT submission_data FROM form_submissions WHERE id = 'r1'").fetchone()[0]
    assert json.loads(stored) == {"c1": "a", "c2": "b"}


def test_merge_submission_data_missing_row():
    backend = DbApiBackend(_connection())
    assert backend.merge_submission_data("f2", "r1", {"c2": "b"}) == 0
