from __future__ import annotations

import pytest

from formql.dsl import (
    ErrorKind,
    SchemaSnapshot,
    StorageLayout,
    ast_to_sql,
    compile_query,
    parse_query,
)

UUID = "3f2b6c1e-9a4d-4e5f-8a7b-0c1d2e3f4a5b"


def _schema() -> SchemaSnapshot:
    return SchemaSnapshot.from_mapping(
        {
            "f1": ["c1", "c2", "amount", "city", "age"],
            UUID: ["c1"],
        }
    )


def _num(key: str) -> str:
    doc = f"submission_data ->> '{key}'"
    return rf"CASE WHEN ({doc}) ~ '^-?[0-9]+(\.[0-9]+)?$' THEN ({doc})::numeric END"


def _sql(src: str, layout: StorageLayout | None = None) -> str:
    result = compile_query(src, _schema(), layout or StorageLayout())
    assert result.ok, result.errors
    return result.sql


def test_scenario_select_field():
    sql = _sql('SELECT FIELD("c1") FROM "f1"')
    assert sql == "SELECT submission_data ->> 'c1' AS \"c1\" FROM form_submissions WHERE form_id = 'f1'"


def test_partition_filter_uses_exact_identifier():
    sql = _sql(f'SELECT FIELD("c1") FROM "{UUID}"')
    assert f"form_id = '{UUID}'" in sql


def test_star_selects_pseudo_columns_and_document():
    sql = _sql("SELECT * FROM 'f1'")
    assert sql == (
        'SELECT id AS "submission_id", submitted_by, created_at AS "submitted_at", submission_data '
        "FROM form_submissions WHERE form_id = 'f1'"
    )


def test_pseudo_columns_map_to_physical_columns():
    sql = _sql("SELECT submission_id, submitted_by FROM 'f1'")
    assert sql.startswith('SELECT id AS "submission_id", submitted_by FROM form_submissions')


def test_sum_and_avg_cast_count_does_not():
    sql = _sql("SELECT COUNT(FIELD('amount')), SUM(FIELD('amount')), AVG(FIELD('amount')) FROM 'f1'")
    assert "COUNT(submission_data ->> 'amount') AS \"count_amount\"" in sql
    assert f"SUM({_num('amount')}) AS \"sum_amount\"" in sql
    assert f"AVG({_num('amount')}) AS \"avg_amount\"" in sql
    assert "COUNT(CASE" not in sql


def test_count_star_and_alias():
    sql = _sql("SELECT COUNT(*), COUNT(*) AS total FROM 'f1'")
    assert sql.startswith('SELECT COUNT(*) AS "count", COUNT(*) AS "total" FROM')


def test_min_max_cast_documents_not_pseudo_columns():
    sql = _sql("SELECT MIN(FIELD('age')), MAX(submitted_at) FROM 'f1'")
    assert f"MIN({_num('age')}) AS \"min_age\"" in sql
    assert 'MAX(created_at) AS "max_submitted_at"' in sql


def test_median_uses_percentile_cont():
    sql = _sql("SELECT MEDIAN(FIELD('age')) FROM 'f1'")
    assert f"percentile_cont(0.5) WITHIN GROUP (ORDER BY {_num('age')}) AS \"median_age\"" in sql


def test_mixing_columns_and_aggregates_groups():
    sql = _sql("SELECT FIELD('city'), AVG(FIELD('age')) FROM 'f1'")
    assert sql == (
        f"SELECT submission_data ->> 'city' AS \"city\", AVG({_num('age')}) AS \"avg_age\" "
        "FROM form_submissions WHERE form_id = 'f1' GROUP BY submission_data ->> 'city'"
    )


def test_where_conditions_nest_left_to_right_inside_partition():
    sql = _sql("SELECT * FROM 'f1' WHERE FIELD('age') > 30 AND FIELD('city') = 'Oslo' OR submitted_by = 'u1'")
    assert sql.endswith(
        "WHERE form_id = 'f1' AND "
        f"(({_num('age')} > 30 AND submission_data ->> 'city' = 'Oslo') "
        "OR submitted_by = 'u1')"
    )


def test_single_condition_and_decimal_literal():
    sql = _sql("SELECT FIELD('c1') FROM 'f1' WHERE FIELD('age') >= 2.5")
    assert sql.endswith(f"WHERE form_id = 'f1' AND {_num('age')} >= 2.5")


def test_string_values_are_escaped():
    sql = _sql("SELECT * FROM 'f1' WHERE FIELD('city') = 'O''Brien'")
    assert sql.endswith("submission_data ->> 'city' = 'O''Brien'")


def test_like_is_passed_through():
    sql = _sql("SELECT * FROM 'f1' WHERE FIELD('city') ilike 'os%'")
    assert sql.endswith("submission_data ->> 'city' ILIKE 'os%'")


def test_scenario_update_with_left():
    sql = _sql("UPDATE FORM 'f1' SET FIELD('c1') = LEFT(FIELD('c2'), 3) WHERE submission_id = 'r1'")
    assert sql == (
        "UPDATE form_submissions "
        "SET submission_data = COALESCE(submission_data, '{}'::jsonb) || "
        "jsonb_build_object('c1', (LEFT((submission_data ->> 'c2'), 3))::text) "
        "WHERE form_id = 'f1' AND id = 'r1'"
    )


def test_update_functions_are_translated():
    sql = _sql(
        "UPDATE FORM 'f1' SET FIELD('c1') = CONCAT(TRIM(FIELD('c2')), SUBSTRING(FIELD('city'), 2, 3)) "
        "WHERE submission_id = 'r1'"
    )
    assert "CONCAT(BTRIM((submission_data ->> 'c2')), SUBSTRING((submission_data ->> 'city') FROM 2 FOR 3))" in sql


def test_update_literal_value():
    sql = _sql("UPDATE FORM 'f1' SET FIELD('c1') = 'done' WHERE submission_id = 'r1'")
    assert "jsonb_build_object('c1', 'done') WHERE" in sql


def test_custom_storage_layout():
    layout = StorageLayout(table="tenant_rows", document_column="doc", partition_column="tenant_form")
    sql = _sql("SELECT FIELD('c1') FROM 'f1'", layout)
    assert sql == "SELECT doc ->> 'c1' AS \"c1\" FROM tenant_rows WHERE tenant_form = 'f1'"


def test_compile_stops_at_syntax_error():
    result = compile_query("SELECT FROM 'f1'", _schema())
    assert not result.ok
    assert result.sql is None
    assert result.query is None
    assert [e.kind for e in result.errors] == [ErrorKind.SYNTAX]


def test_compile_stops_at_semantic_errors():
    result = compile_query("SELECT FIELD('zzz') FROM 'f1'", _schema())
    assert result.sql is None
    assert result.query is not None
    assert [e.kind for e in result.errors] == [ErrorKind.UNKNOWN_COLUMN]


def test_compile_accepts_parsed_query():
    query, _ = parse_query("SELECT FIELD('c1') FROM 'f1'")
    result = compile_query(query, _schema())
    assert result.ok
    assert result.sql == ast_to_sql(query)


def test_ast_to_sql_rejects_non_ast():
    with pytest.raises(TypeError):
        ast_to_sql("SELECT * FROM 'f1'")


def test_numeric_literals_are_emitted_as_typed():
    sql = _sql("SELECT * FROM 'f1' WHERE FIELD('amount') = 12345678901234567.89")
    assert sql.endswith(f"{_num('amount')} = 12345678901234567.89")
    sql = _sql("SELECT * FROM 'f1' WHERE FIELD('amount') < 1.10")
    assert sql.endswith(f"{_num('amount')} < 1.10")


def test_update_stores_number_literal_verbatim():
    sql = _sql("UPDATE FORM 'f1' SET FIELD('c1') = 1.10 WHERE submission_id = 'r1'")
    assert "jsonb_build_object('c1', '1.10')" in sql
    sql = _sql("UPDATE FORM 'f1' SET FIELD('c1') = 007 WHERE submission_id = 'r1'")
    assert "jsonb_build_object('c1', '007')" in sql


def test_numeric_cast_is_guarded_against_non_numeric_text():
    sql = _sql("SELECT SUM(FIELD('amount')) FROM 'f1' WHERE FIELD('age') > 18")
    assert f"SUM({_num('amount')})" in sql
    assert sql.endswith(f"{_num('age')} > 18")
    assert sql.count("::numeric") == sql.count("CASE WHEN") == 2


def test_like_with_number_operand_is_unsupported():
    result = compile_query("SELECT * FROM 'f1' WHERE FIELD('c1') LIKE 5", _schema())
    assert result.sql is None
    assert [e.kind for e in result.errors] == [ErrorKind.UNSUPPORTED]
    assert result.errors[0].position == 42
