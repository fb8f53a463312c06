from __future__ import annotations

import pytest

from formql.dsl import (
    AggregateCall,
    ColumnRef,
    Diagnostics,
    ErrorKind,
    FieldExpr,
    FunctionCall,
    LiteralExpr,
    ParsedQuery,
    QuerySyntaxError,
    UpdateQuery,
    build_ast,
    parse_query,
    tokenize,
)


def _parse_ok(src: str):
    query, diags = parse_query(src)
    assert isinstance(diags, Diagnostics)
    assert not diags.has_errors(), diags.errors()
    return query


def _parse_error(src: str):
    query, diags = parse_query(src)
    assert query is None
    errors = diags.errors()
    assert len(errors) == 1
    return errors[0]


def test_parse_simple_select():
    query = _parse_ok('SELECT FIELD("c1") FROM "f1"')
    assert isinstance(query, ParsedQuery)
    assert query.from_.name == "f1"
    assert query.select.items[0].expr == ColumnRef(name="c1", position=7)
    assert query.where is None


def test_parse_star():
    query = _parse_ok("SELECT * FROM 'f1'")
    assert query.select.star
    assert query.select.items == ()


def test_parse_aggregates_and_aliases():
    query = _parse_ok("SELECT COUNT(*) AS total, SUM(FIELD('amount')), MEDIAN(FIELD('amount')) AS mid FROM 'f1'")
    first, second, third = query.select.items
    assert first.expr == AggregateCall(function="COUNT", argument=None, position=7)
    assert first.alias == "total"
    assert isinstance(second.expr, AggregateCall)
    assert second.expr.function == "SUM"
    assert second.expr.argument.name == "amount"
    assert second.alias is None
    assert third.alias == "mid"


def test_parse_pseudo_columns():
    query = _parse_ok("SELECT submission_id, submitted_by, SUBMITTED_AT FROM 'f1'")
    refs = query.select.columns
    assert [ref.name for ref in refs] == ["submission_id", "submitted_by", "submitted_at"]
    assert all(ref.pseudo for ref in refs)


def test_parse_where_keeps_connectors_in_order():
    query = _parse_ok("SELECT * FROM 'f1' WHERE FIELD('a') = 'x' OR FIELD('b') > 2 AND submitted_by = 'u1'")
    where = query.where
    assert [c.column.name for c in where.conditions] == ["a", "b", "submitted_by"]
    assert where.connectors == ("OR", "AND")
    assert where.conditions[0].value == LiteralExpr(value="x", position=38)
    assert where.conditions[1].value.value == 2
    assert where.conditions[1].value.is_number


def test_parse_where_quoted_uuid_value_is_literal():
    uuid = "3f2b6c1e-9a4d-4e5f-8a7b-0c1d2e3f4a5b"
    query = _parse_ok(f"SELECT * FROM 'f1' WHERE submission_id = '{uuid}'")
    assert query.where.conditions[0].value.value == uuid


def test_parse_like():
    query = _parse_ok("SELECT * FROM 'f1' WHERE FIELD('name') ilike 'jo%'")
    assert query.where.conditions[0].operator == "ILIKE"


def test_parse_trailing_semicolon_and_newlines():
    query = _parse_ok("SELECT FIELD('c1')\n  FROM 'f1';")
    assert query.from_.name == "f1"


def test_parse_update_with_function():
    query = _parse_ok("UPDATE FORM 'f1' SET FIELD('c1') = LEFT(FIELD('c2'), 3) WHERE submission_id = 'r1'")
    assert isinstance(query, UpdateQuery)
    assert query.table.name == "f1"
    assert query.target.name == "c1"
    assert isinstance(query.value, FunctionCall)
    assert query.value.name == "LEFT"
    assert query.value.args[0] == FieldExpr(column=ColumnRef(name="c2", position=40))
    assert query.value.args[1].value == 3
    assert query.row_id.value == "r1"


def test_parse_update_nested_functions():
    query = _parse_ok(
        "UPDATE FORM 'f1' SET FIELD('c1') = UPPER(CONCAT(FIELD('first'), ' ', FIELD('last'))) "
        "WHERE submission_id = 'r1'"
    )
    outer = query.value
    assert outer.name == "UPPER"
    inner = outer.args[0]
    assert inner.name == "CONCAT"
    assert len(inner.args) == 3
    assert inner.args[1] == LiteralExpr(value=" ", position=inner.args[1].position)


def test_missing_from_is_syntax_error():
    err = _parse_error("SELECT FIELD('c1') 'f1'")
    assert err.kind == ErrorKind.SYNTAX
    assert err.position == 19


def test_empty_query_is_syntax_error():
    err = _parse_error("   ;")
    assert err.kind == ErrorKind.SYNTAX


def test_unterminated_quote_is_syntax_error_with_position():
    err = _parse_error("SELECT * FROM 'f1")
    assert err.kind == ErrorKind.SYNTAX
    assert err.position == 14


@pytest.mark.parametrize(
    "src,word",
    [
        ("SELECT * FROM 'f1' ORDER BY FIELD('c1')", "ORDER"),
        ("SELECT * FROM 'f1' LIMIT 10", "LIMIT"),
        ("SELECT * FROM 'f1' JOIN 'f2'", "JOIN"),
        ("SELECT DISTINCT FIELD('c1') FROM 'f1'", "DISTINCT"),
        ("DELETE FROM 'f1'", "DELETE"),
    ],
)
def test_recognisable_sql_is_unsupported(src, word):
    err = _parse_error(src)
    assert err.kind == ErrorKind.UNSUPPORTED
    assert word in err.message


def test_second_statement_is_unsupported():
    err = _parse_error("SELECT * FROM 'f1'; SELECT * FROM 'f2'")
    assert err.kind == ErrorKind.UNSUPPORTED


def test_star_only_in_count():
    err = _parse_error("SELECT SUM(*) FROM 'f1'")
    assert err.kind == ErrorKind.SYNTAX


def test_unknown_function_in_update_is_unsupported():
    err = _parse_error("UPDATE FORM 'f1' SET FIELD('c1') = REVERSE(FIELD('c2')) WHERE submission_id = 'r1'")
    assert err.kind == ErrorKind.UNSUPPORTED
    assert "REVERSE" in err.message


def test_wrong_function_arity_is_unsupported():
    err = _parse_error("UPDATE FORM 'f1' SET FIELD('c1') = LEFT(FIELD('c2')) WHERE submission_id = 'r1'")
    assert err.kind == ErrorKind.UNSUPPORTED
    assert "LEFT expects 2" in err.message


def test_update_requires_submission_id():
    err = _parse_error("UPDATE FORM 'f1' SET FIELD('c1') = 'x' WHERE FIELD('c2') = 'y'")
    assert err.kind == ErrorKind.SYNTAX


def test_build_ast_raises_on_bad_tokens():
    with pytest.raises(QuerySyntaxError) as excinfo:
        build_ast(tokenize("SELECT FROM 'f1'"))
    assert excinfo.value.position == 7
    assert excinfo.value.to_error().kind == ErrorKind.SYNTAX


def test_error_positions_index_the_original_text():
    src = "  SELECT\n      FROM 'f1'"
    err = _parse_error(src)
    assert err.kind == ErrorKind.SYNTAX
    assert src[err.position :].startswith("FROM")


def test_number_literal_keeps_its_spelling():
    query = _parse_ok("SELECT * FROM 'f1' WHERE FIELD('c1') = 007.50")
    literal = query.where.conditions[0].value
    assert literal.is_number
    assert literal.value == 7.5
    assert literal.text == "007.50"


@pytest.mark.parametrize("operator", ["LIKE", "ilike"])
def test_like_requires_quoted_pattern(operator):
    err = _parse_error(f"SELECT * FROM 'f1' WHERE FIELD('c1') {operator} 12")
    assert err.kind == ErrorKind.UNSUPPORTED
    assert err.position == 37 + len(operator) + 1
