"""Recursive-descent parser for the form query DSL.

Grammar (one statement, no backtracking)::

    statement   := select | update
    select      := SELECT select_list FROM table [WHERE condition ((AND|OR) condition)*]
    select_list := '*' | item (',' item)*
    item        := (aggregate | column) [AS alias]
    aggregate   := AGG '(' (column | '*') ')'
    column      := FIELD '(' quoted ')' | quoted_uuid | pseudo_column | identifier
    condition   := column operator literal
    update      := UPDATE FORM table SET FIELD '(' quoted ')' '=' value WHERE submission_id '=' literal
    value       := literal | FIELD '(' quoted ')' | FUNC '(' value (',' value)* ')'

The parser is fail-fast: the first token it cannot accept raises
:class:`QuerySyntaxError`; :func:`parse_query` turns that into a diagnostic.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import List, Optional, Tuple, Union

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
    SelectClause,
    SelectItem,
    TableRef,
    UpdateQuery,
    ValueExpr,
    WhereClause,
)
from .diagnostics import Diagnostics, ErrorKind, QuerySyntaxError
from .functions import lookup as lookup_function
from .lexer import Token, TokenKind, prepare_input, tokenize

logger = logging.getLogger(__name__)

UNSUPPORTED_WORDS = frozenset(
    {
        "JOIN",
        "INNER",
        "OUTER",
        "CROSS",
        "GROUP",
        "ORDER",
        "BY",
        "HAVING",
        "LIMIT",
        "OFFSET",
        "UNION",
        "INTERSECT",
        "EXCEPT",
        "DISTINCT",
        "INSERT",
        "DELETE",
        "CREATE",
        "DROP",
        "ALTER",
        "WITH",
        "IN",
        "NOT",
        "BETWEEN",
        "IS",
        "EXISTS",
        "CASE",
    }
)

_ROW_ID_COLUMN = "submission_id"


def _describe(token: Token) -> str:
    if token.kind == TokenKind.EOF:
        return "end of input"
    return f"{token.kind.value} {token.text!r}"


@dataclass
class Parser:
    """Stateful cursor over a token list."""

    tokens: List[Token]
    i: int = 0

    def peek(self, offset: int = 0) -> Token:
        j = self.i + offset
        if j >= len(self.tokens):
            return self.tokens[-1]
        return self.tokens[j]

    def at(self, kind: TokenKind) -> bool:
        return self.peek().kind == kind

    def consume(self) -> Token:
        token = self.peek()
        if token.kind != TokenKind.EOF:
            self.i += 1
        return token

    def fail(self, expected: str, token: Optional[Token] = None) -> QuerySyntaxError:
        token = token or self.peek()
        word = token.value.upper() if token.kind in (TokenKind.UNRECOGNIZED, TokenKind.FUNCTION) else ""
        if word in UNSUPPORTED_WORDS:
            return QuerySyntaxError(f"{word} is not supported", token.position, ErrorKind.UNSUPPORTED)
        if token.kind == TokenKind.SEMICOLON:
            return QuerySyntaxError(
                "Only a single statement is supported", token.position, ErrorKind.UNSUPPORTED
            )
        return QuerySyntaxError(f"Unexpected {_describe(token)}, expected {expected}", token.position)

    def expect(self, kind: TokenKind, expected: str) -> Token:
        if not self.at(kind):
            raise self.fail(expected)
        return self.consume()

    # --- statements ---
    def parse(self) -> Query:
        if self.at(TokenKind.SELECT):
            query: Query = self.parse_select()
        elif self.at(TokenKind.UPDATE):
            query = self.parse_update()
        else:
            raise self.fail("SELECT or UPDATE FORM")
        if not self.at(TokenKind.EOF):
            raise self.fail("end of input")
        return query

    def parse_select(self) -> ParsedQuery:
        self.expect(TokenKind.SELECT, "SELECT")
        select = self.parse_select_list()
        self.expect(TokenKind.FROM, "FROM")
        table = self.parse_table()
        where: Optional[WhereClause] = None
        if self.at(TokenKind.WHERE):
            self.consume()
            where = self.parse_conditions()
        return ParsedQuery(select=select, from_=table, where=where)

    def parse_update(self) -> UpdateQuery:
        self.expect(TokenKind.UPDATE, "UPDATE")
        self.expect(TokenKind.FORM, "FORM after UPDATE")
        table = self.parse_table()
        self.expect(TokenKind.SET, "SET")
        if not self.at(TokenKind.FIELD):
            raise self.fail("FIELD('<field id>') after SET")
        target = self.parse_column()
        operator = self.expect(TokenKind.OPERATOR, "'='")
        if operator.value != "=":
            raise self.fail("'='", operator)
        value = self.parse_value()
        self.expect(TokenKind.WHERE, "WHERE submission_id = '<id>'")
        row_column = self.peek()
        if row_column.kind != TokenKind.UNRECOGNIZED or row_column.value.lower() != _ROW_ID_COLUMN:
            raise self.fail("submission_id")
        self.consume()
        operator = self.expect(TokenKind.OPERATOR, "'='")
        if operator.value != "=":
            raise self.fail("'='", operator)
        row_id = self.parse_literal()
        return UpdateQuery(table=table, target=target, value=value, row_id=row_id)

    # --- clauses ---
    def parse_select_list(self) -> SelectClause:
        if self.at(TokenKind.STAR):
            self.consume()
            return SelectClause(star=True)

        items: List[SelectItem] = [self.parse_select_item()]
        while self.at(TokenKind.COMMA):
            self.consume()
            items.append(self.parse_select_item())
        return SelectClause(items=tuple(items))

    def parse_select_item(self) -> SelectItem:
        expr: Union[ColumnRef, AggregateCall]
        if self.at(TokenKind.AGGREGATE):
            expr = self.parse_aggregate()
        else:
            expr = self.parse_column()
        alias: Optional[str] = None
        if self.at(TokenKind.AS):
            self.consume()
            token = self.peek()
            if token.kind == TokenKind.UNRECOGNIZED and token.value.upper() not in UNSUPPORTED_WORDS:
                alias = token.value
            elif token.quoted and token.kind != TokenKind.UNRECOGNIZED:
                alias = token.value
            else:
                raise self.fail("alias after AS")
            self.consume()
        return SelectItem(expr=expr, alias=alias)

    def parse_aggregate(self) -> AggregateCall:
        func = self.expect(TokenKind.AGGREGATE, "aggregate function")
        self.expect(TokenKind.LPAREN, f"'(' after {func.value}")
        argument: Optional[ColumnRef] = None
        if self.at(TokenKind.STAR):
            star = self.consume()
            if func.value != "COUNT":
                raise QuerySyntaxError(f"'*' is only allowed in COUNT(*), not {func.value}", star.position)
        else:
            argument = self.parse_column()
        self.expect(TokenKind.RPAREN, f"')' to close {func.value}")
        return AggregateCall(function=func.value, argument=argument, position=func.position)

    def parse_column(self) -> ColumnRef:
        token = self.peek()
        if token.kind == TokenKind.FIELD:
            self.consume()
            self.expect(TokenKind.LPAREN, "'(' after FIELD")
            ref = self.expect(TokenKind.COLUMN_REF, "quoted field id inside FIELD()")
            self.expect(TokenKind.RPAREN, "')' to close FIELD")
            return ColumnRef(name=ref.value, position=token.position)
        if token.kind == TokenKind.COLUMN_REF:
            self.consume()
            return ColumnRef(name=token.value, position=token.position)
        if token.kind == TokenKind.UNRECOGNIZED and (token.value[:1].isalpha() or token.value[:1] == "_"):
            if token.value.upper() in UNSUPPORTED_WORDS:
                raise self.fail("column")
            self.consume()
            name = token.value.lower()
            if name in PSEUDO_COLUMNS:
                return ColumnRef(name=name, position=token.position, pseudo=True)
            return ColumnRef(name=token.value, position=token.position)
        raise self.fail("column reference")

    def parse_table(self) -> TableRef:
        token = self.expect(TokenKind.TABLE_REF, "quoted form id")
        return TableRef(name=token.value, position=token.position)

    def parse_conditions(self) -> WhereClause:
        conditions: List[Condition] = [self.parse_condition()]
        connectors: List[str] = []
        while self.peek().kind in (TokenKind.AND, TokenKind.OR):
            connectors.append(self.consume().value)
            conditions.append(self.parse_condition())
        return WhereClause(conditions=tuple(conditions), connectors=tuple(connectors))

    def parse_condition(self) -> Condition:
        column = self.parse_column()
        operator = self.expect(TokenKind.OPERATOR, "comparison operator")
        value = self.parse_literal()
        if operator.value in ("LIKE", "ILIKE") and value.is_number:
            raise QuerySyntaxError(
                f"{operator.value} needs a quoted pattern, not a number", value.position, ErrorKind.UNSUPPORTED
            )
        return Condition(column=column, operator=operator.value, value=value)

    def parse_literal(self) -> LiteralExpr:
        token = self.peek()
        if token.kind == TokenKind.NUMBER:
            self.consume()
            return LiteralExpr(value=Decimal(token.value), position=token.position, raw=token.value)
        if token.quoted and token.kind in (TokenKind.STRING, TokenKind.COLUMN_REF, TokenKind.TABLE_REF):
            self.consume()
            return LiteralExpr(value=token.value, position=token.position)
        raise self.fail("string or number literal")

    def parse_value(self) -> ValueExpr:
        token = self.peek()
        if token.kind == TokenKind.FIELD:
            return FieldExpr(column=self.parse_column())
        if token.kind == TokenKind.FUNCTION:
            return self.parse_function()
        if token.kind == TokenKind.UNRECOGNIZED and self.peek(1).kind == TokenKind.LPAREN:
            raise QuerySyntaxError(
                f"Function {token.value.upper()} is not supported", token.position, ErrorKind.UNSUPPORTED
            )
        if token.kind == TokenKind.AGGREGATE:
            raise QuerySyntaxError(
                f"Aggregate {token.value} cannot be used in SET", token.position, ErrorKind.UNSUPPORTED
            )
        return self.parse_literal()

    def parse_function(self) -> FunctionCall:
        token = self.expect(TokenKind.FUNCTION, "function")
        self.expect(TokenKind.LPAREN, f"'(' after {token.value}")
        args: List[ValueExpr] = [self.parse_value()]
        while self.at(TokenKind.COMMA):
            self.consume()
            args.append(self.parse_value())
        self.expect(TokenKind.RPAREN, f"')' to close {token.value}")
        spec = lookup_function(token.value)
        if spec is None or not spec.accepts(len(args)):
            arity = spec.arity() if spec is not None else "?"
            raise QuerySyntaxError(
                f"{token.value} expects {arity} argument(s), got {len(args)}",
                token.position,
                ErrorKind.UNSUPPORTED,
            )
        return FunctionCall(name=token.value, args=tuple(args), position=token.position)


def build_ast(tokens: List[Token]) -> Query:
    """Build a query AST from ``tokens``; raises :class:`QuerySyntaxError`."""

    return Parser(tokens).parse()


def parse_query(src: str) -> Tuple[Optional[Query], Diagnostics]:
    """Lex and parse DSL source text into an AST plus diagnostics."""

    diagnostics = Diagnostics()
    if not isinstance(src, str):
        diagnostics.add(ErrorKind.SYNTAX, "Query source must be a string")
        return None, diagnostics

    text = prepare_input(src)
    if not text.strip():
        diagnostics.add(ErrorKind.SYNTAX, "Query is empty")
        return None, diagnostics

    try:
        query = build_ast(tokenize(text))
    except QuerySyntaxError as exc:
        logger.debug("Query rejected by parser: %s", exc)
        diagnostics.messages.append(exc.to_error())
        return None, diagnostics
    return query, diagnostics


__all__ = ["Parser", "UNSUPPORTED_WORDS", "build_ast", "parse_query"]
