"""Tokenizer for the form query DSL.

The lexer never raises: characters it cannot classify become
``UNRECOGNIZED`` tokens so that the parser can report them with a position.
Quoted spans are classified by context and by shape:

- right after ``FROM`` or ``UPDATE FORM`` a quoted span is a table reference;
- right after ``FIELD(`` it is a column reference;
- elsewhere a quoted UUID is a (legacy) column reference and anything else is
  a string literal.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import List

from .functions import STRING_FUNCTIONS


class TokenKind(str, Enum):
    SELECT = "select"
    FROM = "from"
    WHERE = "where"
    AND = "and"
    OR = "or"
    AS = "as"
    UPDATE = "update"
    SET = "set"
    FORM = "form"
    FIELD = "field"
    AGGREGATE = "aggregate"
    FUNCTION = "function"
    TABLE_REF = "table_ref"
    COLUMN_REF = "column_ref"
    STRING = "string"
    NUMBER = "number"
    OPERATOR = "operator"
    COMMA = "comma"
    SEMICOLON = "semicolon"
    LPAREN = "lparen"
    RPAREN = "rparen"
    STAR = "star"
    UNRECOGNIZED = "unrecognized"
    EOF = "eof"


@dataclass(frozen=True)
class Token:
    """A lexical token.

    ``text`` is the raw slice of the input, ``value`` the interpreted form:
    unquoted content for quoted spans, the upper-cased word for keywords and
    the original spelling for unrecognized words.
    """

    kind: TokenKind
    text: str
    position: int
    value: str = ""

    @property
    def quoted(self) -> bool:
        return self.text[:1] in ("'", '"')


KEYWORDS = {
    "SELECT": TokenKind.SELECT,
    "FROM": TokenKind.FROM,
    "WHERE": TokenKind.WHERE,
    "AND": TokenKind.AND,
    "OR": TokenKind.OR,
    "AS": TokenKind.AS,
    "UPDATE": TokenKind.UPDATE,
    "SET": TokenKind.SET,
    "FORM": TokenKind.FORM,
    "FIELD": TokenKind.FIELD,
}

AGGREGATES = frozenset({"COUNT", "SUM", "AVG", "MIN", "MAX", "MEDIAN"})

WORD_OPERATORS = frozenset({"LIKE", "ILIKE"})

# longest first so that ">=" wins over ">"
SYMBOL_OPERATORS = ("!=", "<>", ">=", "<=", "=", "<", ">")

_PUNCTUATION = {
    ",": TokenKind.COMMA,
    ";": TokenKind.SEMICOLON,
    "(": TokenKind.LPAREN,
    ")": TokenKind.RPAREN,
    "*": TokenKind.STAR,
}

UUID_RE = re.compile(r"^[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}$")
_WORD_RE = re.compile(r"[A-Za-z_][A-Za-z0-9_]*")
_NUMBER_RE = re.compile(r"\d+(?:\.\d+)?")


def is_uuid(value: str) -> bool:
    return bool(UUID_RE.match(value))


def prepare_input(src: str) -> str:
    """Drop trailing whitespace and semicolons.

    Everything before the end is kept as typed, so token positions are
    offsets into the caller's original text.
    """

    text = src.rstrip()
    while text.endswith(";"):
        text = text[:-1].rstrip()
    return text


def _read_quoted(src: str, start: int) -> tuple[str, int] | None:
    """Return (content, end) for the quoted span at ``start`` or None if unterminated.

    A doubled quote character inside the span stands for one literal quote.
    """

    quote = src[start]
    i = start + 1
    parts: List[str] = []
    while i < len(src):
        ch = src[i]
        if ch == quote:
            if i + 1 < len(src) and src[i + 1] == quote:
                parts.append(quote)
                i += 2
                continue
            return "".join(parts), i + 1
        parts.append(ch)
        i += 1
    return None


def _classify_quoted(content: str, previous: List[Token]) -> TokenKind:
    last = previous[-1].kind if previous else None
    if last in (TokenKind.FROM, TokenKind.FORM):
        return TokenKind.TABLE_REF
    if last == TokenKind.LPAREN and len(previous) >= 2 and previous[-2].kind == TokenKind.FIELD:
        return TokenKind.COLUMN_REF
    if is_uuid(content):
        return TokenKind.COLUMN_REF
    return TokenKind.STRING


def tokenize(src: str) -> List[Token]:
    """Tokenize ``src`` into a list terminated by an ``EOF`` token."""

    tokens: List[Token] = []
    i = 0
    n = len(src)

    while i < n:
        ch = src[i]

        if ch.isspace():
            i += 1
            continue

        if ch in ("'", '"'):
            read = _read_quoted(src, i)
            if read is None:
                tokens.append(Token(TokenKind.UNRECOGNIZED, src[i:], i, src[i:]))
                i = n
                continue
            content, end = read
            kind = _classify_quoted(content, tokens)
            tokens.append(Token(kind, src[i:end], i, content))
            i = end
            continue

        op = next((candidate for candidate in SYMBOL_OPERATORS if src.startswith(candidate, i)), None)
        if op is not None:
            tokens.append(Token(TokenKind.OPERATOR, op, i, op))
            i += len(op)
            continue

        if ch in _PUNCTUATION:
            tokens.append(Token(_PUNCTUATION[ch], ch, i, ch))
            i += 1
            continue

        number = _NUMBER_RE.match(src, i)
        if number:
            tokens.append(Token(TokenKind.NUMBER, number.group(0), i, number.group(0)))
            i = number.end()
            continue

        word = _WORD_RE.match(src, i)
        if word:
            text = word.group(0)
            upper = text.upper()
            if upper in KEYWORDS:
                tokens.append(Token(KEYWORDS[upper], text, i, upper))
            elif upper in AGGREGATES:
                tokens.append(Token(TokenKind.AGGREGATE, text, i, upper))
            elif upper in STRING_FUNCTIONS:
                tokens.append(Token(TokenKind.FUNCTION, text, i, upper))
            elif upper in WORD_OPERATORS:
                tokens.append(Token(TokenKind.OPERATOR, text, i, upper))
            else:
                tokens.append(Token(TokenKind.UNRECOGNIZED, text, i, text))
            i = word.end()
            continue

        tokens.append(Token(TokenKind.UNRECOGNIZED, ch, i, ch))
        i += 1

    tokens.append(Token(TokenKind.EOF, "", n, ""))
    return tokens


__all__ = [
    "TokenKind",
    "Token",
    "KEYWORDS",
    "AGGREGATES",
    "UUID_RE",
    "is_uuid",
    "prepare_input",
    "tokenize",
]
