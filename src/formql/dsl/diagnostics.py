from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import List


class ErrorKind(str, Enum):
    SYNTAX = "syntax"
    UNKNOWN_TABLE = "unknown_table"
    UNKNOWN_COLUMN = "unknown_column"
    UNSUPPORTED = "unsupported"
    EXECUTION = "execution"


@dataclass(frozen=True)
class ParseError:
    message: str
    position: int
    kind: ErrorKind


@dataclass
class Diagnostics:
    messages: List[ParseError] = field(default_factory=list)

    def add(self, kind: ErrorKind, message: str, position: int = 0) -> None:
        self.messages.append(ParseError(message=message, position=position, kind=kind))

    def extend(self, other: "Diagnostics") -> None:
        self.messages.extend(other.messages)

    def has_errors(self) -> bool:
        return bool(self.messages)

    def errors(self) -> List[ParseError]:
        return list(self.messages)


class QuerySyntaxError(Exception):
    """Raised by the parser on the first token it cannot accept.

    ``kind`` is ``ErrorKind.SYNTAX`` for malformed input and
    ``ErrorKind.UNSUPPORTED`` for recognisable SQL that the DSL does not
    support (joins, ordering, ...).
    """

    def __init__(self, message: str, position: int, kind: ErrorKind = ErrorKind.SYNTAX):
        self.message = message
        self.position = position
        self.kind = kind
        super().__init__(self.__str__())

    def __str__(self) -> str:
        return f"{self.message} (at position {self.position})"

    def to_error(self) -> ParseError:
        return ParseError(message=self.message, position=self.position, kind=self.kind)


__all__ = ["ErrorKind", "ParseError", "Diagnostics", "QuerySyntaxError"]
