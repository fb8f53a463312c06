"""String functions allowed inside UPDATE value expressions.

Each entry carries the SQL rendering used by the code generator and the
Python implementation used by the client-side fallback, so both execution
paths agree on what a function means.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Sequence


def _text(value: Any) -> str:
    return "" if value is None else str(value)


def _int(value: Any) -> int:
    return int(float(value))


def _left(value: Any, count: Any) -> str:
    # a negative count drops that many characters from the end
    return _text(value)[: _int(count)]


def _right(value: Any, count: Any) -> str:
    # a negative count drops that many characters from the start
    n = _int(count)
    return _text(value)[-n:] if n else ""


def _substring(value: Any, start: Any, length: Any = None) -> str:
    """1-based window; positions before the first character still count toward ``length``."""

    s = _text(value)
    begin = _int(start) - 1
    if length is None:
        return s[max(begin, 0) :]
    n = _int(length)
    if n < 0:
        raise ValueError("negative substring length not allowed")
    return s[max(begin, 0) : max(begin + n, 0)]


def _render_call(name: str) -> Callable[[Sequence[str]], str]:
    def render(args: Sequence[str]) -> str:
        return f"{name}({', '.join(args)})"

    return render


def _render_substring(args: Sequence[str]) -> str:
    if len(args) == 3:
        return f"SUBSTRING({args[0]} FROM {args[1]} FOR {args[2]})"
    return f"SUBSTRING({args[0]} FROM {args[1]})"


@dataclass(frozen=True)
class StringFunction:
    name: str
    min_args: int
    max_args: Optional[int]
    render_sql: Callable[[Sequence[str]], str]
    evaluate: Callable[..., Any]

    def accepts(self, count: int) -> bool:
        if count < self.min_args:
            return False
        return self.max_args is None or count <= self.max_args

    def arity(self) -> str:
        if self.max_args is None:
            return f"at least {self.min_args}"
        if self.max_args == self.min_args:
            return str(self.min_args)
        return f"{self.min_args} to {self.max_args}"


STRING_FUNCTIONS: Dict[str, StringFunction] = {
    "LEFT": StringFunction("LEFT", 2, 2, _render_call("LEFT"), _left),
    "RIGHT": StringFunction("RIGHT", 2, 2, _render_call("RIGHT"), _right),
    "UPPER": StringFunction("UPPER", 1, 1, _render_call("UPPER"), lambda s: _text(s).upper()),
    "LOWER": StringFunction("LOWER", 1, 1, _render_call("LOWER"), lambda s: _text(s).lower()),
    "TRIM": StringFunction("TRIM", 1, 1, _render_call("BTRIM"), lambda s: _text(s).strip()),
    "LENGTH": StringFunction("LENGTH", 1, 1, _render_call("CHAR_LENGTH"), lambda s: len(_text(s))),
    "CONCAT": StringFunction(
        "CONCAT", 1, None, _render_call("CONCAT"), lambda *args: "".join(_text(a) for a in args)
    ),
    "SUBSTRING": StringFunction("SUBSTRING", 2, 3, _render_substring, _substring),
    "REPLACE": StringFunction(
        "REPLACE", 3, 3, _render_call("REPLACE"), lambda s, old, new: _text(s).replace(_text(old), _text(new))
    ),
}


def lookup(name: str) -> Optional[StringFunction]:
    return STRING_FUNCTIONS.get(name.upper())


__all__ = ["StringFunction", "STRING_FUNCTIONS", "lookup"]
