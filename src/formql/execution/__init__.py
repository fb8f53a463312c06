from .adapter import UPDATE_COLUMNS, UPDATE_SUCCESS_MESSAGE, QueryEngine
from .backends import DbApiBackend, ExecutionUnavailable, QueryBackend, decode_document
from .fallback import evaluate_select, evaluate_update

__all__ = [
    "QueryEngine",
    "UPDATE_COLUMNS",
    "UPDATE_SUCCESS_MESSAGE",
    "QueryBackend",
    "DbApiBackend",
    "ExecutionUnavailable",
    "decode_document",
    "evaluate_select",
    "evaluate_update",
]
