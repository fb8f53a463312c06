from .ast import (
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
    WhereClause,
)
from .compile import DEFAULT_LAYOUT, CompileResult, StorageLayout, ast_to_sql, compile_query
from .diagnostics import Diagnostics, ErrorKind, ParseError, QuerySyntaxError
from .lexer import Token, TokenKind, prepare_input, tokenize
from .parser import build_ast, parse_query
from .schema_registry import (
    DbApiSchemaSource,
    SchemaCache,
    SchemaSnapshot,
    SchemaSource,
    StaticSchemaSource,
)
from .validate import validate, validate_query

__all__ = [
    "Token",
    "TokenKind",
    "prepare_input",
    "tokenize",
    "ColumnRef",
    "AggregateCall",
    "SelectItem",
    "SelectClause",
    "TableRef",
    "LiteralExpr",
    "Condition",
    "WhereClause",
    "ParsedQuery",
    "FieldExpr",
    "FunctionCall",
    "UpdateQuery",
    "Query",
    "ErrorKind",
    "ParseError",
    "Diagnostics",
    "QuerySyntaxError",
    "build_ast",
    "parse_query",
    "SchemaSnapshot",
    "SchemaSource",
    "StaticSchemaSource",
    "DbApiSchemaSource",
    "SchemaCache",
    "validate",
    "validate_query",
    "StorageLayout",
    "DEFAULT_LAYOUT",
    "CompileResult",
    "ast_to_sql",
    "compile_query",
]
