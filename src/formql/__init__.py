from pydantic import __version__ as _pydantic_version

# formql relies on the Pydantic v2 API (model_validate/model_dump, ConfigDict).
# Import errors should surface early if an incompatible version is installed.
if not _pydantic_version.startswith("2"):
    raise ImportError(
        "formql requires pydantic>=2.0; detected version %s" % _pydantic_version
    )

from .dsl import (
    CompileResult,
    Diagnostics,
    ErrorKind,
    ParseError,
    QuerySyntaxError,
    SchemaCache,
    SchemaSnapshot,
    StaticSchemaSource,
    DbApiSchemaSource,
    StorageLayout,
    ast_to_sql,
    build_ast,
    compile_query,
    parse_query,
    tokenize,
    validate,
)
from .execution import DbApiBackend, ExecutionUnavailable, QueryBackend, QueryEngine
from .models import FieldDefinition, FormDefinition, QueryError, QueryResult
from .settings import FormQLSettings, load_settings

__all__ = [
    "tokenize",
    "build_ast",
    "parse_query",
    "validate",
    "ast_to_sql",
    "compile_query",
    "CompileResult",
    "Diagnostics",
    "ErrorKind",
    "ParseError",
    "QuerySyntaxError",
    "SchemaCache",
    "SchemaSnapshot",
    "StaticSchemaSource",
    "DbApiSchemaSource",
    "StorageLayout",
    "QueryEngine",
    "QueryBackend",
    "DbApiBackend",
    "ExecutionUnavailable",
    "FieldDefinition",
    "FormDefinition",
    "QueryError",
    "QueryResult",
    "FormQLSettings",
    "load_settings",
]
