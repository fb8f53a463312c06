from __future__ import annotations

import argparse
import json
import sqlite3
import sys
from pathlib import Path

from .dsl.compile import compile_query
from .dsl.lexer import tokenize
from .dsl.schema_registry import DbApiSchemaSource, SchemaCache, SchemaSource, StaticSchemaSource
from .execution.adapter import QueryEngine
from .execution.backends import DbApiBackend
from .logging_config import configure_logging
from .settings import FormQLSettings, load_settings


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Form query DSL utilities")
    parser.add_argument("--config", type=Path, default=None, help="Path to formql.toml")
    parser.add_argument("--log-level", default=None, help="Override logging.level")
    parser.add_argument(
        "--trace-queries", action="store_true", help="Log every query state transition at DEBUG"
    )
    sub = parser.add_subparsers(dest="command", required=True)

    tokens = sub.add_parser("tokens", help="Print the token stream of a query")
    tokens.add_argument("query")

    compile_p = sub.add_parser("compile", help="Validate a query and print the generated SQL")
    compile_p.add_argument("query")
    compile_p.add_argument("--schema", type=Path, required=True, help="JSON file with form definitions")

    run = sub.add_parser("run", help="Execute a query against a SQLite database (client-side evaluation)")
    run.add_argument("query")
    run.add_argument("--sqlite", type=Path, required=True, help="SQLite database with the submissions table")
    run.add_argument(
        "--schema",
        type=Path,
        default=None,
        help="JSON file with form definitions (default: read the forms table of --sqlite)",
    )

    schema = sub.add_parser("schema", help="List known forms and fields")
    schema.add_argument("--schema", type=Path, default=None, help="JSON file with form definitions")
    schema.add_argument("--sqlite", type=Path, default=None, help="SQLite database with a forms table")
    return parser.parse_args(argv)


def _schema_source(args: argparse.Namespace, settings: FormQLSettings, conn=None) -> SchemaSource:
    if getattr(args, "schema", None) is not None:
        return StaticSchemaSource.from_file(args.schema)
    if conn is not None:
        return DbApiSchemaSource(conn, table=settings.schema_cache.forms_table)
    raise SystemExit("Either --schema or --sqlite is required")


def _cmd_tokens(args: argparse.Namespace) -> int:
    for token in tokenize(args.query):
        print(f"{token.position:>4}  {token.kind.value:<14} {token.text}")
    return 0


def _print_errors(errors) -> None:
    for err in errors:
        position = "" if err.position is None else f" at {err.position}"
        print(f"{err.kind}{position}: {err.message}", file=sys.stderr)


def _cmd_compile(args: argparse.Namespace, settings: FormQLSettings) -> int:
    cache = SchemaCache(_schema_source(args, settings))
    result = compile_query(args.query, cache.snapshot(), settings.storage.layout())
    if not result.ok:
        for err in result.errors:
            print(f"{err.kind.value} at {err.position}: {err.message}", file=sys.stderr)
        return 1
    print(result.sql)
    return 0


def _cmd_run(args: argparse.Namespace, settings: FormQLSettings) -> int:
    conn = sqlite3.connect(args.sqlite)
    try:
        cache = SchemaCache(_schema_source(args, settings, conn), ttl_seconds=settings.schema_cache.ttl_s)
        layout = settings.storage.layout()
        backend = DbApiBackend(conn, layout, raw_sql=False, placeholder="?")
        engine = QueryEngine.from_settings(settings, cache, backend)
        result = engine.execute(args.query)
    finally:
        conn.close()

    for note in result.notes:
        print(f"note: {note}", file=sys.stderr)
    if not result.ok:
        _print_errors(result.errors)
        return 1
    print(json.dumps({"columns": result.columns, "rows": result.rows}, ensure_ascii=False, default=str))
    return 0


def _cmd_schema(args: argparse.Namespace, settings: FormQLSettings) -> int:
    conn = sqlite3.connect(args.sqlite) if args.sqlite is not None else None
    try:
        snapshot = SchemaCache(_schema_source(args, settings, conn)).snapshot()
    finally:
        if conn is not None:
            conn.close()
    for table in snapshot.tables():
        print(f"{table}  {snapshot.form_name(table)}")
        for column in sorted(snapshot.columns(table)):
            print(f"    {column}  {snapshot.field_label(table, column)}")
    return 0


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)
    logging_overrides: dict = {}
    if args.log_level:
        logging_overrides["level"] = args.log_level
    if args.trace_queries:
        logging_overrides["trace_queries"] = True
    overrides = {"logging": logging_overrides} if logging_overrides else None
    settings = load_settings(config_path=args.config, overrides=overrides)
    configure_logging(
        level=settings.logging.level,
        log_dir=settings.logging.log_dir,
        jsonl=settings.logging.jsonl,
        trace_queries=settings.logging.trace_queries,
    )

    if args.command == "tokens":
        return _cmd_tokens(args)
    if args.command == "compile":
        return _cmd_compile(args, settings)
    if args.command == "run":
        return _cmd_run(args, settings)
    if args.command == "schema":
        return _cmd_schema(args, settings)
    raise SystemExit(f"Unknown command: {args.command}")


if __name__ == "__main__":
    sys.exit(main())
