from __future__ import annotations

import os
import re
import tomllib
from pathlib import Path
from typing import Any, Dict, Mapping

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .dsl.ast import PSEUDO_COLUMNS
from .dsl.compile import StorageLayout

_IDENT_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*(\.[A-Za-z_][A-Za-z0-9_]*)?$")

ENV_PREFIX = "FORMQL_"
CONFIG_ENV = "FORMQL_CONFIG"
DEFAULT_CONFIG_NAME = "formql.toml"


def _check_identifier(value: str) -> str:
    if not _IDENT_RE.match(value):
        raise ValueError(f"{value!r} is not a plain SQL identifier")
    return value


class StorageSettings(BaseModel):
    table: str = "form_submissions"
    document_column: str = "submission_data"
    partition_column: str = "form_id"
    row_id_column: str = "id"
    created_at_column: str = "created_at"

    model_config = ConfigDict(extra="ignore")

    @field_validator("table", "document_column", "partition_column", "row_id_column", "created_at_column")
    @classmethod
    def validate_identifier(cls, value: str) -> str:
        return _check_identifier(value)

    def layout(self) -> StorageLayout:
        pseudo = dict(PSEUDO_COLUMNS)
        pseudo["submission_id"] = self.row_id_column
        pseudo["submitted_at"] = self.created_at_column
        return StorageLayout(
            table=self.table,
            document_column=self.document_column,
            partition_column=self.partition_column,
            pseudo_columns=pseudo,
        )


class SchemaCacheSettings(BaseModel):
    forms_table: str = "forms"
    ttl_s: float | None = 300.0

    model_config = ConfigDict(extra="ignore")

    @field_validator("forms_table")
    @classmethod
    def validate_forms_table(cls, value: str) -> str:
        return _check_identifier(value)

    @field_validator("ttl_s")
    @classmethod
    def validate_ttl(cls, value: float | None) -> float | None:
        if value is None or value == 0:
            return None
        if value < 0:
            raise ValueError("schema_cache.ttl_s must be positive (or 0 to disable expiry)")
        return value


class ExecutionSettings(BaseModel):
    fallback_enabled: bool = True
    fallback_row_limit: int = Field(default=1000, gt=0)
    label_columns: bool = False

    model_config = ConfigDict(extra="ignore")


class LoggingSettings(BaseModel):
    level: str = "INFO"
    jsonl: bool = False
    log_dir: Path | None = None
    trace_queries: bool = False

    model_config = ConfigDict(extra="ignore")

    @field_validator("level")
    @classmethod
    def validate_level(cls, value: str) -> str:
        level = value.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown log level: {value}")
        return level


class FormQLSettings(BaseModel):
    storage: StorageSettings = StorageSettings()
    schema_cache: SchemaCacheSettings = SchemaCacheSettings()
    execution: ExecutionSettings = ExecutionSettings()
    logging: LoggingSettings = LoggingSettings()

    model_config = ConfigDict(extra="ignore")


def resolve_config_path(config: Path | None, environ: Mapping[str, str] | None = None) -> Path | None:
    if config is not None:
        return config
    env = os.environ if environ is None else environ
    if env.get(CONFIG_ENV):
        return Path(env[CONFIG_ENV])
    candidate = Path.cwd() / DEFAULT_CONFIG_NAME
    return candidate if candidate.exists() else None


def _deep_update(target: Dict[str, Any], updates: Mapping[str, Any]) -> Dict[str, Any]:
    for key, value in updates.items():
        if isinstance(value, Mapping) and isinstance(target.get(key), dict):
            _deep_update(target[key], value)
        else:
            target[key] = value
    return target


def _load_toml(path: Path | None) -> Dict[str, Any]:
    if path is None or not path.exists():
        return {}
    with path.open("rb") as f:
        return tomllib.load(f)


def _extract_prefixed(source: Mapping[str, str], *, prefix: str = ENV_PREFIX, delimiter: str = "__") -> Dict[str, Any]:
    data: Dict[str, Any] = {}
    for key, value in source.items():
        if not key.startswith(prefix) or key == CONFIG_ENV:
            continue
        path = key.removeprefix(prefix).split(delimiter)
        if len(path) < 2:
            continue
        target = data
        for part in path[:-1]:
            target = target.setdefault(part.lower(), {})
        target[path[-1].lower()] = value
    return data


def load_settings(
    *,
    config_path: Path | None = None,
    overrides: Dict[str, Any] | None = None,
    environ: Mapping[str, str] | None = None,
) -> FormQLSettings:
    """Merge TOML config, ``FORMQL_<SECTION>__<KEY>`` variables and overrides, in that order."""

    env = dict(os.environ) if environ is None else dict(environ)
    resolved = resolve_config_path(config_path, env)
    if config_path is not None and not config_path.exists():
        raise FileNotFoundError(f"Config file not found at {config_path}")

    merged: Dict[str, Any] = {}
    _deep_update(merged, _load_toml(resolved))
    _deep_update(merged, _extract_prefixed(env))
    if overrides:
        _deep_update(merged, overrides)

    return FormQLSettings(**merged)


__all__ = [
    "StorageSettings",
    "SchemaCacheSettings",
    "ExecutionSettings",
    "LoggingSettings",
    "FormQLSettings",
    "resolve_config_path",
    "load_settings",
]
