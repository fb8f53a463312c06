from __future__ import annotations

import json
import logging
import threading
import time
from pathlib import Path
from typing import Callable, Dict, FrozenSet, Iterable, List, Mapping, Optional, Protocol, Union

from ..models import FieldDefinition, FormDefinition

logger = logging.getLogger(__name__)


def _normalize_name(value: object) -> str:
    s = str(value)
    s = s.strip()
    s = s.lower()
    s = " ".join(s.split())
    return s


class SchemaSnapshot:
    """Immutable view of the known forms and their field ids.

    Table and column identifiers are matched exactly; display names (form
    names, field labels) are matched after whitespace/case normalization.
    """

    def __init__(self, forms: Iterable[FormDefinition] = ()):
        self.forms: Dict[str, FormDefinition] = {}
        self.columns_by_table: Dict[str, FrozenSet[str]] = {}
        self._table_by_name: Dict[str, str] = {}
        self._column_by_label: Dict[str, Dict[str, str]] = {}

        for form in forms:
            if form.id in self.forms:
                raise ValueError(f"Duplicate form id: {form.id}")
            self.forms[form.id] = form
            self.columns_by_table[form.id] = frozenset(form.fields)
            self._table_by_name.setdefault(_normalize_name(form.name), form.id)
            labels: Dict[str, str] = {}
            for field in form.fields.values():
                labels.setdefault(_normalize_name(field.display_name), field.id)
            self._column_by_label[form.id] = labels

    @classmethod
    def from_mapping(cls, mapping: Mapping[str, Iterable[str]]) -> "SchemaSnapshot":
        """Build a snapshot from ``{table_id: [column_id, ...]}``."""

        forms = [
            FormDefinition(id=table, name=table, fields={col: FieldDefinition(id=col, label=col) for col in columns})
            for table, columns in mapping.items()
        ]
        return cls(forms)

    def __len__(self) -> int:
        return len(self.forms)

    def tables(self) -> List[str]:
        return list(self.forms)

    def has_table(self, table: str) -> bool:
        return table in self.forms

    def columns(self, table: str) -> FrozenSet[str]:
        if table not in self.columns_by_table:
            raise KeyError(table)
        return self.columns_by_table[table]

    def has_column(self, table: str, column: str) -> bool:
        return column in self.columns_by_table.get(table, frozenset())

    def form_name(self, table: str) -> str:
        return self.forms[table].name

    def field_label(self, table: str, column: str) -> str:
        form = self.forms[table]
        if column not in form.fields:
            raise KeyError(column)
        return form.fields[column].display_name

    def table_by_name(self, name: str) -> Optional[str]:
        return self._table_by_name.get(_normalize_name(name))

    def column_by_label(self, table: str, label: str) -> Optional[str]:
        return self._column_by_label.get(table, {}).get(_normalize_name(label))


class SchemaSource(Protocol):
    """Read-only provider of form definitions owned by the form builder."""

    def load_forms(self) -> List[FormDefinition]: ...


class StaticSchemaSource:
    """In-memory schema source; ``replace`` swaps the definitions it serves."""

    def __init__(self, forms: Union[Iterable[FormDefinition], Mapping[str, Iterable[str]]] = ()):
        self.forms: List[FormDefinition] = []
        self.replace(forms)

    def replace(self, forms: Union[Iterable[FormDefinition], Mapping[str, Iterable[str]]]) -> None:
        if isinstance(forms, Mapping):
            self.forms = list(SchemaSnapshot.from_mapping(forms).forms.values())
        else:
            self.forms = list(forms)

    def load_forms(self) -> List[FormDefinition]:
        return list(self.forms)

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> "StaticSchemaSource":
        """Load forms from a JSON file.

        Accepts either a list of ``{"id", "name", "fields": [{"id", "label", "type"}]}``
        objects or a plain ``{"<form id>": ["<field id>", ...]}`` mapping.
        """

        data = json.loads(Path(path).read_text(encoding="utf-8"))
        if isinstance(data, dict):
            return cls({str(k): [str(c) for c in v] for k, v in data.items()})
        if not isinstance(data, list):
            raise ValueError(f"Schema file {path} must contain a JSON list or object")
        forms = [FormDefinition.from_structure(str(item["id"]), item.get("name"), item) for item in data]
        return cls(forms)


class DbApiSchemaSource:
    """Schema source reading ``forms(id, name, form_structure)`` over DB-API 2.0."""

    def __init__(self, connection, table: str = "forms"):
        self.connection = connection
        self.table = table

    def load_forms(self) -> List[FormDefinition]:
        cursor = self.connection.cursor()
        cursor.execute(f"SELECT id, name, form_structure FROM {self.table}")
        forms = [
            FormDefinition.from_structure(str(form_id), name, structure)
            for form_id, name, structure in cursor.fetchall()
        ]
        return forms


class SchemaCache:
    """Lazily loaded, explicitly invalidated cache of the form schema.

    ``snapshot()`` loads on first use and after ``invalidate()``; with
    ``ttl_seconds`` set it also reloads once the snapshot is older than that.
    The source is read outside the lock, so a validation may briefly see a
    stale snapshot while a reload is in flight.
    """

    def __init__(
        self,
        source: SchemaSource,
        ttl_seconds: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.source = source
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._snapshot: Optional[SchemaSnapshot] = None
        self._loaded_at = 0.0
        self._generation = 0

    @property
    def loaded(self) -> bool:
        with self._lock:
            return self._snapshot is not None

    def _expired(self, loaded_at: float) -> bool:
        if self.ttl_seconds is None:
            return False
        return self._clock() - loaded_at >= self.ttl_seconds

    def snapshot(self) -> SchemaSnapshot:
        with self._lock:
            current = self._snapshot
            loaded_at = self._loaded_at
            generation = self._generation
        if current is not None and not self._expired(loaded_at):
            return current
        return self._load(generation)

    def invalidate(self) -> None:
        with self._lock:
            self._snapshot = None
            self._generation += 1
        logger.debug("Schema cache invalidated")

    def _load(self, generation: int) -> SchemaSnapshot:
        snapshot = SchemaSnapshot(self.source.load_forms())
        with self._lock:
            # an invalidate() during the load makes this snapshot stale; serve it once, don't keep it
            if self._generation == generation:
                self._snapshot = snapshot
                self._loaded_at = self._clock()
        logger.info("Schema cache loaded with %d forms", len(snapshot))
        return snapshot


__all__ = [
    "SchemaSnapshot",
    "SchemaSource",
    "StaticSchemaSource",
    "DbApiSchemaSource",
    "SchemaCache",
]
