"""Pydantic models exchanged with collaborators (schema source, UI, export)."""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

logger = logging.getLogger(__name__)

ErrorKindName = Literal["syntax", "unknown_table", "unknown_column", "unsupported", "execution"]


class FieldDefinition(BaseModel):
    id: str
    label: str = ""
    type: str = "text"
    required: bool = False

    model_config = ConfigDict(extra="ignore")

    @property
    def display_name(self) -> str:
        return self.label or self.id


class FormDefinition(BaseModel):
    id: str
    name: str = "Unnamed Form"
    fields: Dict[str, FieldDefinition] = Field(default_factory=dict)

    model_config = ConfigDict(extra="ignore")

    @classmethod
    def from_structure(cls, form_id: str, name: Optional[str], structure: Any) -> "FormDefinition":
        """Build a definition from a stored form structure (JSON text or mapping).

        Only ``structure["fields"]`` is read; each entry needs an ``id``.
        A malformed structure yields a form without fields.
        """

        if isinstance(structure, (str, bytes)):
            try:
                structure = json.loads(structure)
            except ValueError:
                logger.warning("Form %s has an unreadable structure; treating it as empty", form_id)
                structure = {}
        fields: Dict[str, FieldDefinition] = {}
        raw_fields = structure.get("fields") if isinstance(structure, dict) else None
        for raw in raw_fields or []:
            if not isinstance(raw, dict) or not raw.get("id"):
                continue
            field = FieldDefinition(
                id=str(raw["id"]),
                label=str(raw.get("label") or raw["id"]),
                type=str(raw.get("type") or "text"),
                required=bool(raw.get("required", False)),
            )
            fields[field.id] = field
        return cls(id=form_id, name=name or "Unnamed Form", fields=fields)


class QueryError(BaseModel):
    kind: ErrorKindName
    message: str
    position: Optional[int] = None


class QueryResult(BaseModel):
    """Result shape shared by remote execution and the client-side fallback."""

    columns: List[str] = Field(default_factory=list)
    rows: List[List[Any]] = Field(default_factory=list)
    errors: List[QueryError] = Field(default_factory=list)
    notes: List[str] = Field(default_factory=list)
    fallback: bool = False
    sql: Optional[str] = None

    @property
    def ok(self) -> bool:
        return not self.errors

    def error_messages(self) -> List[str]:
        return [err.message for err in self.errors]

    @classmethod
    def failure(cls, kind: ErrorKindName, message: str, *, position: Optional[int] = None, sql: Optional[str] = None) -> "QueryResult":
        return cls(errors=[QueryError(kind=kind, message=message, position=position)], sql=sql)


__all__ = ["FieldDefinition", "FormDefinition", "QueryError", "QueryResult"]
