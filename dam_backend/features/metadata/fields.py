"""
Metadata field definitions as stored in `metadata_fields` / `category_fields`.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


class FieldType(str, Enum):
    TEXT = "text"
    NUMBER = "number"
    BOOLEAN = "boolean"
    DATE = "date"
    SELECT = "select"
    MULTISELECT = "multiselect"
    RATING = "rating"
    TAGS = "tags"


MULTI_VALUED_TYPES = frozenset({FieldType.MULTISELECT, FieldType.TAGS})

AUTOMATIC_POPULATION = "automatic"
COLLECTION_FIELD_KEY = "collection"


def parse_field_type(value: Any) -> Optional[FieldType]:
    try:
        return FieldType(str(value or "").strip().lower())
    except ValueError:
        return None


def _parse_options(raw: Any) -> Tuple[str, ...]:
    if raw is None or raw == "":
        return ()
    data = raw
    if isinstance(raw, str):
        try:
            data = json.loads(raw)
        except (TypeError, ValueError):
            return ()
    if not isinstance(data, list):
        return ()
    out: List[str] = []
    for item in data:
        # Options are either plain strings or {"value": ..., "label": ...}.
        if isinstance(item, dict):
            item = item.get("value")
        if item is None:
            continue
        s = str(item).strip()
        if s and s not in out:
            out.append(s)
    return tuple(out)


@dataclass(frozen=True)
class FieldDefinition:
    """A metadata field as seen through one category's schema."""

    id: int
    key: str
    label: str
    type: FieldType
    options: Tuple[str, ...] = ()
    readonly: bool = False
    population_mode: str = "manual"
    is_user_editable: bool = True
    is_internal_only: bool = False
    group_key: str = "general"
    group_label: str = "General"
    is_edit_hidden: bool = False
    sort_order: int = 0

    @property
    def is_multi_valued(self) -> bool:
        return self.type in MULTI_VALUED_TYPES

    @property
    def is_bulk_editable(self) -> bool:
        """Derived, system-computed and hidden fields are never bulk-editable."""
        if self.readonly or self.is_internal_only or not self.is_user_editable:
            return False
        return str(self.population_mode or "").lower() != AUTOMATIC_POPULATION

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "key": self.key,
            "label": self.label,
            "type": self.type.value,
            "options": list(self.options),
            "readonly": self.readonly,
            "population_mode": self.population_mode,
            "group": self.group_key,
        }

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> Optional["FieldDefinition"]:
        ftype = parse_field_type(row.get("type"))
        if ftype is None:
            return None
        try:
            field_id = int(row.get("id"))
        except (TypeError, ValueError):
            return None
        return cls(
            id=field_id,
            key=str(row.get("key") or ""),
            label=str(row.get("display_label") or row.get("key") or ""),
            type=ftype,
            options=_parse_options(row.get("options")),
            readonly=bool(row.get("readonly")) or bool(row.get("is_readonly")),
            population_mode=str(row.get("population_mode") or "manual"),
            is_user_editable=bool(row.get("is_user_editable", 1)),
            is_internal_only=bool(row.get("is_internal_only")),
            group_key=str(row.get("group_key") or "general"),
            group_label=str(row.get("group_label") or "General"),
            is_edit_hidden=bool(row.get("is_edit_hidden")),
            sort_order=int(row.get("sort_order") or 0),
        )


@dataclass
class SchemaGroup:
    key: str
    label: str
    fields: List[FieldDefinition] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {"key": self.key, "label": self.label, "fields": [f.to_dict() for f in self.fields]}
