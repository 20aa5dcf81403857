"""
Bulk edit domain types.

`FieldSelector` and `MutationValue` are closed variants: every consumer
dispatches on the concrete class and treats anything else as a bug.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, ClassVar, Dict, List, Optional, Tuple, Union

from ..metadata.fields import MULTI_VALUED_TYPES, FieldDefinition, FieldType, parse_field_type

COLLECTIONS_KEY = "collections"


class OperationType(str, Enum):
    ADD = "add"
    REPLACE = "replace"
    CLEAR = "clear"


def parse_operation(value: Any) -> Optional[OperationType]:
    try:
        return OperationType(str(value or "").strip().lower())
    except ValueError:
        return None


# --------------------------------------------------------------- selectors


@dataclass(frozen=True)
class RegularFieldSelector:
    field_id: int
    key: str
    label: str
    field_type: FieldType
    options: Tuple[str, ...] = ()

    kind: ClassVar[str] = "field"

    @property
    def is_multi_valued(self) -> bool:
        return self.field_type in MULTI_VALUED_TYPES

    @classmethod
    def from_field(cls, fdef: FieldDefinition) -> "RegularFieldSelector":
        return cls(
            field_id=int(fdef.id),
            key=fdef.key,
            label=fdef.label,
            field_type=fdef.type,
            options=tuple(fdef.options),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind,
            "field_id": self.field_id,
            "key": self.key,
            "label": self.label,
            "type": self.field_type.value,
            "options": list(self.options),
        }


@dataclass(frozen=True)
class CollectionsFieldSelector:
    """The collections pseudo-field: untyped and always multi-valued."""

    kind: ClassVar[str] = "collections"
    key: ClassVar[str] = COLLECTIONS_KEY
    label: ClassVar[str] = "Collections"
    is_multi_valued: ClassVar[bool] = True

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind, "key": self.key, "label": self.label}


FieldSelector = Union[RegularFieldSelector, CollectionsFieldSelector]


def selector_from_dict(data: Any) -> FieldSelector:
    if not isinstance(data, dict):
        raise ValueError("field selector must be an object")
    kind = data.get("kind")
    if kind == CollectionsFieldSelector.kind:
        return CollectionsFieldSelector()
    if kind == RegularFieldSelector.kind:
        ftype = parse_field_type(data.get("type"))
        if ftype is None:
            raise ValueError(f"unknown field type: {data.get('type')!r}")
        field_id = data.get("field_id")
        if isinstance(field_id, bool) or not isinstance(field_id, int):
            raise ValueError("field_id must be an integer")
        key = data.get("key")
        if not isinstance(key, str) or not key:
            raise ValueError("field key must be a non-empty string")
        options = data.get("options") or []
        if not isinstance(options, list) or not all(isinstance(o, str) for o in options):
            raise ValueError("field options must be a list of strings")
        return RegularFieldSelector(
            field_id=field_id,
            key=key,
            label=str(data.get("label") or key),
            field_type=ftype,
            options=tuple(options),
        )
    raise ValueError(f"unknown field selector kind: {kind!r}")


# ------------------------------------------------------------------ values


@dataclass(frozen=True)
class ScalarValue:
    value: Union[str, int, float, bool]
    kind: ClassVar[str] = "scalar"

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind, "value": self.value}


@dataclass(frozen=True)
class StringListValue:
    values: Tuple[str, ...]
    kind: ClassVar[str] = "strings"

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind, "values": list(self.values)}


@dataclass(frozen=True)
class IdListValue:
    ids: Tuple[int, ...]
    kind: ClassVar[str] = "ids"

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind, "ids": list(self.ids)}


@dataclass(frozen=True)
class NoValue:
    kind: ClassVar[str] = "none"

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind}


MutationValue = Union[ScalarValue, StringListValue, IdListValue, NoValue]


def value_from_dict(data: Any) -> MutationValue:
    if not isinstance(data, dict):
        raise ValueError("mutation value must be an object")
    kind = data.get("kind")
    if kind == ScalarValue.kind:
        value = data.get("value")
        if not isinstance(value, (str, int, float, bool)):
            raise ValueError("scalar value has an unsupported type")
        return ScalarValue(value)
    if kind == StringListValue.kind:
        values = data.get("values")
        if not isinstance(values, list) or not all(isinstance(v, str) for v in values):
            raise ValueError("string list value must be a list of strings")
        return StringListValue(tuple(values))
    if kind == IdListValue.kind:
        ids = data.get("ids")
        if not isinstance(ids, list) or not all(isinstance(i, int) and not isinstance(i, bool) for i in ids):
            raise ValueError("id list value must be a list of integers")
        return IdListValue(tuple(ids))
    if kind == NoValue.kind:
        return NoValue()
    raise ValueError(f"unknown mutation value kind: {kind!r}")


# ------------------------------------------------------------------ intent


@dataclass(frozen=True)
class MutationIntent:
    """Exactly what a preview token authorizes."""

    operation: OperationType
    field: FieldSelector
    value: MutationValue
    asset_ids: Tuple[str, ...]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "operation": self.operation.value,
            "field": self.field.to_dict(),
            "value": self.value.to_dict(),
            "asset_ids": list(self.asset_ids),
        }

    @classmethod
    def from_dict(cls, data: Any) -> "MutationIntent":
        if not isinstance(data, dict):
            raise ValueError("intent must be an object")
        operation = parse_operation(data.get("operation"))
        if operation is None:
            raise ValueError(f"unknown operation: {data.get('operation')!r}")
        asset_ids = data.get("asset_ids")
        if not isinstance(asset_ids, list) or not all(isinstance(a, str) and a for a in asset_ids):
            raise ValueError("asset_ids must be a list of non-empty strings")
        if not asset_ids:
            raise ValueError("asset_ids must not be empty")
        if len(set(asset_ids)) != len(asset_ids):
            raise ValueError("asset_ids must not contain duplicates")
        intent = cls(
            operation=operation,
            field=selector_from_dict(data.get("field")),
            value=value_from_dict(data.get("value")),
            asset_ids=tuple(asset_ids),
        )
        problem = intent.shape_error()
        if problem:
            raise ValueError(problem)
        return intent

    def shape_error(self) -> Optional[str]:
        """Describe a field/value/operation combination that can never be applied."""
        if self.operation == OperationType.CLEAR:
            return None if isinstance(self.value, NoValue) else "clear carries no value"
        if isinstance(self.value, NoValue):
            return f"{self.operation.value} requires a value"
        if isinstance(self.field, CollectionsFieldSelector):
            return None if isinstance(self.value, IdListValue) else "collections take a list of collection ids"
        if isinstance(self.value, IdListValue):
            return "collection ids only apply to the collections field"
        if self.field.is_multi_valued:
            return None if isinstance(self.value, StringListValue) else f"{self.field.key} takes a list of values"
        return None if isinstance(self.value, ScalarValue) else f"{self.field.key} takes a single value"


# ----------------------------------------------------------------- resolver


@dataclass(frozen=True)
class FieldOption:
    """A selectable field plus its current value on the reference asset."""

    selector: FieldSelector
    current_value: Any = None

    def to_dict(self) -> Dict[str, Any]:
        out = self.selector.to_dict()
        out["current_value"] = self.current_value
        return out


@dataclass(frozen=True)
class ResolvedFields:
    fields: Tuple[FieldOption, ...] = ()
    collections_field_visible: bool = False

    def find(self, key: str) -> Optional[FieldOption]:
        wanted = str(key or "").strip()
        if wanted == COLLECTIONS_KEY:
            if self.collections_field_visible:
                return FieldOption(CollectionsFieldSelector(), [])
            return None
        for opt in self.fields:
            if opt.selector.key == wanted:
                return opt
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "fields": [f.to_dict() for f in self.fields],
            "collections_field_visible": self.collections_field_visible,
        }


# ------------------------------------------------------------------ preview


@dataclass(frozen=True)
class PreviewChange:
    field_label: str
    old_display: str
    new_display: str

    def to_dict(self) -> Dict[str, Any]:
        return {"field": self.field_label, "old": self.old_display, "new": self.new_display}


@dataclass(frozen=True)
class PreviewEntry:
    asset_id: str
    label: str
    changes: Tuple[PreviewChange, ...]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "asset_id": self.asset_id,
            "label": self.label,
            "changes": [c.to_dict() for c in self.changes],
        }


@dataclass(frozen=True)
class PreviewAssetError:
    asset_id: str
    label: str
    errors: Tuple[str, ...]

    def to_dict(self) -> Dict[str, Any]:
        return {"asset_id": self.asset_id, "label": self.label, "errors": list(self.errors)}


@dataclass(frozen=True)
class PreviewWarning:
    asset_id: str
    message: str

    def to_dict(self) -> Dict[str, Any]:
        return {"asset_id": self.asset_id, "message": self.message}


@dataclass
class PreviewResult:
    total_assets: int
    affected: List[PreviewEntry] = field(default_factory=list)
    errored: List[PreviewAssetError] = field(default_factory=list)
    unaffected: List[str] = field(default_factory=list)
    warnings: List[PreviewWarning] = field(default_factory=list)

    @property
    def has_errors(self) -> bool:
        return bool(self.errored)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_assets": self.total_assets,
            "affected_count": len(self.affected),
            "errored_count": len(self.errored),
            "unaffected_count": len(self.unaffected),
            "affected": [e.to_dict() for e in self.affected],
            "errors": [e.to_dict() for e in self.errored],
            "unaffected": list(self.unaffected),
            "warnings": [w.to_dict() for w in self.warnings],
        }


# ---------------------------------------------------------------- execution


@dataclass(frozen=True)
class AssetOutcome:
    asset_id: str
    ok: bool
    reason: Optional[str] = None
    code: str = "OK"
    added: Tuple[int, ...] = ()
    removed: Tuple[int, ...] = ()

    @classmethod
    def success(cls, asset_id: str, *, added: Tuple[int, ...] = (), removed: Tuple[int, ...] = ()) -> "AssetOutcome":
        return cls(asset_id=asset_id, ok=True, added=added, removed=removed)

    @classmethod
    def failure(cls, asset_id: str, reason: str, code: str, *, added: Tuple[int, ...] = (), removed: Tuple[int, ...] = ()) -> "AssetOutcome":
        return cls(asset_id=asset_id, ok=False, reason=reason, code=str(code), added=added, removed=removed)

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"asset_id": self.asset_id, "ok": self.ok, "reason": self.reason, "code": self.code}
        if self.added or self.removed:
            out["added"] = list(self.added)
            out["removed"] = list(self.removed)
        return out


@dataclass(frozen=True)
class ExecutionResult:
    total_assets: int
    outcomes: Tuple[AssetOutcome, ...]

    @property
    def successes(self) -> List[AssetOutcome]:
        return [o for o in self.outcomes if o.ok]

    @property
    def failures(self) -> List[AssetOutcome]:
        return [o for o in self.outcomes if not o.ok]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_assets": self.total_assets,
            "success_count": len(self.successes),
            "failure_count": len(self.failures),
            "outcomes": [o.to_dict() for o in self.outcomes],
        }
