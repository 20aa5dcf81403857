"""
Field-type semantics for bulk edits: input validation, normalization,
equality and display.
"""

from __future__ import annotations

import math
from datetime import date, datetime
from typing import Any, List, Optional, Tuple

from ...shared import ErrorCode, Result
from ...utils import dedupe_preserving_order, parse_bool_strict
from ..metadata.fields import MULTI_VALUED_TYPES, FieldType
from .models import (
    CollectionsFieldSelector,
    FieldSelector,
    IdListValue,
    MutationValue,
    NoValue,
    OperationType,
    RegularFieldSelector,
    ScalarValue,
    StringListValue,
)

NOT_SET_DISPLAY = "Not set"
RATING_MIN = 0
RATING_MAX = 5
MAX_TEXT_LEN = 10_000
MAX_LIST_ITEMS = 500


def _invalid(message: str) -> Result[Any]:
    return Result.Err(ErrorCode.VALIDATION_ERROR, message)


# ------------------------------------------------------------ coercion


def _coerce_number(value: Any) -> Optional[int | float]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return value if math.isfinite(value) else None
    if isinstance(value, str):
        s = value.strip()
        if not s:
            return None
        try:
            return int(s)
        except ValueError:
            pass
        try:
            f = float(s)
        except ValueError:
            return None
        return f if math.isfinite(f) else None
    return None


def _coerce_date(value: Any) -> Optional[str]:
    """Normalize a date or datetime to its ISO form."""
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if not isinstance(value, str):
        return None
    s = value.strip()
    if not s:
        return None
    try:
        return date.fromisoformat(s).isoformat()
    except ValueError:
        pass
    if s.endswith("Z") or s.endswith("z"):
        s = s[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(s).isoformat()
    except ValueError:
        return None


def _coerce_rating(value: Any) -> Optional[int]:
    num = _coerce_number(value)
    if num is None:
        return None
    if isinstance(num, float):
        if not num.is_integer():
            return None
        num = int(num)
    if num < RATING_MIN or num > RATING_MAX:
        return None
    return num


def _string_items(raw: Any) -> Optional[List[str]]:
    if isinstance(raw, str):
        # Free-form tag input may arrive comma separated.
        raw = raw.split(",")
    if not isinstance(raw, (list, tuple)):
        return None
    items: List[str] = []
    for item in raw:
        if item is None or isinstance(item, (dict, list, tuple)):
            return None
        s = str(item).strip()
        if s:
            items.append(s)
    return dedupe_preserving_order(items)


# ----------------------------------------------------------- validation


def validate_regular_value(selector: RegularFieldSelector, raw: Any) -> Result[MutationValue]:
    """Validate user input for an add/replace on a regular field."""
    ftype = selector.field_type
    label = selector.label or selector.key

    if ftype in MULTI_VALUED_TYPES:
        if isinstance(raw, str) and ftype == FieldType.MULTISELECT:
            return _invalid(f"{label} requires a list of values")
        items = _string_items(raw)
        if items is None:
            return _invalid(f"{label} requires a list of values")
        if not items:
            return _invalid(f"{label} requires at least one value")
        if len(items) > MAX_LIST_ITEMS:
            return _invalid(f"{label} accepts at most {MAX_LIST_ITEMS} values")
        if ftype == FieldType.MULTISELECT and selector.options:
            unknown = [i for i in items if i not in selector.options]
            if unknown:
                return _invalid(f"Invalid option(s) for {label}: {', '.join(unknown)}")
        return Result.Ok(StringListValue(tuple(items)))

    if ftype == FieldType.NUMBER:
        num = _coerce_number(raw)
        if num is None:
            return _invalid(f"{label} must be a number")
        return Result.Ok(ScalarValue(num))

    if ftype == FieldType.RATING:
        rating = _coerce_rating(raw)
        if rating is None:
            return _invalid(f"{label} must be a whole number between {RATING_MIN} and {RATING_MAX}")
        return Result.Ok(ScalarValue(rating))

    if ftype == FieldType.BOOLEAN:
        flag = parse_bool_strict(raw)
        if flag is None:
            return _invalid(f"{label} must be true or false")
        return Result.Ok(ScalarValue(flag))

    if ftype == FieldType.DATE:
        iso = _coerce_date(raw)
        if iso is None:
            return _invalid(f"{label} must be a valid date")
        return Result.Ok(ScalarValue(iso))

    if ftype == FieldType.SELECT:
        if raw is None or isinstance(raw, (list, tuple, dict)):
            return _invalid(f"{label} requires a value")
        choice = str(raw).strip()
        if not choice:
            return _invalid(f"{label} requires a value")
        if selector.options and choice not in selector.options:
            return _invalid(f"Invalid option for {label}: {choice}")
        return Result.Ok(ScalarValue(choice))

    if ftype == FieldType.TEXT:
        if raw is None or isinstance(raw, (list, tuple, dict, bool)):
            return _invalid(f"{label} requires a value")
        text = str(raw).strip()
        if not text:
            return _invalid(f"{label} requires a value")
        if len(text) > MAX_TEXT_LEN:
            return _invalid(f"{label} is too long")
        return Result.Ok(ScalarValue(text))

    raise AssertionError(f"unhandled field type: {ftype!r}")


def validate_collection_ids(raw: Any) -> Result[MutationValue]:
    """Validate a collection id selection for add/replace."""
    if isinstance(raw, (str, int)) and not isinstance(raw, bool):
        raw = [raw]
    if not isinstance(raw, (list, tuple)):
        return _invalid("Select at least one collection")
    ids: List[int] = []
    for item in raw:
        if isinstance(item, bool):
            return _invalid(f"Invalid collection id: {item}")
        try:
            cid = int(item)
        except (TypeError, ValueError):
            return _invalid(f"Invalid collection id: {item}")
        if cid <= 0:
            return _invalid(f"Invalid collection id: {item}")
        ids.append(cid)
    ids = dedupe_preserving_order(ids)
    if not ids:
        return _invalid("Select at least one collection")
    if len(ids) > MAX_LIST_ITEMS:
        return _invalid(f"At most {MAX_LIST_ITEMS} collections can be selected")
    return Result.Ok(IdListValue(tuple(ids)))


def build_mutation_value(selector: FieldSelector, operation: OperationType, raw: Any) -> Result[MutationValue]:
    """Turn raw input into a typed value; `clear` never needs one."""
    if operation == OperationType.CLEAR:
        return Result.Ok(NoValue())
    if isinstance(selector, CollectionsFieldSelector):
        return validate_collection_ids(raw)
    if isinstance(selector, RegularFieldSelector):
        return validate_regular_value(selector, raw)
    raise AssertionError(f"unhandled field selector: {selector!r}")


# -------------------------------------------------------- stored values


def storage_value(value: MutationValue) -> Any:
    """The JSON value handed to the metadata store."""
    if isinstance(value, ScalarValue):
        return value.value
    if isinstance(value, StringListValue):
        return list(value.values)
    if isinstance(value, IdListValue):
        return list(value.ids)
    if isinstance(value, NoValue):
        return None
    raise AssertionError(f"unhandled mutation value: {value!r}")


def empty_value(field_type: FieldType) -> Any:
    return [] if field_type in MULTI_VALUED_TYPES else None


def unknown_options(field_type: FieldType, options: Tuple[str, ...], value: Any) -> List[str]:
    """Items of a select/multiselect `value` that are not among `options`."""
    if field_type not in (FieldType.SELECT, FieldType.MULTISELECT) or not options or value is None:
        return []
    return [str(item) for item in _as_items(value) if str(item) not in options]


def _normalize_scalar(field_type: FieldType, value: Any) -> Any:
    if field_type in (FieldType.NUMBER, FieldType.RATING):
        num = _coerce_number(value)
        if num is not None:
            return float(num)
    elif field_type == FieldType.BOOLEAN:
        flag = parse_bool_strict(value)
        if flag is not None:
            return flag
    elif field_type == FieldType.DATE:
        iso = _coerce_date(value)
        if iso is not None:
            return iso
    if isinstance(value, str):
        return value.strip()
    return value


def _as_items(value: Any) -> List[Any]:
    if value is None:
        return []
    if isinstance(value, (list, tuple, set, frozenset)):
        return list(value)
    return [value]


def is_empty(field_type: FieldType, value: Any) -> bool:
    if value is None:
        return True
    if field_type in MULTI_VALUED_TYPES:
        return not [i for i in _as_items(value) if str(i).strip()]
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (list, tuple)):
        return len(value) == 0
    return False


def normalize_for_compare(field_type: FieldType, value: Any) -> Any:
    """Canonical form used for change detection."""
    if is_empty(field_type, value):
        return None
    if field_type in MULTI_VALUED_TYPES:
        return frozenset(str(i).strip() for i in _as_items(value) if str(i).strip())
    return _normalize_scalar(field_type, value)


def values_equal(field_type: FieldType, a: Any, b: Any) -> bool:
    """Scalars compare after normalization; multi-valued fields compare as sets."""
    return normalize_for_compare(field_type, a) == normalize_for_compare(field_type, b)


def ids_as_set(values: Any) -> frozenset:
    out = set()
    for item in _as_items(values):
        try:
            out.add(int(item))
        except (TypeError, ValueError):
            continue
    return frozenset(out)


# --------------------------------------------------------------- display


def display_value(value: Any) -> str:
    if value is None:
        return NOT_SET_DISPLAY
    if isinstance(value, bool):
        return "Yes" if value else "No"
    if isinstance(value, (list, tuple)):
        items = [str(v) for v in value if v is not None and str(v).strip()]
        return ", ".join(items) if items else NOT_SET_DISPLAY
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    s = str(value).strip()
    return s or NOT_SET_DISPLAY


def display_collections(ids: Tuple[int, ...] | List[int], names: dict) -> str:
    labels = [str(names.get(int(cid)) or f"#{cid}") for cid in ids]
    return ", ".join(labels) if labels else NOT_SET_DISPLAY
