"""
Utility helpers shared across backend modules.
"""
from __future__ import annotations

import os
from typing import Any, Iterable, List, Optional

BOOL_TRUE_VALUES = frozenset({"1", "true", "yes", "on", "enabled"})
BOOL_FALSE_VALUES = frozenset({"0", "false", "no", "off", "disabled"})


def parse_bool_strict(value: Any) -> Optional[bool]:
    """Like `parse_bool` but returns None when the value is not recognizably boolean."""
    if isinstance(value, bool):
        return value
    if isinstance(value, int) and value in (0, 1):
        return bool(value)
    if isinstance(value, str):
        normalized = value.strip().lower()
        if normalized in BOOL_TRUE_VALUES:
            return True
        if normalized in BOOL_FALSE_VALUES:
            return False
    return None


def parse_bool(value: Any, default: bool = False) -> bool:
    parsed = parse_bool_strict(value)
    if parsed is not None:
        return parsed
    if isinstance(value, (int, float)):
        return bool(value)
    return default


def env_bool(name: str, default: bool) -> bool:
    if not name:
        return default
    try:
        raw = os.environ.get(name)
    except Exception:
        raw = None
    if raw is None:
        return default
    return parse_bool(raw, default)


def dedupe_preserving_order(items: Iterable[Any]) -> List[Any]:
    seen = set()
    out: List[Any] = []
    for item in items:
        if item in seen:
            continue
        seen.add(item)
        out.append(item)
    return out


def env_float(name: str, default: float) -> float:
    if not name:
        return default
    raw = os.environ.get(name)
    if raw is None:
        return default
    try:
        return float(raw)
    except (ValueError, TypeError):
        return default
