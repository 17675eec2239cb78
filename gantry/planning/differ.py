"""
Gantry Planning - Attribute diff.

Compares last-applied attributes with planned ones. Values are compared in
their JSON shape (tuples as lists), since that is how state is stored. An
UNKNOWN value always differs.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from gantry.core.types import UNKNOWN


def normalize(value: Any) -> Any:
    """JSON-shaped copy of a value (tuples become lists)."""
    if isinstance(value, Mapping):
        return {str(k): normalize(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [normalize(v) for v in value]
    return value


def contains_unknown(value: Any) -> bool:
    if value is UNKNOWN:
        return True
    if isinstance(value, Mapping):
        return any(contains_unknown(v) for v in value.values())
    if isinstance(value, (list, tuple)):
        return any(contains_unknown(v) for v in value)
    return False


def changed_attributes(before: Mapping[str, Any], after: Mapping[str, Any]) -> list[str]:
    """Names of attributes added, removed or changed, sorted."""
    changed = []
    for name in sorted(set(before) | set(after)):
        if name not in before or name not in after:
            changed.append(name)
        elif contains_unknown(after[name]):
            changed.append(name)
        elif normalize(before[name]) != normalize(after[name]):
            changed.append(name)
    return changed
