from __future__ import annotations

"""
Path-addressed reads and copy-on-write writes over nested form mappings.

Design intent:
- Form fields address their value with an ordered key path.
- Writes never mutate a mapping another snapshot may still hold.
"""

import json
from typing import Any, Mapping, Sequence

FormData = dict[str, Any]
FormPath = Sequence[str]


class _Undefined:
    """Marker for "no value at this path", distinct from a stored ``None``."""

    _instance: "_Undefined | None" = None

    def __new__(cls) -> "_Undefined":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "UNDEFINED"

    def __bool__(self) -> bool:
        return False

    def __reduce__(self) -> str:
        return "UNDEFINED"


UNDEFINED = _Undefined()


def normalize_path(path: FormPath) -> tuple[str, ...]:
    if isinstance(path, str):
        raise TypeError("path must be a sequence of keys, not a string")
    keys = tuple(str(item) for item in path)
    if not keys:
        raise ValueError("path must contain at least one key")
    return keys


def set_in(data: Mapping[str, Any], path: FormPath, value: Any) -> FormData:
    keys = normalize_path(path)
    root: FormData = dict(data)
    current = root
    for key in keys[:-1]:
        child = current.get(key)
        # Non-mapping intermediates are replaced, same as a falsy one.
        current[key] = dict(child) if isinstance(child, Mapping) else {}
        current = current[key]
    current[keys[-1]] = value
    return root


def get_in(data: Any, path: FormPath) -> Any:
    current = data
    # Same key coercion as set_in, so a value written at a path reads back.
    for key in normalize_path(path):
        if not isinstance(current, Mapping):
            return UNDEFINED
        if key not in current:
            return UNDEFINED
        current = current[key]
    return current


def _json_equal(left: Any, right: Any) -> bool:
    try:
        return json.dumps(left, sort_keys=True) == json.dumps(right, sort_keys=True)
    except (TypeError, ValueError):
        return left == right


def changed_fields(original: Mapping[str, Any] | None, current: Mapping[str, Any] | None) -> FormData:
    """Nested diff of ``current`` against ``original``.

    Nested mappings are compared key by key; lists and scalars are compared as
    whole values. Keys absent from ``current`` are not reported since a
    partial update has no way to express a removal.
    """
    original = original or {}
    current = current or {}
    changed: FormData = {}
    for key, current_value in current.items():
        original_value = original.get(key, UNDEFINED)
        if isinstance(original_value, Mapping) and isinstance(current_value, Mapping):
            nested = changed_fields(original_value, current_value)
            if nested:
                changed[key] = nested
        elif original_value is UNDEFINED or not _json_equal(original_value, current_value):
            changed[key] = current_value
    return changed
