"""
Structural deep merge over untyped JSON-like trees.

Nested mappings merge key-wise; every other value (lists included) is
replaced wholesale. Results never share mutable state with the inputs.
"""

from __future__ import annotations

from typing import Any, Mapping, TypeVar

T = TypeVar("T")


def is_mapping(value: Any) -> bool:
    """True for key→value structures. Lists, strings and None are not mappings."""
    return isinstance(value, Mapping)


def clone_value(value: T) -> T:
    """Recursively copy dicts and lists; scalars are returned as-is."""
    if isinstance(value, (list, tuple)):
        return [clone_value(item) for item in value]  # type: ignore[return-value]
    if is_mapping(value):
        return {key: clone_value(val) for key, val in value.items()}  # type: ignore[return-value]
    return value


def deep_merge(base: T, override: Any) -> T:
    """
    Merge `override` onto `base`, returning a new tree.

    A non-mapping base is replaced only by a mapping override; a scalar or
    list override of a scalar base is ignored.
    """
    if not is_mapping(base):
        return clone_value(override) if is_mapping(override) else clone_value(base)

    result = clone_value(base)
    if not is_mapping(override):
        return result

    for key, val in override.items():
        existing = result.get(key)
        if is_mapping(val) and is_mapping(existing):
            result[key] = deep_merge(existing, val)
        else:
            result[key] = clone_value(val)

    return result
