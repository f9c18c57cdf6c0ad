"""Structural hashing: content-based keys for change detection.

A key is a nested tuple built from the value's type and contents, so two
distinct objects with the same contents produce equal keys, and mutating an
object in place produces a different key from the one recorded before.

Nodes are keyed by identity: a compute that returns the same node twice has
not changed.
"""

from __future__ import annotations

import dataclasses
from typing import Any

from rivulet._errors import HashError

_ATOMS = (type(None), bool, int, float, complex, str, bytes)


def structural_hash(value: Any) -> tuple:
    """Return a comparable key for value. Raises HashError if it can't."""
    return _key(value, set())


def _key(value: Any, active: set[int]) -> tuple:
    kind = type(value)
    tag = f"{kind.__module__}.{kind.__qualname__}"

    if isinstance(value, _ATOMS):
        return (tag, value)

    # Local import: node.py imports this module.
    from rivulet.node import Node

    if isinstance(value, Node):
        return (tag, id(value))

    marker = id(value)
    if marker in active:
        raise HashError(f"cannot hash self-referencing {tag}")
    active.add(marker)
    try:
        if isinstance(value, (tuple, list)):
            return (tag, tuple(_key(item, active) for item in value))
        if isinstance(value, (set, frozenset)):
            return (tag, frozenset(_key(item, active) for item in value))
        if isinstance(value, dict):
            return (tag, frozenset((_key(k, active), _key(v, active)) for k, v in value.items()))
        if isinstance(value, BaseException):
            return (tag, _key(value.args, active))
        if dataclasses.is_dataclass(value) and not isinstance(value, type):
            return (tag, tuple(
                (f.name, _key(getattr(value, f.name), active)) for f in dataclasses.fields(value)
            ))
        if hasattr(value, "__dict__") and not isinstance(value, type) and not callable(value):
            return (tag, _key(vars(value), active))
        try:
            hash(value)
        except TypeError as exc:
            raise HashError(f"cannot hash value of type {tag}", exc) from exc
        return (tag, value)
    finally:
        active.discard(marker)
