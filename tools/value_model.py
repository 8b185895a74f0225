#!/usr/bin/env python3
"""
value_model.py - Value model shared by the validator and the wire codec

Values are plain Python objects:

    None            -> NULL
    bool            -> BOOL
    int             -> INT
    float           -> FLOAT
    str             -> STRING
    bytes           -> BYTES   (bytearray / memoryview accepted)
    list / tuple    -> LIST
    dict            -> RECORD  (insertion ordered, keys unique)

bool is never treated as an int, even though Python makes it a subclass.

Usage:
    from value_model import kind_of, semantically_equal, ValueKind

    kind_of({'a': 1}) == ValueKind.RECORD
    semantically_equal({'a': 1, 'b': 2}, {'b': 2, 'a': 1})  # True
"""

import math
from enum import Enum
from typing import Any


class ValueKind(Enum):
    NULL = 'null'
    BOOL = 'bool'
    INT = 'int'
    FLOAT = 'float'
    STRING = 'string'
    BYTES = 'bytes'
    LIST = 'list'
    RECORD = 'record'


BYTES_TYPES = (bytes, bytearray, memoryview)


def kind_of(value: Any) -> ValueKind:
    """Return the value kind of a Python object, or raise TypeError."""
    if value is None:
        return ValueKind.NULL
    # bool first: isinstance(True, int) is True
    if isinstance(value, bool):
        return ValueKind.BOOL
    if isinstance(value, int):
        return ValueKind.INT
    if isinstance(value, float):
        return ValueKind.FLOAT
    if isinstance(value, str):
        return ValueKind.STRING
    if isinstance(value, BYTES_TYPES):
        return ValueKind.BYTES
    if isinstance(value, (list, tuple)):
        return ValueKind.LIST
    if isinstance(value, dict):
        return ValueKind.RECORD
    raise TypeError(f"Not a model value: {type(value).__name__}")


def is_kind(value: Any, kind: ValueKind) -> bool:
    try:
        return kind_of(value) == kind
    except TypeError:
        return False


def semantically_equal(a: Any, b: Any) -> bool:
    """
    Compare two values structurally.

    Record key order is ignored, list order is significant, bool and int
    are distinct kinds, int and float compare numerically. NaN equals NaN,
    so a decoded NaN matches the value that was encoded.
    """
    ka, kb = kind_of(a), kind_of(b)
    numeric = (ValueKind.INT, ValueKind.FLOAT)
    if ka in numeric and kb in numeric:
        if ka == kb == ValueKind.FLOAT and math.isnan(a) and math.isnan(b):
            return True
        return a == b
    if ka != kb:
        return False

    if ka == ValueKind.BYTES:
        return bytes(a) == bytes(b)

    if ka == ValueKind.LIST:
        if len(a) != len(b):
            return False
        return all(semantically_equal(x, y) for x, y in zip(a, b))

    if ka == ValueKind.RECORD:
        if set(a) != set(b):
            return False
        return all(semantically_equal(a[key], b[key]) for key in a)

    return a == b


def describe(value: Any, limit: int = 40) -> str:
    """Short rendering of a value for diagnostics."""
    try:
        kind = kind_of(value)
    except TypeError:
        return f"<{type(value).__name__}>"

    if kind == ValueKind.RECORD:
        return f"record with {len(value)} key(s)"
    if kind == ValueKind.LIST:
        return f"list of {len(value)} item(s)"
    if kind == ValueKind.BYTES:
        return f"{len(value)} byte(s)"

    text = repr(value)
    if len(text) > limit:
        text = text[:limit - 3] + '...'
    return text
