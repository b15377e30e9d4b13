"""Rendering of attribute values as plain strings."""

from __future__ import annotations

import math
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from decimal import Decimal
from typing import Any


@dataclass(frozen=True)
class KeyValue:
    """A named attribute value."""

    key: str
    value: Any


def _format_float(value: float) -> str:
    if math.isnan(value):
        return "NaN"
    if math.isinf(value):
        return "+Inf" if value > 0 else "-Inf"
    text = format(Decimal(repr(value)), "f")
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return text


def _is_kvlist(value: Any) -> bool:
    if isinstance(value, Mapping):
        return True
    return (
        isinstance(value, (list, tuple))
        and bool(value)
        and all(isinstance(item, KeyValue) for item in value)
    )


def stringify_any_value(value: Any) -> str:
    """Render an attribute value.

    Booleans, integers, floats and strings render as scalars; a mapping or a
    sequence of KeyValue renders as ``{key:value...}``; any other sequence as
    ``[value...]``. Anything else renders as an empty string.
    """
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        return _format_float(value)
    if isinstance(value, str):
        return value
    if _is_kvlist(value):
        pairs = value.items() if isinstance(value, Mapping) else (
            (kv.key, kv.value) for kv in value
        )
        return "{" + "".join(f"{k}:{stringify_any_value(v)}" for k, v in pairs) + "}"
    if isinstance(value, Sequence) and not isinstance(value, (bytes, bytearray)):
        return "[" + "".join(stringify_any_value(v) for v in value) + "]"
    return ""