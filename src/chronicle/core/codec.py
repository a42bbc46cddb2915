"""
String coercion at the storage boundary.

All three backends store hash values as strings, so values are coerced here
before they are written and decoded here after they are read. That keeps a
record written through one backend identical to one written through another.
"""

import json
import math
from collections.abc import Mapping
from typing import Any

from chronicle.core.errors import ParseError


def encode_value(value: Any) -> str:
    """
    Coerce a single hash value to its stored string form.

    Booleans use the lowercase JSON spelling and containers are stored as
    JSON text, so JSON-aware readers can round-trip them.
    """
    if value is None:
        raise ValueError("hash values cannot be None")
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (dict, list, tuple)):
        return json.dumps(value, separators=(",", ":"))
    return str(value)


def encode_score(score: float) -> float:
    """Scores are doubles; NaN is refused, as Redis refuses it."""
    value = float(score)
    if math.isnan(value):
        raise ValueError("sorted set score cannot be NaN")
    return value


def encode_fields(fields: Mapping[str, Any]) -> dict[str, str]:
    if not isinstance(fields, Mapping):
        raise TypeError(f"hash fields must be a mapping, got {type(fields).__name__}")
    if not fields:
        raise ValueError("hash fields cannot be empty")
    return {str(name): encode_value(value) for name, value in fields.items()}


def decode_hash(raw: Any) -> dict[str, str] | None:
    """
    Decode a HGETALL reply into a field mapping.

    Accepts a mapping (redis-py) or a flat ``[field, value, ...]`` list
    (REST protocol). Empty replies mean the key does not exist.

    Raises:
        ParseError: If the reply is not one of those shapes.
    """
    if raw is None:
        return None

    if isinstance(raw, Mapping):
        pairs = list(raw.items())
    elif isinstance(raw, list):
        if len(raw) % 2:
            raise ParseError(f"hash reply has an odd number of items ({len(raw)})")
        pairs = list(zip(raw[0::2], raw[1::2]))
    else:
        raise ParseError(f"unexpected hash reply type {type(raw).__name__}")

    if not pairs:
        return None

    record: dict[str, str] = {}
    for name, value in pairs:
        if isinstance(name, bytes):
            name = name.decode()
        if isinstance(value, bytes):
            value = value.decode()
        if not isinstance(name, str) or isinstance(value, (Mapping, list)) or value is None:
            raise ParseError(f"malformed hash entry {name!r}: {value!r}")
        record[name] = value if isinstance(value, str) else encode_value(value)
    return record
