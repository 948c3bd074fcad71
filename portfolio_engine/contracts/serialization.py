import json
import math
from dataclasses import fields, is_dataclass
from datetime import datetime, date
from enum import Enum
from typing import Any


def _to_plain(obj: Any) -> Any:
    """Recursively convert engine output into JSON-ready primitives."""
    if hasattr(obj, "to_dict"):
        return _to_plain(obj.to_dict())
    if is_dataclass(obj) and not isinstance(obj, type):
        return {f.name: _to_plain(getattr(obj, f.name)) for f in fields(obj)}
    if isinstance(obj, dict):
        return {str(k): _to_plain(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [_to_plain(v) for v in obj]
    if isinstance(obj, (set, frozenset)):
        return sorted(_to_plain(v) for v in obj)
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    if isinstance(obj, float) and math.isinf(obj):
        return "Infinity" if obj > 0 else "-Infinity"
    return obj


class CanonicalEncoder(json.JSONEncoder):
    """
    JSON Encoder that prioritizes reproducibility.

    RULES:
    1. Dates MUST be ISO 8601 strings.
    2. Enums MUST use their .value.
    3. Infinite floats become the strings "Infinity" / "-Infinity".
    4. Sets -> Lists (sorted for determinism).
    """

    def default(self, obj: Any) -> Any:
        plain = _to_plain(obj)
        if plain is obj:
            return super().default(obj)
        return plain


def to_canonical_json(obj: Any) -> str:
    """Byte-stable JSON for determinism comparisons."""
    return json.dumps(_to_plain(obj), sort_keys=True, separators=(",", ":"), cls=CanonicalEncoder)
