import math
from typing import Any, Dict
from decimal import Decimal
from datetime import datetime, date


def _make_json_safe(value: Any) -> Any:
    """
    Convert Python objects into JSON-serialisable structures, preserving
    as much fidelity as possible.
    """
    if isinstance(value, dict):
        return {key: _make_json_safe(val) for key, val in value.items()}
    if isinstance(value, list):
        return [_make_json_safe(item) for item in value]
    if isinstance(value, tuple):
        return [_make_json_safe(item) for item in value]
    if isinstance(value, set):
        return [_make_json_safe(item) for item in value]
    if isinstance(value, Decimal):
        # Keep integers as ints, otherwise convert to string to avoid precision loss
        if value == value.to_integral():
            return int(value)
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, bytes):
        return value.decode(errors="ignore")
    if isinstance(value, float) and math.isnan(value):
        return None
    if isinstance(value, (int, float, str, bool)) or value is None:
        return value
    # numpy scalars expose .item(); fall back to string for anything else
    item = getattr(value, "item", None)
    if callable(item):
        return _make_json_safe(item())
    return str(value)


def is_absent(value: Any) -> bool:
    """True for values that mean "field not supplied" (None / NaN)."""
    if value is None:
        return True
    return isinstance(value, float) and math.isnan(value)


def strip_absent_values(record: Dict[str, Any]) -> Dict[str, Any]:
    """
    Return a JSON-safe copy of ``record`` without absent-value keys.

    Applied to every document before it is staged into a write group so the
    store never persists explicit nulls for fields the caller did not supply.
    """
    return {
        key: _make_json_safe(value)
        for key, value in record.items()
        if not is_absent(value)
    }
