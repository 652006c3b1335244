from typing import Any
from decimal import Decimal
from datetime import datetime, date, time
import math


def _make_json_safe(value: Any) -> Any:
    """
    Convert spreadsheet cell values into JSON-serialisable structures,
    preserving as much fidelity as possible.
    """
    if isinstance(value, dict):
        return {str(key): _make_json_safe(val) for key, val in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [_make_json_safe(item) for item in value]
    if isinstance(value, Decimal):
        # Keep integers as ints, otherwise convert to string to avoid precision loss
        if value == value.to_integral():
            return int(value)
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, (date, time)):
        return value.isoformat()
    if isinstance(value, float):
        # NaN/inf are not valid JSON
        if math.isnan(value) or math.isinf(value):
            return None
        return value
    if isinstance(value, bytes):
        return value.decode(errors="ignore")
    if isinstance(value, (int, str, bool)) or value is None:
        return value
    # numpy scalars and other number-likes expose item()
    item = getattr(value, "item", None)
    if callable(item):
        return _make_json_safe(item())
    # Fallback to string representation for unsupported types
    return str(value)
