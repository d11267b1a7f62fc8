"""
Field rotation helpers.

Field numbers are presentation-only: a simple modulo rotation over the tournament's fields,
independent of any fairness constraint.
"""
import math
from typing import Any


def normalize_field_count(field_count: Any) -> int:
    """
    Coerce a field count to an integer >= 1.

    - None, non-numeric, NaN, infinity -> 1
    - Floats are floored, values below 1 are raised to 1
    """
    if isinstance(field_count, bool) or not isinstance(field_count, (int, float)):
        return 1
    if not math.isfinite(field_count):
        return 1
    return max(1, math.floor(field_count))


def compute_field_number(order: int, field_count: Any) -> int:
    """Return the 1-based field for the match at 1-based position `order`."""
    normalized_order = max(1, int(order))
    normalized_count = normalize_field_count(field_count)
    if normalized_count == 1:
        return 1
    return ((normalized_order - 1) % normalized_count) + 1
