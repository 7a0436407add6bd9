"""Lenient numeric coercion shared by the models and the calculations."""

import math
from typing import Any


def to_number_or_zero(value: Any) -> float:
    """Coerce a numeric-like value to float, falling back to 0.0.

    Stack data comes from a language model and from hand-edited JSON, so a
    single malformed field must never abort a whole valuation. None, empty
    strings, unparseable strings, booleans and NaN all become 0.0. Infinity
    is kept as-is.
    """
    if value is None or isinstance(value, bool):
        return 0.0
    if isinstance(value, str):
        value = value.strip()
        if not value:
            return 0.0
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    if math.isnan(number):
        return 0.0
    return number
