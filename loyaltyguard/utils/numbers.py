"""
Best-effort numeric coercion for loosely typed campaign and receipt data.
"""

import math
import re
from typing import Any, Optional

_LEADING_NUMBER = re.compile(r"^\s*([+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?)")
# Currency marker before an amount: "$", "S$", "฿", "SGD "
_CURRENCY_PREFIX = re.compile(r"^\s*(?:[A-Za-z]{0,3}[$฿€£¥]|[A-Z]{3}\s+)")
_THOUSANDS = re.compile(r"(?<=\d),(?=\d{3}(?:\D|$))")


def coerce_number(value: Any) -> Optional[float]:
    """
    Parse the leading numeric prefix of a value.

    "12.50" -> 12.5, "12.5kg" -> 12.5, "S$1,200.50" -> 1200.5, 7 -> 7.0,
    "abc" -> None, None -> None.
    Booleans and non-finite numbers are not treated as numbers.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
        return number if math.isfinite(number) else None
    text = _THOUSANDS.sub("", _CURRENCY_PREFIX.sub("", str(value), count=1))
    match = _LEADING_NUMBER.match(text)
    if not match:
        return None
    number = float(match.group(1))
    return number if math.isfinite(number) else None


def coerce_int(value: Any, default: int = 0) -> int:
    """Integer truncation of coerce_number, with a default for unparseable input."""
    number = coerce_number(value)
    if number is None:
        return default
    return int(number)
