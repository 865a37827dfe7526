from __future__ import annotations
import time
from typing import Any, Optional

# ========================================
#           INPUT VALIDATION HELPERS
# ========================================
"""
Helpers the normalizer and frame classifier use to decide whether a
field coming off the wire is usable, and what to fall back to when it
is not.
"""


def now_ms() -> int:
    """Wall clock in unix epoch milliseconds."""
    return int(time.time() * 1000)


def is_number(value: Any) -> bool:
    """
    True for int/float values. bool is excluded even though it is an int
    subclass, JSON true/false is never a number on this protocol.
    """
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def as_positive_int(value: Any) -> Optional[int]:
    """
    Returns the value as an int if it is a positive whole number
    (3 and 3.0 both give 3), otherwise None.
    """
    if not is_number(value):
        return None
    if value != value or value in (float("inf"), float("-inf")):  # NaN / inf
        return None
    if value <= 0 or int(value) != value:
        return None
    return int(value)


def trimmed(value: Any) -> str:
    """
    Strip surrounding whitespace from a string. Non-strings (None,
    numbers, nested objects) count as empty.
    """
    if not isinstance(value, str):
        return ""
    return value.strip()


def trimmed_or(value: Any, fallback: str) -> str:
    """trimmed(value), or fallback when that is empty."""
    text = trimmed(value)
    return text if text else fallback
