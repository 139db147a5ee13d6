"""
Tolerant readers for loosely-typed persisted JSON values.

Shapes written by older versions (or edited by hand) may carry numbers as
strings, placeholder text such as "NA", or nothing at all. These helpers
turn such values into ``Optional[str]`` / ``Optional[float]`` without raising.
"""

from typing import Any, Optional

# Placeholders some exporters write instead of leaving a cell empty
NA_VALUES = {"na", "n/a", "null", "undefined", "none", "na na"}


def safe_string(value: Any) -> Optional[str]:
    """Stripped string or None for missing/blank/non-scalar values."""
    if value is None or isinstance(value, (dict, list, tuple, set)):
        return None
    if isinstance(value, bool):
        return None
    text = str(value).strip()
    return text or None


def safe_number(value: Any) -> Optional[float]:
    """Float or None; booleans and unparsable strings become None."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    try:
        return float(str(value).strip())
    except ValueError:
        return None


def safe_int(value: Any) -> Optional[int]:
    """Integer or None; only whole numbers are accepted."""
    number = safe_number(value)
    if number is None or not number.is_integer():
        return None
    return int(number)


def normalize_taxon_value(value: Any) -> Optional[str]:
    """Rank value with NA-like placeholders treated as missing."""
    text = safe_string(value)
    if text is None or text.lower() in NA_VALUES:
        return None
    return text
