from __future__ import annotations

import math
import uuid
from typing import Any, Iterator, List, Optional, Sequence, TypeVar

T = TypeVar("T")


def new_id() -> str:
    return str(uuid.uuid4())


def normalize_location_name(value: Any) -> Optional[str]:
    """Return the comparison key for a location name (trimmed, case-folded)."""
    if value is None:
        return None
    text = str(value).strip()
    if not text:
        return None
    return text.lower()


def parse_decimal(value: Any) -> Optional[float]:
    """Parse a spreadsheet cell that may use a comma as decimal separator."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return None if math.isnan(value) else float(value)
    text = str(value).strip().replace(",", ".")
    if not text:
        return None
    try:
        number = float(text)
    except ValueError:
        return None
    if math.isnan(number):
        return None
    return number


def chunked(items: Sequence[T], size: int) -> Iterator[List[T]]:
    if size < 1:
        raise ValueError("Chunk size must be positive")
    for start in range(0, len(items), size):
        yield list(items[start : start + size])
