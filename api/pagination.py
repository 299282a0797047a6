"""
Offset pagination for list endpoints.

Page and limit come straight from the query string, so parsing is lenient:
a leading integer is taken ("3", " 3", "3.9", "3abc" all mean 3) and anything
that does not yield a positive integer falls back to the default. paginate()
never raises.

Numbers too long to mean anything saturate at MAX_OFFSET, and the page is
clamped so skip always fits a signed 64-bit OFFSET.

Capping abusive page sizes is the caller's job (see clamp_limit).
"""

import math
import re
from dataclasses import dataclass
from typing import Any, Optional

DEFAULT_PAGE = 1
DEFAULT_LIMIT = 10

# Largest OFFSET SQLite and PostgreSQL accept
MAX_OFFSET = 2**63 - 1
_MAX_DIGITS = len(str(MAX_OFFSET))

_LEADING_INT = re.compile(r"^\s*([+-]?\d+)")


@dataclass(frozen=True)
class PageRequest:
    """Pagination parameters derived from one request."""

    page: int
    limit: int
    skip: int
    total: int
    total_pages: int

    @property
    def has_next(self) -> bool:
        return self.page < self.total_pages

    @property
    def has_prev(self) -> bool:
        return self.page > 1


def parse_positive_int(raw: Any, default: int) -> int:
    """
    Parse a client-supplied value as a positive integer.

    Returns default for None, booleans, non-numeric text, zero and negatives.
    Values above MAX_OFFSET are capped to it.
    """
    if raw is None or isinstance(raw, bool):
        return default

    if isinstance(raw, int):
        value = raw
    elif isinstance(raw, float):
        if math.isnan(raw) or math.isinf(raw):
            return default
        value = int(raw)
    else:
        match = _LEADING_INT.match(str(raw))
        if not match:
            return default
        sign = "-" if match.group(1).startswith("-") else ""
        digits = match.group(1).lstrip("+-").lstrip("0") or "0"
        if len(digits) > _MAX_DIGITS:
            return default if sign else MAX_OFFSET
        value = int(sign + digits)

    return min(value, MAX_OFFSET) if value > 0 else default


def paginate(
    page: Any = None,
    limit: Any = None,
    total: Any = 0,
    default_limit: int = DEFAULT_LIMIT,
) -> PageRequest:
    """
    Compute skip and total_pages from raw page/limit values and a row count.

    Args:
        page: Raw page number (1-based), any type
        limit: Raw page size, any type
        total: Total number of rows matching the query
        default_limit: Page size used when limit is missing or invalid

    Returns:
        PageRequest with skip >= 0 and total_pages >= 0
    """
    if default_limit < 1:
        default_limit = DEFAULT_LIMIT

    page_num = parse_positive_int(page, DEFAULT_PAGE)
    page_size = parse_positive_int(limit, default_limit)
    page_num = min(page_num, MAX_OFFSET // page_size + 1)

    try:
        total_rows = max(int(total or 0), 0)
    except (TypeError, ValueError):
        total_rows = 0

    return PageRequest(
        page=page_num,
        limit=page_size,
        skip=(page_num - 1) * page_size,
        total=total_rows,
        total_pages=math.ceil(total_rows / page_size),
    )


def clamp_limit(raw: Any, max_limit: int) -> Optional[int]:
    """
    Cap a raw page size at max_limit before it reaches paginate().

    Returns None when the value is unusable so paginate() applies its default.
    """
    value = parse_positive_int(raw, 0)
    if value == 0:
        return None
    return min(value, max_limit)
