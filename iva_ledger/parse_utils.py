from __future__ import annotations

import math
import re
from datetime import date, datetime
from typing import Any, Optional

from dateutil import parser as date_parser


VAT_RATE = 0.13

_NON_NUMERIC_RE = re.compile(r"[^0-9.\-]")
_LEADING_NUMBER_RE = re.compile(r"-?(?:\d+\.?\d*|\.\d+)")


def round2(value: float) -> float:
    """Round half up to cents (x100, round, /100)."""
    return math.floor(value * 100 + 0.5) / 100


def vat(base: float) -> float:
    return round2(base * VAT_RATE)


def to_number(value: Any) -> float:
    """Tolerant coercion for user-edited text: keeps only ``[0-9.-]`` and
    parses the leading number. Anything unparseable becomes 0.0."""
    if value is None or isinstance(value, bool):
        return 0.0
    if isinstance(value, (int, float)):
        number = float(value)
        return number if math.isfinite(number) else 0.0

    cleaned = _NON_NUMERIC_RE.sub("", str(value))
    match = _LEADING_NUMBER_RE.match(cleaned)
    if not match:
        return 0.0
    try:
        number = float(match.group(0))
    except ValueError:
        return 0.0
    return number if math.isfinite(number) else 0.0


def parse_date(value: Any, dayfirst: bool = True) -> Optional[date]:
    """ISO dates are read as written; anything else is read day first (dd/mm/yyyy)."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value

    cleaned = str(value).strip()
    if not cleaned:
        return None

    try:
        return date_parser.isoparse(cleaned).date()
    except (ValueError, OverflowError):
        pass

    try:
        parsed = date_parser.parse(cleaned, dayfirst=dayfirst)
    except (ValueError, TypeError, OverflowError):
        return None

    return parsed.date()


def approx_equal(left: float | None, right: float | None, tolerance: float = 0.01) -> bool:
    if left is None or right is None:
        return False

    if math.isclose(left, right, abs_tol=tolerance, rel_tol=0.0):
        return True

    return False
