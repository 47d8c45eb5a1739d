from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from iva_ledger.errors import ValidationError
from iva_ledger.models import SERIES_FIELDS, CorrelativeSeries
from iva_ledger.store import LedgerStore

logger = logging.getLogger(__name__)


def get_next_correlatives(store: LedgerStore) -> Dict[str, int]:
    return store.data.next_correlatives.to_wire()


def take_next(store: LedgerStore, series: CorrelativeSeries) -> int:
    """Return the next number of ``series`` and advance it by one.

    The caller persists the store together with the record that received
    the number.
    """
    attr = SERIES_FIELDS[series]
    state = store.data.next_correlatives
    number = getattr(state, attr)
    setattr(state, attr, number + 1)
    return number


def _positive_int(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        number = value
    elif isinstance(value, float):
        if not value.is_integer():
            return None
        number = int(value)
    else:
        text = str(value).strip()
        if not text.isdigit():
            return None
        number = int(text)
    return number if number >= 1 else None


def set_sales_correlatives(store: LedgerStore, next_ccf: Any = None, next_cf: Any = None) -> Dict[str, int]:
    """Override the next CCF / CF numbers.

    Each field is checked on its own: an invalid value is left unchanged
    while a valid sibling still applies. ``None`` means "leave as is".
    Raises ValidationError when a value was given and nothing could be applied.
    The purchase series has no override.
    """
    state = store.data.next_correlatives
    requested = {"salesCCF": next_ccf, "salesCF": next_cf}
    applied: Dict[str, int] = {}
    rejected: Dict[str, Any] = {}

    for series, raw in requested.items():
        if raw is None:
            continue
        number = _positive_int(raw)
        if number is None:
            rejected[series] = raw
            continue
        applied[series] = number

    if rejected and not applied:
        raise ValidationError(
            "Correlatives must be integers greater than or equal to 1: "
            + ", ".join(f"{series}={value!r}" for series, value in rejected.items())
        )
    if rejected:
        logger.warning("Correlative override partially rejected: %s", rejected)

    for series, number in applied.items():
        setattr(state, SERIES_FIELDS[series], number)
    if applied:
        store.save()
    return get_next_correlatives(store)
