from __future__ import annotations

import json
import logging
from typing import Any, Callable, Dict, Iterable, List, Mapping

import pydantic

from iva_ledger.errors import InvalidSnapshotError, LedgerError, MalformedImportError
from iva_ledger.ledger import add_purchase, add_sale
from iva_ledger.store import ALL_KINDS, LedgerStore, merge_snapshot, validation_message
from iva_ledger.tabular import (
    SECTION_KEYS,
    TEMPLATE_PREFIX,
    build_template,
    decode_backup,
    decode_section,
    encode_backup,
    split_sections,
)

logger = logging.getLogger(__name__)

_REQUIRED_SNAPSHOT_KEYS: Dict[str, type] = {
    "salesRecords": list,
    "purchaseRecords": list,
    "nextCorrelatives": dict,
}
_OPTIONAL_SNAPSHOT_KEYS: Dict[str, type] = {
    "clients": list,
    "suppliers": list,
    "companyInfo": dict,
}


def _add_client(store: LedgerStore, record: Mapping[str, Any]) -> Any:
    return store.add("clients", record)


def _add_supplier(store: LedgerStore, record: Mapping[str, Any]) -> Any:
    return store.add("suppliers", record)


_IMPORTERS: Dict[str, Callable[[LedgerStore, Mapping[str, Any]], Any]] = {
    "clients": _add_client,
    "suppliers": _add_supplier,
    "salesRecords": add_sale,
    "purchaseRecords": add_purchase,
}


# ---------------------------------------------------------------------------
# Export
# ---------------------------------------------------------------------------

def ordered_snapshot(store: LedgerStore) -> Dict[str, Any]:
    """Snapshot with sales by correlative and purchases by date, oldest first."""
    snapshot = store.snapshot()
    snapshot["salesRecords"] = sorted(snapshot["salesRecords"], key=lambda r: r.get("correlative") or 0)
    snapshot["purchaseRecords"] = sorted(snapshot["purchaseRecords"], key=lambda r: r.get("date") or "")
    return snapshot


def export_backup(store: LedgerStore) -> str:
    return encode_backup(ordered_snapshot(store))


def export_json(store: LedgerStore) -> str:
    return json.dumps(ordered_snapshot(store), ensure_ascii=False, indent=2)


def export_template(include_examples: bool = True) -> str:
    return build_template(include_examples=include_examples)


# ---------------------------------------------------------------------------
# Bulk import (records go through the normal add operations)
# ---------------------------------------------------------------------------

def import_bulk(store: LedgerStore, sections: Mapping[str, Iterable[Mapping[str, Any]]]) -> Dict[str, int]:
    """Add every record through the store/ledger add operations.

    Not transactional: a failing record is logged and skipped, earlier
    insertions stay committed. Returns the number of records added per kind.
    """
    counts = {kind: 0 for kind in ALL_KINDS}
    for kind in ALL_KINDS:
        records = sections.get(kind)
        if not records:
            continue
        add = _IMPORTERS[kind]
        for position, record in enumerate(records, start=1):
            if not isinstance(record, Mapping):
                logger.warning("Skipping %s record %d: not an object", kind, position)
                continue
            try:
                add(store, record)
            except LedgerError as exc:
                logger.warning("Error importing %s record %d: %s", kind, position, exc)
                continue
            counts[kind] += 1

    logger.info("Bulk import finished: %s", counts)
    return counts


def parse_bulk_text(text: str) -> Dict[str, List[Dict[str, Any]]]:
    sections = split_sections(text, TEMPLATE_PREFIX)
    if not sections:
        raise MalformedImportError(
            "No section markers found in the file. Use the bulk template "
            "(#== TEMPLATE_START: <KEY> ==#)."
        )

    parsed: Dict[str, List[Dict[str, Any]]] = {}
    for key, body in sections:
        kind = SECTION_KEYS.get(key)
        if kind is None:
            logger.warning("Ignoring unknown template section %s", key)
            continue
        parsed.setdefault(kind, []).extend(decode_section(body, kind))
    return parsed


def import_bulk_text(store: LedgerStore, text: str) -> Dict[str, int]:
    return import_bulk(store, parse_bulk_text(text))


# ---------------------------------------------------------------------------
# Full restore (replaces the whole store, values trusted verbatim)
# ---------------------------------------------------------------------------

def _check_snapshot(snapshot: Any) -> None:
    if not isinstance(snapshot, Mapping):
        raise InvalidSnapshotError("Invalid data structure for full import: expected an object.")

    missing = [key for key, kind in _REQUIRED_SNAPSHOT_KEYS.items() if not isinstance(snapshot.get(key), kind)]
    if missing:
        raise InvalidSnapshotError(
            "Invalid data structure for full import. Missing: " + ", ".join(missing)
        )

    wrong = [
        key
        for key, kind in _OPTIONAL_SNAPSHOT_KEYS.items()
        if snapshot.get(key) is not None and not isinstance(snapshot.get(key), kind)
    ]
    if wrong:
        raise InvalidSnapshotError("Invalid data structure for full import. Wrong type: " + ", ".join(wrong))


def import_full_backup(store: LedgerStore, snapshot: Any) -> bool:
    _check_snapshot(snapshot)
    try:
        data = merge_snapshot(snapshot)
    except pydantic.ValidationError as exc:
        raise InvalidSnapshotError(f"Backup content is invalid: {validation_message(exc)}") from exc

    store.replace(data)
    logger.info(
        "Full backup restored: %d clients, %d suppliers, %d sales, %d purchases",
        len(data.clients),
        len(data.suppliers),
        len(data.sales_records),
        len(data.purchase_records),
    )
    return True


def import_backup_text(store: LedgerStore, text: str) -> bool:
    """Restore from either a JSON snapshot or an ``export_backup`` text."""
    content = text.lstrip("\ufeff").strip()
    if content.startswith("{"):
        try:
            snapshot = json.loads(content)
        except ValueError as exc:
            raise InvalidSnapshotError(f"Backup is not valid JSON: {exc}") from exc
    else:
        try:
            snapshot = decode_backup(content)
        except MalformedImportError as exc:
            raise InvalidSnapshotError(str(exc)) from exc
    return import_full_backup(store, snapshot)
