"""Delimited-text codec for bulk templates and tabular backups.

A file holds one table per entity kind, each introduced by a section marker::

    #== TEMPLATE_START: CLIENTS ==#
    name,nrc,nit,address,activity
    Nombre/Razon Social,NRC,NIT,Direccion,Giro/Actividad Economica
    "ACME, S.A. de C.V.",1234567-8,0614-010190-101-1,San Salvador,Comercio

The first line of a table holds the machine keys, the second a human
description; both are metadata. Records start on the third line. Text values
of records are quote-wrapped and embedded quotes are doubled, so a field may
carry commas, surrounding spaces and line breaks.
"""
from __future__ import annotations

import csv
import datetime as dt
import io
import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from pydantic.alias_generators import to_camel

from iva_ledger.errors import MalformedImportError
from iva_ledger.models import Entity, PurchaseRecord, SalesRecord
from iva_ledger.parse_utils import to_number

logger = logging.getLogger(__name__)

TEMPLATE_PREFIX = "TEMPLATE_START"
BACKUP_PREFIX = "BACKUP_START"
COMPANY_INFO_SECTION = "COMPANY_INFO"
CORRELATIVES_SECTION = "NEXT_CORRELATIVES"

SECTION_RE = re.compile(r"#==\s*([A-Z_]+)\s*:\s*([A-Za-z_]+)\s*==#")

SECTION_KEYS = {
    "CLIENTS": "clients",
    "SUPPLIERS": "suppliers",
    "SALESRECORDS": "salesRecords",
    "PURCHASERECORDS": "purchaseRecords",
}
KIND_SECTIONS = {kind: key for key, kind in SECTION_KEYS.items()}

_NUMERIC_KEY_PARTS = ("amount", "iva", "total")

_KIND_MODELS = {
    "clients": Entity,
    "suppliers": Entity,
    "salesRecords": SalesRecord,
    "purchaseRecords": PurchaseRecord,
}


@dataclass(frozen=True)
class TemplateDefinition:
    keys: Tuple[str, ...]
    descriptions: Tuple[str, ...]
    examples: Tuple[Tuple[str, ...], ...] = ()


_PARTY_KEYS = ("name", "nrc", "nit", "address", "activity")
_PARTY_DESCRIPTIONS = ("Nombre/Razon Social", "NRC", "NIT", "Direccion", "Giro/Actividad Economica")

TEMPLATE_DEFINITIONS: Dict[str, TemplateDefinition] = {
    "clients": TemplateDefinition(
        keys=_PARTY_KEYS,
        descriptions=_PARTY_DESCRIPTIONS,
        examples=(
            ("Ejemplo Cliente S.A.", "1234567-8", "0101-123456-101-1", "San Salvador, Av. Principal", "Venta de Servicios"),
        ),
    ),
    "suppliers": TemplateDefinition(
        keys=_PARTY_KEYS,
        descriptions=_PARTY_DESCRIPTIONS,
        examples=(
            ("Ejemplo Proveedor LTDA", "8765432-1", "0202-654321-202-2", "Santa Ana, Calle Central", "Compra de Mercaderia"),
        ),
    ),
    "salesRecords": TemplateDefinition(
        keys=("date", "documentType", "clientNrc", "taxableAmount", "exemptAmount", "total"),
        descriptions=(
            "Fecha (YYYY-MM-DD)",
            "Tipo Doc (CCF/CF)",
            "NRC Cliente (Obligatorio si CCF)",
            "Venta Gravada (Obligatorio si CCF, 0 si CF)",
            "Venta Exenta (0 si CF)",
            "Total Bruto (Obligatorio si CF, 0 si CCF)",
        ),
        examples=(
            ("2023-11-20", "CCF", "1234567-8", "100.00", "0.00", "0.00"),
            ("2023-11-21", "CF", "", "0.00", "0.00", "113.00"),
        ),
    ),
    "purchaseRecords": TemplateDefinition(
        keys=(
            "date",
            "documentType",
            "supplierNrc",
            "documentNumber",
            "taxableAmount",
            "exemptAmount",
            "ivaCredit",
            "ivaWithheld",
        ),
        descriptions=(
            "Fecha (YYYY-MM-DD)",
            "Tipo Doc (CCF/Importacion/Otros)",
            "NRC Proveedor",
            "Número Documento",
            "Gravado",
            "Exento",
            "IVA Crédito (Debe ser 13% Gravado)",
            "Retención IVA (2%)",
        ),
        examples=(
            ("2023-11-20", "CCF", "8765432-1", "F12345", "200.00", "0.00", "26.00", "0.00"),
        ),
    ),
}

FIELD_LABELS: Dict[str, str] = {
    "id": "ID",
    "correlative": "Correlativo",
    "contact": "Contacto",
    "phone": "Telefono",
    "description": "Descripcion",
    "items": "Items (JSON)",
    "ivaDebit": "IVA Debito",
    "total": "Total",
}
for _definition in TEMPLATE_DEFINITIONS.values():
    for _key, _label in zip(_definition.keys, _definition.descriptions):
        FIELD_LABELS.setdefault(_key, _label)


# ---------------------------------------------------------------------------
# Tokenising
# ---------------------------------------------------------------------------

def split_sections(text: str, prefix: str) -> List[Tuple[str, str]]:
    """Return ``(SECTION_KEY, body)`` for every ``#== prefix: KEY ==#`` marker.

    A body runs until the next marker of any prefix.
    """
    text = text.lstrip("\ufeff")
    markers = list(SECTION_RE.finditer(text))
    sections: List[Tuple[str, str]] = []
    for position, marker in enumerate(markers):
        if marker.group(1) != prefix:
            continue
        end = markers[position + 1].start() if position + 1 < len(markers) else len(text)
        sections.append((marker.group(2).upper(), text[marker.end():end]))
    return sections


def read_rows(text: str) -> List[Tuple[int, List[str]]]:
    """Parse a section body into ``(line_number, fields)`` rows.

    Quoted fields keep their spacing and may span lines. Blank rows are dropped.
    """
    reader = csv.reader(io.StringIO(text), skipinitialspace=True)
    rows: List[Tuple[int, List[str]]] = []
    try:
        for fields in reader:
            if any(field.strip() for field in fields):
                rows.append((reader.line_num, fields))
    except csv.Error as exc:
        raise MalformedImportError(f"line {reader.line_num}: {exc}") from exc
    return rows


def _header(fields: Sequence[str]) -> List[str]:
    return [key.strip() for key in fields]


def is_numeric_key(key: str) -> bool:
    lowered = key.lower()
    return any(part in lowered for part in _NUMERIC_KEY_PARTS)


def decode_row(header: Sequence[str], values: Sequence[str]) -> Dict[str, Any]:
    if len(values) != len(header):
        raise MalformedImportError(f"found {len(values)} fields, expected {len(header)}")

    record: Dict[str, Any] = {}
    for key, value in zip(header, values):
        record[key] = to_number(value) if is_numeric_key(key) else value
    return record


# ---------------------------------------------------------------------------
# Template sections
# ---------------------------------------------------------------------------

def decode_section(text: str, kind: str) -> List[Dict[str, Any]]:
    """Parse one bulk-template table of ``kind``.

    A header that does not match the expected keys (same names, same order)
    yields no records. Rows with the wrong number of fields are skipped.
    """
    definition = TEMPLATE_DEFINITIONS.get(kind)
    if definition is None:
        logger.warning("No template definition for %s", kind)
        return []

    try:
        rows = read_rows(text)
    except MalformedImportError as exc:
        logger.warning("Skipping unreadable %s section: %s", kind, exc)
        return []
    if len(rows) < 2:
        return []

    header = _header(rows[0][1])
    if header != list(definition.keys):
        logger.warning(
            "Header keys mismatch for %s. Expected: %s, found: %s",
            kind,
            ",".join(definition.keys),
            ",".join(header),
        )
        return []

    records: List[Dict[str, Any]] = []
    for line_number, values in rows[2:]:
        try:
            records.append(decode_row(header, values))
        except MalformedImportError as exc:
            logger.warning("Skipping malformed line %d in %s: %s. Fields: %s", line_number, kind, exc, values)
    return records


def _format_value(value: Any) -> Any:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return value
    if isinstance(value, (dict, list, tuple)):
        return json.dumps(value, ensure_ascii=False)
    if isinstance(value, (dt.date, dt.datetime)):
        return value.isoformat()
    return str(value)


def _write_rows(rows: Iterable[Sequence[Any]], quoting: int = csv.QUOTE_MINIMAL) -> str:
    output = io.StringIO()
    writer = csv.writer(output, lineterminator="\n", quoting=quoting)
    for row in rows:
        writer.writerow([_format_value(value) for value in row])
    return output.getvalue()


def encode_section(
    records: Iterable[Mapping[str, Any]],
    headers: Sequence[str],
    descriptions: Optional[Sequence[str]] = None,
    quoting: int = csv.QUOTE_NONNUMERIC,
) -> str:
    """Header and description rows, then one row per record.

    With the default quoting every text value is quote-wrapped, so leading
    spaces and line breaks come back unchanged; numbers stay bare.
    """
    if descriptions is None:
        descriptions = [FIELD_LABELS.get(header, header) for header in headers]
    text = _write_rows([list(headers), list(descriptions)])
    text += _write_rows(([record.get(header) for header in headers] for record in records), quoting)
    return text.rstrip("\n")


def _marker(prefix: str, key: str) -> str:
    return f"#== {prefix}: {key} ==#"


def build_template(include_examples: bool = True) -> str:
    parts: List[str] = []
    for kind, definition in TEMPLATE_DEFINITIONS.items():
        examples = [dict(zip(definition.keys, row)) for row in definition.examples] if include_examples else []
        parts.append(_marker(TEMPLATE_PREFIX, KIND_SECTIONS[kind]))
        parts.append(encode_section(examples, definition.keys, definition.descriptions, csv.QUOTE_MINIMAL))
        parts.append("")
    return "\n".join(parts)


# ---------------------------------------------------------------------------
# Full backup (every collection plus company info and correlatives)
# ---------------------------------------------------------------------------

def default_headers(kind: str) -> List[str]:
    model = _KIND_MODELS[kind]
    return [info.alias or to_camel(name) for name, info in model.model_fields.items()]


def _union_headers(records: Sequence[Mapping[str, Any]]) -> List[str]:
    headers: Dict[str, None] = {}
    for record in records:
        for key in record:
            headers.setdefault(key, None)
    return list(headers)


def _encode_key_values(values: Mapping[str, Any]) -> str:
    text = _write_rows([("key", "value")]) + _write_rows(values.items(), csv.QUOTE_NONNUMERIC)
    return text.rstrip("\n")


def encode_backup(snapshot: Mapping[str, Any]) -> str:
    parts: List[str] = []
    for kind, key in KIND_SECTIONS.items():
        records = list(snapshot.get(kind) or [])
        headers = _union_headers(records) or default_headers(kind)
        parts.append(_marker(BACKUP_PREFIX, key))
        parts.append(encode_section(records, headers))
        parts.append("")

    parts.append(_marker(BACKUP_PREFIX, COMPANY_INFO_SECTION))
    parts.append(_encode_key_values(snapshot.get("companyInfo") or {}))
    parts.append("")
    parts.append(_marker(BACKUP_PREFIX, CORRELATIVES_SECTION))
    parts.append(_encode_key_values(snapshot.get("nextCorrelatives") or {}))
    parts.append("")
    return "\n".join(parts)


def _decode_backup_value(key: str, value: str) -> Any:
    if key == "items":
        if not value:
            return []
        try:
            return json.loads(value)
        except ValueError as exc:
            raise MalformedImportError(f"items is not valid JSON: {exc}") from exc
    if key == "correlative":
        return int(to_number(value))
    if is_numeric_key(key):
        return to_number(value)
    return value


def _decode_backup_table(kind: str, text: str) -> List[Dict[str, Any]]:
    rows = read_rows(text)
    if not rows:
        return []
    header = _header(rows[0][1])

    records: List[Dict[str, Any]] = []
    for line_number, values in rows[2:]:
        if len(values) != len(header):
            raise MalformedImportError(
                f"{kind} line {line_number}: found {len(values)} fields, expected {len(header)}"
            )
        records.append({key: _decode_backup_value(key, value) for key, value in zip(header, values)})
    return records


def _decode_key_values(text: str) -> Dict[str, str]:
    values: Dict[str, str] = {}
    for _, fields in read_rows(text)[1:]:
        key = fields[0].strip()
        if not key:
            continue
        values[key] = fields[1] if len(fields) > 1 else ""
    return values


def decode_backup(text: str) -> Dict[str, Any]:
    """Rebuild a snapshot-shaped dict from ``encode_backup`` output.

    Unlike template sections, a malformed row here raises
    MalformedImportError: a restore must not silently drop records.
    """
    snapshot: Dict[str, Any] = {}
    for key, body in split_sections(text, BACKUP_PREFIX):
        if key in SECTION_KEYS:
            kind = SECTION_KEYS[key]
            snapshot[kind] = _decode_backup_table(kind, body)
        elif key == COMPANY_INFO_SECTION:
            snapshot["companyInfo"] = _decode_key_values(body)
        elif key == CORRELATIVES_SECTION:
            snapshot["nextCorrelatives"] = {
                name: int(to_number(value)) for name, value in _decode_key_values(body).items()
            }
        else:
            logger.warning("Ignoring unknown backup section %s", key)
    return snapshot
