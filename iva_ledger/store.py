from __future__ import annotations

import logging
import uuid
from typing import Any, Dict, List, Mapping, Optional, Type

import pydantic
from pydantic.alias_generators import to_camel

from iva_ledger.errors import InvalidSnapshotError, NotFoundError, ValidationError
from iva_ledger.models import SALES_SERIES, SERIES_FIELDS, CompanyInfo, Entity, EntityInput, LedgerData, LedgerModel
from iva_ledger.storage import Storage

logger = logging.getLogger(__name__)

ENTITY_KINDS = ("clients", "suppliers")
RECORD_KINDS = ("salesRecords", "purchaseRecords")
ALL_KINDS = ENTITY_KINDS + RECORD_KINDS

# Wire collection name -> LedgerData attribute
_COLLECTIONS = {
    "clients": "clients",
    "suppliers": "suppliers",
    "salesRecords": "sales_records",
    "purchaseRecords": "purchase_records",
}


def new_id() -> str:
    return uuid.uuid4().hex


def validation_message(exc: pydantic.ValidationError) -> str:
    parts = []
    for error in exc.errors():
        loc = ".".join(str(part) for part in error.get("loc", ()) if part != "__root__")
        msg = str(error.get("msg", "invalid value")).removeprefix("Value error, ")
        parts.append(f"{loc}: {msg}" if loc else msg)
    return "; ".join(parts)


def validate_model(model: Type[LedgerModel], payload: Mapping[str, Any]) -> Any:
    try:
        return model.model_validate(dict(payload))
    except pydantic.ValidationError as exc:
        raise ValidationError(validation_message(exc)) from exc


def field_names(model: Type[LedgerModel], payload: Mapping[str, Any]) -> Dict[str, Any]:
    """Re-key a patch that may mix camelCase aliases and snake_case names."""
    by_alias = {(info.alias or to_camel(name)): name for name, info in model.model_fields.items()}
    result: Dict[str, Any] = {}
    for key, value in payload.items():
        name = by_alias.get(key, key)
        if name in model.model_fields:
            result[name] = value
    return result


def _series_of_record(kind: str, record: Any) -> str:
    if kind == "purchaseRecords":
        return "purchases"
    return SALES_SERIES.get(record.document_type, "salesCF")


def _fill_missing_correlatives(data: LedgerData, given: Mapping[str, Any]) -> None:
    """Start a series that the snapshot does not carry after its highest number."""
    highest: Dict[str, int] = {}
    for kind in RECORD_KINDS:
        for record in getattr(data, _COLLECTIONS[kind]):
            series = _series_of_record(kind, record)
            highest[series] = max(highest.get(series, 0), record.correlative)

    state = data.next_correlatives
    for series, number in highest.items():
        if series in given:
            continue
        attr = SERIES_FIELDS[series]
        if number >= getattr(state, attr):
            logger.info("No next %s number stored, continuing after %d", series, number)
            setattr(state, attr, number + 1)


def merge_snapshot(raw: Optional[Mapping[str, Any]]) -> LedgerData:
    """Merge a (possibly old or partial) snapshot onto the structural defaults.

    Records without an ``id`` get a fresh one and a series with no stored next
    number continues after its highest correlative. Raises
    pydantic.ValidationError when the content itself is unusable.
    """
    if not raw:
        return LedgerData()

    payload = dict(raw)
    for kind in ALL_KINDS:
        records = payload.get(kind) or []
        payload[kind] = [
            record if record.get("id") else {**record, "id": new_id()}
            for record in records
            if isinstance(record, Mapping)
        ]
    for key in ("nextCorrelatives", "companyInfo"):
        if not isinstance(payload.get(key), Mapping):
            payload.pop(key, None)

    data = LedgerData.model_validate(payload)
    _fill_missing_correlatives(data, payload.get("nextCorrelatives") or {})
    return data


class LedgerStore:
    """Process-wide ledger state. Every mutation is followed by a save."""

    def __init__(self, storage: Storage):
        self._storage = storage
        self._data = self._load()

    def _load(self) -> LedgerData:
        """Raises InvalidSnapshotError rather than starting over a stored ledger
        it cannot read, so the next save never overwrites it."""
        raw = self._storage.load()
        try:
            return merge_snapshot(raw)
        except pydantic.ValidationError as exc:
            raise InvalidSnapshotError(f"Stored ledger data cannot be loaded: {validation_message(exc)}") from exc

    @property
    def data(self) -> LedgerData:
        return self._data

    def save(self) -> None:
        self._storage.save(self.snapshot())

    def snapshot(self) -> Dict[str, Any]:
        return self._data.to_wire()

    def replace(self, data: LedgerData) -> None:
        self._data = data
        self.save()

    def reset(self) -> None:
        self.replace(LedgerData())

    # -- collections -------------------------------------------------------

    def collection(self, kind: str) -> List[Any]:
        attr = _COLLECTIONS.get(kind)
        if attr is None:
            raise ValidationError(f"Unknown collection: {kind}")
        return getattr(self._data, attr)

    def get_all(self, kind: str) -> List[Any]:
        return list(self.collection(kind))

    def find(self, kind: str, record_id: str) -> Optional[Any]:
        for record in self.collection(kind):
            if record.id == record_id:
                return record
        return None

    def index_of(self, kind: str, record_id: str) -> int:
        for index, record in enumerate(self.collection(kind)):
            if record.id == record_id:
                return index
        raise NotFoundError(kind, record_id)

    def append(self, kind: str, record: Any) -> Any:
        self.collection(kind).append(record)
        self.save()
        return record

    def put(self, kind: str, index: int, record: Any) -> Any:
        self.collection(kind)[index] = record
        self.save()
        return record

    # -- clients / suppliers -----------------------------------------------

    def _entity_kind(self, kind: str) -> str:
        if kind not in ENTITY_KINDS:
            raise ValidationError(f"{kind} is not an entity collection; use the ledger operations")
        return kind

    def add(self, kind: str, data: Mapping[str, Any]) -> Entity:
        kind = self._entity_kind(kind)
        entity_input = validate_model(EntityInput, field_names(EntityInput, data))
        entity = Entity(id=new_id(), **entity_input.model_dump())
        return self.append(kind, entity)

    def update(self, kind: str, record_id: str, patch: Mapping[str, Any]) -> Entity:
        kind = self._entity_kind(kind)
        index = self.index_of(kind, record_id)
        current = self.collection(kind)[index]

        merged = current.model_dump(exclude={"id"})
        merged.update(field_names(EntityInput, patch))
        entity_input = validate_model(EntityInput, merged)
        entity = Entity(id=current.id, **entity_input.model_dump())
        return self.put(kind, index, entity)

    def delete(self, kind: str, record_id: str) -> bool:
        records = self.collection(kind)
        remaining = [record for record in records if record.id != record_id]
        if len(remaining) == len(records):
            return False
        records[:] = remaining
        self.save()
        return True

    # -- company info ------------------------------------------------------

    def get_company_info(self) -> CompanyInfo:
        return self._data.company_info

    def set_company_info(self, info: Mapping[str, Any]) -> CompanyInfo:
        merged = self._data.company_info.model_dump()
        merged.update({key: str(value).strip() for key, value in field_names(CompanyInfo, info).items() if value is not None})
        if not merged.get("name"):
            raise ValidationError("Company name is mandatory")
        if not merged.get("nit"):
            raise ValidationError("Company NIT is mandatory")

        self._data.company_info = validate_model(CompanyInfo, merged)
        self.save()
        return self._data.company_info
