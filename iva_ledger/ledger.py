from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping

from iva_ledger.correlatives import take_next
from iva_ledger.errors import ValidationError
from iva_ledger.models import (
    SALE_MODES,
    SALES_SERIES,
    CreditFiscalSale,
    LineItem,
    PurchaseInput,
    PurchaseRecord,
    SaleInput,
    SalesRecord,
)
from iva_ledger.parse_utils import VAT_RATE, approx_equal, round2, vat
from iva_ledger.store import LedgerStore, field_names, new_id, validate_model

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SaleAmounts:
    taxable_amount: float
    exempt_amount: float
    iva_debit: float
    total: float


# ---------------------------------------------------------------------------
# Derivation
# ---------------------------------------------------------------------------

def derive_credit_fiscal(taxable_amount: float, exempt_amount: float) -> SaleAmounts:
    taxable = round2(taxable_amount)
    exempt = round2(exempt_amount)
    iva_debit = vat(taxable)
    return SaleAmounts(taxable, exempt, iva_debit, round2(taxable + exempt + iva_debit))


def derive_final_consumer(total: float) -> SaleAmounts:
    gross = round2(total)
    taxable = round2(gross / (1 + VAT_RATE))
    return SaleAmounts(taxable, 0.0, round2(gross - taxable), gross)


def derive_purchase_total(
    taxable_amount: float,
    exempt_amount: float,
    iva_credit: float,
    iva_withheld: float,
) -> float:
    return round2(taxable_amount + exempt_amount + iva_credit - iva_withheld)


def items_base(sale: SaleInput) -> float:
    return round2(sum(item.amount for item in sale.items))


def derive_sale(sale: SaleInput, use_items: bool = True) -> SaleAmounts:
    if isinstance(sale, CreditFiscalSale):
        base = items_base(sale) if use_items else 0.0
        taxable = base if base > 0 else sale.taxable_amount
        return derive_credit_fiscal(taxable, sale.exempt_amount)
    return derive_final_consumer(sale.total)


def parse_sale_input(data: Mapping[str, Any]) -> SaleInput:
    payload = dict(data)
    raw_type = payload.get("documentType", payload.get("document_type"))
    document_type = str(raw_type or "").strip().upper()
    model = SALE_MODES.get(document_type)
    if model is None:
        raise ValidationError(f"Invalid document type for a sale: {raw_type!r}. Use 'CCF' or 'CF'.")
    payload = field_names(model, payload)
    payload["document_type"] = document_type
    return validate_model(model, payload)


def _sales_record(
    record_id: str,
    correlative: int,
    sale: SaleInput,
    amounts: SaleAmounts,
    items: List[LineItem],
) -> SalesRecord:
    return SalesRecord(
        id=record_id,
        correlative=correlative,
        document_type=sale.document_type,
        date=sale.date,
        client_nrc=sale.client_nrc if isinstance(sale, CreditFiscalSale) else None,
        description=sale.description,
        items=items,
        taxable_amount=amounts.taxable_amount,
        exempt_amount=amounts.exempt_amount,
        iva_debit=amounts.iva_debit,
        total=amounts.total,
    )


def _stored_items(sale: SaleInput) -> List[LineItem]:
    return [LineItem.model_validate(item.model_dump()) for item in sale.items]


def _purchase_record(record_id: str, correlative: int, purchase: PurchaseInput) -> PurchaseRecord:
    taxable = round2(purchase.taxable_amount)
    exempt = round2(purchase.exempt_amount)
    iva_credit = round2(purchase.iva_credit)
    iva_withheld = round2(purchase.iva_withheld)
    return PurchaseRecord(
        id=record_id,
        correlative=correlative,
        document_type=purchase.document_type,
        date=purchase.date,
        supplier_nrc=purchase.supplier_nrc,
        document_number=purchase.document_number,
        taxable_amount=taxable,
        exempt_amount=exempt,
        iva_credit=iva_credit,
        iva_withheld=iva_withheld,
        total=derive_purchase_total(taxable, exempt, iva_credit, iva_withheld),
    )


def check_iva_credit(purchase: PurchaseInput) -> bool:
    """Log a warning when the IVA credit is not 13% of the taxable amount.

    The credit is still stored as given; CCF only.
    """
    if purchase.document_type != "CCF":
        return True
    expected = vat(purchase.taxable_amount)
    if approx_equal(purchase.iva_credit, expected):
        return True
    logger.warning(
        "Purchase %s from %s: IVA credit %.2f differs from 13%% of the taxable amount (%.2f)",
        purchase.document_number,
        purchase.supplier_nrc,
        purchase.iva_credit,
        expected,
    )
    return False


# ---------------------------------------------------------------------------
# Sales
# ---------------------------------------------------------------------------

def add_sale(store: LedgerStore, data: Mapping[str, Any]) -> SalesRecord:
    sale = parse_sale_input(data)
    amounts = derive_sale(sale)
    correlative = take_next(store, SALES_SERIES[sale.document_type])
    record = _sales_record(new_id(), correlative, sale, amounts, _stored_items(sale))
    return store.append("salesRecords", record)


def update_sale(store: LedgerStore, record_id: str, patch: Mapping[str, Any]) -> SalesRecord:
    """Apply ``patch`` and re-run the derivation for the record's document type.

    Derived fields in the patch or in the previous state are ignored. Line
    items only drive the taxable base when the patch itself carries them.
    """
    index = store.index_of("salesRecords", record_id)
    current: SalesRecord = store.collection("salesRecords")[index]

    changes = field_names(SalesRecord, patch)
    new_type = changes.pop("document_type", None)
    if new_type is not None and str(new_type).strip().upper() != current.document_type:
        raise ValidationError(
            f"Document type is fixed at creation ({current.document_type}); create a new record instead"
        )

    # parse_sale_input keeps only the authoritative fields of the mode
    merged: Dict[str, Any] = current.model_dump(exclude={"id", "correlative", "items"})
    merged.update(changes)
    merged["document_type"] = current.document_type

    sale = parse_sale_input(merged)
    use_items = "items" in changes
    amounts = derive_sale(sale, use_items=use_items)
    items = _stored_items(sale) if use_items else list(current.items)
    record = _sales_record(current.id, current.correlative, sale, amounts, items)
    return store.put("salesRecords", index, record)


def delete_sale(store: LedgerStore, record_id: str) -> bool:
    return store.delete("salesRecords", record_id)


# ---------------------------------------------------------------------------
# Purchases
# ---------------------------------------------------------------------------

def add_purchase(store: LedgerStore, data: Mapping[str, Any]) -> PurchaseRecord:
    purchase = validate_model(PurchaseInput, field_names(PurchaseInput, data))
    check_iva_credit(purchase)
    correlative = take_next(store, "purchases")
    record = _purchase_record(new_id(), correlative, purchase)
    return store.append("purchaseRecords", record)


def update_purchase(store: LedgerStore, record_id: str, patch: Mapping[str, Any]) -> PurchaseRecord:
    index = store.index_of("purchaseRecords", record_id)
    current: PurchaseRecord = store.collection("purchaseRecords")[index]

    merged: Dict[str, Any] = current.model_dump(exclude={"id", "correlative", "total"})
    merged.update(field_names(PurchaseInput, patch))
    purchase = validate_model(PurchaseInput, merged)
    check_iva_credit(purchase)
    record = _purchase_record(current.id, current.correlative, purchase)
    return store.put("purchaseRecords", index, record)


def delete_purchase(store: LedgerStore, record_id: str) -> bool:
    return store.delete("purchaseRecords", record_id)
