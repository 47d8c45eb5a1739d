"""Tests for sales/purchase registration and the IVA derivation rules."""

import logging
from datetime import date

import pytest

from iva_ledger.correlatives import get_next_correlatives
from iva_ledger.errors import NotFoundError, ValidationError
from iva_ledger.ledger import (
    add_purchase,
    add_sale,
    delete_purchase,
    delete_sale,
    derive_credit_fiscal,
    derive_final_consumer,
    derive_purchase_total,
    update_purchase,
    update_sale,
)
from iva_ledger.storage import MemoryStorage
from iva_ledger.store import LedgerStore

CCF_SALE = {"date": "2024-03-10", "documentType": "CCF", "clientNrc": "1234567-8", "taxableAmount": 150}
CF_SALE = {"date": "2024-03-11", "documentType": "CF", "total": "113.00"}
PURCHASE = {
    "date": "2024-03-05",
    "documentType": "CCF",
    "supplierNrc": "8765432-1",
    "documentNumber": "F12345",
    "taxableAmount": 200,
    "ivaCredit": 26,
    "ivaWithheld": 2,
}


# ---------------------------------------------------------------------------
# Derivation
# ---------------------------------------------------------------------------

def test_credit_fiscal_150():
    amounts = derive_credit_fiscal(150, 0)
    assert amounts.iva_debit == 19.5
    assert amounts.total == 169.5


def test_credit_fiscal_with_exempt():
    amounts = derive_credit_fiscal(100, 20)
    assert amounts.iva_debit == 13.0
    assert amounts.total == 133.0


def test_final_consumer_113():
    amounts = derive_final_consumer(113)
    assert amounts.taxable_amount == 100.0
    assert amounts.iva_debit == 13.0
    assert amounts.exempt_amount == 0.0
    assert amounts.total == 113.0


def test_final_consumer_parts_add_up():
    amounts = derive_final_consumer(57.99)
    assert amounts.taxable_amount + amounts.iva_debit == pytest.approx(57.99, abs=0.001)


def test_purchase_total():
    assert derive_purchase_total(200, 10, 26, 2) == 234.0


# ---------------------------------------------------------------------------
# Sales
# ---------------------------------------------------------------------------

class TestSales:
    @pytest.fixture(autouse=True)
    def setup(self):
        self.storage = MemoryStorage()
        self.store = LedgerStore(self.storage)

    def test_add_ccf(self):
        record = add_sale(self.store, CCF_SALE)
        assert record.correlative == 1
        assert record.document_type == "CCF"
        assert record.date == date(2024, 3, 10)
        assert record.iva_debit == 19.5
        assert record.total == 169.5

    def test_add_cf(self):
        record = add_sale(self.store, CF_SALE)
        assert record.taxable_amount == 100.0
        assert record.iva_debit == 13.0
        assert record.total == 113.0
        assert record.client_nrc is None

    def test_document_type_case_insensitive(self):
        record = add_sale(self.store, {**CF_SALE, "documentType": "cf"})
        assert record.document_type == "CF"

    def test_derived_fields_in_input_are_ignored(self):
        record = add_sale(self.store, {**CCF_SALE, "ivaDebit": 999, "total": 1})
        assert record.iva_debit == 19.5
        assert record.total == 169.5

    def test_items_drive_ccf_base(self):
        items = [{"qty": 2, "desc": "Servicio", "price": 50}, {"qty": 1, "desc": "Extra", "price": 25}]
        record = add_sale(self.store, {**CCF_SALE, "taxableAmount": 10, "items": items})
        assert record.taxable_amount == 125.0
        assert record.iva_debit == 16.25
        assert len(record.items) == 2

    def test_update_keeps_stored_items(self):
        items = [{"qty": 2, "desc": "Servicio", "price": 50}]
        record = add_sale(self.store, {**CCF_SALE, "items": items})
        updated = update_sale(self.store, record.id, {"description": "Ajuste"})
        assert [item.qty for item in updated.items] == [2]
        assert updated.taxable_amount == 100.0

    def test_bad_line_item(self):
        with pytest.raises(ValidationError):
            add_sale(self.store, {**CCF_SALE, "items": [{"qty": 0, "desc": "x", "price": 5}]})

    def test_correlatives_monotonic_per_series(self):
        first = add_sale(self.store, CCF_SALE)
        second = add_sale(self.store, CCF_SALE)
        cf = add_sale(self.store, CF_SALE)
        assert (first.correlative, second.correlative) == (1, 2)
        assert cf.correlative == 1
        assert get_next_correlatives(self.store)["salesCCF"] == 3

    def test_ccf_requires_nrc(self):
        with pytest.raises(ValidationError, match="NRC"):
            add_sale(self.store, {**CCF_SALE, "clientNrc": ""})

    def test_rejected_sale_does_not_burn_correlative(self):
        with pytest.raises(ValidationError):
            add_sale(self.store, {**CCF_SALE, "clientNrc": None})
        assert get_next_correlatives(self.store)["salesCCF"] == 1
        assert add_sale(self.store, CCF_SALE).correlative == 1

    def test_invalid_document_type(self):
        with pytest.raises(ValidationError, match="document type"):
            add_sale(self.store, {**CF_SALE, "documentType": "XYZ"})

    def test_blank_date_is_today(self):
        record = add_sale(self.store, {**CF_SALE, "date": ""})
        assert record.date == date.today()

    def test_local_date_format_is_day_first(self):
        record = add_sale(self.store, {**CF_SALE, "date": "05/11/2023"})
        assert record.date == date(2023, 11, 5)

    def test_invalid_date(self):
        with pytest.raises(ValidationError):
            add_sale(self.store, {**CF_SALE, "date": "not a date"})

    def test_numeric_text_is_tolerated(self):
        record = add_sale(self.store, {**CCF_SALE, "taxableAmount": "$1,000.00"})
        assert record.taxable_amount == 1000.0
        assert record.iva_debit == 130.0

    def test_update_recomputes(self):
        record = add_sale(self.store, {**CCF_SALE, "taxableAmount": 100})
        updated = update_sale(self.store, record.id, {"taxableAmount": 200})
        assert updated.iva_debit == 26.0
        assert updated.total == 226.0
        assert updated.id == record.id
        assert updated.correlative == record.correlative

    def test_update_cf_total(self):
        record = add_sale(self.store, CF_SALE)
        updated = update_sale(self.store, record.id, {"total": 226})
        assert updated.taxable_amount == 200.0
        assert updated.iva_debit == 26.0

    def test_update_ignores_derived_fields(self):
        record = add_sale(self.store, CCF_SALE)
        updated = update_sale(self.store, record.id, {"ivaDebit": 1, "total": 2})
        assert updated.iva_debit == 19.5
        assert updated.total == 169.5

    def test_update_cannot_change_document_type(self):
        record = add_sale(self.store, CCF_SALE)
        with pytest.raises(ValidationError):
            update_sale(self.store, record.id, {"documentType": "CF"})

    def test_update_does_not_touch_correlatives(self):
        record = add_sale(self.store, CCF_SALE)
        update_sale(self.store, record.id, {"description": "Ajuste"})
        assert get_next_correlatives(self.store)["salesCCF"] == 2

    def test_update_missing(self):
        with pytest.raises(NotFoundError):
            update_sale(self.store, "missing", {"total": 1})

    def test_delete(self):
        record = add_sale(self.store, CCF_SALE)
        assert delete_sale(self.store, record.id) is True
        assert delete_sale(self.store, record.id) is False
        # numbers are not reused
        assert add_sale(self.store, CCF_SALE).correlative == 2

    def test_add_persists(self):
        add_sale(self.store, CCF_SALE)
        saved = self.storage.load()
        assert saved["salesRecords"][0]["ivaDebit"] == 19.5
        assert saved["nextCorrelatives"]["salesCCF"] == 2


# ---------------------------------------------------------------------------
# Purchases
# ---------------------------------------------------------------------------

class TestPurchases:
    @pytest.fixture(autouse=True)
    def setup(self):
        self.store = LedgerStore(MemoryStorage())

    def test_add(self):
        record = add_purchase(self.store, PURCHASE)
        assert record.correlative == 1
        assert record.total == 224.0
        assert record.iva_credit == 26.0

    def test_iva_credit_is_taken_as_given(self):
        record = add_purchase(self.store, {**PURCHASE, "ivaCredit": 20})
        assert record.iva_credit == 20.0

    def test_iva_credit_mismatch_is_logged(self, caplog):
        with caplog.at_level(logging.WARNING, logger="iva_ledger.ledger"):
            add_purchase(self.store, {**PURCHASE, "ivaCredit": 20})
        assert "IVA credit 20.00" in caplog.text
        assert "(26.00)" in caplog.text

    def test_matching_iva_credit_is_quiet(self, caplog):
        with caplog.at_level(logging.WARNING, logger="iva_ledger.ledger"):
            add_purchase(self.store, PURCHASE)
            add_purchase(self.store, {**PURCHASE, "documentType": "Importacion", "ivaCredit": 1})
        assert "IVA credit" not in caplog.text

    def test_update_checks_iva_credit(self, caplog):
        record = add_purchase(self.store, PURCHASE)
        with caplog.at_level(logging.WARNING, logger="iva_ledger.ledger"):
            update_purchase(self.store, record.id, {"taxableAmount": 100})
        assert "IVA credit 26.00" in caplog.text

    def test_total_adds_the_stored_parts(self):
        record = add_purchase(
            self.store,
            {**PURCHASE, "taxableAmount": 10.004, "exemptAmount": 10.004, "ivaCredit": 0, "ivaWithheld": 0},
        )
        assert record.taxable_amount == 10.0
        assert record.exempt_amount == 10.0
        assert record.total == 20.0

    def test_supplier_nrc_required(self):
        with pytest.raises(ValidationError):
            add_purchase(self.store, {**PURCHASE, "supplierNrc": ""})
        assert get_next_correlatives(self.store)["purchases"] == 1

    def test_document_number_required(self):
        payload = {key: value for key, value in PURCHASE.items() if key != "documentNumber"}
        with pytest.raises(ValidationError):
            add_purchase(self.store, payload)

    def test_internal_correlative_advances(self):
        add_purchase(self.store, PURCHASE)
        assert add_purchase(self.store, PURCHASE).correlative == 2

    def test_update_recomputes_total(self):
        record = add_purchase(self.store, PURCHASE)
        updated = update_purchase(self.store, record.id, {"taxableAmount": 100, "ivaCredit": 13, "ivaWithheld": 0})
        assert updated.total == 113.0
        assert updated.id == record.id
        assert updated.correlative == 1

    def test_update_ignores_total(self):
        record = add_purchase(self.store, PURCHASE)
        updated = update_purchase(self.store, record.id, {"total": 5})
        assert updated.total == 224.0

    def test_delete(self):
        record = add_purchase(self.store, PURCHASE)
        assert delete_purchase(self.store, record.id) is True
        assert self.store.get_all("purchaseRecords") == []
