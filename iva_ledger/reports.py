from __future__ import annotations

import datetime as dt
from typing import Dict, Iterable, List, Optional, Sequence

from iva_ledger.errors import ValidationError
from iva_ledger.models import UNKNOWN_PARTY, Entity, LedgerModel, PurchaseRecord, SalesRecord
from iva_ledger.parse_utils import round2
from iva_ledger.store import LedgerStore


class PeriodSummary(LedgerModel):
    year: int
    month: int
    total_sales: float
    iva_debit: float
    total_purchases: float
    iva_credit: float
    iva_to_pay: float
    utility: float
    annual_sales_excluding_iva: float
    annual_purchases_excluding_iva: float
    annual_sales_including_iva: float


class BookTotals(LedgerModel):
    taxable_amount: float = 0.0
    exempt_amount: float = 0.0
    iva: float = 0.0
    iva_withheld: float = 0.0
    total: float = 0.0


class SalesBookLine(LedgerModel):
    number: int
    date: dt.date
    correlative: int
    client_nrc: Optional[str] = None
    client_name: Optional[str] = None
    client_nit: Optional[str] = None
    taxable_amount: float
    exempt_amount: float
    iva_debit: float
    total: float


class SalesBook(LedgerModel):
    year: int
    month: int
    ccf: List[SalesBookLine]
    ccf_totals: BookTotals
    cf: List[SalesBookLine]
    cf_totals: BookTotals
    iva_debit_total: float


class PurchaseBookLine(LedgerModel):
    number: int
    date: dt.date
    correlative: int
    document_type: str
    document_number: Optional[str] = None
    supplier_nrc: Optional[str] = None
    supplier_name: str
    supplier_nit: Optional[str] = None
    taxable_amount: float
    exempt_amount: float
    iva_credit: float
    iva_withheld: float
    total: float


class PurchaseBook(LedgerModel):
    year: int
    month: int
    lines: List[PurchaseBookLine]
    totals: BookTotals


def _check_period(year: int, month: int) -> None:
    if not 1 <= month <= 12:
        raise ValidationError(f"Month must be between 1 and 12, got {month}")
    if year < 1:
        raise ValidationError(f"Invalid year: {year}")


def _in_month(records: Iterable, year: int, month: int) -> list:
    # undated records belong to no period
    selected = [r for r in records if r.date and r.date.year == year and r.date.month == month]
    return sorted(selected, key=lambda r: r.date)


def _in_year(records: Iterable, year: int) -> list:
    return [r for r in records if r.date and r.date.year == year]


def _by_nrc(entities: Sequence[Entity]) -> Dict[str, Entity]:
    # First registration wins when an NRC is duplicated.
    index: Dict[str, Entity] = {}
    for entity in entities:
        if entity.nrc:
            index.setdefault(entity.nrc, entity)
    return index


def _total(values: Iterable[float]) -> float:
    return round2(sum(values))


def period_summary(store: LedgerStore, year: int, month: int) -> PeriodSummary:
    _check_period(year, month)
    sales: List[SalesRecord] = store.get_all("salesRecords")
    purchases: List[PurchaseRecord] = store.get_all("purchaseRecords")

    month_sales = _in_month(sales, year, month)
    month_purchases = _in_month(purchases, year, month)
    year_sales = _in_year(sales, year)
    year_purchases = _in_year(purchases, year)

    total_sales = _total(s.total for s in month_sales)
    iva_debit = _total(s.iva_debit for s in month_sales)
    total_purchases = _total(p.total for p in month_purchases)
    iva_credit = _total(p.iva_credit for p in month_purchases)
    iva_to_pay = round2(iva_debit - iva_credit)

    return PeriodSummary(
        year=year,
        month=month,
        total_sales=total_sales,
        iva_debit=iva_debit,
        total_purchases=total_purchases,
        iva_credit=iva_credit,
        iva_to_pay=iva_to_pay,
        utility=round2(total_sales - total_purchases - iva_to_pay),
        annual_sales_excluding_iva=_total(s.taxable_amount + s.exempt_amount for s in year_sales),
        annual_purchases_excluding_iva=_total(p.taxable_amount + p.exempt_amount for p in year_purchases),
        annual_sales_including_iva=_total(s.total for s in year_sales),
    )


def _sales_totals(lines: Sequence[SalesBookLine]) -> BookTotals:
    return BookTotals(
        taxable_amount=_total(line.taxable_amount for line in lines),
        exempt_amount=_total(line.exempt_amount for line in lines),
        iva=_total(line.iva_debit for line in lines),
        total=_total(line.total for line in lines),
    )


def sales_book(store: LedgerStore, year: int, month: int) -> SalesBook:
    """Sales book for one month: CCF lines with the client resolved by NRC,
    and the final-consumer (CF) lines."""
    _check_period(year, month)
    clients = _by_nrc(store.get_all("clients"))
    sales = _in_month(store.get_all("salesRecords"), year, month)

    ccf_lines: List[SalesBookLine] = []
    cf_lines: List[SalesBookLine] = []
    for sale in sales:
        if sale.document_type == "CCF":
            client = clients.get(sale.client_nrc or "")
            ccf_lines.append(
                SalesBookLine(
                    number=len(ccf_lines) + 1,
                    date=sale.date,
                    correlative=sale.correlative,
                    client_nrc=sale.client_nrc,
                    client_name=client.name if client else UNKNOWN_PARTY,
                    client_nit=client.nit if client else None,
                    taxable_amount=sale.taxable_amount,
                    exempt_amount=sale.exempt_amount,
                    iva_debit=sale.iva_debit,
                    total=sale.total,
                )
            )
        else:
            cf_lines.append(
                SalesBookLine(
                    number=len(cf_lines) + 1,
                    date=sale.date,
                    correlative=sale.correlative,
                    taxable_amount=sale.taxable_amount,
                    exempt_amount=sale.exempt_amount,
                    iva_debit=sale.iva_debit,
                    total=sale.total,
                )
            )

    ccf_totals = _sales_totals(ccf_lines)
    cf_totals = _sales_totals(cf_lines)
    return SalesBook(
        year=year,
        month=month,
        ccf=ccf_lines,
        ccf_totals=ccf_totals,
        cf=cf_lines,
        cf_totals=cf_totals,
        iva_debit_total=round2(ccf_totals.iva + cf_totals.iva),
    )


def purchase_book(store: LedgerStore, year: int, month: int) -> PurchaseBook:
    _check_period(year, month)
    suppliers = _by_nrc(store.get_all("suppliers"))
    purchases = _in_month(store.get_all("purchaseRecords"), year, month)

    lines: List[PurchaseBookLine] = []
    for number, purchase in enumerate(purchases, start=1):
        supplier = suppliers.get(purchase.supplier_nrc or "")
        lines.append(
            PurchaseBookLine(
                number=number,
                date=purchase.date,
                correlative=purchase.correlative,
                document_type=purchase.document_type,
                document_number=purchase.document_number,
                supplier_nrc=purchase.supplier_nrc,
                supplier_name=supplier.name if supplier else UNKNOWN_PARTY,
                supplier_nit=supplier.nit if supplier else None,
                taxable_amount=purchase.taxable_amount,
                exempt_amount=purchase.exempt_amount,
                iva_credit=purchase.iva_credit,
                iva_withheld=purchase.iva_withheld,
                total=purchase.total,
            )
        )

    totals = BookTotals(
        taxable_amount=_total(line.taxable_amount for line in lines),
        exempt_amount=_total(line.exempt_amount for line in lines),
        iva=_total(line.iva_credit for line in lines),
        iva_withheld=_total(line.iva_withheld for line in lines),
        total=_total(line.total for line in lines),
    )
    return PurchaseBook(year=year, month=month, lines=lines, totals=totals)
