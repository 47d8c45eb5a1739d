from __future__ import annotations

import datetime as dt
import re
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from iva_ledger.parse_utils import parse_date, to_number


CorrelativeSeries = Literal["salesCCF", "salesCF", "purchases"]

UNKNOWN_PARTY = "unknown"


def _blank_to_none(value: Any) -> Any:
    if value is None:
        return None
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        value = str(value)
    if isinstance(value, str):
        value = value.strip()
        return value or None
    return value


def _text(value: Any) -> Any:
    if value is None:
        return ""
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    return value


def _checked_date(value: Any) -> dt.date:
    parsed = parse_date(value)
    if parsed is None:
        raise ValueError(f"Invalid date: {value!r}")
    return parsed


def _today_if_blank(value: Any) -> Any:
    if value is None or (isinstance(value, str) and not value.strip()):
        return dt.date.today()
    return _checked_date(value)


def _none_if_blank(value: Any) -> Any:
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    return _checked_date(value)


def _upper_code(value: Any) -> Any:
    if value is None:
        return ""
    if isinstance(value, str):
        return value.strip().upper()
    return value


def _whole_number(value: Any) -> int:
    return int(to_number(value))


def _next_number(value: Any) -> int:
    return max(1, int(to_number(value)))


def _list_or_empty(value: Any) -> Any:
    return [] if value is None else value


# Tolerant numeric input: the only place user-edited text becomes a number.
Money = Annotated[float, BeforeValidator(to_number)]
OptionalText = Annotated[Optional[str], BeforeValidator(_blank_to_none)]
CodeText = Annotated[str, BeforeValidator(_upper_code)]
RecordDate = Annotated[dt.date, BeforeValidator(_today_if_blank)]

# Stored values are kept as found; the business rules apply to inputs only.
StoredText = Annotated[str, BeforeValidator(_text)]
StoredDate = Annotated[Optional[dt.date], BeforeValidator(_none_if_blank)]
StoredInt = Annotated[int, BeforeValidator(_whole_number)]
NextNumber = Annotated[int, BeforeValidator(_next_number)]


class LedgerModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json")


# ---------------------------------------------------------------------------
# Clients / suppliers
# ---------------------------------------------------------------------------

class EntityInput(LedgerModel):
    name: str = ""
    nrc: OptionalText = None
    nit: str
    address: str = ""
    activity: str = ""
    contact: OptionalText = None
    phone: OptionalText = None

    @field_validator("nit")
    @classmethod
    def _nit_required(cls, value: str) -> str:
        value = (value or "").strip()
        if not value:
            raise ValueError("NIT is mandatory")
        return value

    @field_validator("phone")
    @classmethod
    def _phone_digits(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        digits = re.sub(r"\D+", "", value)
        if not 7 <= len(digits) <= 10:
            raise ValueError("Phone must contain between 7 and 10 digits")
        return digits


class Entity(LedgerModel):
    """A stored client or supplier. Input rules live on EntityInput."""

    id: StoredText
    name: StoredText = ""
    nrc: OptionalText = None
    nit: StoredText = ""
    address: StoredText = ""
    activity: StoredText = ""
    contact: OptionalText = None
    phone: OptionalText = None


# ---------------------------------------------------------------------------
# Sales
# ---------------------------------------------------------------------------

class LineItem(LedgerModel):
    qty: Money = 0.0
    desc: StoredText = ""
    price: Money = 0.0

    @property
    def amount(self) -> float:
        return self.qty * self.price


class SaleLineItem(LineItem):
    qty: int = Field(gt=0)
    price: float = Field(ge=0)


StoredItems = Annotated[list[LineItem], BeforeValidator(_list_or_empty)]


class _SaleInputBase(LedgerModel):
    date: RecordDate = Field(default_factory=dt.date.today)
    description: OptionalText = None
    items: Annotated[list[SaleLineItem], BeforeValidator(_list_or_empty)] = Field(default_factory=list)


class CreditFiscalSale(_SaleInputBase):
    """CCF: taxable and exempt amounts are authoritative; VAT and total derive."""

    document_type: Literal["CCF"] = "CCF"
    client_nrc: OptionalText = Field(default=None, validate_default=True)
    taxable_amount: Money = 0.0
    exempt_amount: Money = 0.0

    @field_validator("client_nrc")
    @classmethod
    def _nrc_required(cls, value: Optional[str]) -> str:
        if not value:
            raise ValueError("CCF requires the client's NRC")
        return value


class FinalConsumerSale(_SaleInputBase):
    """CF: the VAT-inclusive total is authoritative; everything else derives."""

    document_type: Literal["CF"] = "CF"
    total: Money = 0.0


SaleInput = Union[CreditFiscalSale, FinalConsumerSale]

SALE_MODES: dict[str, type[LedgerModel]] = {
    "CCF": CreditFiscalSale,
    "CF": FinalConsumerSale,
}


class SalesRecord(LedgerModel):
    id: StoredText
    correlative: StoredInt = 0
    document_type: CodeText = ""
    date: StoredDate = None
    client_nrc: OptionalText = None
    description: OptionalText = None
    items: StoredItems = Field(default_factory=list)
    taxable_amount: Money = 0.0
    exempt_amount: Money = 0.0
    iva_debit: Money = 0.0
    total: Money = 0.0


# ---------------------------------------------------------------------------
# Purchases
# ---------------------------------------------------------------------------

class PurchaseInput(LedgerModel):
    date: RecordDate = Field(default_factory=dt.date.today)
    document_type: CodeText = "CCF"
    supplier_nrc: OptionalText = Field(default=None, validate_default=True)
    document_number: OptionalText = Field(default=None, validate_default=True)
    taxable_amount: Money = 0.0
    exempt_amount: Money = 0.0
    iva_credit: Money = 0.0
    iva_withheld: Money = 0.0

    @field_validator("supplier_nrc", "document_number")
    @classmethod
    def _required(cls, value: Optional[str], info) -> str:
        if not value:
            raise ValueError(f"{info.field_name} is mandatory")
        return value


class PurchaseRecord(LedgerModel):
    id: StoredText
    correlative: StoredInt = 0
    document_type: CodeText = ""
    date: StoredDate = None
    supplier_nrc: OptionalText = None
    document_number: OptionalText = None
    taxable_amount: Money = 0.0
    exempt_amount: Money = 0.0
    iva_credit: Money = 0.0
    iva_withheld: Money = 0.0
    total: Money = 0.0


# ---------------------------------------------------------------------------
# Auxiliary state
# ---------------------------------------------------------------------------

# Series key -> CorrelativeState attribute
SERIES_FIELDS: dict[str, str] = {
    "salesCCF": "sales_ccf",
    "salesCF": "sales_cf",
    "purchases": "purchases",
}

SALES_SERIES: dict[str, str] = {"CCF": "salesCCF", "CF": "salesCF"}


class CorrelativeState(LedgerModel):
    """Next number to assign per series."""

    sales_cf: NextNumber = Field(default=1, alias="salesCF")
    sales_ccf: NextNumber = Field(default=1, alias="salesCCF")
    purchases: NextNumber = 1


class CompanyInfo(LedgerModel):
    name: StoredText = ""
    nit: StoredText = ""
    nrc: StoredText = ""
    dui: StoredText = ""
    activity: StoredText = ""
    address: StoredText = ""
    phone: StoredText = ""


class LedgerData(LedgerModel):
    clients: list[Entity] = Field(default_factory=list)
    suppliers: list[Entity] = Field(default_factory=list)
    sales_records: list[SalesRecord] = Field(default_factory=list)
    purchase_records: list[PurchaseRecord] = Field(default_factory=list)
    next_correlatives: CorrelativeState = Field(default_factory=CorrelativeState)
    company_info: CompanyInfo = Field(default_factory=CompanyInfo)
