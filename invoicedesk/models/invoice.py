from __future__ import annotations

from datetime import date, timedelta
from decimal import Decimal
from enum import Enum
from typing import Annotated, List, Optional

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, computed_field

from invoicedesk.services.calculator import (
    ZERO,
    coerce_quantity,
    coerce_unit_price,
    compute_totals,
    line_amount,
    to_decimal,
)

from .client import Client, ClientRef
from .common import gen_id

Money = Annotated[Decimal, BeforeValidator(to_decimal)]
OptionalMoney = Annotated[Optional[Decimal], BeforeValidator(lambda v: None if v is None else to_decimal(v))]

OUTSTANDING_STATUSES = ("open", "sent", "overdue")


class InvoiceFilter(str, Enum):
    ALL = "all"
    SENT = "sent"
    PAID = "paid"
    OVERDUE = "overdue"

    @property
    def status_value(self) -> Optional[str]:
        # ALL and OVERDUE are resolved client-side
        if self in (InvoiceFilter.ALL, InvoiceFilter.OVERDUE):
            return None
        return self.value


# ---------- Line items ----------

class LineItemDraft(BaseModel):
    """An editable row of a draft; nothing is coerced until totals or a snapshot are built."""
    id: str = Field(default_factory=gen_id)
    title: str = ""
    description: str = ""
    quantity: int = 1
    unit_price: Money = ZERO


class LineItem(BaseModel):
    """A persisted line item. `amount` is always quantity x unit price."""
    model_config = ConfigDict(populate_by_name=True)

    id: Optional[str] = None
    title: Optional[str] = None
    description: str = ""
    quantity: Annotated[int, BeforeValidator(coerce_quantity)] = Field(default=1, alias="qty")
    unit_price: Annotated[Decimal, BeforeValidator(coerce_unit_price)] = ZERO

    @computed_field  # type: ignore[misc]
    @property
    def amount(self) -> Decimal:
        return line_amount(self.quantity, self.unit_price)


# ---------- Draft ----------

def _default_due_date() -> date:
    return date.today() + timedelta(days=14)


class InvoiceDraft(BaseModel):
    number: str = ""
    client: Optional[Client] = None
    due_date: date = Field(default_factory=_default_due_date)
    currency: str = "USD"
    tax_percent: Money = ZERO
    notes: str = ""
    items: List[LineItemDraft] = Field(default_factory=list)

    @property
    def subtotal(self) -> Decimal:
        return compute_totals(self.items).subtotal

    @property
    def tax_amount(self) -> Decimal:
        return compute_totals(self.items, tax_rate=self.tax_percent).tax

    @property
    def total(self) -> Decimal:
        return compute_totals(self.items, tax_rate=self.tax_percent).total


# ---------- Backend rows ----------

class InvoiceRow(BaseModel):
    id: str
    number: str
    status: str
    client_id: Optional[str] = None
    total: OptionalMoney = None
    currency: Optional[str] = None
    created_at: Optional[str] = None
    due_date: Optional[str] = None
    sent_at: Optional[str] = None
    client: Optional[ClientRef] = None

    @property
    def client_name(self) -> str:
        return (self.client.name if self.client else None) or "—"


class InvoiceDetail(BaseModel):
    id: str
    number: str
    status: str
    subtotal: OptionalMoney = None
    tax: OptionalMoney = None
    total: OptionalMoney = None
    currency: Optional[str] = None
    created_at: Optional[str] = None
    issued_at: Optional[str] = None
    due_date: Optional[str] = None
    checkout_url: Optional[str] = None
    notes: Optional[str] = None
    client: Optional[ClientRef] = None
    line_items: List[LineItem] = Field(default_factory=list)


class AccountStats(BaseModel):
    total_count: int = 0
    paid_count: int = 0
    outstanding_amount: Money = ZERO
