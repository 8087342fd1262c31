from __future__ import annotations

from datetime import date, datetime, time, timezone
from decimal import Decimal
from typing import Any, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

from invoicedesk.models.invoice import InvoiceDetail, InvoiceDraft
from invoicedesk.services.calculator import (
    ZERO,
    coerce_quantity,
    coerce_unit_price,
    compute_totals,
    line_amount,
    quantize,
    to_decimal,
)

# text without separator longer than this is a body, not a title
TITLE_MAX_LEN = 40
LEGACY_SEPARATORS = (" – ", " - ")


# ---------- Title / body ----------

def _trim(value: Optional[str]) -> str:
    return (value or "").strip()


def split_title_and_body(title: Optional[str], description: Optional[str]) -> Tuple[Optional[str], Optional[str]]:
    """
    Resolves what a line item shows in bold (title) and below it (body).

    1. an explicit title wins; the description is dropped when empty or equal to it
    2. legacy rows stored "Title – body" (or "Title - body") in the description
    3. short text is a title, long text a body
    """
    t = _trim(title)
    raw = description or ""
    d = raw.strip()

    if t:
        return t, (d if d and d != t else None)

    if not d:
        return None, None

    for sep in LEGACY_SEPARATORS:
        if sep in raw:
            head, _, tail = raw.partition(sep)
            head, tail = head.strip(), tail.strip()
            if head or tail:
                return head or None, tail or None

    if len(d) <= TITLE_MAX_LEN:
        return d, None
    return None, d


# ---------- Dates ----------

def _as_utc(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


def parse_backend_date(value: Any) -> Optional[datetime]:
    """
    Accepts datetimes, dates, "yyyy-mm-dd" (UTC midnight) and ISO-8601 timestamps,
    with or without fractional seconds. Returns None for anything else.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return _as_utc(value)
    if isinstance(value, date):
        return datetime.combine(value, time.min, tzinfo=timezone.utc)

    s = str(value).strip()
    if not s:
        return None
    if len(s) == 10:
        try:
            d = date.fromisoformat(s)
        except ValueError:
            return None
        return datetime.combine(d, time.min, tzinfo=timezone.utc)

    if s.endswith(("Z", "z")):
        s = s[:-1] + "+00:00"
    try:
        return _as_utc(datetime.fromisoformat(s))
    except ValueError:
        return None


# ---------- Snapshot ----------

class SnapshotClient(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str = "—"
    email: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None


class SnapshotItem(BaseModel):
    model_config = ConfigDict(frozen=True)

    title: Optional[str] = None
    body: Optional[str] = None
    quantity: int = 1
    unit_price: Decimal = ZERO
    amount: Decimal = ZERO

    @classmethod
    def build(cls, title: Optional[str], description: Optional[str], quantity: Any, unit_price: Any) -> "SnapshotItem":
        t, b = split_title_and_body(title, description)
        qty = coerce_quantity(quantity)
        price = coerce_unit_price(unit_price)
        return cls(title=t, body=b, quantity=qty, unit_price=price, amount=line_amount(qty, price))


class InvoiceSnapshot(BaseModel):
    """Immutable, render-ready view of an invoice (persisted or draft)."""
    model_config = ConfigDict(frozen=True)

    number: str = "—"
    status: str = "draft"
    currency: str = "USD"
    subtotal: Decimal = ZERO
    tax: Decimal = ZERO
    total: Decimal = ZERO
    issued_at: Optional[datetime] = None
    due_date: Optional[datetime] = None
    notes: Optional[str] = None
    client: SnapshotClient = Field(default_factory=SnapshotClient)
    items: List[SnapshotItem] = Field(default_factory=list)

    @staticmethod
    def _currency(code: Optional[str]) -> str:
        return (code or "").strip().upper() or "USD"

    @classmethod
    def from_detail(cls, detail: InvoiceDetail) -> "InvoiceSnapshot":
        items = [
            SnapshotItem.build(li.title, li.description, li.quantity, li.unit_price)
            for li in detail.line_items
        ]
        totals = compute_totals(items, tax_amount=detail.tax if detail.tax is not None else ZERO)
        client = SnapshotClient(name=(detail.client.name if detail.client else None) or "—")
        return cls(
            number=detail.number or "—",
            status=detail.status,
            currency=cls._currency(detail.currency),
            subtotal=totals.subtotal,
            tax=totals.tax,
            total=totals.total,
            issued_at=parse_backend_date(detail.issued_at or detail.created_at),
            due_date=parse_backend_date(detail.due_date),
            notes=_trim(detail.notes) or None,
            client=client,
            items=items,
        )

    @classmethod
    def from_draft(cls, draft: InvoiceDraft, now: Optional[datetime] = None) -> "InvoiceSnapshot":
        items = [SnapshotItem.build(it.title, it.description, it.quantity, it.unit_price) for it in draft.items]
        totals = compute_totals(items, tax_rate=draft.tax_percent)
        c = draft.client
        client = SnapshotClient(
            name=(c.name.strip() if c and c.name.strip() else "—"),
            email=(str(c.email) if c and c.email else None),
            city=c.city if c else None,
            state=c.state if c else None,
        )
        return cls(
            number=_trim(draft.number) or "—",
            status="draft",
            currency=cls._currency(draft.currency),
            subtotal=totals.subtotal,
            tax=totals.tax,
            total=totals.total,
            issued_at=_as_utc(now) if now else datetime.now(timezone.utc),
            due_date=parse_backend_date(draft.due_date),
            notes=_trim(draft.notes) or None,
            client=client,
            items=items,
        )

    @property
    def has_tax(self) -> bool:
        return quantize(to_decimal(self.tax)) != ZERO
