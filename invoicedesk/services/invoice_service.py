from __future__ import annotations

import logging
import re
from datetime import date, tzinfo
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from invoicedesk.context import AppContext
from invoicedesk.errors import BackendError, InvoiceDeskError
from invoicedesk.models.common import utc_now_iso
from invoicedesk.models.invoice import (
    OUTSTANDING_STATUSES,
    AccountStats,
    InvoiceDetail,
    InvoiceDraft,
    InvoiceFilter,
    InvoiceRow,
    LineItemDraft,
)
from invoicedesk.services.analytics import AnalyticsEvent, track
from invoicedesk.services.calculator import ZERO, coerce_quantity, coerce_unit_price, compute_totals, line_amount, to_decimal
from invoicedesk.services.payment_service import PaymentService
from invoicedesk.services.snapshot import parse_backend_date
from invoicedesk.signals import ActionThrottle
from invoicedesk.storage.repo import TableRepository

logger = logging.getLogger(__name__)

ROW_COLUMNS = (
    "id, number, status, total, currency, created_at, due_date, sent_at, client_id, "
    "client:clients!invoices_client_id_fkey(name)"
)
DETAIL_COLUMNS = (
    "id, number, status, subtotal, tax, total, notes, currency, created_at, issued_at, due_date, checkout_url, "
    "client:clients!invoices_client_id_fkey(name), "
    "line_items(id, title, description, qty, unit_price, amount)"
)
NUMBER_SCAN_LIMIT = 50
NUMBER_PREFIX = "A"

PLACEHOLDER_TITLE = "Title"
PLACEHOLDER_DESCRIPTION = "Description"
EMPTY_ITEM_DESCRIPTION = "Item"

_TRAILING_DIGITS = re.compile(r"(\d+)$")


# ---------- Utils ----------

def _money(value: Any) -> float:
    return float(to_decimal(value))


def trailing_number(number: Optional[str]) -> Optional[int]:
    m = _TRAILING_DIGITS.search((number or "").strip())
    return int(m.group(1)) if m else None


def normalize_line_item(item: LineItemDraft) -> Dict[str, Any]:
    """
    Placeholder-aware cleanup before insert:
    - "Title" / "Description" count as empty
    - title only -> the title doubles as description
    - nothing at all -> description "Item"
    """
    title = (item.title or "").strip()
    desc = (item.description or "").strip()
    no_title = not title or title == PLACEHOLDER_TITLE
    no_desc = not desc or desc == PLACEHOLDER_DESCRIPTION

    if not no_title and not no_desc:
        final_title, final_desc = title, desc
    elif no_title and not no_desc:
        final_title, final_desc = None, desc
    elif not no_title and no_desc:
        final_title, final_desc = title, title
    else:
        final_title, final_desc = None, EMPTY_ITEM_DESCRIPTION

    qty = coerce_quantity(item.quantity)
    price = coerce_unit_price(item.unit_price)
    return {
        "title": final_title,
        "description": final_desc,
        "qty": qty,
        "unit_price": float(price),
        "amount": float(line_amount(qty, price)),
    }


def is_overdue(row: InvoiceRow, today: date, tz: Optional[tzinfo] = None) -> bool:
    """Open or draft, with a due date before `today` (local calendar days)."""
    if row.status not in ("open", "draft"):
        return False
    due = parse_backend_date(row.due_date)
    if due is None:
        return False
    return due.astimezone(tz).date() < today


# ---------- Service ----------

class InvoiceService:
    def __init__(
        self,
        ctx: AppContext,
        repo: Optional[TableRepository] = None,
        items_repo: Optional[TableRepository] = None,
        payments: Optional[PaymentService] = None,
        throttle: Optional[ActionThrottle] = None,
    ):
        self.ctx = ctx
        self.repo = repo or TableRepository(ctx.client, "invoices", entity_name="invoice")
        self.items_repo = items_repo or TableRepository(ctx.client, "line_items", entity_name="line item")
        self.payments = payments or PaymentService(ctx)
        self.throttle = throttle or ActionThrottle(ctx.settings.action_interval)

    def _scope(self, **extra: Any) -> Dict[str, Any]:
        return {"user_id": self.ctx.require_user_id(), **extra}

    @staticmethod
    def _rows(data: List[dict]) -> List[InvoiceRow]:
        out: List[InvoiceRow] = []
        for d in data:
            try:
                out.append(InvoiceRow(**d))
            except ValidationError:
                continue
        return out

    # ----------- Lists / stats -----------

    async def fetch_recent(self, limit: int = 5) -> List[InvoiceRow]:
        data = await self.repo.list_all(ROW_COLUMNS, where=self._scope(), order_by="created_at", limit=limit)
        return self._rows(data)

    async def list_invoices(
        self,
        filter: InvoiceFilter = InvoiceFilter.ALL,
        today: Optional[date] = None,
        tz: Optional[tzinfo] = None,
    ) -> List[InvoiceRow]:
        rows = self._rows(await self.repo.list_all(ROW_COLUMNS, where=self._scope(), order_by="created_at"))
        if filter is InvoiceFilter.OVERDUE:
            today = today or date.today()
            return [r for r in rows if is_overdue(r, today, tz)]
        target = filter.status_value
        if target:
            return [r for r in rows if r.status == target]
        return rows

    async def fetch_account_stats(self) -> AccountStats:
        data = await self.repo.list_all("status, total", where=self._scope())
        statuses = [((d.get("status") or "").lower(), to_decimal(d.get("total"))) for d in data]
        outstanding = sum((total for status, total in statuses if status in OUTSTANDING_STATUSES), ZERO)
        return AccountStats(
            total_count=len(statuses),
            paid_count=sum(1 for status, _ in statuses if status == "paid"),
            outstanding_amount=outstanding,
        )

    # ----------- Numbering -----------

    async def next_invoice_number(self) -> str:
        data = await self.repo.list_all(
            "number, created_at", where=self._scope(), order_by="created_at", limit=NUMBER_SCAN_LIMIT
        )
        highest = max((n for n in (trailing_number(d.get("number")) for d in data) if n is not None), default=0)
        return f"{NUMBER_PREFIX}{highest + 1}"

    # ----------- Create -----------

    async def create_invoice(self, draft: InvoiceDraft, today: Optional[date] = None,
                             source: Optional[str] = None) -> str:
        """Inserts the invoice and its line items; returns the new invoice id."""
        uid = self.ctx.require_user_id()
        if draft.client is None or not draft.client.id:
            raise InvoiceDeskError("Missing client on draft")

        number = draft.number.strip() or await self.next_invoice_number()
        totals = compute_totals(draft.items, tax_rate=max(ZERO, to_decimal(draft.tax_percent)))
        notes = draft.notes.strip() or None

        payload = {
            "number": number,
            "client_id": str(draft.client.id),
            "status": "open",
            "subtotal": _money(totals.subtotal),
            "tax": _money(totals.tax),
            "total": _money(totals.total),
            "currency": (draft.currency or "USD").lower(),
            "due_date": draft.due_date.isoformat(),
            "notes": notes,
            "user_id": uid,
            "issued_at": (today or date.today()).isoformat(),
        }
        created = await self.repo.add(payload)
        invoice_id = created.get("id")
        if not invoice_id:
            raise BackendError("Invoice insert returned no id")

        items = [{"invoice_id": str(invoice_id), **normalize_line_item(it)} for it in draft.items]
        await self.items_repo.add_many(items)
        logger.info("Invoice %s created (%d items)", number, len(items))
        track(AnalyticsEvent.INVOICE_CREATED, {"source": source})

        # checkout link is created server-side; a failure here must not undo the invoice
        try:
            await self.payments.create_checkout(str(invoice_id))
        except InvoiceDeskError as e:
            logger.warning("Checkout creation for %s failed: %s", number, e)

        return str(invoice_id)

    # ----------- Send -----------

    async def _checkout_url(self, invoice_id: str) -> Optional[str]:
        try:
            row = await self.repo.get_one("checkout_url", where=self._scope(id=str(invoice_id)))
        except InvoiceDeskError as e:
            logger.debug("No checkout url for %s: %s", invoice_id, e)
            return None
        return (row.get("checkout_url") or "").strip() or None

    async def send_invoice(self, invoice_id: str) -> Optional[str]:
        """Ensures a checkout link exists and returns it; None when throttled or absent."""
        if not self.throttle.allow(("send", str(invoice_id))):
            logger.debug("Send of %s throttled", invoice_id)
            return None
        try:
            await self.payments.create_checkout(str(invoice_id))
        except InvoiceDeskError as e:
            logger.warning("Checkout creation for %s failed: %s", invoice_id, e)
        return await self._checkout_url(invoice_id)

    async def mark_sent(self, invoice_id: str, now: Optional[str] = None, channel: Optional[str] = None) -> None:
        await self.repo.update(
            {"status": "sent", "sent_at": now or utc_now_iso()},
            where=self._scope(id=str(invoice_id)),
        )
        track(AnalyticsEvent.INVOICE_SENT, {"channel": channel})

    # ----------- Detail -----------

    async def fetch_detail(self, invoice_id: str) -> InvoiceDetail:
        row = await self.repo.get_one(DETAIL_COLUMNS, where=self._scope(id=str(invoice_id)))
        return InvoiceDetail(**row)
