from __future__ import annotations

from typing import Any, Optional

from invoicedesk.context import AppContext
from invoicedesk.models.branding import InvoiceDefaults
from invoicedesk.models.common import blank_to_none
from invoicedesk.services.calculator import to_decimal
from invoicedesk.storage.repo import TableRepository

DEFAULTS_COLUMNS = "default_tax_rate, default_due_days, default_terms, default_footer_notes"


class InvoiceDefaultsService:
    """Defaults for new invoices, stored as extra columns of the per-user settings row."""

    def __init__(self, ctx: AppContext, repo: Optional[TableRepository] = None):
        self.ctx = ctx
        self.repo = repo or TableRepository(ctx.client, "settings", entity_name="settings", key="user_id")

    async def load_defaults(self) -> Optional[InvoiceDefaults]:
        uid = self.ctx.user_id
        if not uid:
            return None
        row = await self.repo.find_one(DEFAULTS_COLUMNS, where={"user_id": uid})
        if row is None:
            return None
        due_days = row.get("default_due_days")
        return InvoiceDefaults(
            tax_rate=to_decimal(row.get("default_tax_rate")),
            due_days=30 if due_days is None else int(due_days),
            terms=blank_to_none(row.get("default_terms")),
            footer_notes=blank_to_none(row.get("default_footer_notes")),
        )

    async def upsert_defaults(
        self,
        tax_rate: Any,
        due_days: int,
        terms: Optional[str] = None,
        footer_notes: Optional[str] = None,
    ) -> None:
        uid = self.ctx.require_user_id()
        await self.repo.upsert(
            {
                "user_id": uid,
                "default_tax_rate": float(to_decimal(tax_rate)),
                "default_due_days": int(due_days),
                "default_terms": blank_to_none(terms),
                "default_footer_notes": blank_to_none(footer_notes),
            },
            on_conflict="user_id",
        )
