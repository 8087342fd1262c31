from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Sequence

from pydantic import ValidationError

from invoicedesk.context import AppContext
from invoicedesk.errors import InvoiceDeskError
from invoicedesk.models.activity import ActivityEvent, ActivityJoined
from invoicedesk.models.common import utc_now_iso
from invoicedesk.storage.repo import TableRepository

logger = logging.getLogger(__name__)

ACTIVITY_TABLE = "invoice_activity"

JOINED_SELECT = (
    "id, invoice_id, event, created_at, read_at, "
    "invoice:invoices!invoice_activity_invoice_id_fkey("
    "number, client:clients!invoices_client_id_fkey(name))"
)
EVENT_SELECT = "id, invoice_id, event, metadata, actor_user, created_at, read_at"


class ActivityService:
    """invoice_activity rows of the signed-in user; soft-deleted rows are never returned."""

    def __init__(self, ctx: AppContext, repo: Optional[TableRepository] = None):
        self.ctx = ctx
        self.repo = repo or TableRepository(ctx.client, ACTIVITY_TABLE, entity_name="activity")

    def _scope(self, **extra: Any) -> Dict[str, Any]:
        return {"user_id": self.ctx.require_user_id(), **extra}

    @staticmethod
    def _parse(rows: List[dict], model) -> list:
        out = []
        for d in rows:
            try:
                out.append(model(**d))
            except ValidationError:
                logger.debug("Skipping malformed activity row %s", d.get("id"))
                continue
        return out

    # ---------------- Reads ---------------- #

    async def fetch_page_joined(self, offset: int, limit: int) -> List[ActivityJoined]:
        rows = await self.repo.list_all(
            JOINED_SELECT,
            where=self._scope(),
            null=("deleted_at",),
            order_by="created_at",
            offset=offset,
            limit=limit,
        )
        return self._parse(rows, ActivityJoined)

    async def fetch_recent(self, limit: int = 5) -> List[ActivityJoined]:
        rows = await self.repo.list_all(
            JOINED_SELECT,
            where=self._scope(),
            null=("deleted_at",),
            order_by="created_at",
            limit=limit,
        )
        return self._parse(rows, ActivityJoined)

    async def fetch_for_invoice(self, invoice_id: str, limit: int = 200) -> List[ActivityEvent]:
        rows = await self.repo.list_all(
            EVENT_SELECT,
            where=self._scope(invoice_id=str(invoice_id)),
            null=("deleted_at",),
            order_by="created_at",
            limit=limit,
        )
        return self._parse(rows, ActivityEvent)

    async def count_unread(self) -> int:
        uid = self.ctx.user_id
        if not uid:
            return 0
        return await self.repo.count(
            where={"user_id": uid, "invoices.user_id": uid},
            null=("read_at", "deleted_at"),
            columns="id, invoices!inner(user_id)",
        )

    # ---------------- Writes ---------------- #

    async def log(self, invoice_id: str, event: str, metadata: Optional[Dict[str, str]] = None) -> None:
        payload = {"invoice_id": str(invoice_id), "event": event, "user_id": self.ctx.require_user_id()}
        if metadata:
            payload["metadata"] = metadata
        await self.repo.add(payload)

    async def mark_all_read(self, now: Optional[str] = None) -> None:
        await self.repo.update(
            {"read_at": now or utc_now_iso()},
            where=self._scope(),
            null=("read_at", "deleted_at"),
        )

    async def mark_read(self, ids: Sequence[str], now: Optional[str] = None) -> None:
        """Bulk update; when the bulk call fails, one update per id (failures logged)."""
        if not ids:
            return
        uid = self.ctx.user_id
        if not uid:
            return
        payload = {"read_at": now or utc_now_iso()}
        try:
            await self.repo.update(payload, where={"user_id": uid}, ids=list(ids))
            return
        except InvoiceDeskError as e:
            logger.debug("Bulk mark-read failed (%s); updating one by one", e)

        for activity_id in ids:
            try:
                await self.repo.update(payload, where={"id": str(activity_id), "user_id": uid})
            except InvoiceDeskError as e:
                logger.warning("Mark-read failed for activity %s: %s", activity_id, e)

    async def delete(self, activity_id: str, now: Optional[str] = None) -> None:
        """Soft delete: stamps deleted_at."""
        await self.repo.update(
            {"deleted_at": now or utc_now_iso()},
            where=self._scope(id=str(activity_id)),
        )
