from __future__ import annotations

import logging
from typing import Optional

from invoicedesk.context import AppContext
from invoicedesk.errors import InvoiceDeskError
from invoicedesk.models.common import utc_now_iso
from invoicedesk.storage.repo import TableRepository

logger = logging.getLogger(__name__)


class NotificationService:
    def __init__(self, ctx: AppContext, repo: Optional[TableRepository] = None):
        self.ctx = ctx
        self.repo = repo or TableRepository(ctx.client, "notifications", entity_name="notification")

    async def mark_all_read(self, now: Optional[str] = None) -> bool:
        """Best-effort; False when signed out or the update failed."""
        uid = self.ctx.user_id
        if not uid:
            return False
        try:
            await self.repo.update({"read_at": now or utc_now_iso()}, where={"user_id": uid}, null=("read_at",))
        except InvoiceDeskError as e:
            logger.warning("Marking notifications read failed: %s", e)
            return False
        return True
