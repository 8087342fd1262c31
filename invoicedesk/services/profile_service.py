from __future__ import annotations

import logging
from typing import Optional

from invoicedesk.context import AppContext
from invoicedesk.errors import InvoiceDeskError
from invoicedesk.models.profile import Profile
from invoicedesk.storage.repo import TableRepository

logger = logging.getLogger(__name__)


class ProfileService:
    """profiles row of the signed-in user, plus the notifications toggle kept in settings."""

    def __init__(
        self,
        ctx: AppContext,
        repo: Optional[TableRepository] = None,
        settings_repo: Optional[TableRepository] = None,
    ):
        self.ctx = ctx
        self.repo = repo or TableRepository(ctx.client, "profiles", entity_name="profile")
        self.settings_repo = settings_repo or TableRepository(ctx.client, "settings", entity_name="settings", key="user_id")

    async def fetch_me(self) -> Profile:
        uid = self.ctx.require_user_id()
        row = await self.repo.get_by_id(uid, "id, email, full_name, display_name")
        return Profile(**row)

    async def display_name(self) -> Optional[str]:
        uid = self.ctx.user_id
        if not uid:
            return None
        row = await self.repo.find_one("display_name", where={"id": uid})
        name = ((row or {}).get("display_name") or "").strip()
        return name or None

    async def update_display_name(self, name: str) -> None:
        uid = self.ctx.require_user_id()
        await self.repo.update({"display_name": name.strip()}, where={"id": uid})

    async def update_full_name(self, name: str) -> None:
        uid = self.ctx.user_id
        if not uid:
            return
        await self.repo.update({"full_name": name}, where={"id": uid})

    # ---------------- Notifications toggle ---------------- #

    async def load_notifications_enabled(self) -> bool:
        uid = self.ctx.user_id
        if not uid:
            return True
        try:
            row = await self.settings_repo.find_one("notifications_enabled", where={"user_id": uid})
        except InvoiceDeskError as e:
            logger.debug("Notifications toggle lookup failed: %s", e)
            return True
        value = (row or {}).get("notifications_enabled")
        return True if value is None else bool(value)

    async def update_notifications(self, enabled: bool) -> None:
        uid = self.ctx.user_id
        if not uid:
            return
        try:
            await self.settings_repo.upsert({"user_id": uid, "notifications_enabled": bool(enabled)}, on_conflict="user_id")
        except InvoiceDeskError as e:
            logger.warning("Saving notifications toggle failed: %s", e)
