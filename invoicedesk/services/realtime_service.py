from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Mapping, Optional, Set

from invoicedesk.context import AppContext
from invoicedesk.models.activity import notification_text
from invoicedesk.services.activity_service import ACTIVITY_TABLE, ActivityService

logger = logging.getLogger(__name__)

CHANNEL_NAME = "activity-feed"


def _record_of(payload: Mapping[str, Any]) -> Dict[str, Any]:
    data = payload.get("data")
    if isinstance(data, Mapping) and isinstance(data.get("record"), Mapping):
        return dict(data["record"])
    for key in ("record", "new"):
        if isinstance(payload.get(key), Mapping):
            return dict(payload[key])
    return {}


class RealtimeService:
    """Listens for new invoice_activity rows and re-broadcasts them on the context."""

    def __init__(self, ctx: AppContext, activity: Optional[ActivityService] = None, client: Any = None):
        self.ctx = ctx
        self.client = client if client is not None else ctx.client
        self.activity = activity or ActivityService(ctx)
        self._channel: Any = None
        self._tasks: Set[asyncio.Task] = set()

    @property
    def running(self) -> bool:
        return self._channel is not None

    async def start(self) -> None:
        if self._channel is not None:
            return
        channel = self.client.channel(CHANNEL_NAME)
        channel.on_postgres_changes("INSERT", schema="public", table=ACTIVITY_TABLE, callback=self.handle_insert)
        try:
            await channel.subscribe()
        except Exception as e:
            logger.warning("Realtime subscribe failed: %s", e)
            return
        self._channel = channel
        logger.info("Realtime channel '%s' started", CHANNEL_NAME)

    async def stop(self) -> None:
        channel, self._channel = self._channel, None
        if channel is None:
            return
        try:
            await self.client.remove_channel(channel)
        except Exception as e:
            logger.warning("Realtime unsubscribe failed: %s", e)
        for task in list(self._tasks):
            task.cancel()
        logger.info("Realtime channel stopped")

    # ---------------- Delivery ---------------- #

    def handle_insert(self, payload: Mapping[str, Any]) -> None:
        record = _record_of(payload)
        kind = str(record.get("event") or "").strip()
        text = notification_text(kind)
        if text is not None:
            title, body = text
            self.ctx.activity_inserted.emit(kind, title, body)

        try:
            task = asyncio.get_running_loop().create_task(self.refresh_unread())
        except RuntimeError:
            logger.debug("No running loop; skipping unread recount")
            return
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def refresh_unread(self) -> Optional[int]:
        try:
            count = await self.activity.count_unread()
        except Exception as e:
            logger.debug("Unread recount after realtime insert failed: %s", e)
            return None
        self.ctx.unread_changed.emit(count)
        return count
