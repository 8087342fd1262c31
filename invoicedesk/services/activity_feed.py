from __future__ import annotations

import asyncio
import logging
from collections import OrderedDict
from datetime import date, datetime, timedelta, timezone, tzinfo
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from invoicedesk.context import AppContext
from invoicedesk.errors import friendly_message
from invoicedesk.models.activity import ActivityJoined
from invoicedesk.services.activity_service import ActivityService
from invoicedesk.services.notification_service import NotificationService
from invoicedesk.services.snapshot import parse_backend_date
from invoicedesk.signals import ActionThrottle

logger = logging.getLogger(__name__)

Section = Tuple[str, str, List[ActivityJoined]]


# ---------- Day grouping ----------

def day_key(ts: object, tz: Optional[tzinfo] = None) -> str:
    """yyyy-mm-dd of the local (or `tz`) calendar day of `ts`."""
    dt = parse_backend_date(ts)
    if dt is None:
        return str(ts or "")[:10]
    return dt.astimezone(tz).date().isoformat()


def group_by_day(items: Iterable[ActivityJoined], tz: Optional[tzinfo] = None) -> Dict[str, List[ActivityJoined]]:
    groups: Dict[str, List[ActivityJoined]] = OrderedDict()
    for it in items:
        groups.setdefault(day_key(it.created_at, tz), []).append(it)
    return groups


def day_header(key: str, today: Optional[date] = None) -> str:
    try:
        d = date.fromisoformat(key)
    except ValueError:
        return key
    today = today or date.today()
    if d == today:
        return "Today"
    if d == today - timedelta(days=1):
        return "Yesterday"
    return f"{d.strftime('%b')} {d.day}, {d.year}"


# ---------- Feed ----------

class ActivityFeed:
    """
    Local, newest-first activity list behind the Activity screen.

    Reads are paged; "mark all read" and deletes are applied locally before the
    server answers, and each of them broadcasts the unread count once when it settles.
    """

    def __init__(
        self,
        ctx: AppContext,
        activity: ActivityService,
        notifications: Optional[NotificationService] = None,
        page_size: Optional[int] = None,
        throttle: Optional[ActionThrottle] = None,
    ):
        self.ctx = ctx
        self.activity = activity
        self.notifications = notifications
        self.page_size = page_size or ctx.settings.activity_page_size
        self.throttle = throttle or ActionThrottle(ctx.settings.action_interval)

        self.items: List[ActivityJoined] = []
        # server paging position; only confirmed deletes move it back
        self._offset = 0
        self.loading = False
        self.loading_more = False
        self.reached_end = False
        self.error: Optional[str] = None

    # ---------------- Paging ---------------- #

    async def initial_load(self) -> None:
        self.loading = True
        self.error = None
        self.reached_end = False
        try:
            page = await self.activity.fetch_page_joined(0, self.page_size)
        except Exception as e:
            logger.warning("Activity load failed: %s", e)
            self.error = friendly_message(e)
            return
        finally:
            self.loading = False
        self.items = list(page)
        self._offset = len(page)
        self.reached_end = len(page) < self.page_size

    async def load_more(self) -> None:
        if self.loading or self.loading_more or self.reached_end:
            return
        self.loading_more = True
        try:
            page = await self.activity.fetch_page_joined(self._offset, self.page_size)
        except Exception as e:
            logger.warning("Loading more activity failed: %s", e)
            self.error = friendly_message(e)
            return
        finally:
            self.loading_more = False
        self._offset += len(page)
        known = {it.id for it in self.items}
        self.items.extend(it for it in page if it.id not in known)
        if len(page) < self.page_size:
            self.reached_end = True

    @property
    def unread_count(self) -> int:
        return sum(1 for it in self.items if it.is_unread)

    # ---------------- Unread badge ---------------- #

    async def _broadcast_unread(self) -> int:
        try:
            count = await self.activity.count_unread()
        except Exception as e:
            logger.debug("Unread recount failed, using local count: %s", e)
            count = self.unread_count
        self.ctx.unread_changed.emit(count)
        return count

    # ---------------- Mark read ---------------- #

    async def mark_all_read(self, now: Optional[datetime] = None) -> int:
        """
        Every locally unread item is stamped before the server calls run; a server
        failure is logged and the local state stays read. Returns the broadcast count.
        """
        stamp = (now or datetime.now(timezone.utc)).isoformat()

        calls = [asyncio.ensure_future(self.activity.mark_all_read(stamp))]
        if self.notifications is not None:
            calls.append(asyncio.ensure_future(self.notifications.mark_all_read(stamp)))

        for it in self.items:
            if it.read_at is None:
                it.read_at = stamp

        for result in await asyncio.gather(*calls, return_exceptions=True):
            if isinstance(result, Exception):
                logger.warning("Server mark-all-read failed: %s", result)

        return await self._broadcast_unread()

    # ---------------- Delete ---------------- #

    async def delete_items(self, ids: Sequence[str]) -> bool:
        """
        Removed locally at once; server deletes are best-effort, one per id.
        A repeat of the same delete inside the throttle interval is dropped (returns False).
        """
        doomed = {str(i) for i in ids}
        if not doomed or not self.throttle.allow(("delete", tuple(sorted(doomed)))):
            return False
        loaded = {it.id for it in self.items} & doomed
        self.items = [it for it in self.items if it.id not in doomed]

        for activity_id in sorted(doomed):
            try:
                await self.activity.delete(activity_id)
            except Exception as e:
                logger.debug("Server delete of activity %s failed: %s", activity_id, e)
                continue
            if activity_id in loaded:
                self._offset = max(0, self._offset - 1)

        await self._broadcast_unread()
        return True

    async def delete_in_section(self, key: str, offsets: Iterable[int], tz: Optional[tzinfo] = None) -> bool:
        section = group_by_day(self.items, tz).get(key, [])
        ids = [section[i].id for i in offsets if 0 <= i < len(section)]
        return await self.delete_items(ids)

    # ---------------- Sections ---------------- #

    def sections(self, now: Optional[datetime] = None, tz: Optional[tzinfo] = None) -> List[Section]:
        """(day_key, header, items) for each day, newest day first."""
        today = (now.astimezone(tz) if now else datetime.now(tz).astimezone(tz)).date()
        groups = group_by_day(self.items, tz)
        return [
            (key, day_header(key, today), groups[key])
            for key in sorted(groups, reverse=True)
        ]
