from __future__ import annotations

import logging
import sys
from typing import Any, Optional

from supabase import AsyncClient, acreate_client

from invoicedesk.context import AppContext
from invoicedesk.services.analytics import AnalyticsEvent, track
from invoicedesk.settings import Settings, load_settings

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"

# auth events after which the cached session must be re-read
SESSION_EVENTS = {"INITIAL_SESSION", "SIGNED_IN", "SIGNED_OUT", "TOKEN_REFRESHED", "USER_UPDATED"}


def configure_logging(level: str = "INFO") -> None:
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    logging.basicConfig(level=level.upper(), handlers=[handler], force=True)


def mirror_auth_state(ctx: AppContext, auth: Any) -> None:
    """Keeps ctx.session in step with the auth client's own state changes."""

    def on_change(event: Any, session: Any) -> None:
        name = str(getattr(event, "value", event))
        if name not in SESSION_EVENTS:
            return
        logger.debug("Auth event %s", name)
        ctx.set_session(None if name == "SIGNED_OUT" else session)

    auth.on_auth_state_change(on_change)


async def create_context(settings: Optional[Settings] = None) -> AppContext:
    """Validated settings -> async backend client -> AppContext with the stored session primed."""
    settings = settings or load_settings()
    settings.validate_backend()

    client: AsyncClient = await acreate_client(settings.supabase_url, settings.supabase_anon_key)
    ctx = AppContext(client=client, settings=settings)

    try:
        ctx.set_session(await client.auth.get_session())
    except Exception as e:
        logger.warning("No stored session could be restored: %s", e)

    mirror_auth_state(ctx, client.auth)
    logger.info("Backend client ready for %s", settings.supabase_url)
    track(AnalyticsEvent.APP_LAUNCH)
    return ctx
