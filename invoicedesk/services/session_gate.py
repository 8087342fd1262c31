from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Optional, Set
from urllib.parse import urlparse

from invoicedesk.context import AppContext
from invoicedesk.services.analytics import AnalyticsEvent, track
from invoicedesk.services.auth_service import AuthService
from invoicedesk.services.profile_service import ProfileService
from invoicedesk.settings import LocalState

logger = logging.getLogger(__name__)

ONBOARDING_FLAG = "has_completed_onboarding"
STATUS_ERROR = "Couldn't refresh onboarding status. Showing your last saved state."


class GateState(str, Enum):
    SIGNED_OUT = "signed_out"
    NEEDS_ONBOARDING = "needs_onboarding"
    READY = "ready"


class SessionGate:
    """
    Decides what the app shows: auth, onboarding or the main screens.

    SIGNED_OUT --sign in/up--> (profile check) --> NEEDS_ONBOARDING | READY
    NEEDS_ONBOARDING --complete_onboarding--> READY
    any --sign out--> SIGNED_OUT

    Session changes made anywhere (auth flow, backend auth events) reach the gate through
    `ctx.auth_changed`: losing the user signs out at once, a new user schedules the profile check.
    """

    def __init__(
        self,
        ctx: AppContext,
        auth: AuthService,
        profiles: ProfileService,
        state_store: Optional[LocalState] = None,
    ):
        self.ctx = ctx
        self.auth = auth
        self.profiles = profiles
        self.store = state_store or LocalState()
        self._state = GateState.SIGNED_OUT
        self.status_error: Optional[str] = None
        self._seen_user = ctx.user_id
        self._checked_user: Optional[str] = None
        self._tasks: Set[asyncio.Task] = set()
        ctx.auth_changed.connect(self._on_auth_changed)

    @property
    def state(self) -> GateState:
        return self._state

    def _set_state(self, state: GateState) -> None:
        if state is self._state:
            return
        logger.info("Session gate: %s -> %s", self._state.value, state.value)
        self._state = state
        self.ctx.gate_changed.emit(state)

    # ---------------- Session changes ---------------- #

    def _on_auth_changed(self) -> None:
        uid = self.ctx.user_id
        if uid == self._seen_user:
            return
        self._seen_user = uid
        if uid is None:
            self._signed_out()
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("Signed in outside an event loop; the profile check waits for start()")
            return
        task = loop.create_task(self._follow_sign_in(uid))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _follow_sign_in(self, uid: str) -> None:
        if self.ctx.user_id != uid or self._checked_user == uid:
            return
        await self._check_onboarding()

    def _signed_out(self) -> None:
        self.status_error = None
        self._checked_user = None
        self._set_state(GateState.SIGNED_OUT)

    # ---------------- Onboarding check ---------------- #

    async def _check_onboarding(self) -> GateState:
        self._checked_user = self.ctx.user_id
        try:
            name = await self.profiles.display_name()
        except Exception as e:
            logger.warning("Onboarding status check failed: %s", e)
            self.status_error = STATUS_ERROR
            completed = bool(self.store.get(ONBOARDING_FLAG, False))
        else:
            self.status_error = None
            completed = name is not None
            self.store.set(ONBOARDING_FLAG, completed)

        state = GateState.READY if completed else GateState.NEEDS_ONBOARDING
        self._set_state(state)
        return state

    # ---------------- Transitions ---------------- #

    async def start(self) -> GateState:
        try:
            session = await self.auth.restore_session()
        except Exception as e:
            logger.warning("Restoring the session failed: %s", e)
            session = None
        if session is None:
            self._set_state(GateState.SIGNED_OUT)
            return self._state
        return await self._check_onboarding()

    async def on_signed_in(self) -> GateState:
        if not self.ctx.is_signed_in:
            self._set_state(GateState.SIGNED_OUT)
            return self._state
        return await self._check_onboarding()

    async def on_signed_out(self) -> GateState:
        self._signed_out()
        return self._state

    async def on_foreground(self) -> GateState:
        """Re-validates the session, then re-runs the onboarding check."""
        try:
            session = await self.auth.restore_session()
        except Exception as e:
            logger.warning("Session re-validation failed, keeping %s: %s", self._state.value, e)
            return self._state
        if session is None:
            return await self.on_signed_out()
        return await self._check_onboarding()

    async def complete_onboarding(self, display_name: str) -> GateState:
        name = (display_name or "").strip()
        if not name:
            raise ValueError("Display name is required")
        await self.profiles.update_display_name(name)
        self.store.set(ONBOARDING_FLAG, True)
        self.status_error = None
        # the business name on documents comes from the display name
        self.ctx.invalidate_branding()
        self.ctx.onboarding_finished.emit()
        track(AnalyticsEvent.ONBOARDING_COMPLETED, {"status": "success"})
        if self._state is GateState.NEEDS_ONBOARDING:
            self._set_state(GateState.READY)
        return self._state

    # ---------------- Deep links ---------------- #

    def is_payment_return(self, url: str) -> bool:
        parsed = urlparse(url)
        settings = self.ctx.settings
        return parsed.scheme == settings.redirect_scheme and parsed.netloc == settings.payment_return_host

    async def handle_deep_link(self, url: str) -> bool:
        if self.is_payment_return(url):
            self.ctx.payment_returned.emit(url)
            return True
        ok = await self.auth.handle_open_url(url)
        if ok:
            await self.on_signed_in()
        return ok
