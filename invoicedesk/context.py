from __future__ import annotations

import logging
from typing import Any, Optional

from invoicedesk.errors import NotAuthenticatedError
from invoicedesk.models.branding import Branding
from invoicedesk.settings import Settings
from invoicedesk.signals import Signal

logger = logging.getLogger(__name__)


class AppContext:
    """
    Owns the state every service shares: the backend client, the cached auth session,
    the branding cache and the app-wide signals. One instance per running app; tests
    build their own with `client=None`.
    """

    def __init__(self, client: Any = None, settings: Optional[Settings] = None) -> None:
        self.client = client
        self.settings = settings or Settings()
        self._session: Any = None
        self._branding: Optional[Branding] = None

        self.auth_changed = Signal("auth_changed")
        self.unread_changed = Signal("unread_changed")
        self.activity_inserted = Signal("activity_inserted")
        self.branding_changed = Signal("branding_changed")
        self.onboarding_finished = Signal("onboarding_finished")
        self.gate_changed = Signal("gate_changed")
        self.payment_returned = Signal("payment_returned")

    # ---------------- Session ---------------- #

    @property
    def session(self) -> Any:
        return self._session

    def set_session(self, session: Any) -> None:
        before = self.user_id
        self._session = session
        if before != self.user_id:
            # another account means another branding
            self._branding = None
        self.auth_changed.emit()

    @property
    def user_id(self) -> Optional[str]:
        user = getattr(self._session, "user", None)
        uid = getattr(user, "id", None)
        return str(uid) if uid else None

    @property
    def access_token(self) -> Optional[str]:
        return getattr(self._session, "access_token", None)

    @property
    def is_signed_in(self) -> bool:
        return self.user_id is not None

    def require_user_id(self, lowercase: bool = False) -> str:
        uid = self.user_id
        if not uid:
            raise NotAuthenticatedError()
        return uid.lower() if lowercase else uid

    # ---------------- Branding cache ---------------- #

    @property
    def cached_branding(self) -> Optional[Branding]:
        return self._branding

    def cache_branding(self, branding: Optional[Branding]) -> None:
        self._branding = branding

    def invalidate_branding(self) -> None:
        self._branding = None
        self.branding_changed.emit()
