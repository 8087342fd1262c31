from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Awaitable, Callable, Optional
from urllib.parse import parse_qs, urlparse

from email_validator import EmailNotValidError, validate_email

from invoicedesk.context import AppContext
from invoicedesk.errors import map_auth_error
from invoicedesk.services.analytics import AnalyticsEvent, track
from invoicedesk.signals import ActionThrottle

logger = logging.getLogger(__name__)

SIGN_UP_BANNER = "Check your email to confirm your account."
PASSWORD_SYMBOLS = set("!@#$%^&*()-_=+[]{};:,<.>/?`~")


class AuthService:
    """Backend auth calls; every successful call refreshes the cached session on the context."""

    def __init__(self, ctx: AppContext, auth: Any = None):
        self.ctx = ctx
        self.auth = auth if auth is not None else ctx.client.auth

    # ---------------- Email / password ---------------- #

    async def sign_up(self, email: str, password: str) -> None:
        resp = await self.auth.sign_up({
            "email": email.strip(),
            "password": password,
            "options": {"email_redirect_to": self.ctx.settings.redirect_url},
        })
        # no session until the email is confirmed (unless confirmation is off)
        session = getattr(resp, "session", None)
        if session is not None:
            self.ctx.set_session(session)

    async def sign_in(self, email: str, password: str) -> None:
        resp = await self.auth.sign_in_with_password({"email": email.strip(), "password": password})
        self.ctx.set_session(getattr(resp, "session", None) or await self.auth.get_session())

    async def sign_in_with_apple(self) -> str:
        """Returns the provider URL to open; the session arrives through `handle_open_url`."""
        resp = await self.auth.sign_in_with_oauth({
            "provider": "apple",
            "options": {"redirect_to": self.ctx.settings.redirect_url},
        })
        return resp.url

    async def sign_out(self) -> None:
        try:
            await self.auth.sign_out()
        finally:
            self.ctx.set_session(None)

    # ---------------- Session ---------------- #

    async def restore_session(self) -> Any:
        """The locally stored session, if any (launch)."""
        session = await self.auth.get_session()
        self.ctx.set_session(session)
        return session

    async def refresh_session(self) -> Any:
        resp = await self.auth.refresh_session()
        session = getattr(resp, "session", None)
        self.ctx.set_session(session)
        return session

    # ---------------- Deep links ---------------- #

    async def handle_open_url(self, url: str) -> bool:
        """
        Completes email confirmation / OAuth from the redirect URL:
        a PKCE `code` query parameter, or access/refresh tokens in the fragment.
        """
        parsed = urlparse(url)
        query = {k: v[0] for k, v in parse_qs(parsed.query).items()}
        fragment = {k: v[0] for k, v in parse_qs(parsed.fragment).items()}

        error = query.get("error_description") or fragment.get("error_description")
        if error:
            logger.warning("Auth redirect carried an error: %s", error)
            return False

        try:
            if "code" in query:
                resp = await self.auth.exchange_code_for_session({"auth_code": query["code"]})
            elif "access_token" in fragment and "refresh_token" in fragment:
                resp = await self.auth.set_session(fragment["access_token"], fragment["refresh_token"])
            else:
                logger.debug("Auth redirect without code or tokens: %s", url)
                return False
        except Exception as e:
            logger.warning("Completing sign-in from redirect failed: %s", e)
            return False

        session = getattr(resp, "session", None)
        if session is None:
            return False
        self.ctx.set_session(session)
        return True


# ---------- Form helpers ----------

class AuthMode(str, Enum):
    CHOOSER = "chooser"
    SIGN_IN = "sign_in"
    SIGN_UP = "sign_up"


class PasswordStrength(str, Enum):
    WEAK = "weak"
    OK = "ok"
    STRONG = "strong"


def is_plausible_email(email: str) -> bool:
    """Syntax only, no DNS lookup; the top-level domain needs two letters or more."""
    try:
        result = validate_email((email or "").strip(), check_deliverability=False)
    except EmailNotValidError:
        return False
    return len(result.ascii_domain.rsplit(".", 1)[-1]) >= 2


def password_strength(pwd: str) -> PasswordStrength:
    pwd = pwd or ""
    score = sum([
        len(pwd) >= 8,
        any(ch.isdigit() for ch in pwd),
        any(ch.isupper() for ch in pwd),
        any(ch in PASSWORD_SYMBOLS for ch in pwd),
    ])
    if score <= 1:
        return PasswordStrength.WEAK
    if score <= 3:
        return PasswordStrength.OK
    return PasswordStrength.STRONG


class AuthFlow:
    """State behind the sign-in / sign-up form."""

    def __init__(self, auth: AuthService, ctx: AppContext, throttle: Optional[ActionThrottle] = None):
        self.auth = auth
        self.ctx = ctx
        self.throttle = throttle or ActionThrottle(ctx.settings.action_interval)

        self.mode = AuthMode.CHOOSER
        self._email = ""
        self._password = ""
        self.email_hint: Optional[str] = None
        self.password_hint: Optional[str] = None
        self.strength = PasswordStrength.WEAK

        self.is_loading = False
        self.error: Optional[str] = None
        self.banner: Optional[str] = None

        self._edited_email = False
        self._edited_password = False
        self._attempted_submit = False

    # ---------------- Fields ---------------- #

    @property
    def email(self) -> str:
        return self._email

    @email.setter
    def email(self, value: str) -> None:
        self._email = value or ""
        if self._email:
            self._edited_email = True

    @property
    def password(self) -> str:
        return self._password

    @password.setter
    def password(self, value: str) -> None:
        self._password = value or ""
        if self._password:
            self._edited_password = True

    @property
    def is_authed(self) -> bool:
        return self.ctx.is_signed_in

    @property
    def can_submit_sign_up(self) -> bool:
        return (is_plausible_email(self.email)
                and password_strength(self.password) is not PasswordStrength.WEAK
                and not self.is_loading)

    @property
    def can_submit_sign_in(self) -> bool:
        return is_plausible_email(self.email) and bool(self.password) and not self.is_loading

    # ---------------- Mode ---------------- #

    def _switch(self, mode: AuthMode) -> None:
        self.mode = mode
        self.error = None
        self.banner = None
        self.email_hint = None
        self.password_hint = None
        self._attempted_submit = False
        self._edited_email = False
        self._edited_password = False

    def go_chooser(self) -> None:
        self._switch(AuthMode.CHOOSER)

    def go_sign_in(self) -> None:
        self._switch(AuthMode.SIGN_IN)

    def go_sign_up(self) -> None:
        self._switch(AuthMode.SIGN_UP)

    # ---------------- Validation ---------------- #

    def validate_fields(self, for_sign_up: bool) -> None:
        self.strength = password_strength(self.password)

        if self.mode is AuthMode.SIGN_UP:
            show = self._attempted_submit or self._edited_email
            if not self.email:
                self.email_hint = "Email required" if show else None
            else:
                self.email_hint = None if is_plausible_email(self.email) else ("Enter a valid email" if show else None)

            show_pwd = self._attempted_submit or self._edited_password
            if not self.password:
                self.password_hint = "Password required" if show_pwd else None
            else:
                weak = for_sign_up and self.strength is PasswordStrength.WEAK
                self.password_hint = "Make password stronger" if weak else None

        elif self.mode is AuthMode.SIGN_IN:
            show = self._attempted_submit
            self.email_hint = "Email required" if show and not self.email else None
            self.password_hint = "Password required" if show and not self.password else None

        else:
            self.email_hint = None
            self.password_hint = None

    # ---------------- Actions ---------------- #

    async def _run(self, context: str, op: Callable[[], Awaitable[None]], swallow: bool = False) -> bool:
        self.is_loading = True
        self.error = None
        try:
            await op()
            return True
        except Exception as e:
            logger.info("%s: %s", context, e)
            if not swallow:
                self.error = map_auth_error(context, e)
            return False
        finally:
            self.is_loading = False

    async def sign_up(self) -> bool:
        if not self.throttle.allow("auth"):
            return False
        self._attempted_submit = True
        self.validate_fields(for_sign_up=True)
        if not self.can_submit_sign_up:
            return False
        track(AnalyticsEvent.AUTH_SIGN_UP_STARTED, {"method": "password"})

        async def op() -> None:
            await self.auth.sign_up(self.email, self.password)
            self.banner = SIGN_UP_BANNER

        ok = await self._run("Sign up failed", op)
        if ok:
            track(AnalyticsEvent.AUTH_SIGN_UP_SUCCEEDED, {"method": "password"})
        return ok

    async def sign_in(self) -> bool:
        if not self.throttle.allow("auth"):
            return False
        self._attempted_submit = True
        self.validate_fields(for_sign_up=False)
        if not self.can_submit_sign_in:
            return False
        track(AnalyticsEvent.AUTH_SIGN_IN_STARTED, {"method": "password"})

        ok = await self._run("Sign in failed", lambda: self.auth.sign_in(self.email, self.password))
        if ok:
            track(AnalyticsEvent.AUTH_SIGN_IN_SUCCEEDED, {"method": "password"})
        return ok

    async def sign_in_with_apple(self) -> Optional[str]:
        """Provider URL to open, or None when throttled or failed."""
        if not self.throttle.allow("auth"):
            return None
        url: Optional[str] = None
        track(AnalyticsEvent.AUTH_SIGN_IN_STARTED, {"method": "apple"})

        async def op() -> None:
            nonlocal url
            url = await self.auth.sign_in_with_apple()

        await self._run("Apple sign-in failed", op)
        return url

    async def sign_out(self) -> bool:
        if not self.throttle.allow("auth"):
            return False
        ok = await self._run("Sign out failed", self.auth.sign_out)
        if ok:
            track(AnalyticsEvent.AUTH_SIGNED_OUT)
        return ok

    async def refresh_session(self) -> bool:
        return await self._run("Session refresh failed", self.auth.refresh_session, swallow=True)
