import httpx
import pytest

from invoicedesk.errors import OFFLINE_MESSAGE
from invoicedesk.services.auth_service import (
    SIGN_UP_BANNER,
    AuthFlow,
    AuthMode,
    AuthService,
    PasswordStrength,
    is_plausible_email,
    password_strength,
)
from invoicedesk.signals import ActionThrottle


class Clock:
    def __init__(self):
        self.now = 100.0

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def flow(signed_out_ctx, fake_auth, clock):
    return AuthFlow(AuthService(signed_out_ctx, auth=fake_auth), signed_out_ctx,
                    throttle=ActionThrottle(0.9, clock=clock))


# ---------------------------------------------------------------------------
# Field helpers
# ---------------------------------------------------------------------------

@pytest.mark.parametrize("email,ok", [
    ("jane@example.com", True),
    ("jane@mail.example.co", True),
    ("jane@example", False),
    ("@example.com", False),
    ("jane@example.c", False),
    ("jane@@example.com", False),
    ("jane doe@example.com", False),
    ("Jane <jane@example.com>", False),
    (" jane@example.com ", True),
    ("", False),
])
def test_is_plausible_email(email, ok):
    assert is_plausible_email(email) is ok


@pytest.mark.parametrize("pwd,strength", [
    ("", PasswordStrength.WEAK),
    ("abcdefgh", PasswordStrength.WEAK),
    ("abcdefg1", PasswordStrength.OK),
    ("Abcdefg1", PasswordStrength.OK),
    ("Abcdefg1!", PasswordStrength.STRONG),
])
def test_password_strength(pwd, strength):
    assert password_strength(pwd) is strength


def test_sign_up_hints_appear_after_editing(flow):
    flow.go_sign_up()
    flow.validate_fields(for_sign_up=True)
    assert flow.email_hint is None and flow.password_hint is None

    flow.email = "jane@"
    flow.password = "abc"
    flow.validate_fields(for_sign_up=True)
    assert flow.email_hint == "Enter a valid email"
    assert flow.password_hint == "Make password stronger"


def test_can_submit(flow):
    flow.email = "jane@example.com"
    flow.password = "abc"
    assert flow.can_submit_sign_in
    assert not flow.can_submit_sign_up

    flow.password = "Abcdefg1"
    assert flow.can_submit_sign_up


def test_switching_mode_clears_messages(flow):
    flow.error = "Sign in failed: boom"
    flow.banner = SIGN_UP_BANNER
    flow.go_sign_in()
    assert flow.mode is AuthMode.SIGN_IN
    assert flow.error is None and flow.banner is None


# ---------------------------------------------------------------------------
# Actions
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_sign_up_shows_confirmation_banner(flow, fake_auth, signed_out_ctx):
    flow.go_sign_up()
    flow.email = " jane@example.com "
    flow.password = "Abcdefg1!"

    assert await flow.sign_up() is True

    assert flow.banner == SIGN_UP_BANNER
    name, (credentials,) = fake_auth.calls[0]
    assert name == "sign_up"
    assert credentials["email"] == "jane@example.com"
    assert credentials["options"]["email_redirect_to"] == "invoicedesk://auth-callback"
    assert not signed_out_ctx.is_signed_in


@pytest.mark.asyncio
async def test_sign_up_blocked_for_invalid_fields(flow, fake_auth):
    flow.go_sign_up()
    assert await flow.sign_up() is False
    assert flow.email_hint == "Email required"
    assert flow.password_hint == "Password required"
    assert fake_auth.calls == []


@pytest.mark.asyncio
async def test_sign_in_sets_session(flow, signed_out_ctx):
    flow.go_sign_in()
    flow.email = "jane@example.com"
    flow.password = "secret"

    assert await flow.sign_in() is True
    assert flow.is_authed
    assert signed_out_ctx.user_id == "user-1"
    assert not flow.is_loading


@pytest.mark.asyncio
async def test_repeated_tap_is_throttled(flow, fake_auth, clock):
    flow.go_sign_in()
    flow.email = "jane@example.com"
    flow.password = "secret"

    await flow.sign_in()
    clock.now += 0.3
    assert await flow.sign_in() is False
    assert len(fake_auth.calls) == 1

    clock.now += 1.0
    assert await flow.sign_in() is True
    assert len(fake_auth.calls) == 2


@pytest.mark.parametrize("error,message", [
    (Exception("Invalid login credentials"), "Email or password is incorrect."),
    (Exception("Email not confirmed"), "Please confirm your email, then sign in."),
    (httpx.ConnectError("no route"), OFFLINE_MESSAGE),
    (Exception("boom"), "Sign in failed: boom"),
])
@pytest.mark.asyncio
async def test_sign_in_errors_are_mapped(flow, fake_auth, error, message):
    flow.go_sign_in()
    flow.email = "jane@example.com"
    flow.password = "secret"
    fake_auth.error = error

    assert await flow.sign_in() is False
    assert flow.error == message
    assert not flow.is_loading


@pytest.mark.asyncio
async def test_refresh_failure_is_silent(flow, fake_auth):
    fake_auth.error = Exception("refresh token expired")
    assert await flow.refresh_session() is False
    assert flow.error is None


@pytest.mark.asyncio
async def test_sign_out_clears_session_even_on_error(ctx, fake_auth, clock):
    flow = AuthFlow(AuthService(ctx, auth=fake_auth), ctx, throttle=ActionThrottle(0.9, clock=clock))
    fake_auth.error = Exception("network hiccup")

    assert await flow.sign_out() is False
    assert not ctx.is_signed_in
    assert flow.error == "Sign out failed: network hiccup"


@pytest.mark.asyncio
async def test_apple_sign_in_returns_provider_url(flow, fake_auth):
    url = await flow.sign_in_with_apple()
    assert url.startswith("https://proj.supabase.co/auth/v1/authorize")
    assert fake_auth.calls[0][1][0]["provider"] == "apple"


# ---------------------------------------------------------------------------
# Redirect handling
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_fragment_tokens_set_the_session(signed_out_ctx, fake_auth):
    service = AuthService(signed_out_ctx, auth=fake_auth)

    ok = await service.handle_open_url("invoicedesk://auth-callback#access_token=tok&refresh_token=ref&type=signup")

    assert ok is True
    assert fake_auth.calls == [("set_session", ("tok", "ref"))]
    assert signed_out_ctx.access_token == "tok"


@pytest.mark.asyncio
async def test_url_without_credentials_is_ignored(signed_out_ctx, fake_auth):
    service = AuthService(signed_out_ctx, auth=fake_auth)
    assert await service.handle_open_url("invoicedesk://auth-callback") is False
    assert fake_auth.calls == []


@pytest.mark.asyncio
async def test_failed_code_exchange_returns_false(signed_out_ctx, fake_auth):
    fake_auth.error = Exception("invalid grant")
    service = AuthService(signed_out_ctx, auth=fake_auth)
    assert await service.handle_open_url("invoicedesk://auth-callback?code=zzz") is False
    assert not signed_out_ctx.is_signed_in
