import pytest

from fakes import make_session
from invoicedesk.errors import BackendError
from invoicedesk.models.branding import Branding, DocumentBranding
from invoicedesk.services.branding_service import BrandingService, logo_path
from invoicedesk.services.invoice_defaults_service import InvoiceDefaultsService
from invoicedesk.services.profile_service import ProfileService


class FakeBucket:
    def __init__(self, error=None):
        self.error = error
        self.uploads = []

    async def upload(self, path, data, options):
        self.uploads.append((path, data, options))
        if self.error is not None:
            raise self.error


class FakeStorage:
    def __init__(self, bucket):
        self.bucket = bucket
        self.names = []

    def from_(self, name):
        self.names.append(name)
        return self.bucket


def _service(ctx, repo_factory, display_name=None, row=None, storage=None):
    branding = repo_factory([row] if row else [], key="user_id")
    profiles = repo_factory([{"id": "user-1", "display_name": display_name}])
    return BrandingService(ctx, repo=branding, profiles_repo=profiles, storage=storage), branding, profiles


ROW = {"user_id": "user-1", "business_name": "Nine Walls LLC", "tagline": "Since 1999",
       "accent_hex": "#FF6600", "logo_public_url": ""}


def test_logo_path_is_lowercase():
    assert logo_path("ABC-123") == "users/abc-123/branding/logo.png"


def test_document_branding_defaults():
    doc = DocumentBranding(business_name="  ", tagline="", accent_hex=None)
    assert doc.business_name == "Your Business"
    assert doc.tagline is None
    assert doc.accent_hex == "#007AFF"


@pytest.mark.asyncio
async def test_display_name_wins(ctx, repo_factory):
    service, _, _ = _service(ctx, repo_factory, display_name="Jane Doe", row=ROW)
    branding = await service.load_branding()
    assert branding.business_name == "Jane Doe"
    assert branding.tagline == "Since 1999"
    assert branding.logo_public_url is None


@pytest.mark.asyncio
async def test_saved_business_name_then_default(ctx, repo_factory):
    service, _, _ = _service(ctx, repo_factory, display_name=" ", row=ROW)
    assert (await service.load_branding()).business_name == "Nine Walls LLC"

    ctx.invalidate_branding()
    service, _, _ = _service(ctx, repo_factory)
    assert (await service.load_branding()) == Branding()


@pytest.mark.asyncio
async def test_branding_is_cached_until_invalidated(ctx, repo_factory):
    service, branding_repo, _ = _service(ctx, repo_factory, row=ROW)
    changed = []
    ctx.branding_changed.connect(lambda: changed.append(True))

    await service.load_branding()
    await service.load_branding()
    assert len(branding_repo.calls_to("find_one")) == 1

    await service.save_branding(business_name="New Name", tagline="  ")
    assert changed == [True]
    assert ctx.cached_branding is None
    assert branding_repo.rows[0]["tagline"] is None

    assert (await service.load_branding()).business_name == "New Name"
    assert len(branding_repo.calls_to("find_one")) == 2


@pytest.mark.asyncio
async def test_another_account_drops_the_cache(ctx, repo_factory):
    service, _, _ = _service(ctx, repo_factory, row=ROW)
    await service.load_branding()
    ctx.set_session(make_session("user-2"))
    assert ctx.cached_branding is None


def test_set_cached_business_name(ctx, repo_factory):
    service, _, _ = _service(ctx, repo_factory)
    assert service.set_cached_business_name("Jane").business_name == "Jane"
    assert ctx.cached_branding.business_name == "Jane"


def test_public_logo_url(ctx, repo_factory):
    service, _, _ = _service(ctx, repo_factory)
    assert service.public_logo_url("User-1") == (
        "https://proj.supabase.co/storage/v1/object/public/branding/users/user-1/branding/logo.png"
    )


@pytest.mark.asyncio
async def test_upload_logo(ctx, repo_factory):
    bucket = FakeBucket()
    storage = FakeStorage(bucket)
    service, _, _ = _service(ctx, repo_factory, storage=storage)

    url = await service.upload_logo(b"png")

    assert storage.names == ["branding"]
    assert bucket.uploads == [
        ("users/user-1/branding/logo.png", b"png", {"content-type": "image/png", "upsert": "true"})
    ]
    assert url.endswith("/branding/users/user-1/branding/logo.png")


@pytest.mark.asyncio
async def test_upload_failure_is_a_backend_error(ctx, repo_factory):
    service, _, _ = _service(ctx, repo_factory, storage=FakeStorage(FakeBucket(RuntimeError("403"))))
    with pytest.raises(BackendError, match="Logo upload failed"):
        await service.upload_logo(b"png")


# ---------------------------------------------------------------------------
# Invoice defaults and profile
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_invoice_defaults_round_trip(ctx, repo_factory):
    repo = repo_factory(key="user_id")
    service = InvoiceDefaultsService(ctx, repo=repo)
    assert await service.load_defaults() is None

    await service.upsert_defaults("8.25", 14, terms="  ", footer_notes="Pay by check")
    defaults = await service.load_defaults()

    assert str(defaults.tax_rate) == "8.25"
    assert defaults.due_days == 14
    assert defaults.terms is None
    assert defaults.footer_notes == "Pay by check"


@pytest.mark.asyncio
async def test_invoice_defaults_signed_out(signed_out_ctx, repo_factory):
    assert await InvoiceDefaultsService(signed_out_ctx, repo=repo_factory()).load_defaults() is None


@pytest.mark.asyncio
async def test_notifications_toggle(ctx, repo_factory):
    settings_repo = repo_factory(key="user_id")
    profiles = ProfileService(ctx, repo=repo_factory(), settings_repo=settings_repo)

    assert await profiles.load_notifications_enabled() is True
    await profiles.update_notifications(False)
    assert await profiles.load_notifications_enabled() is False


@pytest.mark.asyncio
async def test_fetch_me(ctx, repo_factory):
    profiles = ProfileService(ctx, repo=repo_factory([{"id": "user-1", "email": "j@example.com", "display_name": "J"}]))
    me = await profiles.fetch_me()
    assert me.display_name == "J"
    assert not me.needs_onboarding
