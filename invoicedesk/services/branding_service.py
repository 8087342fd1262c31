from __future__ import annotations

import logging
from typing import Any, Optional

from invoicedesk.context import AppContext
from invoicedesk.errors import BackendError
from invoicedesk.models.branding import DEFAULT_BUSINESS_NAME, Branding
from invoicedesk.models.common import blank_to_none
from invoicedesk.storage.repo import TableRepository

logger = logging.getLogger(__name__)

BRANDING_TABLE = "branding_settings"
BRANDING_COLUMNS = "business_name, tagline, accent_hex, logo_public_url"


def logo_path(uid: str) -> str:
    """Storage object path of a user's logo (lowercase uid, matches the bucket policy)."""
    return f"users/{uid.lower()}/branding/logo.png"


class BrandingService:
    """
    Per-user branding (business name, tagline, accent, logo).
    The resolved branding is cached on the context until invalidated.
    """

    def __init__(
        self,
        ctx: AppContext,
        repo: Optional[TableRepository] = None,
        profiles_repo: Optional[TableRepository] = None,
        storage: Any = None,
    ):
        self.ctx = ctx
        self.repo = repo or TableRepository(ctx.client, BRANDING_TABLE, entity_name="branding", key="user_id")
        self.profiles_repo = profiles_repo or TableRepository(ctx.client, "profiles", entity_name="profile")
        self._storage = storage

    # ---------------- Read ---------------- #

    async def load_branding(self) -> Branding:
        cached = self.ctx.cached_branding
        if cached is not None:
            return cached

        uid = self.ctx.require_user_id()
        profile = await self.profiles_repo.find_one("display_name", where={"id": uid}) or {}
        row = await self.repo.find_one(BRANDING_COLUMNS, where={"user_id": uid}) or {}

        name = (
            blank_to_none(profile.get("display_name"))
            or blank_to_none(row.get("business_name"))
            or DEFAULT_BUSINESS_NAME
        )
        branding = Branding(
            business_name=name,
            tagline=row.get("tagline"),
            accent_hex=row.get("accent_hex"),
            logo_public_url=row.get("logo_public_url"),
        )
        self.ctx.cache_branding(branding)
        return branding

    def set_cached_business_name(self, name: str) -> Branding:
        current = self.ctx.cached_branding
        branding = (current.model_copy(update={"business_name": name}) if current
                    else Branding(business_name=name))
        self.ctx.cache_branding(branding)
        return branding

    # ---------------- Write ---------------- #

    async def save_branding(
        self,
        business_name: Optional[str] = None,
        tagline: Optional[str] = None,
        accent_hex: Optional[str] = None,
        logo_public_url: Optional[str] = None,
    ) -> None:
        uid = self.ctx.require_user_id()
        await self.repo.upsert(
            {
                "user_id": uid,
                "business_name": blank_to_none(business_name),
                "tagline": blank_to_none(tagline),
                "accent_hex": blank_to_none(accent_hex),
                "logo_public_url": blank_to_none(logo_public_url),
            },
            on_conflict="user_id",
        )
        self.ctx.invalidate_branding()

    # ---------------- Logo ---------------- #

    @property
    def storage(self) -> Any:
        if self._storage is None:
            self._storage = self.ctx.client.storage
        return self._storage

    def public_logo_url(self, uid: str) -> str:
        settings = self.ctx.settings
        return f"{settings.supabase_url}/storage/v1/object/public/{settings.branding_bucket}/{logo_path(uid)}"

    async def upload_logo(self, data: bytes) -> str:
        """Upserts the PNG logo and returns its public URL."""
        uid = self.ctx.require_user_id(lowercase=True)
        path = logo_path(uid)
        logger.info("Uploading logo to %s/%s", self.ctx.settings.branding_bucket, path)
        try:
            await self.storage.from_(self.ctx.settings.branding_bucket).upload(
                path, data, {"content-type": "image/png", "upsert": "true"}
            )
        except Exception as e:
            raise BackendError(f"Logo upload failed: {e}") from e
        self.ctx.invalidate_branding()
        return self.public_logo_url(uid)
