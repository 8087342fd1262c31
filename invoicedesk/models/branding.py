from __future__ import annotations

from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, field_validator

from .common import blank_to_none

DEFAULT_BUSINESS_NAME = "Your Business"
DEFAULT_ACCENT_HEX = "#007AFF"


class Branding(BaseModel):
    business_name: str = DEFAULT_BUSINESS_NAME
    tagline: Optional[str] = None
    accent_hex: Optional[str] = None
    logo_public_url: Optional[str] = None

    @field_validator("tagline", "accent_hex", "logo_public_url", mode="before")
    @classmethod
    def _blank_is_none(cls, v):
        return blank_to_none(v)


class InvoiceDefaults(BaseModel):
    tax_rate: Decimal = Decimal(0)
    due_days: int = 30
    terms: Optional[str] = None
    footer_notes: Optional[str] = None


class DocumentBranding(BaseModel):
    """Everything the PDF renderer needs about the sender; every field is optional but the name."""
    business_name: str = DEFAULT_BUSINESS_NAME
    tagline: Optional[str] = None
    accent_hex: str = DEFAULT_ACCENT_HEX
    logo: Optional[bytes] = None
    logo_mime: Optional[str] = None
    footer_text: Optional[str] = None

    @field_validator("business_name", mode="before")
    @classmethod
    def _name_or_default(cls, v):
        return blank_to_none(v) or DEFAULT_BUSINESS_NAME

    @field_validator("tagline", "footer_text", mode="before")
    @classmethod
    def _blank_is_none(cls, v):
        return blank_to_none(v)

    @field_validator("accent_hex", mode="before")
    @classmethod
    def _accent_or_default(cls, v):
        return blank_to_none(v) or DEFAULT_ACCENT_HEX
