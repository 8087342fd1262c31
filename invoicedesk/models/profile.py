from __future__ import annotations

from typing import Optional

from pydantic import BaseModel


class Profile(BaseModel):
    id: str
    email: Optional[str] = None
    full_name: Optional[str] = None
    display_name: Optional[str] = None

    @property
    def needs_onboarding(self) -> bool:
        return not (self.display_name or "").strip()


class PaymentAccountStatus(BaseModel):
    connected: bool = False
    details_submitted: Optional[bool] = None
    charges_enabled: Optional[bool] = None
    payouts_enabled: Optional[bool] = None

    @property
    def can_accept_payments(self) -> bool:
        return bool(self.connected and self.charges_enabled)
