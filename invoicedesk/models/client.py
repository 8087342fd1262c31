from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, EmailStr, Field, field_validator

from .common import blank_to_none, gen_id


class Client(BaseModel):
    id: str = Field(default_factory=gen_id)
    name: str
    email: EmailStr | None = None
    phone: str | None = None
    address: str | None = None
    city: str | None = None
    state: str | None = None
    zip: str | None = None
    created_at: datetime | None = None

    @field_validator("email", "phone", "address", "city", "state", "zip", mode="before")
    @classmethod
    def _blank_is_none(cls, v):
        return blank_to_none(v)

    def city_state_line(self) -> str:
        city_state = ", ".join(p for p in [self.city or "", (self.state or "").upper()] if p)
        if city_state and self.zip:
            return f"{city_state} {self.zip}"
        return city_state or (self.zip or "")


class ClientRef(BaseModel):
    """Denormalized client name carried on invoice rows."""
    name: Optional[str] = None
