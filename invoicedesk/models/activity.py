from __future__ import annotations

from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel

EVENT_LABELS: Dict[str, str] = {
    "created": "Created",
    "sent": "Sent",
    "opened": "Opened",
    "paid": "Paid",
    "archived": "Archived",
    "deleted": "Deleted",
    "overdue": "Overdue",
    "due_soon": "Due Soon",
}

# realtime alerts: event -> (title, body)
EVENT_NOTIFICATIONS: Dict[str, tuple[str, str]] = {
    "paid": ("Invoice Paid", "A client just paid an invoice."),
    "overdue": ("Invoice Overdue", "An invoice is now overdue."),
    "due_soon": ("Invoice Due Soon", "An invoice is due soon."),
}


def event_label(kind: str) -> str:
    return EVENT_LABELS.get(kind) or kind.replace("_", " ").title()


def notification_text(kind: str) -> Optional[tuple[str, str]]:
    if not kind:
        return None
    return EVENT_NOTIFICATIONS.get(kind, ("Invoice Activity", f"New event: {kind}"))


class ActivityEvent(BaseModel):
    """A plain invoice_activity row."""
    id: str
    invoice_id: Optional[str] = None
    event: str
    metadata: Optional[Dict[str, Any]] = None
    actor_user: Optional[str] = None
    created_at: str
    read_at: Optional[str] = None


# ---------- Joined rows ----------
# The activity select embeds the client name in one of these shapes:
#   DIRECT       {"client": {"name": ...}}
#   NESTED       {"client": {"client": {"name": ...}}}
#   VIA_INVOICE  {"invoice": {"number": ..., "client": {"name": ...}}}

class JoinShape(str, Enum):
    DIRECT = "direct"
    NESTED = "nested"
    VIA_INVOICE = "via_invoice"
    NONE = "none"


class ClientName(BaseModel):
    name: Optional[str] = None


class ClientLayer(BaseModel):
    name: Optional[str] = None
    client: Optional[ClientName] = None


class InvoiceMini(BaseModel):
    number: Optional[str] = None
    client: Optional[ClientName] = None


def _present(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    return value or None


class ActivityJoined(BaseModel):
    id: str
    event: str
    created_at: str
    invoice_id: Optional[str] = None
    read_at: Optional[str] = None
    invoice: Optional[InvoiceMini] = None
    client: Optional[ClientLayer] = None

    def _name_for(self, shape: JoinShape) -> Optional[str]:
        if shape is JoinShape.DIRECT and self.client:
            return _present(self.client.name)
        if shape is JoinShape.NESTED and self.client and self.client.client:
            return _present(self.client.client.name)
        if shape is JoinShape.VIA_INVOICE and self.invoice and self.invoice.client:
            return _present(self.invoice.client.name)
        return None

    @property
    def join_shape(self) -> JoinShape:
        for shape in (JoinShape.DIRECT, JoinShape.NESTED, JoinShape.VIA_INVOICE):
            if self._name_for(shape):
                return shape
        return JoinShape.NONE

    @property
    def client_name(self) -> str:
        return self._name_for(self.join_shape) or "—"

    @property
    def invoice_number(self) -> str:
        return (self.invoice.number if self.invoice else None) or "—"

    @property
    def is_unread(self) -> bool:
        return self.read_at is None

    @property
    def label(self) -> str:
        return event_label(self.event)
