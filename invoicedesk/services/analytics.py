from __future__ import annotations

import logging
from enum import Enum
from typing import Dict, Mapping, Optional

logger = logging.getLogger("invoicedesk.analytics")


class AnalyticsEvent(str, Enum):
    APP_LAUNCH = "app_launch"
    AUTH_SIGN_UP_STARTED = "auth_sign_up_started"
    AUTH_SIGN_UP_SUCCEEDED = "auth_sign_up_succeeded"
    AUTH_SIGN_IN_STARTED = "auth_sign_in_started"
    AUTH_SIGN_IN_SUCCEEDED = "auth_sign_in_succeeded"
    AUTH_SIGNED_OUT = "auth_signed_out"
    ONBOARDING_COMPLETED = "onboarding_completed"
    INVOICE_CREATED = "invoice_created"
    INVOICE_SENT = "invoice_sent"


# source: screen or feature ("home", "invoices_tab"); method: "password" | "apple";
# channel: share target ("mail", "messages"); count: aggregates as text
ALLOWED_KEYS = frozenset({"source", "method", "status", "channel", "count"})
SENSITIVE_PATTERNS = ("token", "secret", "key", "email", "password", "account", "number", "name", "address")
MAX_VALUE_LENGTH = 64


def sanitize(metadata: Optional[Mapping[str, object]]) -> Dict[str, str]:
    """
    Keeps allow-listed keys only, and drops values that look like personal data
    (an "@", or any of SENSITIVE_PATTERNS). Kept values are trimmed and cut to 64 chars.
    """
    safe: Dict[str, str] = {}
    for key, value in (metadata or {}).items():
        if key not in ALLOWED_KEYS or value is None:
            continue
        text = str(value).strip()
        lower = text.lower()
        if not text or "@" in lower or any(p in lower for p in SENSITIVE_PATTERNS):
            continue
        safe[key] = text[:MAX_VALUE_LENGTH]
    return safe


def track(event: AnalyticsEvent, metadata: Optional[Mapping[str, object]] = None) -> Dict[str, str]:
    """Local audit trail of funnel steps; nothing leaves the device. Returns what was logged."""
    safe = sanitize(metadata)
    logger.info("analytics event=%s meta=%s", event.value, safe)
    return safe
