from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any, Optional


def gen_id() -> str:
    return str(uuid.uuid4())


def blank_to_none(value: Any) -> Optional[str]:
    """Trims a string; empty or missing values become None."""
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()
